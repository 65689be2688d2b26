from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from shortlink_app.database.connection import Base
from shortlink_app.models.link import new_id


class ClickEvent(Base):
    """Immutable record of a single redirect."""
    __tablename__ = "click_events"

    id = Column(String(32), primary_key=True, default=new_id)
    link_id = Column(String(32), ForeignKey("short_links.id"), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    user_agent = Column(Text, nullable=True)
    referrer = Column(String(255), nullable=True)  # hostname or "Direct"
    country = Column(String(2), nullable=True)  # ISO country code
    device = Column(String(50), nullable=True)
    browser = Column(String(50), nullable=True)
    os = Column(String(50), nullable=True)
    clicked_at = Column(DateTime(timezone=True), nullable=False, index=True)
