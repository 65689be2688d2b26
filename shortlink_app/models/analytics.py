from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey
from shortlink_app.database.connection import Base
from shortlink_app.models.link import new_id


class AnalyticsSnapshot(Base):
    """
    Materialized rollup of a link's click events.

    Exactly one row per link (unique ``link_id``). Written only by the
    analytics aggregator; every field can be recomputed from click_events.
    """
    __tablename__ = "analytics_snapshots"

    id = Column(String(32), primary_key=True, default=new_id)
    link_id = Column(String(32), ForeignKey("short_links.id"), unique=True, nullable=False)
    total_clicks = Column(Integer, default=0, nullable=False)
    unique_clicks = Column(Integer, default=0, nullable=False)
    clicks_by_country = Column(JSON, default=dict, nullable=False)
    clicks_by_device = Column(JSON, default=dict, nullable=False)
    clicks_by_browser = Column(JSON, default=dict, nullable=False)
    clicks_by_referrer = Column(JSON, default=dict, nullable=False)
    daily_clicks = Column(JSON, default=dict, nullable=False)
    last_click_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
