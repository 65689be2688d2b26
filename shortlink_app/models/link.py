import uuid

from sqlalchemy import Column, String, Text, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from shortlink_app.database.connection import Base


def new_id() -> str:
    return uuid.uuid4().hex


class ShortLink(Base):
    """
    A short code pointing at a target URL.

    Links are never hard-deleted: retiring one flips ``is_active`` so its
    click history stays attached.
    """
    __tablename__ = "short_links"

    id = Column(String(32), primary_key=True, default=new_id)
    original_url = Column(Text, nullable=False)
    # unique=True creates the index that backs the redirect lookup
    short_code = Column(String(50), unique=True, nullable=False, index=True)
    custom_alias = Column(String(50), nullable=True)
    title = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    owner_id = Column(String(64), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    qr_code_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=True)


class CodeReservation(Base):
    """
    One row per code ever handed out.

    The primary key is the uniqueness constraint for short codes: a code
    stays reserved after its link is retired or moved to an alias, so it is
    never reassigned to a different target.
    """
    __tablename__ = "short_codes"

    code = Column(String(50), primary_key=True)
    link_id = Column(String(32), ForeignKey("short_links.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
