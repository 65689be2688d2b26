"""
Database models for the short link service.

Click events are append-only; analytics snapshots are derived from them and
can always be rebuilt from the event log.
"""

from .link import ShortLink, CodeReservation
from .click import ClickEvent
from .analytics import AnalyticsSnapshot

__all__ = ["ShortLink", "CodeReservation", "ClickEvent", "AnalyticsSnapshot"]
