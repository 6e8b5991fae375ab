"""Persisted sheet sync bookkeeping."""
from sqlalchemy import Column, ForeignKey, String

from app.database import Base
from app.db.types import GUID, UTCDateTime


class PamSyncState(Base):
    """Last fingerprint and attempt times of an organization's sheet sync."""

    __tablename__ = "pam_sync_state"

    organization_id = Column(GUID(), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True)
    last_fingerprint = Column(String(32), nullable=True)
    last_attempt_at = Column(UTCDateTime(), nullable=True)  # compared against the throttle window
    last_success_at = Column(UTCDateTime(), nullable=True)
