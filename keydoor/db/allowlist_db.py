import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AllowListEntry(Base):
    __tablename__ = "keys"
    id = Column(String(36), primary_key=True, default=_new_id)
    npub = Column(Text, nullable=False, unique=True, index=True)
    nip05 = Column(Text, nullable=True)
    profile_name = Column(Text, nullable=True)
    status = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
