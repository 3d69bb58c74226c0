"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, func

from newsletter.storage import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscriber(Base):
    """
    SQLAlchemy model for newsletter subscribers.

    Table: subscribers
    Unique: email (the only guard against duplicate subscriptions)
    """
    __tablename__ = "subscribers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), nullable=False, unique=True)
    # Set once at insert, never updated
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Subscriber id={self.id} email={self.email!r}>"
