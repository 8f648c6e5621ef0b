from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class QuizStateTable(Base):
    """One persisted quiz snapshot per storage key, stored as a JSON document."""

    __tablename__ = "quiz_state"

    storage_key = Column(String, primary_key=True)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )
