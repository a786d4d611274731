"""
SQLAlchemy ORM Models for the deal journey key-value store

Tables:
- kv_entries: string-keyed, JSON-encoded values (journey, route data,
  history, redemption records, vendor snapshot, points balance)
"""

from sqlalchemy import Column, String, Text, DateTime, Index
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class KeyValueEntry(Base):
    """One durable key with its string value"""
    __tablename__ = 'kv_entries'
    __table_args__ = (
        Index('idx_kv_updated_at', 'updated_at'),
    )

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<KeyValueEntry {self.key} ({len(self.value or '')} chars)>"
