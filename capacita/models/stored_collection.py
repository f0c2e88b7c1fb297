"""Stored collection model definitions."""

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class StoredCollection(Base):
    """One whole collection serialised as a JSON array, keyed by collection name."""
    __tablename__ = "stored_collections"

    name = Column(String(64), primary_key=True)
    data = Column(Text, nullable=False, default="[]")
    updated_at = Column(DateTime(timezone=True))
