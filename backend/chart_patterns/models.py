"""
Pattern storage model.

A pattern is a named predicate script evaluated against a chart context.
Rows are insert-only: there is no update path, and ids are never reused.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Timezone-aware UTC now (replaces deprecated datetime.utcnow())."""
    return datetime.now(timezone.utc)


def _new_pattern_id() -> str:
    return uuid.uuid4().hex


class Pattern(SQLModel, table=True):
    __tablename__ = "pattern"
    # AUTOINCREMENT keeps seq values from being reused after deletes
    __table_args__ = {"sqlite_autoincrement": True}

    seq: int | None = Field(default=None, primary_key=True)
    id: str = Field(
        default_factory=_new_pattern_id,
        max_length=32,
        unique=True,
        index=True,
        nullable=False,
    )
    name: str = Field(max_length=255, index=True)
    script: str = Field(sa_column=Column(Text, nullable=False))
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    examples: str = Field(default="", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=_utc_now)
