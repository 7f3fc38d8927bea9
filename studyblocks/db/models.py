"""
Table models for the block store.

Rows mirror the domain dataclasses one-to-one; conversion lives in the
store so the scheduling code never sees SQLAlchemy objects.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SubjectRow(Base):
    """A learner's subject with its running XP ledger."""

    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    icon: Mapped[str] = mapped_column(Text, default="book")
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    block_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    xp: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())


class StudyBlockRow(Base):
    """One scheduled (or custom) study block."""

    __tablename__ = "study_blocks"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    subject_id: Mapped[str] = mapped_column(ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    # Snapshot at generation time; renaming a subject does not rewrite history
    subject_name: Mapped[str] = mapped_column(Text, nullable=False)
    subject_icon: Mapped[str] = mapped_column(Text, default="book")
    block_number: Mapped[int] = mapped_column(Integer, nullable=False)
    total_blocks_for_subject: Mapped[int] = mapped_column(Integer, default=1)
    spaced_repetition_interval: Mapped[int] = mapped_column(Integer, default=1)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_custom_block: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    xp_awarded: Mapped[int] = mapped_column(Integer, default=0)
    generation_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    __table_args__ = (
        Index("idx_study_blocks_user_date", "user_id", "scheduled_date"),
        Index("idx_study_blocks_subject", "subject_id"),
    )


class SchedulePreferencesRow(Base):
    __tablename__ = "schedule_preferences"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    schedule_horizon_days: Mapped[int] = mapped_column(Integer, default=21)
    blocks_per_weekday: Mapped[int] = mapped_column(Integer, default=3)
    blocks_per_weekend: Mapped[int] = mapped_column(Integer, default=2)
    default_block_duration_minutes: Mapped[int] = mapped_column(Integer, default=60)
    subject_grouping: Mapped[str] = mapped_column(Text, default="balanced")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())
