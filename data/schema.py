from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class DBTrackedTarget(Base):
    __tablename__ = "tracked_targets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    keyword: Mapped[str] = mapped_column(Text)
    country: Mapped[str] = mapped_column(String(8), default="US")
    language: Mapped[str] = mapped_column(String(16), default="en")
    device: Mapped[str] = mapped_column(String(10), default="mobile")
    city_bias: Mapped[str | None] = mapped_column(Text, nullable=True)
    check_interval_hours: Mapped[int] = mapped_column(Integer, default=24)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_targets_active_checked", "is_active", "last_checked_at"),
    )


class DBQuestion(Base):
    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    target_id: Mapped[str] = mapped_column(String(36), index=True)
    question: Mapped[str] = mapped_column(Text)
    question_hash: Mapped[str] = mapped_column(String(32))
    question_type: Mapped[str] = mapped_column(String(20), default="paragraph")
    first_seen_at: Mapped[datetime] = mapped_column(DateTime)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime)
    times_seen: Mapped[int] = mapped_column(Integer, default=1)
    avg_position: Mapped[float] = mapped_column(Float, default=0.0)
    last_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        Index("ix_questions_target_hash", "target_id", "question_hash"),
        Index("ix_questions_target_current", "target_id", "is_current"),
    )


class DBChange(Base):
    __tablename__ = "question_changes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_id: Mapped[str] = mapped_column(String(36))
    change_type: Mapped[str] = mapped_column(String(20))
    question: Mapped[str] = mapped_column(Text)
    question_hash: Mapped[str] = mapped_column(String(32))
    old_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime, index=True)

    __table_args__ = (
        Index("ix_changes_target_detected", "target_id", "detected_at"),
    )


class DBSnapshot(Base):
    __tablename__ = "snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_id: Mapped[str] = mapped_column(String(36))
    cycle_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime)
    questions: Mapped[list] = mapped_column(JSON)

    __table_args__ = (
        Index("ix_snapshots_target_captured", "target_id", "captured_at"),
        Index("ix_snapshots_target_cycle", "target_id", "cycle_id"),
    )
