from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from core.models import (
    ChangeKind,
    ChangeRecord,
    DiffResult,
    QuestionRecord,
    QuestionType,
    Snapshot,
    TrackedTarget,
)
from data.database import get_session
from data.schema import DBChange, DBQuestion, DBSnapshot, DBTrackedTarget
from tracker.engine import Stores

# ── helpers ──────────────────────────────────────────────────────────


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands datetimes back naive; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _target_from_row(row: DBTrackedTarget) -> TrackedTarget:
    return TrackedTarget(
        id=row.id,
        keyword=row.keyword,
        country=row.country,
        language=row.language,
        device=row.device,
        city_bias=row.city_bias,
        check_interval_hours=row.check_interval_hours,
        last_checked_at=_as_utc(row.last_checked_at),
        is_active=row.is_active,
    )


def _question_from_row(row: DBQuestion) -> QuestionRecord:
    return QuestionRecord(
        id=row.id,
        target_id=row.target_id,
        question_hash=row.question_hash,
        question=row.question,
        question_type=QuestionType(row.question_type),
        first_seen_at=_as_utc(row.first_seen_at),
        last_seen_at=_as_utc(row.last_seen_at),
        times_seen=row.times_seen,
        avg_position=row.avg_position,
        is_current=row.is_current,
        last_position=row.last_position,
    )


def _change_from_row(row: DBChange) -> ChangeRecord:
    return ChangeRecord(
        target_id=row.target_id,
        kind=ChangeKind(row.change_type),
        question=row.question,
        question_hash=row.question_hash,
        detected_at=_as_utc(row.detected_at),
        old_position=row.old_position,
        new_position=row.new_position,
    )


# ── TrackedTargetRepository ──────────────────────────────────────────


class TrackedTargetRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def add(
        self,
        keyword: str,
        *,
        country: str = "US",
        language: str = "en",
        device: str = "mobile",
        city_bias: str | None = None,
        check_interval_hours: int | None = None,
    ) -> TrackedTarget:
        row = DBTrackedTarget(
            id=str(uuid.uuid4()),
            keyword=keyword.strip(),
            country=country.upper(),
            language=language,
            device=device,
            city_bias=city_bias,
            check_interval_hours=check_interval_hours or settings.DEFAULT_CHECK_INTERVAL_HOURS,
            last_checked_at=None,
            is_active=True,
            created_at=datetime.now(timezone.utc),
        )
        self._s.add(row)
        await self._s.flush()
        return _target_from_row(row)

    async def get(self, target_id: str) -> TrackedTarget | None:
        row = await self._s.get(DBTrackedTarget, target_id)
        return _target_from_row(row) if row else None

    async def list_targets(self, *, active_only: bool = True) -> list[TrackedTarget]:
        q = select(DBTrackedTarget).order_by(DBTrackedTarget.created_at)
        if active_only:
            q = q.where(DBTrackedTarget.is_active.is_(True))
        result = await self._s.execute(q)
        return [_target_from_row(r) for r in result.scalars().all()]

    async def due_targets(self, now: datetime) -> list[TrackedTarget]:
        """Active targets never checked, or whose interval has elapsed."""
        due = []
        for target in await self.list_targets(active_only=True):
            last = target.last_checked_at
            if last is None or last + timedelta(hours=target.check_interval_hours) <= now:
                due.append(target)
        return due

    async def mark_checked(self, target_id: str, when: datetime) -> None:
        await self._s.execute(
            update(DBTrackedTarget)
            .where(DBTrackedTarget.id == target_id)
            .values(last_checked_at=when)
        )

    async def deactivate(self, target_id: str) -> None:
        await self._s.execute(
            update(DBTrackedTarget)
            .where(DBTrackedTarget.id == target_id)
            .values(is_active=False)
        )


# ── QuestionRepository ───────────────────────────────────────────────


class QuestionRepository:
    """Question state, snapshots and change log of tracked targets."""

    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def current_questions(self, target_id: str) -> list[QuestionRecord]:
        q = (
            select(DBQuestion)
            .where(DBQuestion.target_id == target_id, DBQuestion.is_current.is_(True))
            .order_by(DBQuestion.last_position.is_(None), DBQuestion.last_position, DBQuestion.avg_position)
        )
        result = await self._s.execute(q)
        return [_question_from_row(r) for r in result.scalars().all()]

    async def has_snapshot(self, target_id: str, cycle_id: str) -> bool:
        q = (
            select(DBSnapshot.id)
            .where(DBSnapshot.target_id == target_id, DBSnapshot.cycle_id == cycle_id)
            .limit(1)
        )
        return (await self._s.scalar(q)) is not None

    async def apply_diff(self, target_id: str, snapshot: Snapshot, diff: DiffResult) -> None:
        self._s.add(
            DBSnapshot(
                target_id=target_id,
                cycle_id=snapshot.cycle_id,
                captured_at=snapshot.captured_at,
                questions=snapshot.questions,
            )
        )

        for record in diff.added:
            self._s.add(
                DBQuestion(
                    id=str(uuid.uuid4()),
                    target_id=target_id,
                    question=record.question,
                    question_hash=record.question_hash,
                    question_type=record.question_type.value,
                    first_seen_at=record.first_seen_at,
                    last_seen_at=record.last_seen_at,
                    times_seen=record.times_seen,
                    avg_position=record.avg_position,
                    last_position=record.last_position,
                    is_current=True,
                )
            )

        for record in diff.retained:
            await self._s.execute(
                update(DBQuestion)
                .where(
                    DBQuestion.target_id == target_id,
                    DBQuestion.question_hash == record.question_hash,
                    DBQuestion.is_current.is_(True),
                )
                .values(
                    last_seen_at=record.last_seen_at,
                    times_seen=record.times_seen,
                    avg_position=record.avg_position,
                    last_position=record.last_position,
                )
            )

        for record in diff.removed:
            await self._s.execute(
                update(DBQuestion)
                .where(
                    DBQuestion.target_id == target_id,
                    DBQuestion.question_hash == record.question_hash,
                    DBQuestion.is_current.is_(True),
                )
                .values(is_current=False)
            )

        for change in diff.changes:
            self._s.add(
                DBChange(
                    target_id=target_id,
                    change_type=change.kind.value,
                    question=change.question,
                    question_hash=change.question_hash,
                    old_position=change.old_position,
                    new_position=change.new_position,
                    detected_at=change.detected_at,
                )
            )
        await self._s.flush()

    async def history(self, target_id: str, *, include_retired: bool = True) -> list[QuestionRecord]:
        q = select(DBQuestion).where(DBQuestion.target_id == target_id)
        if not include_retired:
            q = q.where(DBQuestion.is_current.is_(True))
        q = q.order_by(DBQuestion.first_seen_at, DBQuestion.avg_position)
        result = await self._s.execute(q)
        return [_question_from_row(r) for r in result.scalars().all()]

    async def snapshots(self, target_id: str, limit: int = 20) -> list[Snapshot]:
        q = (
            select(DBSnapshot)
            .where(DBSnapshot.target_id == target_id)
            .order_by(DBSnapshot.captured_at.desc())
            .limit(limit)
        )
        result = await self._s.execute(q)
        return [
            Snapshot(
                target_id=r.target_id,
                captured_at=_as_utc(r.captured_at),
                questions=list(r.questions or []),
                cycle_id=r.cycle_id,
            )
            for r in result.scalars().all()
        ]


# ── ChangeRepository ─────────────────────────────────────────────────


class ChangeRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def recent_changes(
        self,
        *,
        target_id: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[ChangeRecord]:
        q = select(DBChange)
        if target_id:
            q = q.where(DBChange.target_id == target_id)
        if since:
            q = q.where(DBChange.detected_at >= since)
        q = q.order_by(DBChange.detected_at.desc(), DBChange.id.desc()).limit(limit)
        result = await self._s.execute(q)
        return [_change_from_row(r) for r in result.scalars().all()]


# ── unit of work ─────────────────────────────────────────────────────


@asynccontextmanager
async def open_stores(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[Stores]:
    """Target and question stores sharing one session, committed on exit."""
    async with get_session(factory) as session:
        yield Stores(
            targets=TrackedTargetRepository(session),
            questions=QuestionRepository(session),
        )
