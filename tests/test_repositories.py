from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.models import ChangeKind, QuestionItem
from core.normalize import normalize
from data.database import init_db
from data.repositories import ChangeRepository, QuestionRepository, TrackedTargetRepository, open_stores
from tracker.engine import reconcile

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(days=1)


def _items(*questions: str) -> list[QuestionItem]:
    return [
        QuestionItem(raw=q, norm=normalize(q), depth=0, order_index=i)
        for i, q in enumerate(questions)
    ]


async def _check(factory, target_id: str, questions, *, cycle_id: str, now: datetime):
    async with open_stores(factory) as stores:
        previous = await stores.questions.current_questions(target_id)
        diff = await reconcile(
            target_id, _items(*questions), previous, stores.questions, cycle_id=cycle_id, now=now
        )
        await stores.targets.mark_checked(target_id, now)
    return diff


@pytest.mark.asyncio
async def test_two_cycles_against_sqlite(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'paa.db'}")
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        await init_db(engine)

        async with open_stores(factory) as stores:
            target = await stores.targets.add("  cold brew ", country="gb", check_interval_hours=12)
        assert target.keyword == "cold brew"
        assert target.country == "GB"

        async with open_stores(factory) as stores:
            assert [t.id for t in await stores.targets.due_targets(T0)] == [target.id]

        await _check(factory, target.id, ["A?", "B?", "C?"], cycle_id="c1", now=T0)
        diff = await _check(factory, target.id, ["C?", "B?", "D?"], cycle_id="c2", now=T1)

        assert [r.question for r in diff.added] == ["D?"]
        assert [r.question for r in diff.removed] == ["A?"]
        assert [(c.question, c.old_position, c.new_position) for c in diff.position_changes] == [
            ("C?", 2, 0)
        ]

        async with factory() as session:
            questions = QuestionRepository(session)
            current = await questions.current_questions(target.id)
            assert [r.question for r in current] == ["C?", "B?", "D?"]
            by_question = {r.question: r for r in current}
            assert by_question["B?"].times_seen == 2
            assert by_question["C?"].avg_position == pytest.approx(1.0)
            assert by_question["C?"].first_seen_at == T0
            assert by_question["C?"].last_seen_at == T1

            history = await questions.history(target.id)
            assert {r.question: r.is_current for r in history}["A?"] is False

            assert await questions.has_snapshot(target.id, "c2")
            assert not await questions.has_snapshot(target.id, "c3")
            snapshots = await questions.snapshots(target.id)
            assert [s.cycle_id for s in snapshots] == ["c2", "c1"]
            assert [q["question"] for q in snapshots[0].questions] == ["C?", "B?", "D?"]

            changes = await ChangeRepository(session).recent_changes(target_id=target.id)
            assert len(changes) == 6
            kinds = [c.kind for c in changes if c.detected_at == T1]
            assert sorted(kinds) == sorted(
                [ChangeKind.ADDED, ChangeKind.REMOVED, ChangeKind.POSITION_CHANGED]
            )

            targets = TrackedTargetRepository(session)
            assert await targets.due_targets(T1 + timedelta(hours=1)) == []
            assert [t.id for t in await targets.due_targets(T1 + timedelta(hours=12))] == [target.id]

        # replaying a finished cycle writes nothing
        replay = await _check(factory, target.id, ["X?"], cycle_id="c2", now=T1)
        assert replay.change_count == 0
        async with factory() as session:
            assert len(await ChangeRepository(session).recent_changes(target_id=target.id)) == 6
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_failed_unit_of_work_rolls_back(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'paa.db'}")
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        await init_db(engine)

        with pytest.raises(RuntimeError):
            async with open_stores(factory) as stores:
                await stores.targets.add("tea")
                raise RuntimeError("crash mid-cycle")

        async with factory() as session:
            assert await TrackedTargetRepository(session).list_targets() == []
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_deactivated_targets_are_never_due(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'paa.db'}")
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        await init_db(engine)
        async with open_stores(factory) as stores:
            target = await stores.targets.add("tea")
        async with open_stores(factory) as stores:
            await stores.targets.deactivate(target.id)
        async with factory() as session:
            assert await TrackedTargetRepository(session).due_targets(T0) == []
    finally:
        await engine.dispose()
