from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core.models import ChangeKind, QuestionItem
from core.normalize import normalize, question_hash
from tracker.diff import CurrentQuestion, diff_questions, index_current
from tracker.engine import reconcile
from fakes import MemoryQuestionStore

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(days=1)


def _items(*questions: str) -> list[QuestionItem]:
    return [
        QuestionItem(raw=q, norm=normalize(q), depth=0, order_index=i)
        for i, q in enumerate(questions)
    ]


def _current(*questions: str) -> list[CurrentQuestion]:
    return index_current(_items(*questions))


def _previous(*questions: str):
    return diff_questions("t1", [], _current(*questions), T0).added


def test_index_current_keeps_top_level_and_dedupes():
    items = _items("What is X?", "what is x?", "Why X?")
    items.append(QuestionItem(raw="Child?", norm="child?", depth=1, parent="what is x?"))
    current = index_current(items)

    assert [c.question for c in current] == ["What is X?", "Why X?"]
    assert [c.position for c in current] == [0, 1]
    assert current[0].hash == question_hash("What is X?")


def test_first_check_adds_everything():
    diff = diff_questions("t1", [], _current("A?", "B?"), T0)
    assert [r.question for r in diff.added] == ["A?", "B?"]
    assert [c.kind for c in diff.changes] == [ChangeKind.ADDED, ChangeKind.ADDED]
    assert [c.new_position for c in diff.changes] == [0, 1]
    assert diff.added[1].avg_position == 1.0


def test_identical_sets_produce_no_adds_or_removes():
    previous = _previous("A?", "B?", "C?")
    diff = diff_questions("t1", previous, _current("A?", "B?", "C?"), T1)

    assert diff.added == []
    assert diff.removed == []
    assert diff.changes == []
    assert len(diff.retained) == 3
    assert all(r.times_seen == 2 and r.last_seen_at == T1 for r in diff.retained)


def test_disjoint_sets():
    previous = _previous("A?", "B?", "C?")
    diff = diff_questions("t1", previous, _current("D?", "E?", "F?"), T1)

    assert len(diff.added) == 3
    assert len(diff.removed) == 3
    assert diff.position_changes == []
    assert all(not r.is_current for r in diff.removed)
    removed = [c for c in diff.changes if c.kind is ChangeKind.REMOVED]
    assert all(c.old_position is None and c.new_position is None for c in removed)


@pytest.mark.parametrize("current, moves", [
    (("B?", "A?", "C?"), 0),  # A moves 0 -> 1
    (("B?", "C?", "A?"), 1),  # A moves 0 -> 2
])
def test_position_changes_below_threshold_are_ignored(current, moves):
    previous = _previous("A?", "B?", "C?")
    diff = diff_questions("t1", previous, _current(*current), T1)

    a_moves = [c for c in diff.position_changes if c.question == "A?"]
    assert len(a_moves) == moves
    if moves:
        assert (a_moves[0].old_position, a_moves[0].new_position) == (0, 2)


def test_average_position_is_a_running_mean():
    [record] = _previous("A?")  # position 0
    diff = diff_questions("t1", [record], _current("X?", "Y?", "A?"), T1)
    [retained] = diff.retained
    assert retained.avg_position == pytest.approx(1.0)
    assert retained.last_position == 2

    diff = diff_questions("t1", [retained], _current("X?", "A?"), T1 + timedelta(days=1))
    assert diff.retained[0].avg_position == pytest.approx(1.0)
    assert diff.retained[0].times_seen == 3


def test_changes_are_ordered_added_removed_moved():
    previous = _previous("A?", "B?", "C?", "D?")
    diff = diff_questions("t1", previous, _current("D?", "B?", "N?"), T1)
    kinds = [c.kind for c in diff.changes]
    assert kinds == [
        ChangeKind.ADDED,
        ChangeKind.REMOVED,
        ChangeKind.REMOVED,
        ChangeKind.POSITION_CHANGED,
    ]


@pytest.mark.asyncio
async def test_reconcile_stores_snapshot_even_without_changes():
    store = MemoryQuestionStore()
    await reconcile("t1", _items("A?", "B?"), [], store, now=T0)
    previous = await store.current_questions("t1")

    diff = await reconcile("t1", _items("A?", "B?"), previous, store, now=T1)

    assert diff.change_count == 0
    assert len(store.snapshots) == 2
    assert store.snapshots[1].questions[1]["question"] == "B?"
    assert store.apply_calls == 2


@pytest.mark.asyncio
async def test_reconcile_is_a_no_op_for_a_replayed_cycle():
    store = MemoryQuestionStore()
    first = await reconcile("t1", _items("A?"), [], store, cycle_id="c1", now=T0)
    replay = await reconcile("t1", _items("B?"), [], store, cycle_id="c1", now=T1)

    assert first.change_count == 1
    assert replay.change_count == 0
    assert store.apply_calls == 1
    assert [r.question for r in store.records] == ["A?"]


@pytest.mark.asyncio
async def test_reconcile_ignores_retired_records():
    store = MemoryQuestionStore()
    await reconcile("t1", _items("A?", "B?"), [], store, now=T0)
    await reconcile("t1", _items("A?"), await store.current_questions("t1"), store, now=T1)

    # B? reappears: the retired record is not reused
    every_record = list(store.records)
    diff = await reconcile("t1", _items("A?", "B?"), every_record, store, now=T1 + timedelta(days=1))

    assert [r.question for r in diff.added] == ["B?"]
    assert len([r for r in store.records if r.question == "B?"]) == 2
