"""Reconciles a fresh extraction against the stored question state of a target."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol

from core.models import DiffResult, QuestionItem, QuestionRecord, Snapshot, TrackedTarget
from tracker.diff import diff_questions, index_current

log = logging.getLogger(__name__)


class QuestionStore(Protocol):
    async def current_questions(self, target_id: str) -> list[QuestionRecord]: ...

    async def has_snapshot(self, target_id: str, cycle_id: str) -> bool: ...

    async def apply_diff(self, target_id: str, snapshot: Snapshot, diff: DiffResult) -> None:
        """Persist snapshot, record updates and change log as one unit."""
        ...


class TargetStore(Protocol):
    async def due_targets(self, now: datetime) -> list[TrackedTarget]: ...

    async def get(self, target_id: str) -> TrackedTarget | None: ...

    async def mark_checked(self, target_id: str, when: datetime) -> None: ...


@dataclass
class Stores:
    targets: TargetStore
    questions: QuestionStore


StoreFactory = Callable[[], AbstractAsyncContextManager[Stores]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_snapshot(
    target_id: str,
    items: Sequence[QuestionItem],
    captured_at: datetime,
    cycle_id: str | None = None,
) -> Snapshot:
    return Snapshot(
        target_id=target_id,
        captured_at=captured_at,
        cycle_id=cycle_id,
        questions=[
            {
                "question": item.raw,
                "norm": item.norm,
                "position": position,
                "depth": item.depth,
                "parent": item.parent,
            }
            for position, item in enumerate(items)
        ],
    )


async def reconcile(
    target_id: str,
    current_items: Sequence[QuestionItem],
    previous_records: Sequence[QuestionRecord],
    store: QuestionStore,
    *,
    cycle_id: str | None = None,
    now: datetime | None = None,
) -> DiffResult:
    """Diff ``current_items`` against ``previous_records`` and persist the outcome.

    The whole diff is computed before anything is written; the store receives
    it in a single ``apply_diff`` call together with the full snapshot, which
    is stored even when nothing changed. A cycle id that already has a
    snapshot makes the call a no-op.
    """
    if cycle_id is not None and await store.has_snapshot(target_id, cycle_id):
        log.info("Target %s already reconciled in cycle %s; skipping", target_id, cycle_id)
        return DiffResult()

    now = now or utcnow()
    current = index_current(current_items)
    active = [r for r in previous_records if r.is_current]
    diff = diff_questions(target_id, active, current, now)

    snapshot = build_snapshot(target_id, current_items, now, cycle_id)
    await store.apply_diff(target_id, snapshot, diff)

    log.info(
        "Target %s: +%d -%d ~%d (%d tracked)",
        target_id,
        len(diff.added),
        len(diff.removed),
        len(diff.position_changes),
        len(current),
    )
    return diff
