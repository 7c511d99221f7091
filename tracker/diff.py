from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime

from core.models import ChangeKind, ChangeRecord, DiffResult, QuestionItem, QuestionRecord
from core.normalize import detect_question_type, question_hash

# Moves of one slot are rendering noise.
MIN_POSITION_DELTA = 2


@dataclass(frozen=True)
class CurrentQuestion:
    question: str
    hash: str
    position: int
    depth: int = 0


def index_current(items: Sequence[QuestionItem]) -> list[CurrentQuestion]:
    """Top-level questions keyed by hash; the first occurrence of a hash wins."""
    out: list[CurrentQuestion] = []
    seen: set[str] = set()
    for item in items:
        if item.depth != 0:
            continue
        h = question_hash(item.raw)
        if h in seen:
            continue
        seen.add(h)
        out.append(CurrentQuestion(question=item.raw, hash=h, position=len(out), depth=item.depth))
    return out


def diff_questions(
    target_id: str,
    previous: Sequence[QuestionRecord],
    current: Sequence[CurrentQuestion],
    now: datetime,
) -> DiffResult:
    prev_by_hash: dict[str, tuple[int, QuestionRecord]] = {}
    for idx, record in enumerate(previous):
        prev_by_hash.setdefault(record.question_hash, (idx, record))
    curr_hashes = {q.hash for q in current}

    diff = DiffResult()
    moves: list[ChangeRecord] = []

    for q in current:
        if q.hash not in prev_by_hash:
            diff.added.append(
                QuestionRecord(
                    target_id=target_id,
                    question_hash=q.hash,
                    question=q.question,
                    question_type=detect_question_type(q.question),
                    first_seen_at=now,
                    last_seen_at=now,
                    times_seen=1,
                    avg_position=float(q.position),
                    is_current=True,
                    last_position=q.position,
                )
            )
            diff.changes.append(
                ChangeRecord(
                    target_id=target_id,
                    kind=ChangeKind.ADDED,
                    question=q.question,
                    question_hash=q.hash,
                    detected_at=now,
                    new_position=q.position,
                )
            )
            continue

        idx, record = prev_by_hash[q.hash]
        old_position = record.last_position if record.last_position is not None else idx
        times_seen = record.times_seen + 1
        diff.retained.append(
            replace(
                record,
                last_seen_at=now,
                times_seen=times_seen,
                avg_position=(record.avg_position * record.times_seen + q.position) / times_seen,
                last_position=q.position,
                is_current=True,
            )
        )
        if abs(old_position - q.position) >= MIN_POSITION_DELTA:
            moves.append(
                ChangeRecord(
                    target_id=target_id,
                    kind=ChangeKind.POSITION_CHANGED,
                    question=q.question,
                    question_hash=q.hash,
                    detected_at=now,
                    old_position=old_position,
                    new_position=q.position,
                )
            )

    for h, (_, record) in prev_by_hash.items():
        if h in curr_hashes:
            continue
        diff.removed.append(replace(record, is_current=False))
        diff.changes.append(
            ChangeRecord(
                target_id=target_id,
                kind=ChangeKind.REMOVED,
                question=record.question,
                question_hash=h,
                detected_at=now,
            )
        )

    diff.changes.extend(moves)
    return diff
