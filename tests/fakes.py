"""In-process stand-ins for a rendered results page and for the stores."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta

from core.models import DiffResult, EngineConfig, QuestionRecord, Snapshot, TrackedTarget
from extraction.evidence import OUTER_HTML_JS
from extraction.fingerprint import OUTBOUND_LINKS_JS
from extraction.locator import FIND_BY_HEADING_JS, FIND_CONTAINER_JS
from extraction.walker import ACCORDION_ITEMS_JS, COUNT_CONTROLS_JS, FIND_CONTROL_JS
from tracker.engine import Stores

FAST_CONFIG = EngineConfig(
    child_wait_timeout_ms=20,
    child_poll_interval_ms=1,
    network_idle_timeout_ms=10,
    consent_wait_ms=0,
)


class FakeSerp:
    """Accordion tree whose children are injected below a question when clicked."""

    def __init__(
        self,
        top: list[str],
        children: dict[str, list[str]] | None = None,
        *,
        failing: set[str] | None = None,
        missing: set[str] | None = None,
    ) -> None:
        self.visible = list(top)
        self.children = children or {}
        self.failing = failing or set()
        self.missing = missing or set()
        self.clicked: list[str] = []

    def expand(self, question: str) -> None:
        self.clicked.append(question)
        kids = [c for c in self.children.get(question, []) if c not in self.visible]
        at = self.visible.index(question) + 1
        self.visible[at:at] = kids


class FakeHandle:
    def __init__(self, element) -> None:
        self._element = element
        self.disposed = False

    def as_element(self):
        return self._element

    async def dispose(self) -> None:
        self.disposed = True


class FakeControl:
    def __init__(self, serp: FakeSerp, text: str) -> None:
        self._serp = serp
        self._text = text

    async def click(self, **kwargs) -> None:
        if self._text in self._serp.failing:
            raise RuntimeError("element is detached from the DOM")
        self._serp.expand(self._text)


class FakeContainer:
    def __init__(self, serp: FakeSerp) -> None:
        self.serp = serp
        self.screenshots = 0

    async def evaluate(self, expression: str, arg=None):
        if expression == ACCORDION_ITEMS_JS:
            return [
                {"question": q, "orderIdx": i, "path": f"DIV:nth-child({i + 1})"}
                for i, q in enumerate(self.serp.visible)
            ]
        if expression == COUNT_CONTROLS_JS:
            return len(self.serp.visible)
        if expression == OUTER_HTML_JS:
            return "<div role=\"region\">" + "".join(f"<div>{q}</div>" for q in self.serp.visible) + "</div>"
        raise AssertionError(f"unexpected container expression: {expression[:40]}")

    async def evaluate_handle(self, expression: str, arg=None) -> FakeHandle:
        assert expression == FIND_CONTROL_JS
        if arg in self.serp.visible and arg not in self.serp.missing:
            return FakeHandle(FakeControl(self.serp, arg))
        return FakeHandle(None)

    async def screenshot(self, **kwargs) -> bytes:
        self.screenshots += 1
        return b"crop"


class FakePage:
    def __init__(
        self,
        serp: FakeSerp | None = None,
        *,
        links: list[str] | None = None,
        url: str = "https://www.google.com/search?q=test",
        goto_error: BaseException | None = None,
        heading_container: FakeContainer | None = None,
    ) -> None:
        self.url = url
        self.container = FakeContainer(serp) if serp is not None else None
        self.heading_container = heading_container
        self.links = links or []
        self.goto_error = goto_error
        self.visited: list[str] = []

    async def goto(self, url: str, **kwargs) -> None:
        self.visited.append(url)
        if self.goto_error is not None:
            raise self.goto_error

    async def wait_for_load_state(self, state: str = "load", **kwargs) -> None:
        return None

    async def wait_for_timeout(self, ms: float) -> None:
        return None

    async def query_selector(self, selector: str):
        return None

    async def evaluate(self, expression: str, arg=None):
        if expression == OUTBOUND_LINKS_JS:
            return list(self.links)
        raise AssertionError(f"unexpected page expression: {expression[:40]}")

    async def evaluate_handle(self, expression: str, arg=None) -> FakeHandle:
        if expression == FIND_CONTAINER_JS:
            return FakeHandle(self.container)
        if expression == FIND_BY_HEADING_JS:
            return FakeHandle(self.heading_container)
        raise AssertionError(f"unexpected page expression: {expression[:40]}")

    async def screenshot(self, full_page: bool = False, **kwargs) -> bytes:
        return b"full-page"


class SessionLog:
    """Session factory serving one page and recording open/close."""

    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.events: list[str] = []
        self.proxies: list[str | None] = []
        self.requests = []

    @asynccontextmanager
    async def __call__(self, request, proxy, config) -> AsyncIterator[FakePage]:
        self.events.append("open")
        self.proxies.append(proxy)
        self.requests.append(request)
        try:
            yield self.page
        finally:
            self.events.append("close")


# ── stores ───────────────────────────────────────────────────────────


class MemoryQuestionStore:
    def __init__(self) -> None:
        self.records: list[QuestionRecord] = []
        self.changes = []
        self.snapshots: list[Snapshot] = []
        self.apply_calls = 0

    async def current_questions(self, target_id: str) -> list[QuestionRecord]:
        current = [r for r in self.records if r.target_id == target_id and r.is_current]
        return sorted(current, key=lambda r: (r.last_position is None, r.last_position or 0))

    async def has_snapshot(self, target_id: str, cycle_id: str) -> bool:
        return any(s.target_id == target_id and s.cycle_id == cycle_id for s in self.snapshots)

    async def apply_diff(self, target_id: str, snapshot: Snapshot, diff: DiffResult) -> None:
        self.apply_calls += 1
        self.snapshots.append(snapshot)
        for updated in diff.retained + diff.removed:
            for i, record in enumerate(self.records):
                if (
                    record.target_id == target_id
                    and record.question_hash == updated.question_hash
                    and record.is_current
                ):
                    self.records[i] = replace(updated)
        self.records.extend(replace(r) for r in diff.added)
        self.changes.extend(diff.changes)


class MemoryTargetStore:
    def __init__(self, targets: list[TrackedTarget]) -> None:
        self.targets = {t.id: t for t in targets}

    async def due_targets(self, now: datetime) -> list[TrackedTarget]:
        return [
            t
            for t in self.targets.values()
            if t.is_active
            and (
                t.last_checked_at is None
                or t.last_checked_at + timedelta(hours=t.check_interval_hours) <= now
            )
        ]

    async def get(self, target_id: str) -> TrackedTarget | None:
        return self.targets.get(target_id)

    async def mark_checked(self, target_id: str, when: datetime) -> None:
        self.targets[target_id].last_checked_at = when


def memory_stores(targets: MemoryTargetStore, questions: MemoryQuestionStore):
    @asynccontextmanager
    async def _open() -> AsyncIterator[Stores]:
        yield Stores(targets=targets, questions=questions)

    return _open
