"""Breadth-first expansion of the accordion tree inside the located container.

Every pass over the queue reads all controls currently in the container and
records the ones not seen yet at the depth and parent of the queue entry.
A freshly recorded question below the requested depth is clicked, the walker
waits for the control count to grow, and a child entry is queued. The walk
ends when the queue drains, the node budget is spent or the run deadline
passes.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import ElementHandle

from core.deadline import Deadline, wait_for_child_injection
from core.models import EngineConfig, Evidence, QuestionItem
from core.normalize import normalize
from extraction.evidence import capture_element

log = logging.getLogger(__name__)

MIN_QUESTION_LENGTH = 3

# Structural path is built bottom-up with a plain loop.
ACCORDION_ITEMS_JS = """
(container) => {
  const pathOf = (el) => {
    const parts = [];
    for (let node = el; node && node.parentElement; node = node.parentElement) {
      const idx = Array.prototype.indexOf.call(node.parentElement.children, node) + 1;
      parts.push(`${node.tagName}:nth-child(${idx})`);
    }
    return parts.reverse().join('>');
  };
  return Array.from(container.querySelectorAll('[aria-expanded]')).map((btn, i) => {
    const root = btn.closest('div') || btn;
    const text = (root.innerText || btn.innerText || '').trim().split('\\n')[0].trim();
    return {question: text, orderIdx: i, path: pathOf(root)};
  });
}
"""

COUNT_CONTROLS_JS = "(container) => container.querySelectorAll('[aria-expanded]').length"

FIND_CONTROL_JS = """
(container, text) => {
  const controls = Array.from(container.querySelectorAll('[aria-expanded]'));
  const label = (c) => ((c.closest('div') || c).innerText || '').trim();
  return controls.find((c) => label(c).split('\\n')[0].trim() === text)
    || controls.find((c) => label(c).includes(text))
    || null;
}
"""

STOP_EXHAUSTED = "exhausted"
STOP_NODE_BUDGET = "node_budget"
STOP_TIME_BUDGET = "time_budget"


@dataclass
class _QueueEntry:
    path: str
    depth: int
    parent: str | None = None


@dataclass
class WalkResult:
    items: list[QuestionItem] = field(default_factory=list)
    expansions: int = 0
    stop_reason: str = STOP_EXHAUSTED


async def _read_controls(container: ElementHandle) -> list[dict[str, Any]]:
    try:
        controls = await container.evaluate(ACCORDION_ITEMS_JS)
    except Exception as exc:
        log.debug("Reading accordion controls failed: %s", exc)
        return []
    return [c for c in controls or [] if len((c.get("question") or "").strip()) >= MIN_QUESTION_LENGTH]


async def _count_controls(container: ElementHandle) -> int:
    return int(await container.evaluate(COUNT_CONTROLS_JS))


async def _expand(
    container: ElementHandle, raw: str, config: EngineConfig, deadline: Deadline
) -> bool:
    """Click the control labelled ``raw`` and wait for children to appear.

    Returns False when the click could not be issued; the node is then a leaf.
    """
    try:
        baseline = await _count_controls(container)
        handle = await container.evaluate_handle(FIND_CONTROL_JS, raw)
        control = handle.as_element()
        if control is None:
            log.debug("No control found for %r", raw)
            return False
        await control.click(
            delay=config.click_delay_ms,
            timeout=max(1, deadline.remaining_ms(cap_ms=config.child_wait_timeout_ms)),
        )
    except Exception as exc:
        log.debug("Expansion click failed for %r: %s", raw, exc)
        return False

    grew = await wait_for_child_injection(
        lambda: _count_controls(container),
        baseline,
        deadline.sub(config.child_wait_timeout_ms / 1000.0),
        interval=config.child_poll_interval_ms / 1000.0,
    )
    if not grew:
        log.debug("No children injected under %r", raw)
    return True


async def walk_tree(
    container: ElementHandle,
    depth: int,
    config: EngineConfig,
    deadline: Deadline,
    evidence: Evidence | None = None,
) -> WalkResult:
    result = WalkResult()
    seen: set[str] = set()
    queue: deque[_QueueEntry] = deque([_QueueEntry(path="", depth=0)])

    while queue:
        if deadline.expired:
            result.stop_reason = STOP_TIME_BUDGET
            break
        if len(result.items) >= config.max_nodes:
            result.stop_reason = STOP_NODE_BUDGET
            break

        entry = queue.popleft()
        for control in await _read_controls(container):
            if len(result.items) >= config.max_nodes:
                break
            raw = control["question"].strip()
            norm = normalize(raw)
            if not norm or norm in seen:
                continue

            seen.add(norm)
            result.items.append(
                QuestionItem(
                    raw=raw,
                    norm=norm,
                    depth=entry.depth,
                    parent=entry.parent,
                    path=control.get("path", ""),
                    order_index=int(control.get("orderIdx", 0)),
                )
            )

            if entry.depth >= depth or len(result.items) >= config.max_nodes or deadline.expired:
                continue
            if not await _expand(container, raw, config, deadline):
                continue

            result.expansions += 1
            if evidence is not None:
                crop = await capture_element(container)
                if crop is not None:
                    evidence.crops.append(crop)
            queue.append(_QueueEntry(path=control.get("path", ""), depth=entry.depth + 1, parent=norm))

    if result.stop_reason == STOP_EXHAUSTED and len(result.items) >= config.max_nodes:
        result.stop_reason = STOP_NODE_BUDGET

    log.debug(
        "Walk finished: %d items, %d expansions, stop=%s",
        len(result.items), result.expansions, result.stop_reason,
    )
    return result
