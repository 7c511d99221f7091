"""Multi-run consensus over independent extraction passes."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from core.models import (
    ConsensusOutcome,
    ConsensusResult,
    EngineConfig,
    ExtractionParams,
    RunAudit,
    RunResult,
)
from extraction.runner import run_single

log = logging.getLogger(__name__)

Runner = Callable[[ExtractionParams, EngineConfig], Awaitable[RunResult]]


@dataclass
class _Observations:
    raw: list[str] = field(default_factory=list)
    depths: list[int] = field(default_factory=list)
    parents: list[str] = field(default_factory=list)
    order_indices: list[int] = field(default_factory=list)
    runs: set[int] = field(default_factory=set)


def _most_common(values: Sequence[str]) -> str | None:
    # Counter keeps first-insertion order among equal counts.
    if not values:
        return None
    return Counter(values).most_common(1)[0][0]


def confidence(appearances: int, runs: int, depth: int) -> float:
    return round(0.6 * (appearances / runs) + 0.4 * (1 / (1 + depth)), 3)


def merge_runs(runs: Sequence[RunResult], k: int, strict: bool) -> list[ConsensusResult]:
    """Merge per-run items by normalized key, apply the quorum and sort."""
    observed: dict[str, _Observations] = {}
    for run_no, run in enumerate(runs):
        for item in run.items:
            obs = observed.setdefault(item.norm, _Observations())
            obs.raw.append(item.raw)
            obs.depths.append(item.depth)
            if item.parent:
                obs.parents.append(item.parent)
            obs.order_indices.append(item.order_index)
            obs.runs.add(run_no)

    threshold = min(k, 2) if strict else 1
    results = []
    for norm, obs in observed.items():
        appearances = min(len(obs.runs), k)
        if appearances < threshold:
            continue
        depth = min(obs.depths)
        results.append(
            ConsensusResult(
                question=_most_common(obs.raw) or norm,
                norm=norm,
                depth=depth,
                order_index=min(obs.order_indices),
                parent=_most_common(obs.parents),
                appearances=appearances,
                confidence=confidence(appearances, k, depth),
            )
        )

    results.sort(key=lambda r: (-r.appearances, r.depth, r.norm))
    return results


async def _run_parallel(
    params: ExtractionParams, config: EngineConfig, runner: Runner, parallelism: int
) -> list[RunResult]:
    limit = asyncio.Semaphore(parallelism)

    async def _one() -> RunResult:
        async with limit:
            return await runner(params, config)

    tasks = [asyncio.create_task(_one()) for _ in range(params.runs)]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def run_consensus(
    params: ExtractionParams,
    config: EngineConfig | None = None,
    *,
    runner: Runner = run_single,
) -> ConsensusOutcome:
    """Execute ``params.runs`` independent passes and merge them.

    Runs go one at a time unless ``consensus_parallelism`` allows more; the
    merge only starts once every run has finished. A failed run fails the
    whole request.
    """
    config = config or EngineConfig()
    k = params.runs
    parallelism = max(1, min(config.consensus_parallelism, k))

    if parallelism == 1:
        runs = []
        for run_no in range(k):
            log.debug("Consensus run %d/%d for '%s'", run_no + 1, k, params.keyword)
            runs.append(await runner(params, config))
    else:
        runs = await _run_parallel(params, config, runner, parallelism)

    results = merge_runs(runs, k, params.strict)

    fingerprints = {r.drift_fingerprint for r in runs}
    if len(fingerprints) > 1:
        log.info("Runs for '%s' rendered different pages: %s", params.keyword, sorted(fingerprints))
    log.info(
        "Consensus for '%s': %d questions from %d runs (strict=%s)",
        params.keyword, len(results), k, params.strict,
    )
    return ConsensusOutcome(results=results, runs=[RunAudit.from_run(r) for r in runs])
