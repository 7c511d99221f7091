from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config.settings import settings
from core.errors import TrackedTargetCheckError, TrackedTargetNotFound
from core.models import DiffResult, EngineConfig, ExtractionParams, TrackedTarget
from extraction.consensus import Runner
from extraction.runner import run_single
from tracker.engine import StoreFactory, reconcile, utcnow

log = logging.getLogger(__name__)


@dataclass
class CycleSummary:
    cycle_id: str
    checked: int = 0
    changes: int = 0
    failed: int = 0


def _default_stores() -> StoreFactory:
    from data.repositories import open_stores

    return open_stores


class TrackingScheduler:
    """Runs the tracking cycle on an interval and on demand.

    One cycle processes the due targets one after another; a target that
    fails is logged and skipped so the rest of the cycle still runs.
    """

    def __init__(
        self,
        *,
        config: EngineConfig | None = None,
        runner: Runner = run_single,
        stores: StoreFactory | None = None,
        interval_minutes: int | None = None,
    ) -> None:
        self._config = config or EngineConfig.from_settings(settings)
        self._runner = runner
        self._stores = stores or _default_stores()
        self._interval = interval_minutes or settings.TRACKER_INTERVAL_MINUTES
        self._scheduler = AsyncIOScheduler()

    def start(self) -> None:
        self._scheduler.add_job(
            self.run_cycle,
            "interval",
            minutes=self._interval,
            id="tracking_cycle",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        # Also run once at startup
        self._scheduler.add_job(
            self.run_cycle,
            "date",
            run_date=utcnow(),
            id="tracking_cycle_init",
        )
        self._scheduler.start()
        log.info("Tracking scheduler started (every %d minutes)", self._interval)

    def stop(self) -> None:
        self._scheduler.shutdown(wait=False)

    def get_status(self) -> dict:
        """Whether the scheduler runs, and when each tracking job fires next."""
        return {
            "running": self._scheduler.running,
            "interval_minutes": self._interval,
            "jobs": [
                {
                    "id": job.id,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                }
                for job in self._scheduler.get_jobs()
            ],
        }

    async def run_cycle(self) -> CycleSummary:
        summary = CycleSummary(cycle_id=uuid.uuid4().hex)
        now = utcnow()
        async with self._stores() as stores:
            targets = await stores.targets.due_targets(now)
        log.info("Tracking cycle %s: %d targets due", summary.cycle_id, len(targets))

        for target in targets:
            try:
                diff = await self.check_target(target, cycle_id=summary.cycle_id)
            except TrackedTargetCheckError as exc:
                summary.failed += 1
                log.error("%s", exc, exc_info=exc.cause)
                continue
            summary.checked += 1
            summary.changes += diff.change_count

        log.info(
            "Finished tracking cycle %s | %d checked | %d changes | %d failed",
            summary.cycle_id, summary.checked, summary.changes, summary.failed,
        )
        return summary

    async def refresh_target(self, target_id: str) -> DiffResult:
        """Check one target right away, whether it is due or not."""
        async with self._stores() as stores:
            target = await stores.targets.get(target_id)
        if target is None:
            raise TrackedTargetNotFound(f"no tracked target with id {target_id}")
        return await self.check_target(target)

    async def check_target(
        self, target: TrackedTarget, *, cycle_id: str | None = None
    ) -> DiffResult:
        try:
            params = ExtractionParams(
                keyword=target.keyword,
                country=target.country,
                language=target.language,
                device=target.device,
                depth=0,
                runs=1,
                city_bias=target.city_bias,
            )
            run = await self._runner(params, self._config)

            checked_at: datetime = utcnow()
            async with self._stores() as stores:
                previous = await stores.questions.current_questions(target.id)
                diff = await reconcile(
                    target.id,
                    run.items,
                    previous,
                    stores.questions,
                    cycle_id=cycle_id,
                    now=checked_at,
                )
                await stores.targets.mark_checked(target.id, checked_at)
        except Exception as exc:
            raise TrackedTargetCheckError(target.id, target.keyword, exc) from exc
        return diff
