"""PAA Monitor: entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from config.settings import settings
from core.errors import PAAError, TrackedTargetNotFound, error_payload
from core.formatting import to_csv, to_faq_jsonld, to_markdown_block
from core.models import EngineConfig, ExtractionParams
from core.query import encode_city_bias

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
log = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


async def cmd_extract(args: argparse.Namespace) -> int:
    from extraction.consensus import run_consensus

    config = EngineConfig.from_settings(settings)
    city_bias = args.uule or (encode_city_bias(args.city) if args.city else None)
    params = ExtractionParams.from_request(
        args.keyword,
        args.country,
        args.language,
        device=args.device,
        depth=args.depth,
        runs=args.runs,
        city_bias=city_bias,
        strict=args.strict,
        config=config,
    )
    outcome = await run_consensus(params, config)

    if args.format == "csv":
        print(to_csv(outcome.results), end="")
    elif args.format == "jsonld":
        _print_json(to_faq_jsonld([{"question": r.question} for r in outcome.results]))
    elif args.format == "markdown":
        print(to_markdown_block(r.question for r in outcome.results))
    else:
        payload = {
            "success": True,
            "params": {
                "keyword": params.keyword,
                "country": params.country,
                "language": params.language,
                "device": params.device,
                "depth": params.depth,
                "runs": params.runs,
                "strict": params.strict,
            },
            "count": len(outcome.results),
            "results": [r.to_dict() for r in outcome.results],
            "runs": [
                {
                    "drift_fingerprint": run.drift_fingerprint,
                    "egress_country": run.egress_country,
                    "egress_network": run.egress_network,
                    "evidence": run.evidence.to_dict() if args.evidence else None,
                }
                for run in outcome.runs
            ],
        }
        _print_json(payload)
    return 0


async def cmd_add_target(args: argparse.Namespace) -> int:
    from data.database import get_session, init_db
    from data.repositories import TrackedTargetRepository

    await init_db()
    async with get_session() as session:
        target = await TrackedTargetRepository(session).add(
            args.keyword,
            country=args.country,
            language=args.language,
            device=args.device or settings.DEFAULT_DEVICE,
            city_bias=args.uule,
            check_interval_hours=args.interval_hours,
        )
    _print_json({"id": target.id, "keyword": target.keyword})
    return 0


async def cmd_cycle(args: argparse.Namespace) -> int:
    from data.database import init_db
    from tracker.scheduler import TrackingScheduler

    await init_db()
    scheduler = TrackingScheduler()
    if args.target:
        diff = await scheduler.refresh_target(args.target)
        _print_json({"added": len(diff.added), "removed": len(diff.removed),
                     "moved": len(diff.position_changes)})
    else:
        summary = await scheduler.run_cycle()
        _print_json({"checked": summary.checked, "changes": summary.changes,
                     "failed": summary.failed})
    return 0


async def cmd_schedule(args: argparse.Namespace) -> int:
    from data.database import init_db
    from tracker.scheduler import TrackingScheduler

    log.info("Initialising database…")
    await init_db()
    scheduler = TrackingScheduler(interval_minutes=args.interval)
    scheduler.start()
    status = scheduler.get_status()
    for job in status["jobs"]:
        log.info("Job %s next runs at %s", job["id"], job["next_run"])
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
        log.info("Tracking scheduler stopped.")
    return 0


async def cmd_changes(args: argparse.Namespace) -> int:
    from data.database import get_session, init_db
    from data.repositories import ChangeRepository

    await init_db()
    async with get_session() as session:
        changes = await ChangeRepository(session).recent_changes(
            target_id=args.target, limit=args.limit
        )
    _print_json(
        [
            {
                "target_id": c.target_id,
                "kind": c.kind.value,
                "question": c.question,
                "old_position": c.old_position,
                "new_position": c.new_position,
                "detected_at": c.detected_at.isoformat() if c.detected_at else None,
            }
            for c in changes
        ]
    )
    return 0


def _target_dict(target) -> dict:
    return {
        "id": target.id,
        "keyword": target.keyword,
        "country": target.country,
        "language": target.language,
        "device": target.device,
        "check_interval_hours": target.check_interval_hours,
        "last_checked_at": target.last_checked_at.isoformat() if target.last_checked_at else None,
        "is_active": target.is_active,
    }


async def cmd_targets(args: argparse.Namespace) -> int:
    from data.database import get_session, init_db
    from data.repositories import TrackedTargetRepository

    await init_db()
    async with get_session() as session:
        targets = await TrackedTargetRepository(session).list_targets(active_only=not args.all)
    _print_json([_target_dict(t) for t in targets])
    return 0


async def cmd_deactivate(args: argparse.Namespace) -> int:
    from data.database import get_session, init_db
    from data.repositories import TrackedTargetRepository

    await init_db()
    async with get_session() as session:
        repo = TrackedTargetRepository(session)
        if await repo.get(args.target_id) is None:
            raise TrackedTargetNotFound(f"no tracked target with id {args.target_id}")
        await repo.deactivate(args.target_id)
    _print_json({"id": args.target_id, "is_active": False})
    return 0


async def cmd_history(args: argparse.Namespace) -> int:
    from data.database import get_session, init_db
    from data.repositories import QuestionRepository

    await init_db()
    async with get_session() as session:
        repo = QuestionRepository(session)
        questions = await repo.history(args.target_id, include_retired=not args.current)
        snapshots = await repo.snapshots(args.target_id, limit=args.snapshots)
    _print_json(
        {
            "target_id": args.target_id,
            "questions": [
                {
                    "question": q.question,
                    "type": q.question_type.value,
                    "is_current": q.is_current,
                    "times_seen": q.times_seen,
                    "avg_position": round(q.avg_position, 2),
                    "last_position": q.last_position,
                    "first_seen_at": q.first_seen_at.isoformat(),
                    "last_seen_at": q.last_seen_at.isoformat(),
                }
                for q in questions
            ],
            "snapshots": [
                {
                    "cycle_id": s.cycle_id,
                    "captured_at": s.captured_at.isoformat(),
                    "questions": [q["question"] for q in s.questions],
                }
                for s in snapshots
            ],
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="paa-monitor")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("extract", help="extract the question tree for a keyword")
    p.add_argument("keyword")
    p.add_argument("--country", default="US")
    p.add_argument("--language", default="en")
    p.add_argument("--device", choices=["mobile", "desktop"])
    p.add_argument("--depth", type=int, default=1)
    p.add_argument("--runs", type=int, default=2)
    p.add_argument("--strict", action=argparse.BooleanOptionalAction, default=True)
    p.add_argument("--uule", help="pre-encoded city bias token")
    p.add_argument("--city", help="city name to encode as city bias")
    p.add_argument("--format", choices=["json", "csv", "jsonld", "markdown"], default="json")
    p.add_argument("--evidence", action="store_true", help="include screenshots and markup")
    p.set_defaults(func=cmd_extract)

    p = sub.add_parser("add-target", help="start tracking a keyword")
    p.add_argument("keyword")
    p.add_argument("--country", default="US")
    p.add_argument("--language", default="en")
    p.add_argument("--device", choices=["mobile", "desktop"])
    p.add_argument("--uule")
    p.add_argument("--interval-hours", type=int)
    p.set_defaults(func=cmd_add_target)

    p = sub.add_parser("cycle", help="run one tracking cycle now")
    p.add_argument("--target", help="refresh a single target id")
    p.set_defaults(func=cmd_cycle)

    p = sub.add_parser("schedule", help="run tracking cycles on an interval")
    p.add_argument("--interval", type=int, help="minutes between cycles")
    p.set_defaults(func=cmd_schedule)

    p = sub.add_parser("changes", help="list recent question changes")
    p.add_argument("--target")
    p.add_argument("--limit", type=int, default=50)
    p.set_defaults(func=cmd_changes)

    p = sub.add_parser("targets", help="list tracked targets")
    p.add_argument("--all", action="store_true", help="include deactivated targets")
    p.set_defaults(func=cmd_targets)

    p = sub.add_parser("deactivate", help="stop tracking a target")
    p.add_argument("target_id")
    p.set_defaults(func=cmd_deactivate)

    p = sub.add_parser("history", help="question history and recent snapshots of a target")
    p.add_argument("target_id")
    p.add_argument("--current", action="store_true", help="only questions currently shown")
    p.add_argument("--snapshots", type=int, default=5)
    p.set_defaults(func=cmd_history)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 130
    except PAAError as exc:
        log.error("%s", exc)
        _print_json(error_payload(exc))
        return 1
    except Exception as exc:
        log.error("Command %s failed", args.command, exc_info=exc)
        _print_json(error_payload(exc))
        return 1


if __name__ == "__main__":
    sys.exit(main())
