"""Standalone job that applies time-driven contest transitions."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Sequence

from loguru import logger

from app.core.config import Settings, get_settings
from app.core.logging import configure_logging
from app.db import init_db, session_scope
from app.models import ContestStatus
from app.repositories import ContestRepository
from app.services.contest_service import ContestService
from app.services.lifecycle import TERMINAL_STATUSES
from app.services.locks import ContestLockRegistry


@dataclass(slots=True)
class LifecycleSummary:
    checked_contests: int = 0
    activated: int = 0
    evaluating: int = 0
    finalized: int = 0
    voided_questions: int = 0
    scored_questions: int = 0
    unchanged: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked_contests": self.checked_contests,
            "activated": self.activated,
            "evaluating": self.evaluating,
            "finalized": self.finalized,
            "voided_questions": self.voided_questions,
            "scored_questions": self.scored_questions,
            "unchanged": self.unchanged,
            "failures": self.failures,
        }


class LifecyclePipeline:
    """Sweep every non-terminal contest and advance it to where the clock says it belongs."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        locks: ContestLockRegistry | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._locks = locks or ContestLockRegistry()

    def run(
        self,
        *,
        limit: int | None = None,
        batch_size: int | None = None,
        contest_ids: Sequence[str] | None = None,
        now: datetime | None = None,
    ) -> LifecycleSummary:
        init_db()
        summary = LifecycleSummary()
        batch_size = batch_size or self.settings.lifecycle_sweep_batch_size
        now = now or datetime.now(timezone.utc)

        logger.info(
            "Starting lifecycle sweep: limit={}, batch_size={}, contest_filter={}, now={}",
            limit,
            batch_size,
            list(contest_ids) if contest_ids else None,
            now,
        )

        with session_scope() as session:
            open_statuses = [status for status in ContestStatus if status not in TERMINAL_STATUSES]
            candidates = [
                contest.contest_id
                for contest in ContestRepository(session).list_contests(statuses=open_statuses, limit=limit)
            ]
            if contest_ids:
                wanted = set(contest_ids)
                candidates = [contest_id for contest_id in candidates if contest_id in wanted]
            if not candidates:
                logger.info("No open contests found; sweep completed with no updates")
                return summary

            service = ContestService(session, locks=self._locks, clock=lambda: now)
            logger.info("Lifecycle sweep evaluating {} contests", len(candidates))
            for chunk in _chunked(candidates, batch_size):
                for contest_id in chunk:
                    summary.checked_contests += 1
                    try:
                        report = service.advance_contest(contest_id, now=now)
                    except Exception as exc:
                        logger.exception("Lifecycle sweep failed for contest {}", contest_id)
                        summary.failures.append({"contest_id": contest_id, "reason": str(exc)})
                        continue

                    targets = [target for _, target in report.transitions]
                    summary.activated += targets.count(ContestStatus.ACTIVE.value)
                    summary.evaluating += targets.count(ContestStatus.EVALUATING.value)
                    summary.voided_questions += len(report.voided_questions)
                    summary.scored_questions += len(report.scored_questions)
                    if report.finalized:
                        summary.finalized += 1
                    if not (report.transitions or report.voided_questions or report.finalized):
                        summary.unchanged += 1

        logger.info(
            "Lifecycle sweep finished: checked={}, activated={}, evaluating={}, finalized={}, failures={}",
            summary.checked_contests,
            summary.activated,
            summary.evaluating,
            summary.finalized,
            len(summary.failures),
        )
        return summary


def _chunked(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    if size <= 0:
        yield items
        return
    for index in range(0, len(items), size):
        yield items[index : index + size]


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Activate, close, evaluate and finalize contests whose time has come",
    )
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of contests to check")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Override the number of contests advanced per batch",
    )
    parser.add_argument(
        "--contest-id",
        dest="contest_ids",
        action="append",
        help="Restrict the sweep to specific contest IDs (can be provided multiple times)",
    )
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Evaluate transitions as of this ISO-8601 timestamp instead of the current time",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args()


def _write_summary(summary: LifecycleSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Lifecycle summary written to {}", path)


def main() -> LifecycleSummary:
    args = _parse_args()
    settings = get_settings()
    configure_logging(settings)
    now = args.now
    if now is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    summary = LifecyclePipeline(settings).run(
        limit=args.limit,
        batch_size=args.batch_size,
        contest_ids=args.contest_ids,
        now=now,
    )
    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
