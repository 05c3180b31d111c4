"""Feed a file of game results through the contest service, in file order."""

from __future__ import annotations

import argparse
import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from loguru import logger
from pydantic import BaseModel, Field

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.db import init_db, session_scope
from app.domain.errors import ContestEngineError
from app.models import utcnow
from app.services.contest_service import ContestService
from app.services.locks import ContestLockRegistry

from scripts.load_contest import read_document


class GameResult(BaseModel):
    question_id: str
    outcome: str
    resolved_at: datetime | None = None
    partial_credit_options: list[str] = Field(default_factory=list)


@dataclass(slots=True)
class ReplaySummary:
    processed: int = 0
    statuses: Counter = field(default_factory=Counter)
    finalized_contests: list[str] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "statuses": dict(self.statuses),
            "finalized_contests": self.finalized_contests,
            "failures": self.failures,
        }


class ReplayClock:
    """Clock that reports the time of the result being replayed."""

    def __init__(self) -> None:
        self.current: datetime | None = None

    def __call__(self) -> datetime:
        return self.current or utcnow()


def load_results(path: Path) -> list[GameResult]:
    document = read_document(path)
    if isinstance(document, dict):
        document = document.get("results", [])
    return [GameResult.model_validate(item) for item in document or []]


def replay(
    service: ContestService,
    results: Sequence[GameResult],
    *,
    clock: ReplayClock | None = None,
) -> ReplaySummary:
    summary = ReplaySummary()
    for result in results:
        if clock is not None:
            clock.current = result.resolved_at
        try:
            outcome = service.resolve(
                result.question_id,
                result.outcome,
                resolved_at=result.resolved_at,
                partial_credit_options=result.partial_credit_options,
            )
        except ContestEngineError as exc:
            logger.error("Replay of question {} failed: {}: {}", result.question_id, exc.code, exc)
            summary.failures.append(
                {"question_id": result.question_id, "code": exc.code, "reason": str(exc)}
            )
            continue
        summary.processed += 1
        summary.statuses[outcome.status] += 1
        if outcome.finalized:
            summary.finalized_contests.append(outcome.contest_id)
    return summary


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay recorded game results through the scoring engine")
    parser.add_argument("path", type=Path, help="YAML or JSON file holding a list of results")
    parser.add_argument(
        "--use-result-time",
        action="store_true",
        help="Treat each result's resolved_at as the current time while it is applied",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> ReplaySummary:
    args = parse_args(argv)
    configure_logging(get_settings())
    results = load_results(args.path)
    for result in results:
        if result.resolved_at is not None and result.resolved_at.tzinfo is None:
            result.resolved_at = result.resolved_at.replace(tzinfo=timezone.utc)

    init_db()
    clock = ReplayClock() if args.use_result_time else None
    with session_scope() as session:
        service = ContestService(session, locks=ContestLockRegistry(), clock=clock or utcnow)
        summary = replay(service, results, clock=clock)

    logger.info(
        "Replayed {} results ({} failures): {}",
        summary.processed,
        len(summary.failures),
        dict(summary.statuses),
    )
    if args.summary_path:
        args.summary_path.parent.mkdir(parents=True, exist_ok=True)
        args.summary_path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    return summary


if __name__ == "__main__":
    main()
