from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.db import build_db_components, init_db
from app.domain import ContestDefinition
from app.services.cache import TTLCache
from app.services.contest_service import ContestService
from app.services.locks import ContestLockRegistry

CONTEST_START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
CONTEST_END = CONTEST_START + timedelta(hours=6)


class FakeClock:
    """Deterministic clock handed to services under test."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(database_url=f"sqlite:///{tmp_path/'contests.db'}")
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = build_db_components(f"sqlite:///{tmp_path/'contests.db'}")
    init_db(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(CONTEST_START - timedelta(hours=1))


@pytest.fixture
def locks() -> ContestLockRegistry:
    return ContestLockRegistry()


@pytest.fixture
def leaderboard_cache() -> TTLCache:
    return TTLCache(ttl_seconds=60, maxsize=16)


@pytest.fixture
def service(session, locks, leaderboard_cache, clock) -> ContestService:
    return ContestService(session, locks=locks, cache=leaderboard_cache, clock=clock)


@pytest.fixture
def other_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def other_service(other_session, locks, leaderboard_cache, clock) -> ContestService:
    """A second service on its own session, like a concurrent request."""
    return ContestService(other_session, locks=locks, cache=leaderboard_cache, clock=clock)


@pytest.fixture
def make_definition() -> Callable[..., ContestDefinition]:
    """Build a contest definition; questions start an hour apart after the contest opens."""

    def _build(
        contest_id: str = "contest-1",
        *,
        question_count: int = 4,
        rules: dict[str, Any] | None = None,
        tiers: list[tuple[int, str]] | None = None,
        total: str = "1000.00",
        **overrides: Any,
    ) -> ContestDefinition:
        questions = [
            {
                "question_id": f"{contest_id}-q{ordinal}",
                "ordinal": ordinal,
                "prompt": f"Who wins game {ordinal}?",
                "category": "football",
                "difficulty": "medium",
                "options": ["home", "away", "draw"],
                "oracle_choice": "home",
                "starts_at": CONTEST_START + timedelta(hours=ordinal),
            }
            for ordinal in range(1, question_count + 1)
        ]
        payload: dict[str, Any] = {
            "contest_id": contest_id,
            "name": f"Contest {contest_id}",
            "starts_at": CONTEST_START,
            "ends_at": CONTEST_END,
            "scoring_rules": rules or {},
            "prize_pool": {
                "total": Decimal(total),
                "currency": "USD",
                "tiers": [
                    {"rank": rank, "percentage": Decimal(percentage)}
                    for rank, percentage in (tiers or [(1, "50"), (2, "30"), (3, "20")])
                ],
            },
            "questions": questions,
        }
        payload.update(overrides)
        return ContestDefinition.model_validate(payload)

    return _build


@pytest.fixture
def open_contest(service, clock, make_definition):
    """Create a contest, move it to ACTIVE and register the given participants."""

    def _open(participants: list[str], **definition_kwargs: Any) -> ContestDefinition:
        definition = make_definition(**definition_kwargs)
        service.create_contest(definition)
        clock.set(CONTEST_START + timedelta(minutes=1))
        service.advance_contest(definition.contest_id)
        for index, participant_id in enumerate(participants):
            service.register_participant(
                definition.contest_id,
                participant_id,
                display_name=participant_id.title(),
                joined_at=CONTEST_START + timedelta(minutes=1, seconds=index),
            )
        return definition

    return _open
