from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from . import schemas
from .core.config import settings
from .core.logging import configure_logging
from .db import dispose_db, get_db, init_db
from .domain import ContestDefinition
from .domain.errors import (
    AlreadyRegistered,
    ContestEngineError,
    ContestFull,
    ContestNotOpen,
    DeadlinePassed,
    EvaluationError,
    InvalidChoice,
    InvalidConfidence,
    InvalidContestDefinition,
    InvalidTransition,
    ParticipantNotRegistered,
    SubmissionLocked,
)
from .models import ContestStatus
from .services.cache import TTLCache
from .services.contest_service import ContestService
from .services.locks import ContestLockRegistry

app = FastAPI(title="Prediction Contest API", version="0.1.0", debug=settings.debug)

# Checked in order; the first matching class decides the status code.
_ERROR_STATUS: tuple[tuple[type[ContestEngineError], int], ...] = (
    (InvalidConfidence, 422),
    (InvalidChoice, 422),
    (InvalidContestDefinition, 422),
    (ParticipantNotRegistered, 403),
    (DeadlinePassed, 409),
    (SubmissionLocked, 409),
    (ContestNotOpen, 409),
    (AlreadyRegistered, 409),
    (ContestFull, 409),
    (InvalidTransition, 409),
    (EvaluationError, 500),
)


def _status_for(exc: ContestEngineError) -> int:
    if isinstance(exc, LookupError):
        return 404
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


@app.exception_handler(ContestEngineError)
def handle_engine_error(request: Request, exc: ContestEngineError) -> JSONResponse:
    """Translate engine errors into JSON error bodies."""

    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("{} {} failed: {}: {}", request.method, request.url.path, exc.code, exc)
    payload = schemas.ErrorResponse(code=exc.code, detail=str(exc))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


@app.on_event("startup")
def on_startup() -> None:
    """Configure logging, the database and the per-process contest state."""

    configure_logging(settings)
    init_db()
    app.state.contest_locks = ContestLockRegistry()
    app.state.leaderboard_cache = TTLCache(
        ttl_seconds=settings.leaderboard_cache_ttl_seconds,
        maxsize=settings.leaderboard_cache_maxsize,
    )


@app.on_event("shutdown")
def on_shutdown() -> None:
    app.state.leaderboard_cache.clear()
    app.state.contest_locks.clear()
    dispose_db()


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


def _contest_service(request: Request, db=Depends(get_db)) -> ContestService:
    """Provide the contest service wired with a session and the shared locks and cache."""

    return ContestService(
        db,
        locks=request.app.state.contest_locks,
        cache=request.app.state.leaderboard_cache,
    )


@app.get("/status", response_model=schemas.ServiceStatus, tags=["system"])
def service_status(service: ContestService = Depends(_contest_service)):
    return service.service_status()


@app.get("/contests", response_model=list[schemas.ContestSummary], tags=["contests"])
def list_contests(
    *,
    contest_status: Annotated[
        list[ContestStatus] | None,
        Query(alias="status", description="Lifecycle status filter"),
    ] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    service: ContestService = Depends(_contest_service),
):
    return service.list_contests(statuses=contest_status, limit=limit, offset=offset)


@app.post(
    "/contests",
    response_model=schemas.ContestSummary,
    status_code=201,
    tags=["contests"],
)
def create_contest(definition: ContestDefinition, service: ContestService = Depends(_contest_service)):
    """Register a contest with its rules, prize pool and ordered questions."""

    return service.create_contest(definition)


@app.get("/contests/{contest_id}", response_model=schemas.ContestSummary, tags=["contests"])
def get_contest(contest_id: str, service: ContestService = Depends(_contest_service)):
    return service.get_contest(contest_id)


@app.post(
    "/contests/{contest_id}/participants",
    response_model=schemas.Registration,
    status_code=201,
    tags=["participants"],
)
def register_participant(
    contest_id: str,
    request: schemas.RegistrationRequest,
    service: ContestService = Depends(_contest_service),
):
    return service.register_participant(
        contest_id,
        request.participant_id,
        display_name=request.display_name,
        joined_at=request.joined_at,
    )


@app.post(
    "/contests/{contest_id}/submissions",
    response_model=schemas.SubmissionReceipt,
    tags=["submissions"],
)
def submit_prediction(
    contest_id: str,
    request: schemas.SubmissionRequest,
    service: ContestService = Depends(_contest_service),
):
    """Create or overwrite a participant's pick for one question."""

    return service.submit_prediction(
        request.participant_id,
        request.question_id,
        request.choice,
        request.confidence,
        reasoning=request.reasoning,
        contest_id=contest_id,
    )


@app.get(
    "/contests/{contest_id}/participants/{participant_id}/history",
    response_model=schemas.ParticipantHistory,
    tags=["participants"],
)
def participant_history(
    contest_id: str,
    participant_id: str,
    service: ContestService = Depends(_contest_service),
):
    return service.get_participant_history(contest_id, participant_id)


@app.post(
    "/questions/{question_id}/resolution",
    response_model=schemas.ResolutionOutcome,
    tags=["results"],
)
def resolve_question(
    question_id: str,
    request: schemas.ResolutionRequest,
    service: ContestService = Depends(_contest_service),
):
    """Game result feed entry point; duplicates are acknowledged without effect."""

    return service.resolve(
        question_id,
        request.outcome,
        resolved_at=request.resolved_at,
        partial_credit_options=request.partial_credit_options,
    )


@app.post("/contests/{contest_id}/advance", response_model=schemas.AdvanceReport, tags=["contests"])
def advance_contest(
    contest_id: str,
    now: Annotated[datetime | None, Query(description="Evaluate transitions as of this time")] = None,
    service: ContestService = Depends(_contest_service),
):
    return service.advance_contest(contest_id, now=now)


@app.post("/contests/{contest_id}/cancel", response_model=schemas.ContestSummary, tags=["contests"])
def cancel_contest(contest_id: str, service: ContestService = Depends(_contest_service)):
    return service.cancel_contest(contest_id)


@app.get("/contests/{contest_id}/leaderboard", response_model=schemas.Leaderboard, tags=["results"])
def get_leaderboard(contest_id: str, service: ContestService = Depends(_contest_service)):
    """Current standings, including what each participant would be paid right now."""

    return service.get_leaderboard(contest_id)


@app.get(
    "/contests/{contest_id}/result",
    response_model=schemas.ContestResult,
    responses={202: {"model": schemas.PendingResult}},
    tags=["results"],
)
def get_contest_result(contest_id: str, service: ContestService = Depends(_contest_service)):
    """Final standings and payouts; ``202`` with ``status: pending`` until the contest finalizes."""

    result = service.get_contest_result(contest_id)
    if result is None:
        pending = schemas.PendingResult(
            contest_id=contest_id,
            contest_status=service.get_contest_status(contest_id),
        )
        return JSONResponse(status_code=202, content=pending.model_dump())
    return result
