"""FastAPI JSON surface for the KidStars reward economy.

``create_app`` builds an application around any :class:`~kidstars.service.KidStars`
instance. The module-level ``app`` is wired to the SQL store described by
:mod:`kidstars.webapp.config` so ``uvicorn kidstars.webapp:app`` works out of
the box.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional, Sequence, Tuple, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette import status

from ..completions import parse_duplicate_policy
from ..exceptions import (
    AlreadyProcessedError,
    ConflictRetryExhaustedError,
    InsufficientBalanceError,
    InvalidRewardError,
    InvalidTaskError,
    KidStarsError,
    NotFoundError,
    ValidationError,
)
from ..models import Decision, StarType
from ..service import KidStars
from ..trust import TrustPolicy
from .config import AUTO_APPROVE_FROM, DUPLICATE_POLICY, LOG_FILE, MAX_ATTEMPTS, WEEKLY_LIMIT
from .persistence import SqlStarStore, engine

ERROR_RESPONSES: Tuple[Tuple[Type[KidStarsError], int, str], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_CONTENT, "validation_error"),
    (InvalidTaskError, status.HTTP_400_BAD_REQUEST, "invalid_task"),
    (InvalidRewardError, status.HTTP_400_BAD_REQUEST, "invalid_reward"),
    (InsufficientBalanceError, status.HTTP_409_CONFLICT, "insufficient_balance"),
    (AlreadyProcessedError, status.HTTP_409_CONFLICT, "already_processed"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (ConflictRetryExhaustedError, status.HTTP_503_SERVICE_UNAVAILABLE, "conflict_retry_exhausted"),
)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class CompletionIn(BaseModel):
    child_id: str
    task_id: str


class RedemptionIn(BaseModel):
    child_id: str
    reward_id: str


class DecisionIn(BaseModel):
    decision: Decision
    decided_by: Optional[str] = None
    note: Optional[str] = None


class FulfillIn(BaseModel):
    fulfilled_by: Optional[str] = None


class CustomRewardIn(BaseModel):
    child_id: str
    reward_name: str
    link: Optional[str] = None
    image: Optional[str] = None
    star_type: StarType = StarType.GROWTH


class PriceIn(BaseModel):
    stars: int
    priced_by: Optional[str] = None


class WeeklyResetIn(BaseModel):
    weekly_limit: Optional[int] = None


def error_payload(exc: KidStarsError) -> Tuple[int, Dict[str, str]]:
    for error_type, status_code, code in ERROR_RESPONSES:
        if isinstance(exc, error_type):
            return status_code, {"error": code, "detail": str(exc)}
    return status.HTTP_500_INTERNAL_SERVER_ERROR, {"error": "internal_error", "detail": str(exc)}


# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
def create_app(service: KidStars, *, on_startup: Sequence[Callable[[], None]] = ()) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        for hook in on_startup:
            hook()
        yield

    app = FastAPI(title="Kid Stars", lifespan=lifespan)
    app.state.service = service
    api = service.api

    @app.exception_handler(KidStarsError)
    async def handle_domain_error(_: Request, exc: KidStarsError) -> JSONResponse:
        status_code, payload = error_payload(exc)
        return JSONResponse(payload, status_code=status_code)

    # Completions -----------------------------------------------------------
    @app.post("/completions", status_code=status.HTTP_201_CREATED)
    def submit_completion(body: CompletionIn) -> dict:
        return api.completion(service.submit_completion(body.child_id, body.task_id))

    @app.post("/completions/{completion_id}/decision")
    def decide_completion(completion_id: str, body: DecisionIn) -> dict:
        completion = service.decide_completion(
            completion_id, body.decision, decided_by=body.decided_by, note=body.note
        )
        return api.completion(completion)

    # Redemptions -----------------------------------------------------------
    @app.post("/redemptions", status_code=status.HTTP_201_CREATED)
    def request_redemption(body: RedemptionIn) -> dict:
        return api.redemption(service.request_redemption(body.child_id, body.reward_id))

    @app.post("/redemptions/{redemption_id}/decision")
    def decide_redemption(redemption_id: str, body: DecisionIn) -> dict:
        redemption = service.decide_redemption(
            redemption_id, body.decision, decided_by=body.decided_by, note=body.note
        )
        return api.redemption(redemption)

    @app.post("/redemptions/{redemption_id}/fulfill")
    def fulfill_redemption(redemption_id: str, body: Optional[FulfillIn] = None) -> dict:
        fulfilled_by = body.fulfilled_by if body else None
        return api.redemption(service.fulfill_redemption(redemption_id, fulfilled_by=fulfilled_by))

    # Custom rewards --------------------------------------------------------
    @app.post("/custom-rewards", status_code=status.HTTP_201_CREATED)
    def submit_custom_reward(body: CustomRewardIn) -> dict:
        request = service.submit_custom_reward_request(
            body.child_id,
            body.reward_name,
            link=body.link,
            image=body.image,
            star_type=body.star_type,
        )
        return api.custom_request(request)

    @app.post("/custom-rewards/{request_id}/price")
    def price_custom_reward(request_id: str, body: PriceIn) -> dict:
        return api.custom_request(service.set_custom_reward_price(request_id, body.stars, priced_by=body.priced_by))

    @app.post("/custom-rewards/{request_id}/decision")
    def decide_custom_reward(request_id: str, body: DecisionIn) -> dict:
        request = service.decide_custom_reward_request(request_id, body.decision, decided_by=body.decided_by)
        return api.custom_request(request)

    # Read side -------------------------------------------------------------
    @app.get("/families/{family_id}/approvals")
    def family_approvals(family_id: str) -> list:
        return api.approval_items(service.pending_approvals(family_id))

    @app.get("/children/{child_id}/balances")
    def child_balances(child_id: str) -> dict:
        return api.balances(child_id, service.balances(child_id))

    @app.get("/children/{child_id}/streaks")
    def child_streaks(child_id: str) -> dict:
        return api.streaks(child_id, service.streaks(child_id))

    @app.get("/children/{child_id}/transactions")
    def child_transactions(child_id: str) -> list:
        return api.transactions(service.transactions(child_id))

    @app.post("/children/{child_id}/weekly-reset")
    def weekly_reset(child_id: str, body: Optional[WeeklyResetIn] = None) -> dict:
        weekly_limit = body.weekly_limit if body else None
        return api.balances(child_id, service.reset_weekly_earnings(child_id, weekly_limit=weekly_limit))

    return app


def build_default_service() -> Tuple[KidStars, SqlStarStore]:
    store = SqlStarStore(engine)
    service = KidStars(
        store,
        policy=TrustPolicy.auto_approve_from(AUTO_APPROVE_FROM),
        duplicate_policy=parse_duplicate_policy(DUPLICATE_POLICY),
        max_attempts=MAX_ATTEMPTS,
        weekly_limit=WEEKLY_LIMIT,
        log_path=LOG_FILE,
    )
    return service, store


_service, _store = build_default_service()
app = create_app(_service, on_startup=(_store.create_tables,))


__all__ = [
    "ERROR_RESPONSES",
    "app",
    "build_default_service",
    "create_app",
    "error_payload",
]
