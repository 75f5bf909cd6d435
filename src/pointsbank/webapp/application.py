"""FastAPI application exposing the Points Bank RPC and REST endpoints."""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictInt

from ..exceptions import (
    ConcurrencyConflictError,
    InsufficientFundsError,
    InvalidArgumentError,
    NotFoundError,
    PointsBankError,
    QuotaExhaustedError,
    TicketAlreadyUsedError,
)
from ..models import MemberRole, RewardType, TaskCategory, TaskDifficulty, TransactionKind
from ..service import PointsBank

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (InsufficientFundsError, 409),
    (QuotaExhaustedError, 409),
    (TicketAlreadyUsedError, 409),
    (InvalidArgumentError, 422),
    (ConcurrencyConflictError, 503),
)


def _status_for(exc: PointsBankError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 400


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class ProfileParams(BaseModel):
    p_profile_id: str


class ProfileFamilyParams(ProfileParams):
    p_family_id: str


class BadgeLotteryParams(ProfileFamilyParams):
    p_badge_id: str


class FamilyTarget(BaseModel):
    target_family_id: str
    actor_id: Optional[str] = None


class MemberCreate(BaseModel):
    family_id: str
    name: str
    role: MemberRole = MemberRole.CHILD
    avatar_color: Optional[str] = None


class TaskCreate(BaseModel):
    family_id: str
    title: str
    category: TaskCategory
    points: StrictInt
    description: str = ""
    frequency: str = "daily"
    difficulty: Optional[TaskDifficulty] = None


class PenaltyRequest(BaseModel):
    actor_id: str
    points: StrictInt
    title: str


class TransferRequest(BaseModel):
    from_id: str
    to_id: str
    points: StrictInt
    message: str = ""


class RewardCreate(BaseModel):
    actor_id: str
    title: str
    points: StrictInt
    reward_type: RewardType = RewardType.PHYSICAL
    image_url: Optional[str] = None


class WishCreate(BaseModel):
    member_id: str
    title: str
    points: StrictInt
    reward_type: RewardType = RewardType.PHYSICAL
    image_url: Optional[str] = None


class ReviewRequest(BaseModel):
    actor_id: str


class TransactionDelete(BaseModel):
    actor_id: str
    transaction_ids: List[StrictInt] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(bank: PointsBank | None = None) -> FastAPI:
    """Build the app around ``bank``; the default bank is created on first use."""

    app = FastAPI(title="Points Bank")
    holder: Dict[str, PointsBank] = {}
    if bank is not None:
        holder["bank"] = bank

    def get_bank() -> PointsBank:
        if "bank" not in holder:
            holder["bank"] = PointsBank()
        return holder["bank"]

    app.state.get_bank = get_bank

    @app.exception_handler(PointsBankError)
    async def _domain_error(_request: Request, exc: PointsBankError) -> JSONResponse:
        return JSONResponse({"error": exc.code, "detail": str(exc)}, status_code=_status_for(exc))

    @app.exception_handler(PermissionError)
    async def _permission_error(_request: Request, exc: PermissionError) -> JSONResponse:
        return JSONResponse({"error": "forbidden", "detail": str(exc)}, status_code=403)

    _register_rpc_routes(app, get_bank)
    _register_api_routes(app, get_bank)
    return app


def _register_rpc_routes(app: FastAPI, get_bank: Callable[[], PointsBank]) -> None:
    @app.post("/rpc/get_lottery_stats")
    def get_lottery_stats(params: ProfileParams) -> Dict[str, int]:
        return get_bank().get_lottery_stats(params.p_profile_id)

    @app.post("/rpc/get_pending_badge_lotteries")
    def get_pending_badge_lotteries(params: ProfileParams) -> List[Dict[str, str]]:
        return get_bank().get_pending_badge_lotteries(params.p_profile_id)

    @app.post("/rpc/grant_eligible_badges")
    def grant_eligible_badges(params: ProfileFamilyParams) -> int:
        return get_bank().grant_eligible_badges(params.p_profile_id, params.p_family_id)

    @app.post("/rpc/get_all_badges_progress")
    def get_all_badges_progress(params: ProfileParams) -> List[Dict[str, Any]]:
        return get_bank().get_all_badges_progress(params.p_profile_id)

    @app.post("/rpc/lottery_from_badge")
    def lottery_from_badge(params: BadgeLotteryParams) -> int:
        return get_bank().rpc_lottery_from_badge(params.p_profile_id, params.p_badge_id, params.p_family_id)

    @app.post("/rpc/lottery_from_exchange")
    def lottery_from_exchange(params: ProfileFamilyParams) -> int:
        return get_bank().rpc_lottery_from_exchange(params.p_profile_id, params.p_family_id)

    @app.post("/rpc/delete_family_data")
    def delete_family_data(params: FamilyTarget) -> Dict[str, int]:
        return get_bank().delete_family_data(params.target_family_id, actor_id=params.actor_id)


def _register_api_routes(app: FastAPI, get_bank: Callable[[], PointsBank]) -> None:
    @app.post("/api/members", status_code=201)
    def create_member(body: MemberCreate) -> Any:
        return get_bank().create_member(body.family_id, body.name, role=body.role, avatar_color=body.avatar_color)

    @app.get("/api/families/{family_id}/members")
    def list_members(family_id: str) -> Any:
        return list(get_bank().list_members(family_id))

    @app.get("/api/members/{member_id}")
    def member_profile(member_id: str) -> Dict[str, Any]:
        return get_bank().member_profile(member_id)

    @app.get("/api/members/{member_id}/transactions")
    def list_transactions(
        member_id: str,
        kind: Optional[List[TransactionKind]] = Query(default=None),
        limit: Optional[int] = Query(default=None, ge=0),
        offset: int = Query(default=0, ge=0),
    ) -> Any:
        return list(get_bank().list_for_member(member_id, kinds=kind, limit=limit, offset=offset))

    @app.get("/api/members/{member_id}/history")
    def history(member_id: str) -> Dict[str, Any]:
        return get_bank().history_summary(member_id).as_dict()

    @app.get("/api/members/{member_id}/badges")
    def list_badges(member_id: str) -> Any:
        return list(get_bank().badges(member_id))

    @app.get("/api/members/{member_id}/badges/{badge_id}")
    def get_badge(member_id: str, badge_id: str) -> Any:
        return get_bank().get_badge(member_id, badge_id)

    @app.get("/api/members/{member_id}/lottery")
    def lottery_history(member_id: str) -> Any:
        return list(get_bank().lottery_history(member_id))

    @app.post("/api/tasks", status_code=201)
    def create_task(body: TaskCreate) -> Any:
        return get_bank().create_task(
            body.family_id,
            title=body.title,
            category=body.category,
            points=body.points,
            description=body.description,
            frequency=body.frequency,
            difficulty=body.difficulty,
        )

    @app.get("/api/families/{family_id}/tasks")
    def list_tasks(family_id: str) -> Any:
        return list(get_bank().list_tasks(family_id))

    @app.post("/api/members/{member_id}/tasks/{task_id}/complete", status_code=201)
    def complete_task(member_id: str, task_id: int) -> Any:
        return get_bank().complete_task(member_id, task_id)

    @app.post("/api/members/{member_id}/penalty", status_code=201)
    def apply_penalty(member_id: str, body: PenaltyRequest) -> Any:
        return get_bank().apply_penalty(body.actor_id, member_id, body.points, body.title)

    @app.post("/api/transfers", status_code=201)
    def transfer(body: TransferRequest) -> Any:
        outgoing, incoming = get_bank().transfer(body.from_id, body.to_id, body.points, message=body.message)
        return {"outgoing": outgoing, "incoming": incoming}

    @app.get("/api/families/{family_id}/rewards")
    def list_rewards(family_id: str, viewer_id: Optional[str] = None) -> Any:
        return list(get_bank().list_rewards(family_id, viewer_id=viewer_id))

    @app.post("/api/rewards", status_code=201)
    def create_reward(body: RewardCreate) -> Any:
        return get_bank().create_reward(
            body.actor_id,
            title=body.title,
            points=body.points,
            reward_type=body.reward_type,
            image_url=body.image_url,
        )

    @app.post("/api/wishes", status_code=201)
    def propose_wish(body: WishCreate) -> Any:
        return get_bank().propose_wish(
            body.member_id,
            title=body.title,
            points=body.points,
            reward_type=body.reward_type,
            image_url=body.image_url,
        )

    @app.post("/api/rewards/{reward_id}/approve")
    def approve_wish(reward_id: int, body: ReviewRequest) -> Any:
        return get_bank().approve_wish(body.actor_id, reward_id)

    @app.post("/api/rewards/{reward_id}/reject")
    def reject_wish(reward_id: int, body: ReviewRequest) -> Any:
        return get_bank().reject_wish(body.actor_id, reward_id)

    @app.post("/api/members/{member_id}/redeem/{reward_id}", status_code=201)
    def redeem_reward(member_id: str, reward_id: int) -> Any:
        return get_bank().redeem_reward(member_id, reward_id)

    @app.post("/api/admin/transactions/delete")
    def delete_transactions(body: TransactionDelete) -> Dict[str, int]:
        return {"deleted": get_bank().delete_transactions(body.actor_id, body.transaction_ids)}


app = create_app()

__all__ = ["app", "create_app"]
