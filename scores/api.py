import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware

from rules.rule_engine import InvalidRuleError, RuleEngine, RuleNotFoundError, AutoScoreRule
from rules.schemas import CreateRuleRequest, RuleResponse, RuleRunResponse, ToggleRuleRequest

from .config import Settings, get_settings
from .logging_config import setup_logging
from .models import (
    BalanceResponse, CreateMemberRequest, LeaderboardResponse, Member,
    MemberListResponse, PointsRequest, PointsResponse,
)
from .service import (
    LedgerService, InsufficientBalanceError, InvalidAmountError, MemberNotFoundError,
)

logger = logging.getLogger(__name__)


def get_ledger_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def get_rule_engine(request: Request) -> RuleEngine:
    return request.app.state.rule_engine


def create_app(
    service: Optional[LedgerService] = None,
    engine: Optional[RuleEngine] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Points Ledger API",
        description="Member point balances with validated awards and deductions",
        version=settings.api_version,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.ledger_service = service or LedgerService()
    app.state.rule_engine = engine or RuleEngine(app.state.ledger_service)

    app.include_router(_system_routes(settings))
    app.include_router(_member_routes(settings))
    app.include_router(_rule_routes())
    logger.info(f"{settings.app_name} API ready")
    return app


def _system_routes(settings: Settings) -> APIRouter:
    router = APIRouter(tags=["System"])

    @router.get("/health")
    def health_check():
        return {"status": "healthy", "service": settings.app_name}

    return router


def _member_routes(settings: Settings) -> APIRouter:
    router = APIRouter(tags=["Members"])

    @router.post("/members", response_model=Member, status_code=status.HTTP_201_CREATED)
    def create_member(request: CreateMemberRequest, ledger: LedgerService = Depends(get_ledger_service)) -> Member:
        member_id = ledger.create_member(request.name)
        return ledger.get_member(member_id)

    @router.get("/members", response_model=MemberListResponse)
    def list_members(ledger: LedgerService = Depends(get_ledger_service)) -> MemberListResponse:
        members = ledger.list_members()
        return MemberListResponse(members=members, total_count=len(members))

    @router.get("/members/{member_id}", response_model=Member)
    def get_member(member_id: int, ledger: LedgerService = Depends(get_ledger_service)) -> Member:
        try:
            return ledger.get_member(member_id)
        except MemberNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @router.get("/members/{member_id}/balance", response_model=BalanceResponse)
    def get_balance(member_id: int, ledger: LedgerService = Depends(get_ledger_service)) -> BalanceResponse:
        balance = ledger.points_for(member_id)
        if balance is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Member {member_id} not found")
        return BalanceResponse(member_id=member_id, balance=balance)

    @router.post("/members/{member_id}/points/add", response_model=PointsResponse)
    def add_points(
        member_id: int, request: PointsRequest, ledger: LedgerService = Depends(get_ledger_service),
    ) -> PointsResponse:
        try:
            member = ledger.credit(member_id, request.amount)
        except MemberNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except InvalidAmountError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return PointsResponse(member=member, message=f"Added {request.amount} points")

    @router.post("/members/{member_id}/points/deduct", response_model=PointsResponse)
    def deduct_points(
        member_id: int, request: PointsRequest, ledger: LedgerService = Depends(get_ledger_service),
    ) -> PointsResponse:
        try:
            member = ledger.debit(member_id, request.amount)
        except MemberNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except InvalidAmountError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except InsufficientBalanceError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        return PointsResponse(member=member, message=f"Deducted {request.amount} points")

    @router.get("/leaderboard", response_model=LeaderboardResponse, tags=["Leaderboard"])
    def leaderboard(
        limit: Optional[int] = Query(default=None, ge=0),
        ledger: LedgerService = Depends(get_ledger_service),
    ) -> LeaderboardResponse:
        limit = settings.leaderboard_limit if limit is None else limit
        entries = ledger.leaderboard(limit)
        return LeaderboardResponse(entries=entries, total_count=len(ledger.list_members()), limit=limit)

    return router


def _rule_routes() -> APIRouter:
    router = APIRouter(prefix="/rules", tags=["Rules"])

    @router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
    def create_rule(request: CreateRuleRequest, engine: RuleEngine = Depends(get_rule_engine)) -> RuleResponse:
        try:
            rule = engine.add_rule(AutoScoreRule.from_dict(request.model_dump()))
        except InvalidRuleError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return RuleResponse(**rule.to_dict())

    @router.get("", response_model=list[RuleResponse])
    def list_rules(engine: RuleEngine = Depends(get_rule_engine)) -> list[RuleResponse]:
        return [RuleResponse(**rule.to_dict()) for rule in engine.list_rules()]

    @router.post("/run-due", response_model=list[RuleRunResponse])
    def run_due_rules(engine: RuleEngine = Depends(get_rule_engine)) -> list[RuleRunResponse]:
        return [RuleRunResponse(**result.to_dict()) for result in engine.run_due()]

    @router.get("/{rule_id}", response_model=RuleResponse)
    def get_rule(rule_id: int, engine: RuleEngine = Depends(get_rule_engine)) -> RuleResponse:
        try:
            return RuleResponse(**engine.get_rule(rule_id).to_dict())
        except RuleNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @router.patch("/{rule_id}", response_model=RuleResponse)
    def toggle_rule(
        rule_id: int, request: ToggleRuleRequest, engine: RuleEngine = Depends(get_rule_engine),
    ) -> RuleResponse:
        try:
            return RuleResponse(**engine.set_enabled(rule_id, request.enabled).to_dict())
        except RuleNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_rule(rule_id: int, engine: RuleEngine = Depends(get_rule_engine)) -> None:
        try:
            engine.remove_rule(rule_id)
        except RuleNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @router.post("/{rule_id}/run", response_model=RuleRunResponse)
    def run_rule(rule_id: int, engine: RuleEngine = Depends(get_rule_engine)) -> RuleRunResponse:
        try:
            return RuleRunResponse(**engine.execute(rule_id).to_dict())
        except RuleNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return router


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
