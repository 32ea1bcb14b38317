import logging
import secrets
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .errors import LedgerServiceError, PermissionDeniedError, UnauthenticatedError
from .models import (
    AssignPremiumRequest, BanStatus, CallerIdentity, CallResult, CheckBanStatusRequest, GiftRevenue,
    MonthlyReportRequest, ProcessPayoutRequest, RemoveFriendRequest, RequestPayoutRequest,
    RespondToFriendRequestRequest, SendFriendRequestRequest, SendGiftRequest, SubmitReportRequest,
    UnassignPremiumRequest, UnbanUserRequest, User,
)
from .observability import setup_logging
from .service import LedgerService, build_service

logger = logging.getLogger(__name__)

router = APIRouter()


def get_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_user_admin: bool = Header(default=False),
) -> Optional[CallerIdentity]:
    # Identity is verified upstream; these headers carry the verified claims.
    if not x_user_id:
        return None
    return CallerIdentity(uid=x_user_id, admin=x_user_admin)


def _http_error(e: LedgerServiceError) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail=e.to_response()["error"])


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "stream-economy-ledger"}


@router.post("/callable/initializePremiumSettings", response_model=CallResult, tags=["Premium"])
def initialize_premium_settings(caller=Depends(get_caller), service=Depends(get_service)) -> CallResult:
    try:
        return service.initialize_premium_settings(caller)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/assignPremium", response_model=CallResult, tags=["Premium"])
def assign_premium(request: AssignPremiumRequest, caller=Depends(get_caller),
                   service=Depends(get_service)) -> CallResult:
    try:
        return service.assign_premium(caller, request.user_id, request.slot_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/unassignPremium", response_model=CallResult, tags=["Premium"])
def unassign_premium(request: UnassignPremiumRequest, caller=Depends(get_caller),
                     service=Depends(get_service)) -> CallResult:
    try:
        return service.unassign_premium(caller, request.user_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/sendGift", response_model=CallResult, tags=["Gifts"])
def send_gift(request: SendGiftRequest, caller=Depends(get_caller), service=Depends(get_service)) -> CallResult:
    try:
        return service.send_gift(caller, request.receiver_id, request.gift_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.get("/gifts/revenue/{user_id}", response_model=GiftRevenue, tags=["Gifts"])
def get_gift_revenue(user_id: str, caller=Depends(get_caller), service=Depends(get_service)) -> GiftRevenue:
    try:
        return service.get_gift_revenue(caller, user_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/requestPayout", response_model=CallResult, tags=["Payouts"])
def request_payout(request: RequestPayoutRequest, caller=Depends(get_caller),
                   service=Depends(get_service)) -> CallResult:
    try:
        return service.request_payout(caller, request.amount, request.payout_method, request.payout_details)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/processPayout", response_model=CallResult, tags=["Payouts"])
def process_payout(request: ProcessPayoutRequest, caller=Depends(get_caller),
                   service=Depends(get_service)) -> CallResult:
    try:
        return service.process_payout(caller, request.payout_request_id, request.action)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/sendFriendRequest", response_model=CallResult, tags=["Friends"])
def send_friend_request(request: SendFriendRequestRequest, caller=Depends(get_caller),
                        service=Depends(get_service)) -> CallResult:
    try:
        return service.send_friend_request(caller, request.receiver_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/respondToFriendRequest", response_model=CallResult, tags=["Friends"])
def respond_to_friend_request(request: RespondToFriendRequestRequest, caller=Depends(get_caller),
                              service=Depends(get_service)) -> CallResult:
    try:
        return service.respond_to_friend_request(caller, request.request_id, request.action)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/removeFriend", response_model=CallResult, tags=["Friends"])
def remove_friend(request: RemoveFriendRequest, caller=Depends(get_caller),
                  service=Depends(get_service)) -> CallResult:
    try:
        return service.remove_friend(caller, request.friend_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/submitReport", response_model=CallResult, tags=["Moderation"])
def submit_report(request: SubmitReportRequest, caller=Depends(get_caller),
                  service=Depends(get_service)) -> CallResult:
    try:
        return service.submit_report(caller, request.reported_entity_id, request.reported_entity_type,
                                     request.reason, request.description)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/checkBanStatus", response_model=BanStatus, tags=["Moderation"])
def check_ban_status(request: CheckBanStatusRequest, caller=Depends(get_caller),
                     service=Depends(get_service)) -> BanStatus:
    try:
        return service.check_ban_status(caller, request.user_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/callable/unbanUser", response_model=CallResult, tags=["Moderation"])
def unban_user(request: UnbanUserRequest, caller=Depends(get_caller), service=Depends(get_service)) -> CallResult:
    try:
        return service.unban_user(caller, request.user_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.get("/me", response_model=User, tags=["Users"])
def get_profile(caller=Depends(get_caller), service=Depends(get_service)) -> User:
    try:
        return service.get_profile(caller)
    except LedgerServiceError as e:
        raise _http_error(e)


def require_scheduler(
    request: Request,
    caller: Optional[CallerIdentity] = Depends(get_caller),
    x_scheduler_token: Optional[str] = Header(default=None),
) -> None:
    token = get_service(request).settings.scheduler_token
    if token and x_scheduler_token and secrets.compare_digest(token, x_scheduler_token):
        return
    if caller is None:
        raise _http_error(UnauthenticatedError("Scheduler tasks require a scheduler token or an admin caller."))
    if not caller.admin:
        raise _http_error(PermissionDeniedError("Only administrators can run scheduler tasks."))


tasks = APIRouter(prefix="/tasks", tags=["Scheduler"], dependencies=[Depends(require_scheduler)])


@tasks.post("/cleanupEphemeralMessages")
def cleanup_ephemeral_messages(service=Depends(get_service)):
    return {"deleted": service.cleanup_ephemeral_messages()}


@tasks.post("/redeliverGiftCredits")
def redeliver_gift_credits(service=Depends(get_service)):
    return {"credited": service.redeliver_gift_credits()}


@tasks.post("/aggregateRevenue")
def aggregate_revenue(service=Depends(get_service)):
    return {"aggregated": service.aggregate_revenue()}


@tasks.post("/monthlyReport")
def monthly_report(request: MonthlyReportRequest, service=Depends(get_service)):
    try:
        report = service.generate_monthly_report(request.month)
    except LedgerServiceError as e:
        raise _http_error(e)
    return {"month": request.month, "generated": report is not None}


def create_app(service: Optional[LedgerService] = None, root_path: str = "") -> FastAPI:
    settings = service.settings if service else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_format)
        logger.info("Stream economy ledger API started")
        yield

    app = FastAPI(
        title="Stream Economy Ledger API",
        description="Gifts, payouts, premium slots, friends and moderation over a transactional document store",
        version="1.0.0",
        root_path=root_path,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.ledger_service = service or build_service(settings)
    app.include_router(router)
    app.include_router(tasks)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
