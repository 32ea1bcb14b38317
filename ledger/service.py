"""
Callable layer: one method per remotely invokable operation.

Each method authenticates the caller, validates identifiers, and delegates to
exactly one component operation (one store transaction). Business failures
propagate as LedgerServiceError subclasses. Anything else is logged with its
traceback and surfaced as a generic InternalError. Scheduled sweeps take no
caller and never raise.
"""

import functools
import logging
from typing import Optional

from .catalog import default_premium_settings, initialize_premium_settings
from .config import Settings, get_settings
from .documents import Clock, user_path, utc_now
from .ephemeral import EphemeralReaper
from .errors import (
    InternalError, InvalidArgumentError, LedgerServiceError, NotFoundError, PermissionDeniedError,
    UnauthenticatedError,
)
from .friends import FriendGraph
from .gifts import GiftProcessor
from .models import BanStatus, CallerIdentity, CallResult, GiftRevenue, User
from .moderation import ModerationEngine, NotificationSender
from .payouts import PayoutWorkflow
from .revenue import RevenueReporter, month_bounds
from .slots import SlotAllocator
from .store import InMemoryDocumentStore
from .triggers import TriggerEvent, TriggerRegistry

logger = logging.getLogger(__name__)


def callable_operation(method):
    @functools.wraps(method)
    def wrapper(self, caller: Optional[CallerIdentity], *args, **kwargs):
        if caller is None or not caller.uid:
            raise UnauthenticatedError("The function must be called while authenticated.")
        try:
            return method(self, caller, *args, **kwargs)
        except LedgerServiceError as e:
            logger.info(f"{method.__name__} rejected: {e.message}",
                        extra={"operation": method.__name__, "caller_id": caller.uid, "error_code": e.code})
            raise
        except Exception:
            logger.exception(f"{method.__name__} failed",
                             extra={"operation": method.__name__, "caller_id": caller.uid})
            raise InternalError()
    return wrapper


def _require_id(value: Optional[str], field: str) -> str:
    if not isinstance(value, str) or not value or "/" in value:
        raise InvalidArgumentError(f"The '{field}' field is required and must be a valid id.")
    return value


class LedgerService:
    def __init__(self, store: Optional[InMemoryDocumentStore] = None, settings: Optional[Settings] = None,
                 notifier: Optional[NotificationSender] = None, clock: Clock = utc_now):
        self.settings = settings or get_settings()
        self.store = store or InMemoryDocumentStore(
            max_attempts=self.settings.transaction_max_attempts,
            base_delay_ms=self.settings.transaction_base_delay_ms,
            max_delay_ms=self.settings.transaction_max_delay_ms,
        )
        currency = self.settings.payout_currency
        self.slots = SlotAllocator(self.store)
        self.gifts = GiftProcessor(self.store, currency=currency, clock=clock)
        self.payouts = PayoutWorkflow(self.store, fee_rate=self.settings.platform_fee_rate,
                                      currency=currency, clock=clock)
        self.friends = FriendGraph(self.store, clock=clock)
        self.moderation = ModerationEngine(self.store, notifier=notifier,
                                           temp_ban_days=self.settings.temporary_ban_days, clock=clock)
        self.reaper = EphemeralReaper(self.store, clock=clock)
        self.revenue = RevenueReporter(self.store, clock=clock)

        self.triggers = TriggerRegistry()
        self.triggers.add_handler(TriggerEvent.GIFT_SENT, self.gifts.on_gift_sent)
        self.triggers.add_handler(TriggerEvent.REPORT_SUBMITTED, self.moderation.on_report_submitted)
        self.triggers.add_handler(TriggerEvent.MESSAGE_CREATED, self.reaper.on_message_created)
        self.triggers.bind(self.store)

    # Setup

    @callable_operation
    def initialize_premium_settings(self, caller: CallerIdentity) -> CallResult:
        if not caller.admin and not self.store.get(user_path(caller.uid)).get("is_admin", False):
            raise PermissionDeniedError("Only administrators can initialize settings.")
        return initialize_premium_settings(self.store, default_premium_settings(
            premium_rate=self.settings.premium_payout_percentage,
            standard_rate=self.settings.standard_payout_percentage,
            max_slots=self.settings.max_premium_slots,
        ))

    # Premium slots

    @callable_operation
    def assign_premium(self, caller: CallerIdentity, user_id: str, slot_id: Optional[str]) -> CallResult:
        return self.slots.assign(caller.uid, _require_id(user_id, "user_id"), _require_id(slot_id, "slot_id"))

    @callable_operation
    def unassign_premium(self, caller: CallerIdentity, user_id: str) -> CallResult:
        return self.slots.unassign(caller.uid, _require_id(user_id, "user_id"))

    # Gifts

    @callable_operation
    def send_gift(self, caller: CallerIdentity, receiver_id: str, gift_id: str) -> CallResult:
        return self.gifts.send(caller.uid, _require_id(receiver_id, "receiver_id"), _require_id(gift_id, "gift_id"))

    @callable_operation
    def get_gift_revenue(self, caller: CallerIdentity, user_id: Optional[str] = None) -> GiftRevenue:
        target = _require_id(user_id, "user_id") if user_id else caller.uid
        self.moderation.ensure_can_view(caller.uid, target)
        return self.gifts.gift_revenue(target)

    # Payouts

    @callable_operation
    def request_payout(self, caller: CallerIdentity, amount, payout_method, payout_details: dict) -> CallResult:
        return self.payouts.request(caller.uid, amount, payout_method, payout_details)

    @callable_operation
    def process_payout(self, caller: CallerIdentity, payout_request_id: str, action) -> CallResult:
        return self.payouts.process(_require_id(payout_request_id, "payout_request_id"), action, caller.uid)

    # Friends

    @callable_operation
    def send_friend_request(self, caller: CallerIdentity, receiver_id: str) -> CallResult:
        return self.friends.send_request(caller.uid, _require_id(receiver_id, "receiver_id"))

    @callable_operation
    def respond_to_friend_request(self, caller: CallerIdentity, request_id: str, action) -> CallResult:
        return self.friends.respond(_require_id(request_id, "request_id"), action, caller.uid)

    @callable_operation
    def remove_friend(self, caller: CallerIdentity, friend_id: str) -> CallResult:
        return self.friends.remove_friend(caller.uid, _require_id(friend_id, "friend_id"))

    # Moderation

    @callable_operation
    def submit_report(self, caller: CallerIdentity, reported_entity_id: str, reported_entity_type: str,
                      reason: str, description: Optional[str] = None) -> CallResult:
        return self.moderation.submit_report(
            caller.uid, _require_id(reported_entity_id, "reported_entity_id"),
            reported_entity_type, reason, description,
        )

    @callable_operation
    def check_ban_status(self, caller: CallerIdentity, user_id: Optional[str] = None) -> BanStatus:
        target = _require_id(user_id, "user_id") if user_id else caller.uid
        self.moderation.ensure_can_view(caller.uid, target)
        return self.moderation.check_ban_status(target)

    @callable_operation
    def unban_user(self, caller: CallerIdentity, user_id: str) -> CallResult:
        return self.moderation.unban_user(caller.uid, _require_id(user_id, "user_id"))

    # Profile

    @callable_operation
    def get_profile(self, caller: CallerIdentity) -> User:
        # Lifts an expired ban before the ban fields are returned.
        self.moderation.check_ban_status(caller.uid)
        snapshot = self.store.get(user_path(caller.uid))
        if not snapshot.exists:
            raise NotFoundError(f"User {caller.uid} not found")
        return User(id=caller.uid, **snapshot.to_dict())

    # Scheduled sweeps

    def cleanup_ephemeral_messages(self) -> int:
        return self.reaper.sweep()

    def redeliver_gift_credits(self) -> int:
        return self.gifts.redeliver_pending_credits()

    def aggregate_revenue(self) -> int:
        return self.revenue.aggregate()

    def generate_monthly_report(self, month: str) -> Optional[dict]:
        month_bounds(month)
        return self.revenue.monthly_report(month)


def build_service(settings: Optional[Settings] = None) -> LedgerService:
    return LedgerService(settings=settings or get_settings())
