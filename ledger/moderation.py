"""
Report intake and the tiered penalty state machine.

A user's moderation state is derived from their document as one of
Clean, Warned(n), TempBanned(until) or PermaBanned. Each resolved report
increments the warning count and applies ``next_penalty``:

    count after increment   action          effect
    1                       warning_1       none
    2                       warning_2       none
    3, first cycle          temporary_ban   banned until now + 3 days, count -> 0
    3, post-reset cycle     permanent_ban   banned with no expiry, count -> 0
    >= 4                    permanent_ban   banned with no expiry, count -> 0

A cycle is post-reset once the user has served a temporary ban, tracked by
``temporary_ban_count`` on the user document. Expiry and unban clear the
warnings but never that history.

Ban expiry is lazy. ``evaluate_ban_expiry`` is the single place that decides
whether a stored ban still holds; both ``check_ban_status`` and the report
reactor go through it, so an expired ban is cleared before anything reads it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol, Union

from .documents import Clock, load_user, require_admin, to_document, user_path, utc_now
from .errors import InvalidArgumentError, NotFoundError, PermissionDeniedError
from .models import (
    BanStatus, CallResult, EntityType, PenaltyAction, Report, ReportStatus, User, Violation,
)
from .store import DocumentSnapshot, InMemoryDocumentStore, Transaction

logger = logging.getLogger(__name__)

NO_USER_FOUND = "no_user_found"


@dataclass(frozen=True)
class Clean:
    pass


@dataclass(frozen=True)
class Warned:
    count: int


@dataclass(frozen=True)
class TempBanned:
    until: datetime


@dataclass(frozen=True)
class PermaBanned:
    pass


PenaltyState = Union[Clean, Warned, TempBanned, PermaBanned]


@dataclass(frozen=True)
class Penalty:
    action: PenaltyAction
    level: int
    warning_count: int
    is_banned: bool
    ban_expires_at: Optional[datetime]


def penalty_state(user: User) -> PenaltyState:
    if user.is_banned:
        return TempBanned(user.ban_expires_at) if user.ban_expires_at else PermaBanned()
    if user.warning_count:
        return Warned(user.warning_count)
    return Clean()


def next_penalty(warning_count: int, now: datetime, temp_ban: timedelta = timedelta(days=3),
                 temporary_bans: int = 0) -> Penalty:
    """Pure transition for one more upheld report against a user."""
    count = warning_count + 1
    if count == 3 and temporary_bans:
        count = 4
    if count == 1:
        return Penalty(PenaltyAction.WARNING_1, 1, 1, False, None)
    if count == 2:
        return Penalty(PenaltyAction.WARNING_2, 2, 2, False, None)
    if count == 3:
        return Penalty(PenaltyAction.TEMPORARY_BAN, 3, 0, True, now + temp_ban)
    return Penalty(PenaltyAction.PERMANENT_BAN, 4, 0, True, None)


def evaluate_ban_expiry(user: User, now: datetime) -> Optional[dict]:
    """Fields that lift an expired ban, or None if the stored state still holds."""
    state = penalty_state(user)
    if isinstance(state, TempBanned) and state.until <= now:
        return {"is_banned": False, "ban_expires_at": None, "ban_reason": None, "warning_count": 0}
    return None


class NotificationSender(Protocol):
    def send(self, user_id: str, title: str, body: str, data: dict) -> None: ...


class LoggingNotificationSender:
    """Stand-in for the push notification service."""

    def __init__(self):
        self.sent: list[dict] = []

    def send(self, user_id: str, title: str, body: str, data: dict) -> None:
        self.sent.append({"user_id": user_id, "title": title, "body": body, "data": data})
        logger.info(f"Notification to {user_id}: {title}", extra={"user_id": user_id})


NOTIFICATIONS = {
    PenaltyAction.WARNING_1: ("Community warning", "Your content was reported and a warning has been issued."),
    PenaltyAction.WARNING_2: ("Final warning", "One more violation will result in a temporary ban."),
    PenaltyAction.TEMPORARY_BAN: ("Account suspended", "Your account has been suspended for 3 days."),
    PenaltyAction.PERMANENT_BAN: ("Account banned", "Your account has been permanently banned."),
}


class ModerationEngine:
    def __init__(self, store: InMemoryDocumentStore, notifier: Optional[NotificationSender] = None,
                 temp_ban_days: int = 3, clock: Clock = utc_now):
        self.store = store
        self.notifier = notifier or LoggingNotificationSender()
        self.temp_ban = timedelta(days=temp_ban_days)
        self.clock = clock

    def submit_report(self, reporter_id: str, entity_id: str, entity_type: str, reason: str,
                      description: Optional[str] = None) -> CallResult:
        if not entity_id or not reason or not reason.strip():
            raise InvalidArgumentError("The 'reported_entity_id' and 'reason' fields are required.")
        if "/" in entity_id:
            raise InvalidArgumentError("Invalid entity id.")
        try:
            kind = EntityType(entity_type)
        except ValueError:
            raise InvalidArgumentError(
                f"Invalid entity type. Must be one of: {', '.join(t.value for t in EntityType)}."
            )
        report = Report(
            id=self.store.new_id(),
            reporter_id=reporter_id,
            reported_entity_id=entity_id,
            reported_entity_type=kind,
            reason=reason.strip(),
            description=description,
            status=ReportStatus.PENDING,
            created_at=self.clock(),
        )
        self.store.create(f"reports/{report.id}", to_document(report))
        logger.info(f"Report {report.id} submitted against {kind.value} {entity_id}",
                    extra={"caller_id": reporter_id, "request_id": report.id})
        return CallResult(message="Report submitted successfully.", data={"report_id": report.id})

    def resolve_owner(self, txn: Transaction, kind: EntityType, entity_id: str) -> Optional[str]:
        if kind == EntityType.USER:
            return entity_id if txn.get(user_path(entity_id)).exists else None
        if kind == EntityType.MESSAGE:
            found = [s for s in txn.query_group("messages") if s.id == entity_id]
            owner = found[0].get("sender_id") if found else None
        else:
            collection, field = {
                EntityType.VIDEO: ("videos", "user_id"),
                EntityType.COMMENT: ("comments", "user_id"),
                EntityType.STREAM: ("live_streams", "host_id"),
            }[kind]
            owner = txn.get(f"{collection}/{entity_id}").get(field)
        if owner and txn.get(user_path(owner)).exists:
            return owner
        return None

    def process_report(self, report_id: str) -> Optional[Penalty]:
        """Apply one report. Returns the penalty, or None if rejected or already handled."""
        path = f"reports/{report_id}"

        def body(txn: Transaction) -> tuple[Optional[str], Optional[Penalty]]:
            snapshot = txn.get(path)
            if not snapshot.exists:
                raise NotFoundError(f"Report {report_id} not found")
            report = Report(id=report_id, **snapshot.to_dict())
            if report.status != ReportStatus.PENDING:
                return None, None

            owner_id = self.resolve_owner(txn, report.reported_entity_type, report.reported_entity_id)
            if owner_id is None:
                txn.update(path, {"status": ReportStatus.REJECTED.value, "resolution": NO_USER_FOUND})
                return None, None

            user = load_user(txn, owner_id)
            now = self.clock()
            lifted = evaluate_ban_expiry(user, now)
            if lifted:
                user = user.model_copy(update=lifted)

            penalty = next_penalty(user.warning_count, now, self.temp_ban, user.temporary_ban_count)
            fields = {"warning_count": penalty.warning_count}
            if penalty.action == PenaltyAction.TEMPORARY_BAN:
                fields["temporary_ban_count"] = user.temporary_ban_count + 1
            if lifted:
                fields.update(lifted)
            if penalty.is_banned:
                fields.update({
                    "is_banned": True,
                    "ban_expires_at": penalty.ban_expires_at,
                    "ban_reason": report.reason,
                })
            violation = Violation(
                id=self.store.new_id(),
                user_id=owner_id,
                report_id=report_id,
                type=report.reason,
                level=penalty.level,
                action=penalty.action,
                ban_expires_at=penalty.ban_expires_at,
                timestamp=now,
            )
            txn.update(user_path(owner_id), fields)
            txn.create(f"violations/{violation.id}", to_document(violation))
            txn.update(path, {"status": ReportStatus.RESOLVED.value, "resolution": penalty.action.value})
            return owner_id, penalty

        owner_id, penalty = self.store.run_transaction(body)
        if penalty is None:
            logger.info(f"Report {report_id} closed without penalty", extra={"request_id": report_id})
            return None

        logger.info(f"Report {report_id}: {penalty.action.value} for {owner_id}",
                    extra={"user_id": owner_id, "request_id": report_id})
        title, text = NOTIFICATIONS[penalty.action]
        self.notifier.send(owner_id, title, text, {
            "action": penalty.action.value,
            "report_id": report_id,
            "ban_expires_at": penalty.ban_expires_at.isoformat() if penalty.ban_expires_at else None,
        })
        return penalty

    def on_report_submitted(self, snapshot: DocumentSnapshot) -> Optional[Penalty]:
        return self.process_report(snapshot.id)

    def check_ban_status(self, user_id: str) -> BanStatus:
        def body(txn: Transaction) -> BanStatus:
            user = load_user(txn, user_id)
            lifted = evaluate_ban_expiry(user, self.clock())
            if lifted:
                txn.update(user_path(user_id), lifted)
                return BanStatus(is_banned=False)
            return BanStatus(is_banned=user.is_banned, ban_expires_at=user.ban_expires_at,
                             ban_reason=user.ban_reason)

        return self.store.run_transaction(body)

    def unban_user(self, admin_id: str, user_id: str) -> CallResult:
        if not user_id:
            raise InvalidArgumentError("The 'user_id' field is required.")

        def body(txn: Transaction) -> CallResult:
            require_admin(txn, admin_id)
            load_user(txn, user_id)
            txn.update(user_path(user_id), {
                "is_banned": False, "ban_expires_at": None, "ban_reason": None, "warning_count": 0,
            })
            return CallResult(message=f"User {user_id} has been unbanned.", data={"user_id": user_id})

        result = self.store.run_transaction(body)
        logger.info(f"User {user_id} unbanned", extra={"user_id": user_id, "caller_id": admin_id})
        return result

    def ensure_can_view(self, caller_id: str, user_id: str) -> None:
        if caller_id == user_id:
            return
        caller = self.store.get(user_path(caller_id))
        if not caller.get("is_admin", False):
            raise PermissionDeniedError("Only administrators can view another user's ban status.")
