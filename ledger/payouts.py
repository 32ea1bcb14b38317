"""
Payout requests with escrow.

The requested amount leaves the user's balance when the request is created,
not when it is approved. Processing is admin-only and happens once: the
status check and the state change share a transaction, so two admins racing
on the same request cannot both succeed.
"""

import logging
from decimal import Decimal, InvalidOperation

from .documents import Clock, load_user, require_admin, to_document, user_path, utc_now
from .errors import FailedPreconditionError, InvalidArgumentError, NotFoundError
from .models import (
    CallResult, Currency, LedgerTransaction, PayoutAction, PayoutMethod, PayoutRequest,
    PayoutStatus, TransactionType,
)
from .store import InMemoryDocumentStore, Transaction

logger = logging.getLogger(__name__)

REQUIRED_DETAILS = {
    PayoutMethod.PAYPAL: ("email",),
    PayoutMethod.BANK_TRANSFER: ("account_number",),
}


def _parse_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidArgumentError(f"Invalid payout amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise InvalidArgumentError("Payout amount must be greater than zero.")
    return value


class PayoutWorkflow:
    def __init__(self, store: InMemoryDocumentStore, fee_rate: Decimal = Decimal("0.10"),
                 currency: str = "USD", clock: Clock = utc_now):
        self.store = store
        self.fee_rate = fee_rate
        self.currency = Currency(currency)
        self.clock = clock

    def request(self, user_id: str, amount, method, details: dict) -> CallResult:
        value = _parse_amount(amount)
        try:
            payout_method = PayoutMethod(method)
        except ValueError:
            raise InvalidArgumentError("Invalid payout method. Must be 'paypal' or 'bank_transfer'.")
        details = dict(details or {})
        missing = [key for key in REQUIRED_DETAILS[payout_method] if not details.get(key)]
        if missing:
            raise InvalidArgumentError(f"Missing payout details: {', '.join(missing)}")

        def body(txn: Transaction) -> CallResult:
            user = load_user(txn, user_id)
            if user.balance < value:
                raise FailedPreconditionError(
                    f"Insufficient balance: requested {value}, available {user.balance}."
                )
            now = self.clock()
            payout = PayoutRequest(
                id=self.store.new_id(),
                user_id=user_id,
                amount=value,
                payout_method=payout_method,
                payout_details=details,
                status=PayoutStatus.PENDING,
                created_at=now,
            )
            record = LedgerTransaction(
                id=self.store.new_id(),
                user_id=user_id,
                type=TransactionType.PAYOUT_REQUEST,
                amount=-value,
                currency=self.currency,
                timestamp=now,
                details={"payout_request_id": payout.id, "payout_method": payout_method.value},
            )
            txn.update(user_path(user_id), {"balance": user.balance - value})
            txn.create(f"payout_requests/{payout.id}", to_document(payout))
            txn.create(f"transactions/{record.id}", to_document(record))
            return CallResult(
                message="Payout request submitted successfully.",
                data={"payout_request_id": payout.id, "balance": str(user.balance - value)},
            )

        result = self.store.run_transaction(body)
        logger.info(f"Payout of {value} requested by {user_id}",
                    extra={"user_id": user_id, "request_id": result.data["payout_request_id"]})
        return result

    def process(self, request_id: str, action, admin_id: str) -> CallResult:
        if not request_id:
            raise InvalidArgumentError("The 'payout_request_id' field is required.")
        try:
            payout_action = PayoutAction(action)
        except ValueError:
            raise InvalidArgumentError("Invalid action. Must be 'approve' or 'reject'.")
        path = f"payout_requests/{request_id}"

        def body(txn: Transaction) -> CallResult:
            require_admin(txn, admin_id)
            snapshot = txn.get(path)
            if not snapshot.exists:
                raise NotFoundError(f"Payout request {request_id} not found")
            payout = PayoutRequest(id=request_id, **snapshot.to_dict())
            if not payout.can_process():
                raise FailedPreconditionError(f"Payout request already {payout.status.value}.")

            now = self.clock()
            processed = {"processed_at": now, "processed_by": admin_id}
            if payout_action == PayoutAction.APPROVE:
                fee = (payout.amount * self.fee_rate).quantize(Decimal("0.01"))
                txn.update(path, {"status": PayoutStatus.COMPLETED, **processed})
                txn.create(f"platform_revenue/{self.store.new_id()}", {
                    "source": "payout_fee",
                    "amount": fee,
                    "payout_request_id": request_id,
                    "user_id": payout.user_id,
                    "timestamp": now,
                    "aggregated": False,
                })
                return CallResult(message=f"Payout request {request_id} approved.",
                                  data={"status": PayoutStatus.COMPLETED.value, "platform_fee": str(fee)})

            user = load_user(txn, payout.user_id)
            refund = LedgerTransaction(
                id=self.store.new_id(),
                user_id=payout.user_id,
                type=TransactionType.PAYOUT_REFUND,
                amount=payout.amount,
                currency=self.currency,
                timestamp=now,
                details={"payout_request_id": request_id},
            )
            txn.update(user_path(payout.user_id), {"balance": user.balance + payout.amount})
            txn.update(path, {"status": PayoutStatus.REJECTED, **processed})
            txn.create(f"transactions/{refund.id}", to_document(refund))
            return CallResult(message=f"Payout request {request_id} rejected and refunded.",
                              data={"status": PayoutStatus.REJECTED.value})

        result = self.store.run_transaction(body)
        logger.info(f"Payout request {request_id} {result.data['status']}",
                    extra={"request_id": request_id, "caller_id": admin_id})
        return result
