"""
Gift sending and revenue-split credit.

Sending is the user-facing path: debit the sender's coins and append a
SentGift plus an audit transaction, atomically. Crediting the receiver is an
outbox consumer keyed by the SentGift id; a ``gift_credits/{id}`` marker is
written in the same transaction as the balance change, so redelivery of the
same SentGift is a no-op.
"""

import logging
from decimal import Decimal
from typing import Optional

from .documents import Clock, load_settings, load_user, to_document, user_path, utc_now
from .errors import FailedPreconditionError, InvalidArgumentError, NotFoundError
from .models import (
    CallResult, Currency, Gift, GiftRevenue, LedgerTransaction, SentGift, TransactionType,
)
from .store import DocumentSnapshot, InMemoryDocumentStore, Transaction

logger = logging.getLogger(__name__)


class GiftProcessor:
    def __init__(self, store: InMemoryDocumentStore, currency: str = "USD", clock: Clock = utc_now):
        self.store = store
        self.currency = Currency(currency)
        self.clock = clock

    def send(self, sender_id: str, receiver_id: str, gift_id: str) -> CallResult:
        if not receiver_id or not gift_id:
            raise InvalidArgumentError("The 'receiver_id' and 'gift_id' fields are required.")
        if sender_id == receiver_id:
            raise InvalidArgumentError("You cannot send a gift to yourself.")

        def body(txn: Transaction) -> CallResult:
            sender = load_user(txn, sender_id, "Sender")
            load_user(txn, receiver_id, "Receiver")
            load_settings(txn)
            gift_snapshot = txn.get(f"gifts/{gift_id}")
            if not gift_snapshot.exists:
                raise NotFoundError(f"Gift {gift_id} not found")
            gift = Gift(id=gift_id, **gift_snapshot.to_dict())

            if sender.coins < gift.cost:
                raise FailedPreconditionError(
                    f"Insufficient coins: {gift.name} costs {gift.cost}, balance is {sender.coins}."
                )

            now = self.clock()
            sent_gift = SentGift(
                id=self.store.new_id(),
                sender_id=sender_id,
                receiver_id=receiver_id,
                gift_id=gift_id,
                gift_name=gift.name,
                gift_cost=gift.cost,
                timestamp=now,
            )
            record = LedgerTransaction(
                id=self.store.new_id(),
                user_id=sender_id,
                type=TransactionType.GIFT_SENT,
                amount=Decimal(gift.cost),
                currency=Currency.COINS,
                timestamp=now,
                details={"receiver_id": receiver_id, "gift_name": gift.name, "sent_gift_id": sent_gift.id},
            )
            txn.update(user_path(sender_id), {"coins": sender.coins - gift.cost})
            txn.create(f"sent_gifts/{sent_gift.id}", to_document(sent_gift))
            txn.create(f"transactions/{record.id}", to_document(record))
            return CallResult(
                message=f"Gift {gift.name} sent to {receiver_id}.",
                data={"sent_gift_id": sent_gift.id, "coins_remaining": sender.coins - gift.cost},
            )

        return self.store.run_transaction(body)

    def credit_receiver(self, sent_gift_id: str) -> Optional[Decimal]:
        """Credit the receiver's split of one SentGift. Returns None if already credited."""
        marker_path = f"gift_credits/{sent_gift_id}"

        def body(txn: Transaction) -> Optional[Decimal]:
            if txn.get(marker_path).exists:
                return None
            sent_snapshot = txn.get(f"sent_gifts/{sent_gift_id}")
            if not sent_snapshot.exists:
                raise NotFoundError(f"Sent gift {sent_gift_id} not found")
            sent_gift = SentGift(id=sent_gift_id, **sent_snapshot.to_dict())
            receiver = load_user(txn, sent_gift.receiver_id, "Receiver")
            settings = load_settings(txn)

            rate = (settings.premium_payout_percentage if receiver.is_premium_account
                    else settings.standard_payout_percentage)
            amount = Decimal(sent_gift.gift_cost) * rate
            now = self.clock()
            record = LedgerTransaction(
                id=self.store.new_id(),
                user_id=receiver.id,
                type=TransactionType.GIFT_CREDIT,
                amount=amount,
                currency=self.currency,
                timestamp=now,
                details={"sent_gift_id": sent_gift_id, "rate": str(rate), "premium": receiver.is_premium_account},
            )
            txn.update(user_path(receiver.id), {"balance": receiver.balance + amount})
            txn.create(marker_path, {
                "receiver_id": receiver.id,
                "amount": amount,
                "premium": receiver.is_premium_account,
                "credited_at": now,
            })
            txn.create(f"transactions/{record.id}", to_document(record))
            return amount

        amount = self.store.run_transaction(body)
        if amount is None:
            logger.info(f"Sent gift {sent_gift_id} already credited, skipping")
        else:
            logger.info(f"Credited {amount} for sent gift {sent_gift_id}")
        return amount

    def on_gift_sent(self, snapshot: DocumentSnapshot) -> Optional[Decimal]:
        return self.credit_receiver(snapshot.id)

    def redeliver_pending_credits(self) -> int:
        """Credit every SentGift that has no credit marker yet. Returns the number credited."""
        credited = 0
        for sent_gift in self.store.query("sent_gifts"):
            if self.store.get(f"gift_credits/{sent_gift.id}").exists:
                continue
            try:
                if self.credit_receiver(sent_gift.id) is not None:
                    credited += 1
            except Exception:
                logger.exception(f"Redelivery failed for sent gift {sent_gift.id}", extra={"path": sent_gift.path})
        logger.info(f"Gift credit redelivery completed, {credited} credited")
        return credited

    def gift_revenue(self, user_id: str) -> GiftRevenue:
        credits = self.store.query("gift_credits", [("receiver_id", "==", user_id)])
        return GiftRevenue(
            user_id=user_id,
            total_credited=sum((c.get("amount") for c in credits), Decimal("0")),
            gifts_received=len(credits),
        )
