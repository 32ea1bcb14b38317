"""
Unit Tests for Gift Sending and Revenue Split

Tests cover:
1. Send gift flow (debit, SentGift, audit transaction)
2. Receiver credit at standard and premium rates
3. Idempotent credit on redelivery
4. Failure cases leave no partial state
5. Concurrent sends from one sender
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from ledger.documents import SETTINGS_PATH
from ledger.models import CallerIdentity
from ledger.triggers import TriggerEvent
from ledger.errors import (
    FailedPreconditionError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
)


class TestSendGift:
    """Tests for the sender side of a gift."""

    def test_send_gift_debits_and_records(self, service, store, add_user):
        """Test that a gift debits coins and writes the outbox and audit records."""
        sender = add_user("sender", coins=50)
        add_user("receiver")

        result = service.send_gift(sender, "receiver", "money")

        assert result.success
        assert store.get("users/sender").get("coins") == 40
        sent = store.get(f"sent_gifts/{result.data['sent_gift_id']}")
        assert sent.get("gift_name") == "Money"
        assert sent.get("gift_cost") == 10
        assert sent.get("receiver_id") == "receiver"
        records = store.query("transactions", [("user_id", "==", "sender")])
        assert len(records) == 1
        assert records[0].get("type") == "gift_sent"
        assert records[0].get("amount") == Decimal("10")

    def test_three_roses_scenario(self, service, store, add_user):
        """Test three 1-coin gifts from a 5-coin sender to a standard receiver."""
        sender = add_user("sender", coins=5)
        add_user("receiver", balance=Decimal("0"))

        for _ in range(3):
            service.send_gift(sender, "receiver", "rose")

        assert store.get("users/sender").get("coins") == 2
        assert store.get("users/receiver").get("balance") == Decimal("1.50")
        assert len(store.query("gift_credits", [("receiver_id", "==", "receiver")])) == 3

    def test_insufficient_coins(self, service, store, add_user):
        """Test that a sender cannot go below zero coins."""
        sender = add_user("sender", coins=4)
        add_user("receiver")

        with pytest.raises(FailedPreconditionError):
            service.send_gift(sender, "receiver", "heart")

        assert store.get("users/sender").get("coins") == 4
        assert store.query("sent_gifts") == []
        assert store.query("transactions") == []

    def test_unknown_gift(self, service, add_user):
        """Test that an unknown gift id is rejected."""
        sender = add_user("sender", coins=5)
        add_user("receiver")

        with pytest.raises(NotFoundError):
            service.send_gift(sender, "receiver", "unicorn")

    def test_unknown_receiver(self, service, add_user):
        """Test that gifts to missing users are rejected."""
        sender = add_user("sender", coins=5)

        with pytest.raises(NotFoundError):
            service.send_gift(sender, "nobody", "rose")

    def test_send_requires_settings(self, service, store, add_user):
        """Test that no coins are debited while premium settings are missing."""
        sender = add_user("sender", coins=5)
        add_user("receiver")
        store.delete(SETTINGS_PATH)

        with pytest.raises(NotFoundError):
            service.send_gift(sender, "receiver", "rose")

        assert store.get("users/sender").get("coins") == 5
        assert store.query("sent_gifts") == []

    def test_cannot_gift_self(self, service, add_user):
        """Test that self-gifting is rejected."""
        sender = add_user("sender", coins=5)

        with pytest.raises(InvalidArgumentError):
            service.send_gift(sender, "sender", "rose")


class TestCreditReceiver:
    """Tests for the credit reactor."""

    def test_premium_receiver_gets_premium_rate(self, service, store, admin, add_user):
        """Test that premium receivers are credited at the premium percentage."""
        sender = add_user("sender", coins=100)
        add_user("creator")
        service.assign_premium(admin, "creator", "premium_slot_1")

        service.send_gift(sender, "creator", "diamond")

        assert store.get("users/creator").get("balance") == Decimal("90")
        revenue = service.get_gift_revenue(CallerIdentity(uid="creator"))
        assert revenue.total_credited == Decimal("90")
        assert revenue.gifts_received == 1

    def test_redelivery_does_not_double_credit(self, service, store, add_user):
        """Test that re-running the reactor for a SentGift is a no-op."""
        sender = add_user("sender", coins=10)
        add_user("receiver")
        result = service.send_gift(sender, "receiver", "money")
        sent_gift_id = result.data["sent_gift_id"]

        assert service.gifts.credit_receiver(sent_gift_id) is None
        assert service.gifts.credit_receiver(sent_gift_id) is None

        assert store.get("users/receiver").get("balance") == Decimal("5")
        credits = store.query("transactions", [("user_id", "==", "receiver")])
        assert len(credits) == 1

    def test_concurrent_redelivery_credits_once(self, service, store, add_user):
        """Test that simultaneous deliveries of one SentGift credit exactly once."""
        sender = add_user("sender", coins=10)
        add_user("receiver")
        sent_gift_id = service.send_gift(sender, "receiver", "money").data["sent_gift_id"]
        # Roll back the delivery that already happened on create
        store.delete(f"gift_credits/{sent_gift_id}")
        store.update("users/receiver", {"balance": Decimal("0")})

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(lambda _: service.gifts.credit_receiver(sent_gift_id), range(6)))

        assert sum(1 for r in results if r is not None) == 1
        assert store.get("users/receiver").get("balance") == Decimal("5")

    def test_missing_sent_gift(self, service):
        """Test that crediting an unknown SentGift fails loudly."""
        with pytest.raises(NotFoundError):
            service.gifts.credit_receiver("does-not-exist")


class TestRedeliverCredits:
    """Tests for the credit redelivery sweep."""

    def test_undelivered_gift_is_credited(self, service, store, add_user):
        """Test that a SentGift whose reactor never ran is credited by the sweep."""
        service.triggers.remove_handler(TriggerEvent.GIFT_SENT, service.gifts.on_gift_sent)
        sender = add_user("sender", coins=5)
        add_user("receiver")
        service.send_gift(sender, "receiver", "rose")
        assert store.get("users/receiver").get("balance") == Decimal("0")

        assert service.redeliver_gift_credits() == 1
        assert service.redeliver_gift_credits() == 0

        assert store.get("users/sender").get("coins") == 4
        assert store.get("users/receiver").get("balance") == Decimal("0.5")
        assert len(store.query("gift_credits")) == 1

    def test_failing_gift_does_not_block_others(self, service, store, add_user):
        """Test that one uncreditable SentGift is skipped and retried on the next run."""
        service.triggers.remove_handler(TriggerEvent.GIFT_SENT, service.gifts.on_gift_sent)
        sender = add_user("sender", coins=20)
        add_user("gone")
        add_user("receiver")
        service.send_gift(sender, "gone", "money")
        service.send_gift(sender, "receiver", "money")
        gone = store.get("users/gone").to_dict()
        store.delete("users/gone")

        assert service.redeliver_gift_credits() == 1
        assert store.get("users/receiver").get("balance") == Decimal("5")

        store.set("users/gone", gone)
        assert service.redeliver_gift_credits() == 1
        assert store.get("users/gone").get("balance") == Decimal("5")

    def test_credited_gifts_are_skipped(self, service, store, add_user):
        """Test that gifts already credited on create are left alone."""
        sender = add_user("sender", coins=10)
        add_user("receiver")
        service.send_gift(sender, "receiver", "money")

        assert service.redeliver_gift_credits() == 0
        assert store.get("users/receiver").get("balance") == Decimal("5")


class TestConcurrentSends:
    """Tests for double-spend protection."""

    def test_concurrent_sends_never_overspend(self, service, store, add_user):
        """Test that final coins equal initial minus the cost of successful sends."""
        sender = add_user("sender", coins=7)
        add_user("receiver")

        def send(_):
            try:
                service.send_gift(sender, "receiver", "rose")
                return True
            except FailedPreconditionError:
                return False
            except InternalError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(send, range(20)))

        succeeded = outcomes.count(True)
        coins = store.get("users/sender").get("coins")
        assert coins >= 0
        assert coins == 7 - succeeded
        assert len(store.query("sent_gifts")) == succeeded
        assert store.get("users/receiver").get("balance") == Decimal("0.5") * succeeded


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
