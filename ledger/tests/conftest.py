from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledger.catalog import default_premium_settings, initialize_premium_settings, seed_gift_catalog
from ledger.config import Settings
from ledger.documents import SETTINGS_PATH
from ledger.models import CallerIdentity
from ledger.moderation import LoggingNotificationSender
from ledger.service import LedgerService
from ledger.store import InMemoryDocumentStore

START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def store():
    # High attempt ceiling for the thread-contention tests.
    return InMemoryDocumentStore(max_attempts=500, base_delay_ms=1, max_delay_ms=5)


@pytest.fixture
def notifier():
    return LoggingNotificationSender()


@pytest.fixture
def service(store, clock, notifier):
    svc = LedgerService(store=store, settings=Settings(_env_file=None), notifier=notifier, clock=clock)
    seed_gift_catalog(store)
    initialize_premium_settings(store, default_premium_settings())
    return svc


@pytest.fixture
def add_user(store):
    def _add(uid: str, **fields) -> CallerIdentity:
        doc = {
            "balance": Decimal("0"),
            "coins": 0,
            "is_premium_account": False,
            "premium_slot_id": None,
            "friends": [],
            "sent_friend_requests": [],
            "received_friend_requests": [],
            "warning_count": 0,
            "temporary_ban_count": 0,
            "is_banned": False,
            "ban_expires_at": None,
            "ban_reason": None,
            "is_admin": False,
        }
        doc.update(fields)
        store.set(f"users/{uid}", doc)
        return CallerIdentity(uid=uid)
    return _add


@pytest.fixture
def admin(add_user):
    return add_user("admin", is_admin=True)


@pytest.fixture
def set_max_slots(store):
    def _set(max_slots: int) -> None:
        store.set(SETTINGS_PATH, default_premium_settings(max_slots=max_slots).model_dump())
    return _set
