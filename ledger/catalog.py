"""Gift catalog seeding and one-time premium settings initialization."""

import logging
from decimal import Decimal

from .documents import SETTINGS_PATH
from .models import CallResult, Gift, PremiumSettings
from .store import InMemoryDocumentStore, Transaction

logger = logging.getLogger(__name__)

GIFT_CATALOG = [
    Gift(id="lion", name="Lion", cost=5000),
    Gift(id="car", name="Car", cost=2000),
    Gift(id="castle", name="Castle", cost=10000),
    Gift(id="dance", name="Dance", cost=500),
    Gift(id="rose", name="Rose", cost=1),
    Gift(id="heart", name="Heart", cost=5),
    Gift(id="diamond", name="Diamond", cost=100),
    Gift(id="money", name="Money", cost=10),
]


def default_premium_settings(premium_rate: Decimal = Decimal("0.90"), standard_rate: Decimal = Decimal("0.50"),
                             max_slots: int = 20) -> PremiumSettings:
    return PremiumSettings(
        premium_payout_percentage=premium_rate,
        standard_payout_percentage=standard_rate,
        max_premium_slots=max_slots,
        premium_slots={f"premium_slot_{i}": None for i in range(1, max_slots + 1)},
    )


def initialize_premium_settings(store: InMemoryDocumentStore, settings: PremiumSettings) -> CallResult:
    def body(txn: Transaction) -> bool:
        if txn.get(SETTINGS_PATH).exists:
            return False
        txn.create(SETTINGS_PATH, settings.model_dump(mode="python"))
        return True

    if store.run_transaction(body):
        logger.info("Premium settings initialized")
        return CallResult(message="Premium settings initialized.")
    return CallResult(message="Premium settings already exist.")


def seed_gift_catalog(store: InMemoryDocumentStore, gifts: list[Gift] = GIFT_CATALOG) -> int:
    batch = store.batch()
    for gift in gifts:
        batch.set(f"gifts/{gift.id}", gift.model_dump(exclude={"id"}))
        logger.info(f"Added gift: {gift.name}")
    batch.commit()
    return len(gifts)
