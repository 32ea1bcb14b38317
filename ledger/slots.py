"""
Premium slot allocation.

A slot is held by at most one user, a user holds at most one slot, and the
number of occupied slots never exceeds max_premium_slots. The user's premium
flags and the settings slot map change together in one transaction.
"""

import logging
from typing import Optional

from .documents import SETTINGS_PATH, load_settings, load_user, require_admin, user_path
from .errors import AlreadyExistsError, FailedPreconditionError, InvalidArgumentError
from .models import CallResult
from .store import InMemoryDocumentStore, Transaction

logger = logging.getLogger(__name__)


class SlotAllocator:
    def __init__(self, store: InMemoryDocumentStore):
        self.store = store

    def assign(self, caller_id: str, user_id: str, slot_id: Optional[str]) -> CallResult:
        if not user_id:
            raise InvalidArgumentError("The 'user_id' field is required.")
        if not slot_id:
            raise InvalidArgumentError("'slot_id' is required for assigning a premium account.")

        def body(txn: Transaction) -> CallResult:
            require_admin(txn, caller_id)
            load_user(txn, user_id)
            settings = load_settings(txn)

            holder = settings.premium_slots.get(slot_id)
            if holder is not None and holder != user_id:
                raise AlreadyExistsError(f"Premium slot {slot_id} is already occupied by another user.")

            current_slot = settings.slot_held_by(user_id)
            if current_slot is not None and current_slot != slot_id:
                raise FailedPreconditionError(
                    f"User {user_id} is already a premium account in slot {current_slot}. Unassign first."
                )
            if current_slot is None and settings.occupied_slots() >= settings.max_premium_slots:
                raise FailedPreconditionError("Maximum number of premium slots reached.")

            slots = dict(settings.premium_slots)
            slots[slot_id] = user_id
            txn.update(user_path(user_id), {"is_premium_account": True, "premium_slot_id": slot_id})
            txn.update(SETTINGS_PATH, {"premium_slots": slots})
            return CallResult(
                message=f"User {user_id} assigned to premium slot {slot_id}.",
                data={"user_id": user_id, "slot_id": slot_id},
            )

        result = self.store.run_transaction(body)
        logger.info(f"Assigned premium slot {slot_id} to {user_id}",
                    extra={"user_id": user_id, "caller_id": caller_id})
        return result

    def unassign(self, caller_id: str, user_id: str) -> CallResult:
        if not user_id:
            raise InvalidArgumentError("The 'user_id' field is required.")

        def body(txn: Transaction) -> CallResult:
            require_admin(txn, caller_id)
            load_user(txn, user_id)
            settings = load_settings(txn)

            slots = {
                slot: (None if holder == user_id else holder)
                for slot, holder in settings.premium_slots.items()
            }
            txn.update(user_path(user_id), {"is_premium_account": False, "premium_slot_id": None})
            txn.update(SETTINGS_PATH, {"premium_slots": slots})
            return CallResult(message=f"User {user_id} unassigned from premium status.",
                              data={"user_id": user_id})

        result = self.store.run_transaction(body)
        logger.info(f"Unassigned premium status from {user_id}",
                    extra={"user_id": user_id, "caller_id": caller_id})
        return result
