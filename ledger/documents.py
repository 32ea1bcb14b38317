"""Document paths and typed loaders shared by the components."""

from datetime import datetime, timezone
from typing import Callable

from pydantic import BaseModel

from .errors import NotFoundError, PermissionDeniedError
from .models import PremiumSettings, User
from .store import Transaction

SETTINGS_PATH = "settings/premium_settings"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def user_path(user_id: str) -> str:
    return f"users/{user_id}"


def to_document(model: BaseModel) -> dict:
    return model.model_dump(mode="python", exclude={"id"})


def load_user(txn: Transaction, user_id: str, label: str = "User") -> User:
    snapshot = txn.get(user_path(user_id))
    if not snapshot.exists:
        raise NotFoundError(f"{label} {user_id} not found")
    return User(id=user_id, **snapshot.to_dict())


def load_settings(txn: Transaction) -> PremiumSettings:
    snapshot = txn.get(SETTINGS_PATH)
    if not snapshot.exists:
        raise NotFoundError("Premium settings not found. Please initialize them.")
    return PremiumSettings(**snapshot.to_dict())


def require_admin(txn: Transaction, caller_id: str) -> User:
    # Read inside the privileged transaction so a revoked flag aborts the write.
    snapshot = txn.get(user_path(caller_id))
    if not snapshot.exists or not snapshot.get("is_admin", False):
        raise PermissionDeniedError("Only administrators can perform this action.")
    return User(id=caller_id, **snapshot.to_dict())
