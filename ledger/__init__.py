"""
Stream Economy Ledger

This package provides:
- A transactional document store with optimistic retry
- Premium slot allocation
- Gift sending with revenue-split credit to the receiver
- Payout requests with escrow and admin approval
- A bidirectional friend graph
- Report-driven moderation with tiered penalties and lazy ban expiry
- Ephemeral message expiry
"""

from .errors import (
    LedgerServiceError,
    UnauthenticatedError,
    PermissionDeniedError,
    InvalidArgumentError,
    NotFoundError,
    FailedPreconditionError,
    AlreadyExistsError,
    InternalError,
)
from .models import CallerIdentity, CallResult, BanStatus
from .service import LedgerService, build_service
from .store import InMemoryDocumentStore

__all__ = [
    "LedgerServiceError",
    "UnauthenticatedError",
    "PermissionDeniedError",
    "InvalidArgumentError",
    "NotFoundError",
    "FailedPreconditionError",
    "AlreadyExistsError",
    "InternalError",
    "CallerIdentity",
    "CallResult",
    "BanStatus",
    "LedgerService",
    "build_service",
    "InMemoryDocumentStore",
]
