from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class TransactionType(str, Enum):
    GIFT_SENT = "gift_sent"
    GIFT_CREDIT = "gift_credit"
    PAYOUT_REQUEST = "payout_request"
    PAYOUT_REFUND = "payout_refund"


class Currency(str, Enum):
    COINS = "coins"
    USD = "USD"


class PayoutMethod(str, Enum):
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PayoutAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class FriendRequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class FriendRequestAction(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


class EntityType(str, Enum):
    USER = "user"
    VIDEO = "video"
    COMMENT = "comment"
    MESSAGE = "message"
    STREAM = "stream"


class ReportStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class PenaltyAction(str, Enum):
    WARNING_1 = "warning_1"
    WARNING_2 = "warning_2"
    TEMPORARY_BAN = "temporary_ban"
    PERMANENT_BAN = "permanent_ban"


class MessageStatus(str, Enum):
    PENDING_DELETION = "pending_deletion"


# Documents

class User(BaseModel):
    id: str
    balance: Decimal = Field(default=Decimal("0"), ge=0)
    coins: int = Field(default=0, ge=0)
    is_premium_account: bool = False
    premium_slot_id: Optional[str] = None
    friends: list[str] = Field(default_factory=list)
    sent_friend_requests: list[str] = Field(default_factory=list)
    received_friend_requests: list[str] = Field(default_factory=list)
    warning_count: int = Field(default=0, ge=0)
    temporary_ban_count: int = Field(default=0, ge=0)
    is_banned: bool = False
    ban_expires_at: Optional[datetime] = None
    ban_reason: Optional[str] = None
    is_admin: bool = False

    model_config = ConfigDict(from_attributes=True)


class PremiumSettings(BaseModel):
    premium_payout_percentage: Decimal = Field(..., ge=0, le=1)
    standard_payout_percentage: Decimal = Field(..., ge=0, le=1)
    max_premium_slots: int = Field(..., ge=0)
    premium_slots: dict[str, Optional[str]] = Field(default_factory=dict)

    def occupied_slots(self) -> int:
        return sum(1 for holder in self.premium_slots.values() if holder is not None)

    def slot_held_by(self, user_id: str) -> Optional[str]:
        for slot_id, holder in self.premium_slots.items():
            if holder == user_id:
                return slot_id
        return None


class Gift(BaseModel):
    id: str
    name: str
    cost: int = Field(..., gt=0)
    image_url: str = ""
    animation_url: str = ""


class SentGift(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    gift_id: str
    gift_name: str
    gift_cost: int
    timestamp: datetime


class LedgerTransaction(BaseModel):
    id: str
    user_id: str
    type: TransactionType
    amount: Decimal
    currency: Currency
    timestamp: datetime
    details: dict = Field(default_factory=dict)


class PayoutRequest(BaseModel):
    id: str
    user_id: str
    amount: Decimal
    payout_method: PayoutMethod
    payout_details: dict
    status: PayoutStatus
    created_at: datetime
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None

    def can_process(self) -> bool:
        return self.status == PayoutStatus.PENDING


class FriendRequest(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    status: FriendRequestStatus
    created_at: datetime
    responded_at: Optional[datetime] = None


class Report(BaseModel):
    id: str
    reporter_id: str
    reported_entity_id: str
    reported_entity_type: EntityType
    reason: str
    description: Optional[str] = None
    status: ReportStatus
    resolution: Optional[str] = None
    created_at: datetime


class Violation(BaseModel):
    id: str
    user_id: str
    report_id: str
    type: str
    level: int
    action: PenaltyAction
    ban_expires_at: Optional[datetime] = None
    timestamp: datetime


# Callable requests

class CallerIdentity(BaseModel):
    """Verified caller supplied by the identity provider."""
    uid: str
    admin: bool = False


class AssignPremiumRequest(BaseModel):
    user_id: str
    slot_id: Optional[str] = None


class UnassignPremiumRequest(BaseModel):
    user_id: str


class SendGiftRequest(BaseModel):
    receiver_id: str
    gift_id: str


class RequestPayoutRequest(BaseModel):
    amount: Decimal = Field(..., description="Amount to withdraw from balance")
    payout_method: PayoutMethod
    payout_details: dict = Field(default_factory=dict)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": "25.00",
            "payout_method": "paypal",
            "payout_details": {"email": "creator@example.com"},
        }
    })


class ProcessPayoutRequest(BaseModel):
    payout_request_id: str
    action: PayoutAction


class SendFriendRequestRequest(BaseModel):
    receiver_id: str


class RespondToFriendRequestRequest(BaseModel):
    request_id: str
    action: FriendRequestAction


class RemoveFriendRequest(BaseModel):
    friend_id: str


class SubmitReportRequest(BaseModel):
    reported_entity_id: str
    reported_entity_type: str
    reason: str
    description: Optional[str] = None


class CheckBanStatusRequest(BaseModel):
    user_id: Optional[str] = None


class UnbanUserRequest(BaseModel):
    user_id: str


class MonthlyReportRequest(BaseModel):
    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")


# Callable responses

class CallResult(BaseModel):
    success: bool = True
    message: str
    data: dict = Field(default_factory=dict)


class BanStatus(BaseModel):
    is_banned: bool
    ban_expires_at: Optional[datetime] = None
    ban_reason: Optional[str] = None


class GiftRevenue(BaseModel):
    user_id: str
    total_credited: Decimal
    gifts_received: int
