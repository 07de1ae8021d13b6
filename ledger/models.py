from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class TransactionKind(str, Enum):
    EARN = "earn"
    SPEND = "spend"
    BONUS = "bonus"
    PENALTY = "penalty"

    @property
    def sign(self) -> int:
        return 1 if self in (TransactionKind.EARN, TransactionKind.BONUS) else -1

    @property
    def is_debit(self) -> bool:
        return self.sign < 0


class TransactionCategory(str, Enum):
    RESOURCE_UPLOAD = "resource_upload"
    UPVOTE_RECEIVED = "upvote_received"
    FOLLOWER_MILESTONE = "follower_milestone"
    CHAT_BONUS = "chat_bonus"
    DAILY_LOGIN = "daily_login"
    WELCOME_BONUS = "welcome_bonus"
    FILE_DOWNLOAD = "file_download"
    CHAT_MESSAGE = "chat_message"
    REFERRAL_BONUS = "referral_bonus"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    RESOURCE_PURCHASE = "resource_purchase"
    RESOURCE_COMMISSION = "resource_commission"


class Account(BaseModel):
    id: str
    balance: int = Field(default=0, ge=0)
    level_name: str
    level_rank: int = Field(default=1, ge=1)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionRequest(BaseModel):
    account_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Positive magnitude; the kind decides the sign")
    kind: TransactionKind
    category: TransactionCategory
    description: str = ""
    reference_key: str = Field(..., min_length=1, description="Unique per account; repeats are no-ops")
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "account_id": "550e8400-e29b-41d4-a716-446655440000",
            "amount": 20,
            "kind": "earn",
            "category": "resource_upload",
            "description": "file upload reward",
            "reference_key": "upload:42",
            "metadata": {"resource_id": "42", "resource_type": "file"},
        }
    })

    @property
    def signed_amount(self) -> int:
        return self.kind.sign * self.amount


class Transaction(BaseModel):
    id: UUID
    account_id: str
    amount: int
    kind: TransactionKind
    category: TransactionCategory
    description: str
    reference_key: str
    metadata: dict = Field(default_factory=dict)
    balance_after: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def signed_amount(self) -> int:
        return self.kind.sign * self.amount


class AppendOutcome(BaseModel):
    transaction: Transaction
    account: Account
    created: bool
    # Level rank held before this append; None when nothing was written.
    previous_level_rank: Optional[int] = None


class TransactionResult(BaseModel):
    success: bool = True
    transaction: Transaction
    account: Account
    already_applied: bool = False
    message: str


class LevelInfo(BaseModel):
    rank: int
    name: str
    credits_required: int
    credits_to_next: int
    progress_percentage: float


class CreditSummary(BaseModel):
    account_id: str
    current_balance: int
    total_earned: int
    level: LevelInfo
    recent_transactions: list[Transaction]


class LedgerHistoryResponse(BaseModel):
    account_id: str
    entries: list[Transaction]
    total_count: int
    current_balance: int


class PurchaseRequest(BaseModel):
    buyer_id: str
    resource_id: str
    resource_owner_id: str
    cost: int = Field(..., ge=0)
    commission_rate: Optional[float] = Field(default=None, ge=0, le=1)


class PurchaseReceipt(BaseModel):
    buyer_id: str
    resource_id: str
    resource_owner_id: str
    cost: int
    commission: int
    buyer_transaction: Optional[Transaction] = None
    commission_transaction: Optional[Transaction] = None


class PurchaseRecord(BaseModel):
    """Read-only view over a buyer's purchase spend and the matching owner commission."""
    buyer_id: str
    resource_id: str
    resource_owner_id: Optional[str] = None
    cost: int
    commission: int = 0
    purchased_at: datetime


class ResourceInfo(BaseModel):
    resource_type: str
    filename: Optional[str] = None
    url: Optional[str] = None
    file_size_bytes: int = Field(default=0, ge=0)
