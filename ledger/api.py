import logging
from datetime import date
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from rewards import ChargePolicies, ChargeResult, RewardPolicies

from .config import Settings, settings, load_economy_config
from .errors import ErrorKind, LedgerServiceError
from .models import (
    Account,
    CreditSummary,
    LedgerHistoryResponse,
    LevelInfo,
    PurchaseReceipt,
    PurchaseRecord,
    PurchaseRequest,
    ResourceInfo,
    TransactionCategory,
    TransactionRequest,
    TransactionResult,
)
from .service import LedgerService
from .storage import InMemoryStorage, SQLiteStorage

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def build_service(cfg: Settings) -> LedgerService:
    if cfg.storage_backend == "sqlite":
        storage = SQLiteStorage(cfg.database_path)
    elif cfg.storage_backend == "memory":
        storage = InMemoryStorage()
    else:
        raise ValueError(f"Unknown storage backend: {cfg.storage_backend}")
    logger.info("Ledger storage backend: %s", cfg.storage_backend)
    return LedgerService(storage=storage, config=load_economy_config(cfg.economy_config_path))


STATUS_BY_KIND = {
    ErrorKind.ACCOUNT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INSUFFICIENT_CREDITS: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.INVALID_IDENTIFIER: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ALREADY_PURCHASED: status.HTTP_409_CONFLICT,
    ErrorKind.IDEMPOTENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.STORAGE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(e: LedgerServiceError) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_KIND.get(e.kind, status.HTTP_400_BAD_REQUEST),
        detail={"error": e.kind.value, "message": str(e)},
    )


class UploadRewardRequest(BaseModel):
    account_id: str
    resource_id: str
    resource_type: str = "file"


class UpvoteRewardRequest(BaseModel):
    account_id: str
    post_id: str
    upvote_count: int = Field(..., ge=0)


class FollowerRewardRequest(BaseModel):
    account_id: str
    follower_count: int = Field(..., ge=0)


class ChatBonusRequest(BaseModel):
    account_id: str
    session_id: str


class DailyLoginRequest(BaseModel):
    account_id: str
    streak_day: int = Field(default=1, ge=1)
    on_date: Optional[date] = None


class ReferralRequest(BaseModel):
    referrer_id: str
    referred_id: str


class DownloadChargeRequest(BaseModel):
    account_id: str
    file_id: str
    file_size_bytes: int = Field(..., ge=0)


class ChatMessageChargeRequest(BaseModel):
    account_id: str
    message_id: str


class ResourcePurchaseRequest(BaseModel):
    buyer_id: str
    resource_id: str
    resource_owner_id: str
    resource: ResourceInfo


class RewardResponse(BaseModel):
    awarded: bool
    result: Optional[TransactionResult] = None


app = FastAPI(
    title="Credit Economy API",
    description="Credit ledger with idempotent rewards, level progression and purchase settlement",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = build_service(settings)
reward_policies = RewardPolicies(ledger_service)
charge_policies = ChargePolicies(ledger_service)


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "credit-economy"}


@app.post("/accounts/{account_id}", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
def create_account(account_id: str) -> Account:
    try:
        return ledger_service.create_account(account_id)
    except LedgerServiceError as e:
        raise http_error(e)


@app.get("/accounts/{account_id}", response_model=Account, tags=["Accounts"])
def get_account(account_id: str) -> Account:
    try:
        return ledger_service.get_account(account_id)
    except LedgerServiceError as e:
        raise http_error(e)


@app.get("/accounts/{account_id}/summary", response_model=CreditSummary, tags=["Accounts"])
def get_credit_summary(account_id: str) -> CreditSummary:
    try:
        return ledger_service.get_credit_summary(account_id)
    except LedgerServiceError as e:
        raise http_error(e)


@app.get("/accounts/{account_id}/ledger", response_model=LedgerHistoryResponse, tags=["Accounts"])
def get_account_ledger(
    account_id: str, limit: int = 50, offset: int = 0, category: Optional[TransactionCategory] = None,
) -> LedgerHistoryResponse:
    try:
        return ledger_service.get_ledger_history(account_id, limit, offset, category)
    except LedgerServiceError as e:
        raise http_error(e)


@app.post("/transactions", response_model=TransactionResult, tags=["Transactions"])
def process_transaction(request: TransactionRequest) -> TransactionResult:
    try:
        return ledger_service.process_transaction(request)
    except LedgerServiceError as e:
        raise http_error(e)


@app.post("/rewards/upload", response_model=RewardResponse, tags=["Rewards"])
def reward_upload(request: UploadRewardRequest) -> RewardResponse:
    try:
        result = reward_policies.award_resource_upload(request.account_id, request.resource_id, request.resource_type)
    except LedgerServiceError as e:
        raise http_error(e)
    return RewardResponse(awarded=result is not None, result=result)


@app.post("/rewards/upvotes", response_model=RewardResponse, tags=["Rewards"])
def reward_upvotes(request: UpvoteRewardRequest) -> RewardResponse:
    try:
        result = reward_policies.award_upvotes(request.account_id, request.post_id, request.upvote_count)
    except LedgerServiceError as e:
        raise http_error(e)
    return RewardResponse(awarded=result is not None, result=result)


@app.post("/rewards/followers", response_model=RewardResponse, tags=["Rewards"])
def reward_followers(request: FollowerRewardRequest) -> RewardResponse:
    try:
        result = reward_policies.award_follower_milestone(request.account_id, request.follower_count)
    except LedgerServiceError as e:
        raise http_error(e)
    return RewardResponse(awarded=result is not None, result=result)


@app.post("/rewards/chat-bonus", response_model=RewardResponse, tags=["Rewards"])
def reward_chat_bonus(request: ChatBonusRequest) -> RewardResponse:
    try:
        result = reward_policies.award_chat_bonus(request.account_id, request.session_id)
    except LedgerServiceError as e:
        raise http_error(e)
    return RewardResponse(awarded=result is not None, result=result)


@app.post("/rewards/daily-login", response_model=RewardResponse, tags=["Rewards"])
def reward_daily_login(request: DailyLoginRequest) -> RewardResponse:
    try:
        result = reward_policies.award_daily_login(request.account_id, request.streak_day, request.on_date)
    except LedgerServiceError as e:
        raise http_error(e)
    return RewardResponse(awarded=result is not None, result=result)


@app.post("/rewards/welcome/{account_id}", response_model=RewardResponse, tags=["Rewards"])
def reward_welcome(account_id: str) -> RewardResponse:
    try:
        result = reward_policies.award_welcome_bonus(account_id)
    except LedgerServiceError as e:
        raise http_error(e)
    return RewardResponse(awarded=result is not None, result=result)


@app.post("/rewards/referral", response_model=RewardResponse, tags=["Rewards"])
def reward_referral(request: ReferralRequest) -> RewardResponse:
    try:
        result = reward_policies.award_referral_bonus(request.referrer_id, request.referred_id)
    except LedgerServiceError as e:
        raise http_error(e)
    return RewardResponse(awarded=result is not None, result=result)


@app.post("/charges/download", response_model=ChargeResult, tags=["Charges"])
def charge_download(request: DownloadChargeRequest) -> ChargeResult:
    try:
        return charge_policies.charge_file_download(request.account_id, request.file_id, request.file_size_bytes)
    except LedgerServiceError as e:
        raise http_error(e)


@app.post("/charges/chat-message", response_model=ChargeResult, tags=["Charges"])
def charge_chat_message(request: ChatMessageChargeRequest) -> ChargeResult:
    try:
        return charge_policies.charge_chat_message(request.account_id, request.message_id)
    except LedgerServiceError as e:
        raise http_error(e)


@app.post("/purchases", response_model=PurchaseReceipt, status_code=status.HTTP_201_CREATED, tags=["Purchases"])
def settle_purchase(request: PurchaseRequest) -> PurchaseReceipt:
    try:
        return ledger_service.settle_purchase(
            request.buyer_id, request.resource_id, request.resource_owner_id,
            request.cost, request.commission_rate,
        )
    except LedgerServiceError as e:
        raise http_error(e)


@app.post("/purchases/resource", response_model=PurchaseReceipt, status_code=status.HTTP_201_CREATED, tags=["Purchases"])
def purchase_resource(request: ResourcePurchaseRequest) -> PurchaseReceipt:
    try:
        return charge_policies.purchase_resource(
            request.buyer_id, request.resource_id, request.resource_owner_id, request.resource,
        )
    except LedgerServiceError as e:
        raise http_error(e)


@app.get("/accounts/{account_id}/purchases", response_model=list[PurchaseRecord], tags=["Purchases"])
def list_purchases(account_id: str, limit: int = 50, offset: int = 0) -> list[PurchaseRecord]:
    records, _ = ledger_service.list_purchases(account_id, limit, offset)
    return records


@app.get("/accounts/{account_id}/purchases/{resource_id}", tags=["Purchases"])
def has_purchased(account_id: str, resource_id: str):
    try:
        return {"purchased": ledger_service.has_purchased(account_id, resource_id)}
    except LedgerServiceError as e:
        raise http_error(e)


@app.get("/costs/download", tags=["Costs"])
def preview_download_cost(file_size_bytes: int):
    return {"cost": charge_policies.costs.download_cost(file_size_bytes)}


@app.get("/costs/purchase", tags=["Costs"])
def preview_purchase_cost(file_size_bytes: int, is_stored_file: bool = True):
    return {"cost": charge_policies.costs.purchase_cost(file_size_bytes, is_stored_file)}


@app.get("/levels/{cumulative_earned}", response_model=LevelInfo, tags=["Levels"])
def preview_level(cumulative_earned: int) -> LevelInfo:
    return ledger_service.levels.compute(cumulative_earned)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
