import logging
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .config import EconomyConfig
from .errors import (
    LedgerServiceError,
    AccountNotFoundError,
    AlreadyPurchasedError,
    IdempotencyConflictError,
    InsufficientCreditsError,
    InvalidIdentifierError,
    StorageUnavailableError,
)
from .levels import LevelCalculator
from .models import (
    Account,
    CreditSummary,
    LedgerHistoryResponse,
    LevelInfo,
    PurchaseReceipt,
    PurchaseRecord,
    TransactionCategory,
    TransactionKind,
    TransactionRequest,
    TransactionResult,
)
from .notify import Notifier, LoggingNotifier
from .storage import LedgerStorage, InMemoryStorage

logger = logging.getLogger(__name__)

__all__ = [
    "LedgerService",
    "LedgerServiceError",
    "AccountNotFoundError",
    "AlreadyPurchasedError",
    "IdempotencyConflictError",
    "InsufficientCreditsError",
    "InvalidIdentifierError",
    "StorageUnavailableError",
    "round_half_up",
    "purchase_reference",
    "commission_reference",
]

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def purchase_reference(resource_id: str) -> str:
    return f"purchase:{resource_id}"


def commission_reference(resource_id: str, buyer_id: str) -> str:
    return f"commission:{resource_id}:{buyer_id}"


class LedgerService:
    """
    Transaction processor and purchase settlement on top of a LedgerStorage.

    The service never computes a balance itself: the storage derives the new
    balance and level from its latest committed state inside one atomic
    unit. Errors propagate as LedgerServiceError subclasses and are never
    retried here.
    """

    def __init__(
        self,
        storage: Optional[LedgerStorage] = None,
        config: Optional[EconomyConfig] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.config = config or EconomyConfig()
        self.notifier = notifier or LoggingNotifier()
        self.levels = LevelCalculator(self.config.levels, self.config.level_counted_kinds)

    def create_account(self, account_id: str) -> Account:
        if not account_id:
            raise InvalidIdentifierError("Account id must not be empty")
        return self.storage.create_account(account_id, self.levels)

    def get_account(self, account_id: str) -> Account:
        return self.storage.get_account(account_id)

    def get_balance(self, account_id: str) -> int:
        return self.storage.get_balance(account_id)

    def get_cumulative_earned(self, account_id: str) -> int:
        return self.storage.get_cumulative_earned(account_id, self.levels.counted_kinds)

    def get_level(self, account_id: str) -> LevelInfo:
        return self.levels.compute(self.get_cumulative_earned(account_id))

    def process_transaction(self, request: TransactionRequest) -> TransactionResult:
        (outcome,) = self.storage.append([request], self.levels)
        if not outcome.created:
            logger.info(
                "Duplicate reference %s for %s; returning recorded transaction",
                request.reference_key, request.account_id,
            )
            return TransactionResult(
                transaction=outcome.transaction,
                account=outcome.account,
                already_applied=True,
                message="Transaction already applied (idempotent return)",
            )

        if outcome.account.level_rank > (outcome.previous_level_rank or outcome.account.level_rank):
            logger.info("Account %s reached level %s", request.account_id, outcome.account.level_name)
        logger.debug(
            "Applied %s %s %d to %s (balance %d)",
            request.kind.value, request.category.value, request.amount,
            request.account_id, outcome.account.balance,
        )
        return TransactionResult(
            transaction=outcome.transaction,
            account=outcome.account,
            message="Transaction applied successfully",
        )

    def has_enough_credits(self, account_id: str, required: int) -> bool:
        return self.get_balance(account_id) >= required

    def get_credit_summary(self, account_id: str, recent: int = 10) -> CreditSummary:
        account = self.get_account(account_id)
        total_earned = self.get_cumulative_earned(account_id)
        entries, _ = self.storage.list_transactions(account_id, limit=recent)
        return CreditSummary(
            account_id=account_id,
            current_balance=account.balance,
            total_earned=total_earned,
            level=self.levels.compute(total_earned),
            recent_transactions=entries,
        )

    def get_ledger_history(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        category: Optional[TransactionCategory] = None,
    ) -> LedgerHistoryResponse:
        account = self.get_account(account_id)
        entries, total = self.storage.list_transactions(account_id, limit, offset, category)
        return LedgerHistoryResponse(
            account_id=account_id,
            entries=entries,
            total_count=total,
            current_balance=account.balance,
        )

    def verify_ledger(self, account_id: str) -> bool:
        """True when the stored balance equals the signed sum of the account's entries."""
        stored = self.get_balance(account_id)
        derived = self.storage.ledger_balance(account_id)
        if stored != derived:
            logger.error("Ledger mismatch for %s: stored %d, derived %d", account_id, stored, derived)
        return stored == derived

    def has_purchased(self, buyer_id: str, resource_id: str) -> bool:
        self._validate_purchase_ids(buyer_id, resource_id)
        return self.storage.get_transaction(buyer_id, purchase_reference(resource_id)) is not None

    def list_purchases(self, buyer_id: str, limit: int = 50, offset: int = 0) -> tuple[list[PurchaseRecord], int]:
        entries, total = self.storage.list_transactions(
            buyer_id, limit, offset, category=TransactionCategory.RESOURCE_PURCHASE,
        )
        records = [
            PurchaseRecord(
                buyer_id=buyer_id,
                resource_id=str(e.metadata.get("resource_id", e.reference_key.split(":", 1)[-1])),
                resource_owner_id=e.metadata.get("resource_owner_id"),
                cost=e.amount,
                commission=int(e.metadata.get("commission", 0)),
                purchased_at=e.created_at,
            )
            for e in entries
        ]
        return records, total

    def _validate_purchase_ids(self, buyer_id: str, resource_id: str) -> None:
        if not UUID_RE.match(buyer_id or ""):
            raise InvalidIdentifierError(f"Invalid buyer ID format: {buyer_id}")
        rid = str(resource_id)
        if not (rid.isascii() and rid.isdigit()) or int(rid) <= 0:
            raise InvalidIdentifierError(f"Invalid resource ID format: {resource_id}")

    def settle_purchase(
        self,
        buyer_id: str,
        resource_id: str,
        resource_owner_id: str,
        cost: int,
        commission_rate: Optional[float] = None,
    ) -> PurchaseReceipt:
        """
        Debit the buyer and credit the owner's commission as one atomic unit.

        Raises InvalidIdentifierError, AlreadyPurchasedError,
        InsufficientCreditsError or AccountNotFoundError; on any of them
        neither entry is written.
        """
        resource_id = str(resource_id)
        self._validate_purchase_ids(buyer_id, resource_id)
        if not resource_owner_id:
            raise InvalidIdentifierError("Resource owner id must not be empty")
        if buyer_id == resource_owner_id and not self.config.allow_self_purchase:
            raise InvalidIdentifierError("Buyer cannot purchase their own resource")
        if cost < 0:
            raise ValueError(f"Purchase cost must not be negative, got {cost}")
        rate = self.config.spend.commission_rate if commission_rate is None else commission_rate
        if not 0 <= rate <= 1:
            raise ValueError(f"Commission rate must be within [0, 1], got {rate}")

        if self.has_purchased(buyer_id, resource_id):
            raise AlreadyPurchasedError(f"Resource {resource_id} already purchased by {buyer_id}")

        if cost == 0:
            return PurchaseReceipt(
                buyer_id=buyer_id, resource_id=resource_id, resource_owner_id=resource_owner_id,
                cost=0, commission=0,
            )

        commission = round_half_up(cost * rate)
        requests = [TransactionRequest(
            account_id=buyer_id,
            amount=cost,
            kind=TransactionKind.SPEND,
            category=TransactionCategory.RESOURCE_PURCHASE,
            description=f"Purchase of resource {resource_id}",
            reference_key=purchase_reference(resource_id),
            metadata={"resource_id": resource_id, "resource_owner_id": resource_owner_id, "commission": commission},
        )]
        if commission > 0:
            requests.append(TransactionRequest(
                account_id=resource_owner_id,
                amount=commission,
                kind=TransactionKind.EARN,
                category=TransactionCategory.RESOURCE_COMMISSION,
                description=f"Commission for resource {resource_id}",
                reference_key=commission_reference(resource_id, buyer_id),
                metadata={"resource_id": resource_id, "buyer_id": buyer_id, "cost": cost, "rate": rate},
            ))

        try:
            outcomes = self.storage.append(requests, self.levels)
        except IdempotencyConflictError as e:
            raise AlreadyPurchasedError(f"Resource {resource_id} already purchased by {buyer_id}") from e
        if not outcomes[0].created:
            # Lost a race with an identical settlement.
            raise AlreadyPurchasedError(f"Resource {resource_id} already purchased by {buyer_id}")

        logger.info(
            "Settled purchase of resource %s by %s: cost %d, commission %d to %s",
            resource_id, buyer_id, cost, commission, resource_owner_id,
        )
        self.notifier.notify(buyer_id, f"You purchased resource {resource_id} for {cost} credits")
        if commission > 0:
            self.notifier.notify(
                resource_owner_id, f"You earned {commission} credits commission on resource {resource_id}"
            )
        return PurchaseReceipt(
            buyer_id=buyer_id,
            resource_id=resource_id,
            resource_owner_id=resource_owner_id,
            cost=cost,
            commission=commission,
            buyer_transaction=outcomes[0].transaction,
            commission_transaction=outcomes[1].transaction if len(outcomes) > 1 else None,
        )
