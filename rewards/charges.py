from typing import Optional

from pydantic import BaseModel

from ledger.models import (
    PurchaseReceipt,
    ResourceInfo,
    TransactionCategory,
    TransactionKind,
    TransactionRequest,
    TransactionResult,
)
from ledger.service import LedgerService

from .costs import BYTES_PER_MB, CostCalculator, is_file_resource


class ChargeResult(BaseModel):
    cost: int
    result: TransactionResult


class ChargePolicies:
    """User-initiated spends. Costs come from CostCalculator; balances from the ledger."""

    def __init__(self, service: LedgerService, costs: Optional[CostCalculator] = None):
        self.service = service
        self.costs = costs or CostCalculator(service.config.spend)

    def charge_file_download(self, account_id: str, file_id: str, file_size_bytes: int) -> ChargeResult:
        cost = self.costs.download_cost(file_size_bytes)
        result = self.service.process_transaction(TransactionRequest(
            account_id=account_id,
            amount=cost,
            kind=TransactionKind.SPEND,
            category=TransactionCategory.FILE_DOWNLOAD,
            description=f"File download ({file_size_bytes / BYTES_PER_MB:.1f}MB)",
            reference_key=f"download:{file_id}",
            metadata={"file_id": file_id, "file_size_bytes": file_size_bytes, "cost": cost},
        ))
        return ChargeResult(cost=result.transaction.amount, result=result)

    def charge_chat_message(self, account_id: str, message_id: str) -> ChargeResult:
        cost = self.service.config.spend.chat_message
        result = self.service.process_transaction(TransactionRequest(
            account_id=account_id,
            amount=cost,
            kind=TransactionKind.SPEND,
            category=TransactionCategory.CHAT_MESSAGE,
            description="AI chat message",
            reference_key=f"chatmessage:{message_id}",
            metadata={"message_id": message_id},
        ))
        return ChargeResult(cost=cost, result=result)

    def purchase_resource(
        self,
        buyer_id: str,
        resource_id: str,
        resource_owner_id: str,
        resource: ResourceInfo,
    ) -> PurchaseReceipt:
        cost = self.costs.purchase_cost(resource.file_size_bytes, is_file_resource(resource))
        return self.service.settle_purchase(buyer_id, resource_id, resource_owner_id, cost)
