from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ledger.models import TransactionCategory, TransactionKind


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    GREATER_THAN = "greater_than"


class RewardTrigger(str, Enum):
    RESOURCE_UPLOADED = "resource_uploaded"
    UPVOTES_COUNTED = "upvotes_counted"
    FOLLOWERS_COUNTED = "followers_counted"
    CHAT_SESSION_ENDED = "chat_session_ended"
    DAILY_LOGIN = "daily_login"
    ACCOUNT_REGISTERED = "account_registered"
    REFERRAL_COMPLETED = "referral_completed"


@dataclass(frozen=True)
class Condition:
    field: str
    operator: ConditionOperator
    value: Any = None

    def evaluate(self, context: dict) -> bool:
        field_value = context.get(self.field)
        op = self.operator
        if op == ConditionOperator.EQUALS: return field_value == self.value
        if op == ConditionOperator.GREATER_THAN: return field_value is not None and field_value > self.value
        return False

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        return cls(field=data["field"], operator=ConditionOperator(data["operator"]), value=data.get("value"))


@dataclass(frozen=True)
class RewardRule:
    """
    One named reward. The reference template turns the trigger context into
    the idempotency key, so every retry of the same event maps to one entry.
    """
    trigger: RewardTrigger
    category: TransactionCategory
    kind: TransactionKind
    reference_template: str
    description_template: str
    condition: Optional[Condition] = None
    notify_template: Optional[str] = None
    is_active: bool = True

    def evaluate(self, context: dict) -> bool:
        if not self.is_active:
            return False
        return self.condition is None or self.condition.evaluate(context)

    def reference_key(self, context: dict) -> str:
        return self.reference_template.format(**context)

    def describe(self, context: dict) -> str:
        return self.description_template.format(**context)

    def notification(self, context: dict) -> Optional[str]:
        return self.notify_template.format(**context) if self.notify_template else None

    def to_dict(self) -> dict:
        return {
            "trigger": self.trigger.value, "category": self.category.value, "kind": self.kind.value,
            "reference_template": self.reference_template, "description_template": self.description_template,
            "condition": self.condition.to_dict() if self.condition else None,
            "notify_template": self.notify_template, "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RewardRule":
        cond = data.get("condition")
        return cls(
            trigger=RewardTrigger(data["trigger"]), category=TransactionCategory(data["category"]),
            kind=TransactionKind(data["kind"]), reference_template=data["reference_template"],
            description_template=data["description_template"],
            condition=Condition.from_dict(cond) if cond else None,
            notify_template=data.get("notify_template"), is_active=data.get("is_active", True),
        )


def default_rules() -> list[RewardRule]:
    return [
        RewardRule(
            trigger=RewardTrigger.RESOURCE_UPLOADED,
            category=TransactionCategory.RESOURCE_UPLOAD, kind=TransactionKind.EARN,
            reference_template="upload:{resource_id}",
            description_template="{resource_type} upload reward",
        ),
        RewardRule(
            trigger=RewardTrigger.UPVOTES_COUNTED,
            category=TransactionCategory.UPVOTE_RECEIVED, kind=TransactionKind.EARN,
            reference_template="upvotes:{post_id}",
            description_template="Received {upvote_count} upvote(s)",
            condition=Condition(field="upvote_count", operator=ConditionOperator.GREATER_THAN, value=0),
        ),
        RewardRule(
            trigger=RewardTrigger.FOLLOWERS_COUNTED,
            category=TransactionCategory.FOLLOWER_MILESTONE, kind=TransactionKind.EARN,
            reference_template="followers:{reporting_point}",
            description_template="Follower milestone: {follower_count} followers",
            condition=Condition(field="milestones", operator=ConditionOperator.GREATER_THAN, value=0),
            notify_template="You reached {reporting_point} followers and earned {amount} credits",
        ),
        RewardRule(
            trigger=RewardTrigger.CHAT_SESSION_ENDED,
            category=TransactionCategory.CHAT_BONUS, kind=TransactionKind.BONUS,
            reference_template="chatbonus:{session_id}",
            description_template="Chat engagement bonus",
        ),
        RewardRule(
            trigger=RewardTrigger.DAILY_LOGIN,
            category=TransactionCategory.DAILY_LOGIN, kind=TransactionKind.EARN,
            reference_template="login:{date}",
            description_template="Daily login streak bonus - Day {streak_day}",
        ),
        RewardRule(
            trigger=RewardTrigger.ACCOUNT_REGISTERED,
            category=TransactionCategory.WELCOME_BONUS, kind=TransactionKind.EARN,
            reference_template="welcome:{account_id}",
            description_template="Welcome bonus",
        ),
        RewardRule(
            trigger=RewardTrigger.REFERRAL_COMPLETED,
            category=TransactionCategory.REFERRAL_BONUS, kind=TransactionKind.BONUS,
            reference_template="referral:{referred_id}",
            description_template="Referral bonus for inviting {referred_id}",
            condition=Condition(field="is_self_referral", operator=ConditionOperator.EQUALS, value=False),
            notify_template="Your referral {referred_id} joined; you earned {amount} credits",
        ),
    ]
