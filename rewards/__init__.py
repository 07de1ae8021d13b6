"""
Reward and Spend Policies

Named earning rules, spend actions and pricing on top of the credit
ledger, plus a retry queue for reward calls that follow another operation.

`RewardRetryQueue` is a caller-side helper. Code that finishes a primary
operation of its own (storing an upload, recording a follow) submits the
matching reward through the queue instead of calling `RewardPolicies`
directly, then calls `drain()` from its own worker loop:

    queue = RewardRetryQueue()
    queue.submit("upload", policies.award_resource_upload, account_id, resource_id)
    ...
    queue.drain()

The HTTP routes in `ledger.api` call the policies directly so that the
client sees the ledger error.
"""

from .costs import CostCalculator, is_file_resource
from .rules import RewardRule, RewardTrigger, Condition, ConditionOperator, default_rules
from .policies import RewardPolicies, draw_chat_bonus
from .charges import ChargePolicies, ChargeResult
from .retry import RewardRetryQueue

__all__ = [
    "CostCalculator",
    "is_file_resource",
    "RewardRule",
    "RewardTrigger",
    "Condition",
    "ConditionOperator",
    "default_rules",
    "RewardPolicies",
    "draw_chat_bonus",
    "ChargePolicies",
    "ChargeResult",
    "RewardRetryQueue",
]
