import logging
import random
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from ledger.config import ChatBonusBucket
from ledger.models import TransactionCategory, TransactionKind, TransactionRequest, TransactionResult
from ledger.service import LedgerService

from .rules import RewardRule, RewardTrigger, default_rules

logger = logging.getLogger(__name__)


def draw_chat_bonus(rng: random.Random, buckets: Sequence[ChatBonusBucket], cap: int) -> int:
    """Weighted draw: pick a bucket by weight, then a uniform amount inside it, capped."""
    total = sum(b.weight for b in buckets)
    roll = rng.random() * total
    cumulative = 0.0
    chosen = buckets[-1]
    for bucket in buckets:
        cumulative += bucket.weight
        if roll <= cumulative:
            chosen = bucket
            break
    return min(rng.randint(chosen.min_amount, chosen.max_amount), cap)


def _today() -> date:
    return datetime.now(timezone.utc).date()


class RewardPolicies:
    """
    Named earning rules on top of LedgerService.

    Each call derives a deterministic reference key from the triggering
    event, so a retried or duplicated trigger collapses to one ledger entry.
    Calls whose rule condition does not hold return None and write nothing.
    """

    def __init__(
        self,
        service: LedgerService,
        rules: Optional[Iterable[RewardRule]] = None,
        rng: Optional[random.Random] = None,
        today: Callable[[], date] = _today,
    ):
        self.service = service
        self.earn = service.config.earn
        self.rules: dict[RewardTrigger, RewardRule] = {r.trigger: r for r in (rules or default_rules())}
        self.rng = rng or random.Random()
        self.today = today

    def _apply(
        self,
        trigger: RewardTrigger,
        account_id: str,
        amount: int,
        context: dict,
        metadata: Optional[dict] = None,
    ) -> Optional[TransactionResult]:
        rule = self.rules.get(trigger)
        context = {"account_id": account_id, "amount": amount, **context}
        if rule is None or not rule.evaluate(context) or amount <= 0:
            logger.debug("No %s reward for %s (context %s)", trigger.value, account_id, context)
            return None

        result = self.service.process_transaction(TransactionRequest(
            account_id=account_id,
            amount=amount,
            kind=rule.kind,
            category=rule.category,
            description=rule.describe(context),
            reference_key=rule.reference_key(context),
            metadata=metadata or {},
        ))
        message = rule.notification(context)
        if message and not result.already_applied:
            self.service.notifier.notify(account_id, message)
        return result

    def award_resource_upload(self, account_id: str, resource_id: str, resource_type: str = "file") -> Optional[TransactionResult]:
        return self._apply(
            RewardTrigger.RESOURCE_UPLOADED, account_id, self.earn.resource_upload,
            {"resource_id": resource_id, "resource_type": resource_type},
            {"resource_id": resource_id, "resource_type": resource_type},
        )

    def award_upvotes(self, account_id: str, post_id: str, upvote_count: int) -> Optional[TransactionResult]:
        return self._apply(
            RewardTrigger.UPVOTES_COUNTED, account_id, upvote_count * self.earn.upvote_received,
            {"post_id": post_id, "upvote_count": upvote_count},
            {"post_id": post_id, "upvote_count": upvote_count},
        )

    def award_follower_milestone(self, account_id: str, follower_count: int) -> Optional[TransactionResult]:
        threshold = self.earn.follower_milestone_threshold
        milestones = max(follower_count, 0) // threshold
        # Counts between two milestones share the key of the last one reached.
        reporting_point = milestones * threshold
        return self._apply(
            RewardTrigger.FOLLOWERS_COUNTED, account_id, milestones * self.earn.follower_milestone,
            {"follower_count": follower_count, "milestones": milestones, "reporting_point": reporting_point},
            {"follower_count": follower_count, "milestones_reached": milestones},
        )

    def draw_chat_bonus(self) -> int:
        return draw_chat_bonus(self.rng, self.service.config.chat_bonus_buckets, self.earn.chat_bonus_max)

    def award_chat_bonus(self, account_id: str, session_id: str, amount: Optional[int] = None) -> Optional[TransactionResult]:
        bonus = self.draw_chat_bonus() if amount is None else min(amount, self.earn.chat_bonus_max)
        return self._apply(
            RewardTrigger.CHAT_SESSION_ENDED, account_id, bonus,
            {"session_id": session_id},
            {"session_id": session_id, "bonus_amount": bonus},
        )

    def award_daily_login(self, account_id: str, streak_day: int, on_date: Optional[date] = None) -> Optional[TransactionResult]:
        day = (on_date or self.today()).isoformat()
        return self._apply(
            RewardTrigger.DAILY_LOGIN, account_id, self.earn.daily_login,
            {"date": day, "streak_day": streak_day},
            {"streak_day": streak_day, "date": day},
        )

    def award_welcome_bonus(self, account_id: str) -> Optional[TransactionResult]:
        return self._apply(
            RewardTrigger.ACCOUNT_REGISTERED, account_id, self.earn.welcome_bonus,
            {}, {"is_welcome_bonus": True},
        )

    def award_referral_bonus(self, referrer_id: str, referred_id: str) -> Optional[TransactionResult]:
        return self._apply(
            RewardTrigger.REFERRAL_COMPLETED, referrer_id, self.earn.referral_bonus,
            {"referred_id": referred_id, "is_self_referral": referrer_id == referred_id},
            {"referred_id": referred_id},
        )

    def admin_adjustment(self, account_id: str, amount: int, reason: str, reference: str) -> TransactionResult:
        """Positive amounts grant a bonus, negative ones apply a penalty."""
        if amount == 0:
            raise ValueError("Adjustment amount must be non-zero")
        return self.service.process_transaction(TransactionRequest(
            account_id=account_id,
            amount=abs(amount),
            kind=TransactionKind.BONUS if amount > 0 else TransactionKind.PENALTY,
            category=TransactionCategory.ADMIN_ADJUSTMENT,
            description=reason,
            reference_key=f"admin:{reference}",
            metadata={"reason": reason},
        ))
