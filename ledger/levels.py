from typing import Iterable

from .config import LevelThreshold, DEFAULT_LEVELS
from .models import LevelInfo, TransactionKind


class LevelCalculator:
    """
    Maps cumulative earned credits to a level.

    `compute` is pure and total. `counted_kinds` names the transaction kinds
    whose amounts feed the cumulative figure; the stores read it when they
    re-derive the level from the ledger on every append.
    """

    def __init__(
        self,
        thresholds: Iterable[LevelThreshold] = DEFAULT_LEVELS,
        counted_kinds: Iterable[TransactionKind] = (TransactionKind.EARN,),
    ):
        self.thresholds = sorted(thresholds, key=lambda t: t.credits_required)
        self.counted_kinds = frozenset(counted_kinds)

    @property
    def first(self) -> LevelThreshold:
        return self.thresholds[0]

    def counts(self, kind: TransactionKind) -> bool:
        return kind in self.counted_kinds

    def compute(self, cumulative_earned: int) -> LevelInfo:
        current = self.first
        for threshold in reversed(self.thresholds):
            if cumulative_earned >= threshold.credits_required:
                current = threshold
                break

        index = self.thresholds.index(current)
        nxt = self.thresholds[index + 1] if index + 1 < len(self.thresholds) else None

        if nxt is None:
            return LevelInfo(
                rank=current.rank, name=current.name, credits_required=current.credits_required,
                credits_to_next=0, progress_percentage=100.0,
            )

        span = nxt.credits_required - current.credits_required
        progress = (cumulative_earned - current.credits_required) / span * 100
        return LevelInfo(
            rank=current.rank,
            name=current.name,
            credits_required=current.credits_required,
            credits_to_next=nxt.credits_required - max(cumulative_earned, 0),
            progress_percentage=min(100.0, max(0.0, progress)),
        )
