import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .models import TransactionKind

load_dotenv()


class LevelThreshold(BaseModel):
    rank: int = Field(..., ge=1)
    name: str
    credits_required: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)


class ChatBonusBucket(BaseModel):
    weight: float = Field(..., gt=0)
    min_amount: int = Field(..., ge=1)
    max_amount: int = Field(..., ge=1)

    model_config = ConfigDict(frozen=True)


class EarnRates(BaseModel):
    resource_upload: int = 20
    upvote_received: int = 1
    follower_milestone: int = 10
    follower_milestone_threshold: int = Field(default=100, gt=0)
    chat_bonus_max: int = 20
    daily_login: int = 5
    welcome_bonus: int = 120
    referral_bonus: int = 50

    model_config = ConfigDict(frozen=True)


class SpendRates(BaseModel):
    file_download_min: int = 50
    file_download_max: int = 250
    download_min_size_mb: float = 1.0
    download_max_size_mb: float = 10.0
    chat_message: int = 1
    purchase_base_fee: int = 100
    commission_rate: float = Field(default=0.20, ge=0, le=1)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_curve(self) -> "SpendRates":
        if self.download_max_size_mb <= self.download_min_size_mb:
            raise ValueError("download_max_size_mb must exceed download_min_size_mb")
        if self.file_download_max < self.file_download_min:
            raise ValueError("file_download_max must be >= file_download_min")
        return self


DEFAULT_LEVELS = (
    LevelThreshold(rank=1, name="Novice", credits_required=0),
    LevelThreshold(rank=2, name="Apprentice", credits_required=100),
    LevelThreshold(rank=3, name="Scholar", credits_required=300),
    LevelThreshold(rank=4, name="Expert", credits_required=600),
    LevelThreshold(rank=5, name="Master", credits_required=1000),
    LevelThreshold(rank=6, name="Sage", credits_required=1500),
    LevelThreshold(rank=7, name="Luminary", credits_required=2200),
    LevelThreshold(rank=8, name="Legend", credits_required=3000),
    LevelThreshold(rank=9, name="Mythic", credits_required=4000),
    LevelThreshold(rank=10, name="Transcendent", credits_required=5000),
)

DEFAULT_CHAT_BONUS_BUCKETS = (
    ChatBonusBucket(weight=0.4, min_amount=1, max_amount=5),
    ChatBonusBucket(weight=0.3, min_amount=6, max_amount=10),
    ChatBonusBucket(weight=0.2, min_amount=11, max_amount=15),
    ChatBonusBucket(weight=0.1, min_amount=16, max_amount=20),
)


class EconomyConfig(BaseModel):
    """
    Immutable economy settings: reward amounts, cost curve, level table.

    Built once and handed to the services, so a test or an environment can
    swap the whole economy without touching module state.
    """
    earn: EarnRates = Field(default_factory=EarnRates)
    spend: SpendRates = Field(default_factory=SpendRates)
    levels: tuple[LevelThreshold, ...] = DEFAULT_LEVELS
    chat_bonus_buckets: tuple[ChatBonusBucket, ...] = DEFAULT_CHAT_BONUS_BUCKETS
    level_counted_kinds: frozenset[TransactionKind] = frozenset({TransactionKind.EARN})
    allow_self_purchase: bool = False

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_tables(self) -> "EconomyConfig":
        if not self.levels:
            raise ValueError("at least one level is required")
        if self.levels[0].credits_required != 0:
            raise ValueError("the first level must start at 0 credits")
        for prev, cur in zip(self.levels, self.levels[1:]):
            if cur.rank != prev.rank + 1 or cur.credits_required <= prev.credits_required:
                raise ValueError(f"levels must ascend by rank and credits (at rank {cur.rank})")
        if not self.chat_bonus_buckets:
            raise ValueError("at least one chat bonus bucket is required")
        for bucket in self.chat_bonus_buckets:
            if bucket.max_amount < bucket.min_amount:
                raise ValueError("chat bonus bucket max_amount must be >= min_amount")
        return self


class Settings(BaseModel):
    storage_backend: str = Field(default_factory=lambda: os.getenv("CREDITS_STORAGE", "memory"))
    database_path: str = Field(default_factory=lambda: os.getenv("CREDITS_DB_PATH", "./data/credits.db"))
    log_level: str = Field(default_factory=lambda: os.getenv("CREDITS_LOG_LEVEL", "INFO"))
    economy_config_path: Optional[str] = Field(default_factory=lambda: os.getenv("CREDITS_ECONOMY_CONFIG") or None)


def load_economy_config(path: Optional[str] = None) -> EconomyConfig:
    """Read an EconomyConfig from a JSON file, or return the defaults when no path is given."""
    if not path:
        return EconomyConfig()
    return EconomyConfig.model_validate_json(Path(path).read_text(encoding="utf-8"))


settings = Settings()
