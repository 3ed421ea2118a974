import logging
from functools import lru_cache
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import (
    BalanceField,
    GlobalSettings,
    GLOBAL_SETTINGS_ID,
    NOT_SET,
    SETTINGS,
)
from .store import DocumentStore

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FBT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_TITLE: str = "FBT Ledger API"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]

    # Referral fan-out: one entry per level, level 1 first
    REFERRAL_BONUS_LEVELS: list[int] = [100, 5, 5, 10, 30]
    REFERRAL_BONUS_FIELDS: list[BalanceField] = [
        BalanceField.POINTS, BalanceField.CASH, BalanceField.CASH,
        BalanceField.CASH, BalanceField.CASH,
    ]
    REFERRAL_CODE_PREFIX: str = "FBT"
    REFERRAL_CODE_DIGITS: int = 6
    UNSET_REFERRAL_CODE: str = NOT_SET

    # Dice payouts per full 10 points wagered
    DICE_WHITE_CASH_PER_TEN: int = 5
    DICE_COLOR_POINTS_PER_TEN: int = 20

    ULTRA_MANUAL_NOTE_MAX_LENGTH: int = 100
    MAX_VIP_LEVEL: int = 5

    # Seed values for settings/global when the document does not exist yet
    DEFAULT_ALLOW_DIRECT_TRANSFERS: bool = False
    DEFAULT_AUTO_APPROVE_USERS: bool = False

    @field_validator("REFERRAL_BONUS_LEVELS")
    @classmethod
    def _bonus_amounts_positive(cls, value: list[int]) -> list[int]:
        if not 1 <= len(value) <= 5:
            raise ValueError("referral schedule must have between 1 and 5 levels")
        if any(amount <= 0 for amount in value):
            raise ValueError("referral bonus amounts must be positive")
        return value

    @model_validator(mode="after")
    def _schedule_lengths_match(self) -> "Settings":
        if len(self.REFERRAL_BONUS_LEVELS) != len(self.REFERRAL_BONUS_FIELDS):
            raise ValueError("REFERRAL_BONUS_LEVELS and REFERRAL_BONUS_FIELDS differ in length")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


class SettingsRegistry:
    """Versioned accessor for the ``settings/global`` document."""

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self._current: Optional[GlobalSettings] = None

    def load(self) -> GlobalSettings:
        doc = self.store.get(SETTINGS, GLOBAL_SETTINGS_ID)
        if doc is None:
            self.store.set(SETTINGS, GLOBAL_SETTINGS_ID, {
                "allow_direct_transfers": self.settings.DEFAULT_ALLOW_DIRECT_TRANSFERS,
                "auto_approve_users": self.settings.DEFAULT_AUTO_APPROVE_USERS,
            })
            logger.info("Created settings/global with defaults")
        return self.refresh()

    def refresh(self) -> GlobalSettings:
        doc = self.store.get(SETTINGS, GLOBAL_SETTINGS_ID)
        if doc is None:
            return self.load()
        self._current = GlobalSettings(**doc)
        return self._current

    @property
    def current(self) -> GlobalSettings:
        if self._current is None:
            return self.load()
        return self._current

    @property
    def allow_direct_transfers(self) -> bool:
        return self.current.allow_direct_transfers

    @property
    def auto_approve_users(self) -> bool:
        return self.current.auto_approve_users

    def update(
        self,
        allow_direct_transfers: Optional[bool] = None,
        auto_approve_users: Optional[bool] = None,
    ) -> GlobalSettings:
        changes = {}
        if allow_direct_transfers is not None:
            changes["allow_direct_transfers"] = allow_direct_transfers
        if auto_approve_users is not None:
            changes["auto_approve_users"] = auto_approve_users
        if changes:
            if self._current is None:
                self.load()
            self.store.update(SETTINGS, GLOBAL_SETTINGS_ID, changes)
            logger.info("Global settings changed: %s", changes)
        return self.refresh()
