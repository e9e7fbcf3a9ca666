# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# proxy_quota/config.py
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from proxy_quota.quota.policy import GlobalQuotaSettings, ProfileOverride


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # API
    PORT: int = Field(default=8015, alias="QUOTA_PORT")

    # Store
    REDIS_URL: str = "redis://localhost:6379/0"
    STORE_BACKEND: str = Field(default="redis", alias="QUOTA_STORE_BACKEND")  # redis | memory
    STORE_ATOMIC: bool = Field(default=True, alias="QUOTA_STORE_ATOMIC")

    # Global quota (0 = unlimited)
    MAX_USERS: int = Field(default=0, alias="CONFIG_MAX_USERS")
    DURATION_DAYS: int = Field(default=0, alias="CONFIG_DURATION_DAYS")
    VOLUME_GB: float = Field(default=0.0, alias="CONFIG_VOLUME_GB")

    # Identity / profile
    USER_ID: str = ""
    PROFILE: str = ""
    PROFILE_USERS_LIMIT: Optional[int] = None
    PROFILE_DURATION_DAYS: Optional[int] = None
    PROFILE_VOLUME_GB: Optional[float] = None

    # Accounting
    FLUSH_THRESHOLD_BYTES: int = Field(default=64 * 1024, alias="QUOTA_FLUSH_THRESHOLD_BYTES")
    HISTORY_LIMIT: int = Field(default=50, ge=1, le=50, alias="QUOTA_HISTORY_LIMIT")
    DAILY_USAGE_DAYS: int = Field(default=7, alias="QUOTA_DAILY_USAGE_DAYS")

    # Blank env values for optional profile fields mean "not set"
    @field_validator("PROFILE_USERS_LIMIT", "PROFILE_DURATION_DAYS", "PROFILE_VOLUME_GB", mode="before")
    @classmethod
    def _blank_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def global_quota(self) -> GlobalQuotaSettings:
        return GlobalQuotaSettings(
            max_users=self.MAX_USERS,
            duration_days=self.DURATION_DAYS,
            volume_gb=self.VOLUME_GB,
        )

    def profile_override(self) -> Optional[ProfileOverride]:
        if not self.PROFILE:
            return None
        return ProfileOverride(
            name=self.PROFILE,
            users_limit=self.PROFILE_USERS_LIMIT,
            duration_days=self.PROFILE_DURATION_DAYS,
            volume_gb=self.PROFILE_VOLUME_GB,
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
