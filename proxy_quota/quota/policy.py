# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# quota/policy.py
import math
from dataclasses import dataclass
from typing import Optional

"""
Deployment quota policy (concurrent sessions / validity window / data volume).
"""

GIB = 1024 ** 3


@dataclass(frozen=True)
class GlobalQuotaSettings:
    # 0 = unlimited for every field
    max_users: int = 0
    duration_days: int = 0
    volume_gb: float = 0.0


@dataclass(frozen=True)
class ProfileOverride:
    name: str
    # None = inherit the global value
    users_limit: Optional[int] = None
    duration_days: Optional[int] = None
    volume_gb: Optional[float] = None


@dataclass(frozen=True)
class EffectiveLimits:
    max_concurrent_sessions: int = 0
    validity_duration_days: int = 0
    total_volume_bytes: int = 0

    @property
    def unlimited_sessions(self) -> bool:
        return self.max_concurrent_sessions <= 0

    @property
    def unlimited_duration(self) -> bool:
        return self.validity_duration_days <= 0

    @property
    def unlimited_volume(self) -> bool:
        return self.total_volume_bytes <= 0


def volume_bytes_of(volume_gb: float) -> int:
    if volume_gb is None or volume_gb <= 0:
        return 0
    return int(math.floor(volume_gb * GIB))


def resolve_limits(
        global_settings: GlobalQuotaSettings,
        profile: Optional[ProfileOverride] = None,
) -> EffectiveLimits:
    """
    Apply profile OVERRIDE on top of the global settings.

    - sessions: profile value wins only when set and > 0
    - duration / volume: profile value wins whenever set, 0 included
      (explicit "unlimited")
    """
    if profile is None:
        return EffectiveLimits(
            max_concurrent_sessions=global_settings.max_users,
            validity_duration_days=global_settings.duration_days,
            total_volume_bytes=volume_bytes_of(global_settings.volume_gb),
        )

    return EffectiveLimits(
        max_concurrent_sessions=(
            profile.users_limit
            if profile.users_limit is not None and profile.users_limit > 0
            else global_settings.max_users
        ),
        validity_duration_days=(
            profile.duration_days
            if profile.duration_days is not None
            else global_settings.duration_days
        ),
        total_volume_bytes=volume_bytes_of(
            profile.volume_gb
            if profile.volume_gb is not None
            else global_settings.volume_gb
        ),
    )
