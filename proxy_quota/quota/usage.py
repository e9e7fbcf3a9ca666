# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# quota/usage.py
from __future__ import annotations

import math
from datetime import timedelta
from typing import Any, Dict, List, Optional

from proxy_quota.infra.store.base import KVStore
from proxy_quota.namespaces import active_sessions_key, daily_usage_key, usage_bytes_key, utc_day
from proxy_quota.quota.guard import DAY_MS, expire_at_of, now_ms, read_window_start
from proxy_quota.quota.history import HISTORY_LIMIT, SessionHistory
from proxy_quota.quota.policy import EffectiveLimits

UNLIMITED = -1


def _remaining_bytes(limits: EffectiveLimits, usage: int) -> int:
    if limits.total_volume_bytes <= 0:
        return UNLIMITED
    return max(limits.total_volume_bytes - usage, 0)


def _remaining_days(limits: EffectiveLimits, window_start: Optional[int], now: int) -> int:
    if limits.validity_duration_days <= 0:
        return UNLIMITED
    if window_start is None:
        # no session admitted yet -> the whole window is still ahead
        return limits.validity_duration_days
    expire_at = expire_at_of(window_start, limits)
    return max(math.ceil((expire_at - now) / DAY_MS), 0)


async def daily_usage(store: KVStore, namespace: str, *, now: int, days: int = 7) -> List[Dict[str, Any]]:
    """Per-day flushed bytes for the last `days` UTC days, oldest first."""
    today = utc_day(now)
    out: List[Dict[str, Any]] = []
    for offset in range(max(int(days), 0) - 1, -1, -1):
        day = today - timedelta(days=offset)
        out.append({
            "date": day.isoformat(),
            "bytes": await store.get_int(daily_usage_key(namespace, day)),
        })
    return out


async def build_usage_summary(
        store: KVStore,
        limits: EffectiveLimits,
        namespace: str = "",
        *,
        now: Optional[int] = None,
        daily_days: int = 7,
        history_limit: int = HISTORY_LIMIT,
) -> Dict[str, Any]:
    """
    Read-only snapshot of quota state for the analytics panel.

    Returns:
        {
            "usageStats": {
                "usageBytes": int,
                "remainingBytes": int,   # -1 = unlimited
                "remainingDays": int,    # -1 = unlimited
                "activeSessions": int,
                "maxUsers": int,         # 0 = unlimited
            },
            "dailyUsage": [{"date": "YYYY-MM-DD", "bytes": int}, ...],
            "sessionHistory": [<history entry>, ...],   # newest first
        }
    """
    now = now_ms() if now is None else int(now)

    usage = await store.get_int(usage_bytes_key(namespace))
    active = await store.get_int(active_sessions_key(namespace))
    window_start = await read_window_start(store, namespace)

    return {
        "usageStats": {
            "usageBytes": usage,
            "remainingBytes": _remaining_bytes(limits, usage),
            "remainingDays": _remaining_days(limits, window_start, now),
            "activeSessions": active,
            "maxUsers": limits.max_concurrent_sessions,
        },
        "dailyUsage": await daily_usage(store, namespace, now=now, days=daily_days),
        "sessionHistory": await SessionHistory(store, namespace, limit=history_limit).entries(),
    }
