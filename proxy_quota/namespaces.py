# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# proxy_quota/namespaces.py
from datetime import date, datetime, timezone
from typing import Optional, Union

PROFILE_PREFIX = "profile"


def namespace_of(profile: Optional[str]) -> str:
    """
    Key prefix for a configuration profile.

    Empty profile -> "" (global namespace)
    Named profile -> "profile:<name>:"
    """
    return f"{PROFILE_PREFIX}:{profile}:" if profile else ""


class KEYS:
    """
    Store keys for quota state (appended to the namespace prefix).

    Format: {namespace}limits:{entity}
    Example: profile:team-a:limits:usage-bytes
    """
    WINDOW_START = "limits:last-reset"
    ACTIVE_SESSIONS = "limits:active-sessions"
    USAGE_BYTES = "limits:usage-bytes"
    DAILY_USAGE = "limits:daily-usage:{day}"          # day = YYYY-MM-DD (UTC)
    SESSION_HISTORY = "limits:session-history"


def _k(namespace: str, key: str) -> str:
    return f"{namespace}{key}"

def window_start_key(namespace: str) -> str:   return _k(namespace, KEYS.WINDOW_START)
def active_sessions_key(namespace: str) -> str: return _k(namespace, KEYS.ACTIVE_SESSIONS)
def usage_bytes_key(namespace: str) -> str:    return _k(namespace, KEYS.USAGE_BYTES)
def history_key(namespace: str) -> str:        return _k(namespace, KEYS.SESSION_HISTORY)

def daily_usage_key(namespace: str, day: Union[date, str]) -> str:
    if isinstance(day, datetime):
        day = day.date()
    if isinstance(day, date):
        day = day.isoformat()
    return _k(namespace, KEYS.DAILY_USAGE.format(day=day))

def daily_usage_pattern(namespace: str) -> str:
    return _k(namespace, KEYS.DAILY_USAGE.format(day="*"))


def utc_day(ts_ms: int) -> date:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).date()
