# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# quota/guard.py
"""
Per-session admission and byte accounting against the deployment quota.

A guard is either allowed or denied; both expose the same
commit/close surface, so the transport layer never branches on the
outcome before driving the session lifecycle:

    guard = await open_session_guard(limits, store, namespace, user_id="u1")
    if not guard.allow:
        return reject(guard.reason)
    async with guard:
        async for chunk in upstream:
            await guard.commit(len(chunk))

Store keys (under the profile namespace, see proxy_quota.namespaces):
  limits:last-reset              window start, ms since epoch
  limits:active-sessions         open sessions
  limits:usage-bytes             cumulative flushed bytes
  limits:daily-usage:YYYY-MM-DD  flushed bytes per UTC day
  limits:session-history         JSON list of start/end events
"""
from __future__ import annotations

import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Optional

from proxy_quota.infra.store.base import KVStore
from proxy_quota.namespaces import (
    active_sessions_key,
    daily_usage_key,
    usage_bytes_key,
    utc_day,
    window_start_key,
)
from proxy_quota.quota.errors import (
    REASON_EXPIRED,
    REASON_SESSIONS,
    REASON_VOLUME,
    VolumeLimitExceeded,
)
from proxy_quota.quota.history import HISTORY_LIMIT, HistoryEntry, SessionHistory
from proxy_quota.quota.policy import EffectiveLimits

logger = logging.getLogger(__name__)

FLUSH_THRESHOLD_BYTES = 64 * 1024
DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


def expire_at_of(window_start_ms: int, limits: EffectiveLimits) -> Optional[int]:
    if limits.validity_duration_days <= 0:
        return None
    return window_start_ms + limits.validity_duration_days * DAY_MS


def byte_count_of(nbytes) -> int:
    """Whole bytes in a reported count; 0 for anything unusable."""
    if isinstance(nbytes, bool):
        return 0
    if isinstance(nbytes, int):
        return max(nbytes, 0)
    try:
        value = float(nbytes)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(value) or value <= 0:
        return 0
    return int(value)


async def read_window_start(store: KVStore, namespace: str) -> Optional[int]:
    """Stored window start, or None when unset / unusable."""
    raw = await store.get(window_start_key(namespace))
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return int(value)


async def get_or_init_window_start(store: KVStore, namespace: str, now: int) -> int:
    # Two first admissions can both see "unset" and both write; last writer wins.
    existing = await read_window_start(store, namespace)
    if existing is not None:
        return existing
    await store.put(window_start_key(namespace), str(now))
    logger.info("Quota window started namespace=%r at=%s", namespace, now)
    return now


class SessionGuard(ABC):
    """Common surface of allowed and denied guards."""

    allow: bool = False
    reason: Optional[str] = None
    session_id: Optional[str] = None
    closed: bool = False

    @abstractmethod
    async def commit(self, nbytes) -> None:
        ...

    async def commit_inbound(self, nbytes) -> None:
        await self.commit(nbytes)

    async def commit_outbound(self, nbytes) -> None:
        await self.commit(nbytes)

    @abstractmethod
    async def close(self) -> None:
        ...

    async def __aenter__(self) -> "SessionGuard":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.close()
        return False


class DeniedGuard(SessionGuard):

    def __init__(self, reason: str):
        self.allow = False
        self.reason = reason

    async def commit(self, nbytes) -> None:
        return None

    async def close(self) -> None:
        self.closed = True

    def __repr__(self) -> str:
        return f"DeniedGuard(reason={self.reason!r})"


class AllowedGuard(SessionGuard):
    """
    Holds one active-session slot and buffers byte counts.

    Buffered bytes reach the store once they pass `flush_threshold`, and
    unconditionally on close. The volume re-check after each commit compares
    stored usage plus what is still buffered against the limit: overage is
    detected, not prevented.
    """

    def __init__(
        self,
        *,
        store: KVStore,
        limits: EffectiveLimits,
        namespace: str,
        session_id: str,
        started_at_ms: int,
        history: SessionHistory,
        user_id: str = "",
        profile: str = "",
        flush_threshold: int = FLUSH_THRESHOLD_BYTES,
        clock: Callable[[], int] = now_ms,
    ):
        self.allow = True
        self.reason = None
        self.store = store
        self.limits = limits
        self.namespace = namespace
        self.session_id = session_id
        self.started_at_ms = started_at_ms
        self.history = history
        self.user_id = user_id
        self.profile = profile
        self.flush_threshold = max(int(flush_threshold), 1)
        self.clock = clock

        self.buffered_bytes = 0
        self.total_session_bytes = 0
        self.closed = False

    async def commit(self, nbytes) -> None:
        if self.closed:
            return
        n = byte_count_of(nbytes)
        if n <= 0:
            return

        self.buffered_bytes += n
        self.total_session_bytes += n

        if self.buffered_bytes >= self.flush_threshold:
            await self.flush()

        limit = self.limits.total_volume_bytes
        if limit > 0:
            stored = await self.store.get_int(usage_bytes_key(self.namespace))
            if stored + self.buffered_bytes > limit:
                logger.warning(
                    "Volume limit crossed namespace=%r session=%s usage=%s buffered=%s limit=%s",
                    self.namespace, self.session_id, stored, self.buffered_bytes, limit,
                )
                raise VolumeLimitExceeded(stored + self.buffered_bytes, limit, self.session_id)

    async def flush(self) -> None:
        """Move buffered bytes into the cumulative and daily counters."""
        if not self.buffered_bytes:
            return
        amount = self.buffered_bytes
        day = utc_day(self.clock())
        await self.store.increment(usage_bytes_key(self.namespace), amount)
        await self.store.increment(daily_usage_key(self.namespace, day), amount)
        self.buffered_bytes = 0
        logger.debug("Flushed %s bytes namespace=%r session=%s", amount, self.namespace, self.session_id)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True

        await self.flush()
        active = await self.store.increment(active_sessions_key(self.namespace), -1, floor=0)

        ended_at = self.clock()
        duration_sec = max(1, (ended_at - self.started_at_ms) // 1000)
        await self.history.append(HistoryEntry(
            timestamp=ended_at,
            type="end",
            user_id=self.user_id,
            profile=self.profile,
            session_id=self.session_id,
            bytes=self.total_session_bytes,
            duration_sec=duration_sec,
            active_sessions=active,
        ))
        logger.info(
            "Session closed namespace=%r session=%s bytes=%s duration=%ss active=%s",
            self.namespace, self.session_id, self.total_session_bytes, duration_sec, active,
        )

    def __repr__(self) -> str:
        return (f"AllowedGuard(session_id={self.session_id!r}, total={self.total_session_bytes}, "
                f"buffered={self.buffered_bytes}, closed={self.closed})")


def _deny(namespace: str, reason: str) -> DeniedGuard:
    logger.info("Session denied namespace=%r reason=%s", namespace, reason)
    return DeniedGuard(reason)


async def open_session_guard(
    limits: EffectiveLimits,
    store: KVStore,
    namespace: str = "",
    *,
    user_id: str = "",
    profile: str = "",
    now: Optional[int] = None,
    flush_threshold: int = FLUSH_THRESHOLD_BYTES,
    history_limit: int = HISTORY_LIMIT,
    clock: Callable[[], int] = now_ms,
) -> SessionGuard:
    """
    Admit a new session or explain why not.

    Checks run in a fixed order and the first failure decides the reason:
      1. validity window expired
      2. cumulative volume at/over the limit
      3. active sessions at/over the limit
    Denials never touch counters. Admission takes one active-session slot
    and logs a "start" history event.

    Args:
        limits: Resolved limits (see resolve_limits)
        store: Key-value store with quota state
        namespace: Key prefix of the profile (see namespace_of)
        user_id: Identity recorded in history
        profile: Profile name recorded in history
        now: Admission time in ms (for testing)
        flush_threshold: Buffer size that triggers a flush
        history_limit: Max history entries kept
        clock: ms clock used for flush days, close time and durations

    Returns:
        AllowedGuard or DeniedGuard
    """
    now = clock() if now is None else int(now)

    window_start = await get_or_init_window_start(store, namespace, now)
    expire_at = expire_at_of(window_start, limits)
    if expire_at is not None and now >= expire_at:
        return _deny(namespace, REASON_EXPIRED)

    usage = await store.get_int(usage_bytes_key(namespace))
    if limits.total_volume_bytes > 0 and usage >= limits.total_volume_bytes:
        return _deny(namespace, REASON_VOLUME)

    active = await store.get_int(active_sessions_key(namespace))
    if limits.max_concurrent_sessions > 0 and active >= limits.max_concurrent_sessions:
        return _deny(namespace, REASON_SESSIONS)

    active = await store.increment(active_sessions_key(namespace), 1)

    session_id = str(uuid.uuid4())
    history = SessionHistory(store, namespace, limit=history_limit)
    await history.append(HistoryEntry(
        timestamp=now,
        type="start",
        user_id=user_id,
        profile=profile,
        session_id=session_id,
        active_sessions=active,
    ))
    logger.info("Session admitted namespace=%r session=%s user=%r active=%s",
                namespace, session_id, user_id, active)

    return AllowedGuard(
        store=store,
        limits=limits,
        namespace=namespace,
        session_id=session_id,
        started_at_ms=now,
        history=history,
        user_id=user_id,
        profile=profile,
        flush_threshold=flush_threshold,
        clock=clock,
    )
