# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# quota/session.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

from proxy_quota.infra.store.base import KVStore
from proxy_quota.namespaces import namespace_of
from proxy_quota.quota.guard import SessionGuard, open_session_guard
from proxy_quota.quota.policy import EffectiveLimits, resolve_limits

if TYPE_CHECKING:
    from proxy_quota.config import Settings


def limits_of(settings: "Settings") -> EffectiveLimits:
    return resolve_limits(settings.global_quota(), settings.profile_override())


@asynccontextmanager
async def session_scope(
        settings: "Settings",
        store: KVStore,
        *,
        user_id: Optional[str] = None,
        now: Optional[int] = None,
) -> AsyncIterator[SessionGuard]:
    """
    Open a guard for one transport session and always release it.

    The slot taken at admission is given back on every exit path
    (normal end, error, cancellation). Denied guards are yielded too;
    check `guard.allow` inside the block.
    """
    guard = await open_session_guard(
        limits_of(settings),
        store,
        namespace_of(settings.PROFILE),
        user_id=settings.USER_ID if user_id is None else user_id,
        profile=settings.PROFILE,
        now=now,
        flush_threshold=settings.FLUSH_THRESHOLD_BYTES,
        history_limit=settings.HISTORY_LIMIT,
    )
    try:
        yield guard
    finally:
        await guard.close()
