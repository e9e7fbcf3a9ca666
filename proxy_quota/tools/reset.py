# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# tools/reset.py
#
# Manually reset quota state (window start, usage counters) of one namespace.
# Works with keys created by proxy_quota/quota/guard.py

import argparse
import asyncio
import sys
from typing import List, Optional

from proxy_quota.infra.store.base import KVStore
from proxy_quota.namespaces import (
    active_sessions_key,
    daily_usage_pattern,
    history_key,
    namespace_of,
    usage_bytes_key,
    window_start_key,
)


async def collect_reset_keys(
        store: KVStore,
        namespace: str,
        *,
        include_history: bool = False,
        include_active: bool = False,
) -> List[str]:
    """Existing keys that a reset of `namespace` would remove."""
    candidates = [window_start_key(namespace), usage_bytes_key(namespace)]
    if include_history:
        candidates.append(history_key(namespace))
    if include_active:
        candidates.append(active_sessions_key(namespace))

    keys = [k for k in candidates if await store.get(k) is not None]
    keys += await store.scan_keys(daily_usage_pattern(namespace))
    return sorted(set(keys))


async def reset_namespace(
        store: KVStore,
        namespace: str,
        *,
        include_history: bool = False,
        include_active: bool = False,
        dry_run: bool = False,
) -> List[str]:
    keys = await collect_reset_keys(
        store, namespace, include_history=include_history, include_active=include_active,
    )
    if keys and not dry_run:
        await store.delete(*keys)
    return keys


async def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(
        description="Reset quota window and usage counters for a profile namespace in Redis."
    )
    p.add_argument("--redis-url", help="redis URL (e.g. redis://localhost:6379/0). Defaults to REDIS_URL from settings.")
    p.add_argument("--profile", default="", help="Profile name; empty = global namespace")
    p.add_argument("--include-history", action="store_true", help="Also remove the session history.")
    p.add_argument("--include-active", action="store_true",
                   help="Also remove the active session counter (only when no session is running).")
    p.add_argument("--dry-run", action="store_true", help="List keys but do not delete.")
    p.add_argument("--verbose", "-v", action="store_true", help="Print keys as they are found.")
    args = p.parse_args(argv)

    from proxy_quota.config import get_settings
    from proxy_quota.infra.store.client import close_async_redis_clients, get_async_redis_client
    from proxy_quota.infra.store.redis_store import RedisKVStore

    redis_url = args.redis_url or get_settings().REDIS_URL
    store = RedisKVStore(get_async_redis_client(redis_url))
    namespace = namespace_of(args.profile)

    try:
        keys = await reset_namespace(
            store,
            namespace,
            include_history=args.include_history,
            include_active=args.include_active,
            dry_run=args.dry_run,
        )

        if args.verbose or args.dry_run:
            print(f"# namespace: {namespace or '<global>'}")
            for k in keys:
                print(k)

        if not keys:
            print("no matching keys found.")
            return 0

        if args.dry_run:
            print(f"\nDRY-RUN: {len(keys)} keys would be removed.")
            return 0

        print(f"removed {len(keys)} keys.")
        return 0
    finally:
        await close_async_redis_clients()


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)

"""
# reset the global namespace
python -m proxy_quota.tools.reset --redis-url redis://localhost:6379/0

# show what would be deleted for one profile (no changes)
python -m proxy_quota.tools.reset --profile team-a --dry-run -v

# full wipe of a profile, history included
python -m proxy_quota.tools.reset --profile team-a --include-history --include-active
"""
