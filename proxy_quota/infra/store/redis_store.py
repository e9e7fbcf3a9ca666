# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# infra/store/redis_store.py
from __future__ import annotations

import logging
from typing import List, Optional

from redis.asyncio import Redis

from proxy_quota.infra.store.base import KVStore

logger = logging.getLogger(__name__)


def _strs(*items) -> list[str]:
    return [str(x) for x in items]

# --------- Lua scripts ---------
# Counter add with optional floor clamp. Non-numeric values count as 0.
# KEYS[1] = counter
# ARGV = [delta, floor or ""]
_LUA_INCR_CLAMP = r"""
local k = KEYS[1]
local delta = tonumber(ARGV[1])
local floor = tonumber(ARGV[2])

local cur = tonumber(redis.call('GET', k)) or 0
local v = cur + delta
if floor and v < floor then
  v = floor
end

redis.call('SET', k, string.format('%d', v))
return v
"""


class RedisKVStore(KVStore):
    """
    Redis-backed quota store.

    atomic=True  -> counters change through a single Lua call (no lost updates)
    atomic=False -> counters change through GET + SET, same as a plain KV store
    """

    def __init__(self, redis: Redis, *, atomic: bool = True):
        self.r = redis
        self.atomic = atomic

    async def get(self, key: str) -> Optional[str]:
        raw = await self.r.get(key)
        if isinstance(raw, (bytes, bytearray)):
            return raw.decode("utf-8", errors="replace")
        return raw

    async def put(self, key: str, value: str) -> None:
        await self.r.set(key, str(value))

    async def increment(self, key: str, delta: int, *, floor: Optional[int] = None) -> int:
        if not self.atomic:
            return await super().increment(key, delta, floor=floor)
        res = await self.r.eval(
            _LUA_INCR_CLAMP,
            1,
            *_strs(key),
            *_strs(int(delta), "" if floor is None else int(floor)),
        )
        return int(res)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.r.unlink(*keys))

    async def scan_keys(self, match: str) -> List[str]:
        out: List[str] = []
        async for k in self.r.scan_iter(match=match, count=500):
            out.append(k.decode() if isinstance(k, (bytes, bytearray)) else str(k))
        return sorted(set(out))
