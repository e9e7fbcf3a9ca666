# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# infra/store/memory_store.py
from __future__ import annotations

import asyncio
import fnmatch
from typing import Dict, List, Optional

from proxy_quota.infra.store.base import KVStore, parse_counter


class InMemoryKVStore(KVStore):
    """
    Process-local store for tests and single-instance runs.

    Every get/put yields to the event loop first, so concurrent tasks
    interleave the same way they would against a remote store. With
    atomic=False (default) `increment` is read-modify-write and can lose
    updates; with atomic=True it runs without a suspension point.
    """

    def __init__(self, data: Optional[Dict[str, str]] = None, *, atomic: bool = False, yield_control: bool = True):
        self._data: Dict[str, str] = dict(data or {})
        self.atomic = atomic
        self.yield_control = yield_control

    async def _yield(self) -> None:
        if self.yield_control:
            await asyncio.sleep(0)

    async def get(self, key: str) -> Optional[str]:
        await self._yield()
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        await self._yield()
        self._data[key] = str(value)

    async def increment(self, key: str, delta: int, *, floor: Optional[int] = None) -> int:
        if not self.atomic:
            return await super().increment(key, delta, floor=floor)
        await self._yield()
        value = parse_counter(self._data.get(key)) + int(delta)
        if floor is not None and value < floor:
            value = floor
        self._data[key] = str(value)
        return value

    async def delete(self, *keys: str) -> int:
        await self._yield()
        removed = 0
        for k in keys:
            if self._data.pop(k, None) is not None:
                removed += 1
        return removed

    async def scan_keys(self, match: str) -> List[str]:
        await self._yield()
        return sorted(k for k in self._data if fnmatch.fnmatchcase(k, match))

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)
