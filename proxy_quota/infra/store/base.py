# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# infra/store/base.py
"""
Key-value store contract used for all durable quota state.

Values are strings. Counters are decimal integers; anything absent or
non-numeric reads as 0.

`increment` is where the consistency policy lives: the default is a plain
read-modify-write over `get`/`put` (lost updates are possible between
concurrent callers). Stores with native atomic counters override it and
report `atomic = True`.
"""
from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import List, Optional, Union


def parse_counter(raw: Union[str, bytes, None]) -> int:
    if raw is None:
        return 0
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return int(raw)
    except (TypeError, ValueError):
        pass
    try:
        value = float(raw)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(value):
        return 0
    return int(value)


class KVStore(ABC):

    atomic: bool = False

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        ...

    async def get_int(self, key: str) -> int:
        return parse_counter(await self.get(key))

    async def increment(self, key: str, delta: int, *, floor: Optional[int] = None) -> int:
        """
        Add `delta` to the counter at `key` and return the new value.
        With `floor`, the stored result is clamped to be >= floor.
        """
        current = await self.get_int(key)
        value = current + int(delta)
        if floor is not None and value < floor:
            value = floor
        await self.put(key, str(value))
        return value

    async def delete(self, *keys: str) -> int:
        raise NotImplementedError(f"{type(self).__name__} does not support delete")

    async def scan_keys(self, match: str) -> List[str]:
        raise NotImplementedError(f"{type(self).__name__} does not support key scans")

    async def close(self) -> None:
        return None
