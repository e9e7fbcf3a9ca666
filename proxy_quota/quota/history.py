# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# quota/history.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from proxy_quota.infra.store.base import KVStore
from proxy_quota.namespaces import history_key

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: int              # ms since epoch
    type: str                   # "start" | "end"
    user_id: str
    profile: str
    session_id: str
    active_sessions: int
    bytes: Optional[int] = None
    duration_sec: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "type": self.type,
            "userID": self.user_id,
            "profile": self.profile,
            "sessionId": self.session_id,
        }
        if self.bytes is not None:
            out["bytes"] = self.bytes
        if self.duration_sec is not None:
            out["durationSec"] = self.duration_sec
        out["activeSessions"] = self.active_sessions
        return out


class SessionHistory:
    """
    Bounded session log stored as one JSON array, newest first.

    Append is read-modify-write of the whole array; concurrent appenders
    can drop each other's entries.
    """

    def __init__(self, store: KVStore, namespace: str = "", *, limit: int = HISTORY_LIMIT):
        self.store = store
        self.key = history_key(namespace)
        self.limit = min(max(int(limit), 1), HISTORY_LIMIT)

    async def entries(self) -> List[Dict[str, Any]]:
        raw = await self.store.get(self.key)
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed session history at %s", self.key)
            return []
        if not isinstance(items, list):
            return []
        return [it for it in items if isinstance(it, dict)][: self.limit]

    async def append(self, entry: HistoryEntry) -> List[Dict[str, Any]]:
        items = await self.entries()
        items.insert(0, entry.to_dict())
        del items[self.limit:]
        await self.store.put(self.key, json.dumps(items, ensure_ascii=False, separators=(",", ":")))
        return items
