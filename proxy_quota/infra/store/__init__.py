# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

from proxy_quota.infra.store.base import KVStore, parse_counter
from proxy_quota.infra.store.memory_store import InMemoryKVStore
from proxy_quota.infra.store.redis_store import RedisKVStore

__all__ = ["KVStore", "InMemoryKVStore", "RedisKVStore", "parse_counter"]
