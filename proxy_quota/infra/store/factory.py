# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# infra/store/factory.py
import logging

from proxy_quota.config import Settings
from proxy_quota.infra.store.base import KVStore
from proxy_quota.infra.store.client import get_async_redis_client, safe_redis_url
from proxy_quota.infra.store.memory_store import InMemoryKVStore
from proxy_quota.infra.store.redis_store import RedisKVStore

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> KVStore:
    backend = (settings.STORE_BACKEND or "redis").strip().lower()
    if backend == "memory":
        logger.info("Using in-memory quota store (atomic=%s)", settings.STORE_ATOMIC)
        return InMemoryKVStore(atomic=settings.STORE_ATOMIC)
    if backend == "redis":
        logger.info("Using Redis quota store url=%s atomic=%s",
                    safe_redis_url(settings.REDIS_URL), settings.STORE_ATOMIC)
        return RedisKVStore(get_async_redis_client(settings.REDIS_URL), atomic=settings.STORE_ATOMIC)
    raise ValueError(f"Unknown store backend: {settings.STORE_BACKEND!r}")
