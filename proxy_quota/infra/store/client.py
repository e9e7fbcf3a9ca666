# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

"""
Shared async Redis client cache, keyed by (url, decode_responses, max_connections).
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis.asyncio import Redis as AsyncRedis

logger = logging.getLogger(__name__)

_ASYNC_CLIENTS: Dict[Tuple[str, bool, Optional[int]], AsyncRedis] = {}


def _client_name_base() -> str:
    return (
        os.getenv("REDIS_CLIENT_NAME")
        or os.getenv("SERVICE_NAME")
        or "proxy-quota"
    )


def _sanitize_client_name(raw: str) -> str:
    safe = "".join(ch if (ch.isalnum() or ch in {"-", "_", ":", "."}) else "_" for ch in raw)
    return safe[:128]


def _build_client_name(kind: str) -> str:
    instance = os.getenv("INSTANCE_ID") or os.getenv("HOSTNAME") or "local"
    return _sanitize_client_name(f"{_client_name_base()}:{instance}:{os.getpid()}:{kind}")


def safe_redis_url(url: str) -> str:
    """Mask credentials in a redis URL for logging."""
    if not url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    if "@" not in rest:
        return url
    creds, host = rest.rsplit("@", 1)
    if ":" in creds:
        return f"{scheme}://***:***@{host}"
    return f"{scheme}://***@{host}"


def get_async_redis_client(
    redis_url: str,
    *,
    decode_responses: bool = True,
    max_connections: Optional[int] = None,
) -> AsyncRedis:
    key = (redis_url, decode_responses, max_connections)
    client = _ASYNC_CLIENTS.get(key)
    if client is not None:
        return client

    kwargs = {"decode_responses": decode_responses}
    if max_connections is not None:
        kwargs["max_connections"] = max_connections
    kwargs["client_name"] = _build_client_name("async_decode" if decode_responses else "async")
    client = aioredis.from_url(redis_url, **kwargs)
    _ASYNC_CLIENTS[key] = client
    logger.info(
        "Created async Redis client pool url=%s decode_responses=%s max_connections=%s client_name=%s",
        safe_redis_url(redis_url),
        decode_responses,
        max_connections,
        kwargs.get("client_name"),
    )
    return client


async def close_async_redis_clients() -> None:
    for client in list(_ASYNC_CLIENTS.values()):
        try:
            await client.aclose()
        except Exception:
            logger.debug("Failed to close async Redis client", exc_info=True)
    _ASYNC_CLIENTS.clear()
