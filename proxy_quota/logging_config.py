# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# proxy_quota/logging_config.py
import logging
import os


def _to_level(name: str, default: int) -> int:
    level = getattr(logging, (name or "").upper(), None)
    return level if isinstance(level, int) else default

def configure_logging():
    # --- Root config ---
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = os.getenv("LOG_FORMAT",
                           "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    level = _to_level(log_level_name, logging.INFO)

    logging.basicConfig(level=level, format=log_format, force=True)
    logging.captureWarnings(True)

    # --- Normalize framework loggers ---
    desired_levels = {
        "uvicorn": os.getenv("UVICORN_LEVEL", log_level_name),
        "uvicorn.error": os.getenv("UVICORN_ERROR_LEVEL", log_level_name),
        "uvicorn.access": os.getenv("UVICORN_ACCESS_LEVEL", "WARNING"),
        "asyncio": os.getenv("ASYNCIO_LEVEL", "WARNING"),
        # per-command redis chatter
        "redis": os.getenv("REDIS_LOG_LEVEL", "WARNING"),
    }

    for name, lvl_name in desired_levels.items():
        lg = logging.getLogger(name)
        # Remove any handlers these libs may have attached (causes duplicates)
        for h in list(lg.handlers):
            lg.removeHandler(h)
        lg.propagate = True
        lg.setLevel(_to_level(lvl_name, level))
