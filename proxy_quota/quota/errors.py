# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# quota/errors.py
from typing import Optional

REASON_EXPIRED = "Configuration expired."
REASON_VOLUME = "Volume limit reached."
REASON_SESSIONS = "Maximum simultaneous users reached."


class QuotaError(Exception):
    """Base quota error"""
    def __init__(self, message: str, session_id: Optional[str] = None):
        self.message = message
        self.session_id = session_id
        super().__init__(message)


class VolumeLimitExceeded(QuotaError):
    """Stored plus buffered usage went past the volume limit mid-session"""
    def __init__(self, usage_bytes: int, limit_bytes: int, session_id: Optional[str] = None):
        super().__init__(REASON_VOLUME, session_id)
        self.usage_bytes = usage_bytes
        self.limit_bytes = limit_bytes
