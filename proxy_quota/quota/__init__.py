# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

from proxy_quota.quota.errors import QuotaError, VolumeLimitExceeded
from proxy_quota.quota.guard import AllowedGuard, DeniedGuard, SessionGuard, open_session_guard
from proxy_quota.quota.history import HistoryEntry, SessionHistory
from proxy_quota.quota.policy import EffectiveLimits, GlobalQuotaSettings, ProfileOverride, resolve_limits
