# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from proxy_quota.namespaces import namespace_of
from proxy_quota.quota.session import limits_of
from proxy_quota.quota.usage import build_usage_summary

"""
Analytics API

File: api/analytics.py

Usage snapshot for the analytics panel. Response shape:
  {"success": true, "body": {"usageStats": ..., "dailyUsage": [...], "sessionHistory": [...]}}
  {"success": false, "message": "..."}
"""

logger = logging.getLogger("Quota.Analytics.API")

router = APIRouter()


@router.get("/panel/analytics/data")
async def analytics_data(request: Request):
    settings = request.app.state.settings
    store = request.app.state.quota_store
    try:
        body = await build_usage_summary(
            store,
            limits_of(settings),
            namespace_of(settings.PROFILE),
            daily_days=settings.DAILY_USAGE_DAYS,
            history_limit=settings.HISTORY_LIMIT,
        )
    except Exception as e:
        logger.error(f"Error building usage summary: {e}")
        return JSONResponse(status_code=500, content={"success": False, "message": str(e)})
    return {"success": True, "body": body}


@router.get("/health")
async def health():
    return {"status": "ok"}
