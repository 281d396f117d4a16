"""
Access guard for the analytics ops routes (queue status, stored aggregates,
manual recompute).

These routes are for operators, not readers: they are hidden unless enabled,
need the shared ops token, and can additionally be pinned to an IP allowlist.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from app.core.auth import bearer_token
from app.core.config import settings

logger = logging.getLogger(__name__)

OPERATOR_NAME_MAX_LEN = 120
DEFAULT_OPERATOR = "admin"


@dataclass(frozen=True)
class AnalyticsOperator:
    name: str
    ip: str


def _presented_ops_token(request: Request) -> str:
    return bearer_token(request) or str(request.headers.get("x-admin-token") or "").strip()


def _token_matches(presented: str, expected: str) -> bool:
    if not presented:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def require_analytics_operator(
    request: Request,
    x_admin_user: Optional[str] = Header(default=None),
) -> AnalyticsOperator:
    if not settings.ADMIN_ENABLED:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    expected = str(settings.ADMIN_API_TOKEN or "").strip()
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics admin API not configured",
        )

    ip = request.client.host if request.client else "unknown"
    allowlist = settings.admin_ip_allowlist
    if allowlist and ip not in allowlist:
        logger.warning("Rejected analytics admin request from non-allowlisted ip %s", ip)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin IP not allowed")

    if not _token_matches(_presented_ops_token(request), expected):
        logger.warning("Rejected analytics admin request with bad token from %s", ip)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin credentials")

    name = str(x_admin_user or "").strip()[:OPERATOR_NAME_MAX_LEN] or DEFAULT_OPERATOR
    return AnalyticsOperator(name=name, ip=ip)
