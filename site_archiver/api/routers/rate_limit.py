"""Quota status endpoint.

Routes
------
GET /rate-limit    → {"remaining": n, "limit": n}; does not consume quota
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from site_archiver.quota import identity_from

router = APIRouter()


@router.get("/rate-limit")
def rate_limit(request: Request) -> dict[str, Any]:
    host = request.client.host if request.client else None
    identity = identity_from(request.headers.get("x-forwarded-for"), host)
    return request.app.state.quota.peek(identity).as_dict()
