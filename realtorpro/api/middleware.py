from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from realtorpro.config import settings
from realtorpro.services.billing.access import (
    SHARE_EXPIRED_PAGE,
    SUBSCRIPTION_PAGE,
    AccessGate,
    GateDecision,
    StatusProvider,
)

logger = logging.getLogger(__name__)

DASHBOARD_PREFIX = "/dashboard"
SHARE_PREFIX = "/share/"


def _is_under(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def is_dashboard_path(path: str) -> bool:
    return _is_under(path, DASHBOARD_PREFIX) and not _is_under(path, SUBSCRIPTION_PAGE)


def share_collection_id(path: str) -> str | None:
    """Collection id from ``/share/{id}...``; None for non-share paths and the expired page."""
    if not path.startswith(SHARE_PREFIX) or _is_under(path, SHARE_EXPIRED_PAGE):
        return None
    segment = path[len(SHARE_PREFIX) :].split("/", 1)[0]
    return segment or None


class AccessGateMiddleware(BaseHTTPMiddleware):
    """Redirect page requests whose owner has no active trial or subscription."""

    def __init__(
        self,
        app: ASGIApp,
        provider: StatusProvider | None = None,
        gate: AccessGate | None = None,
    ) -> None:
        super().__init__(app)
        if gate is None:
            if provider is None:
                raise ValueError("AccessGateMiddleware needs a provider or a gate.")
            gate = AccessGate(provider)
        self.gate = gate

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if is_dashboard_path(path):
            decision = await self.gate.check_dashboard(
                request.cookies.get(settings.auth_cookie_name),
                request.cookies.get(settings.status_cookie_name),
                request.cookies.get(settings.status_expiry_cookie_name),
            )
        else:
            collection_id = share_collection_id(path)
            if collection_id is None:
                return await call_next(request)
            decision = await self.gate.check_share(collection_id)

        if decision.allow:
            response = await call_next(request)
        else:
            logger.info(
                "access.gate.redirect",
                extra={"path": path, "location": decision.redirect_to, "reason": decision.reason},
            )
            response = RedirectResponse(url=decision.redirect_to, status_code=307)
        self._remember(response, decision)
        return response

    def _remember(self, response: Response, decision: GateDecision) -> None:
        if decision.cache is None:
            return
        max_age = settings.access_gate_cache_ttl_seconds
        common = {"max_age": max_age, "httponly": True, "samesite": "lax", "path": "/"}
        response.set_cookie(settings.status_cookie_name, decision.cache.status_value, **common)
        response.set_cookie(settings.status_expiry_cookie_name, decision.cache.expires_value, **common)
