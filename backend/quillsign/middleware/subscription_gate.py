"""Subscription gating middleware.

Decides access to app pages from cookies alone: the ``session`` cookie (any
value, not verified here) and the ``subscription_status`` mirror. API routes
enforce auth themselves and are never gated.
"""

import logging
from urllib.parse import quote

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from quillsign.billing.cookies import ACTIVE_COOKIE_VALUE, clear_subscription_cookie
from quillsign.billing.plans import SubscriptionStatus
from quillsign.config import settings

logger = logging.getLogger(__name__)


def _matches(path: str, prefixes: list[str]) -> bool:
    return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in prefixes)


class SubscriptionGateMiddleware(BaseHTTPMiddleware):
    """Redirect page requests that lack a session or an active subscription.

    - Non-gated paths pass through untouched.
    - A subscription cookie without a session is stale: clear it, go to login.
    - No session: go to login.
    - Auth-only paths (subscribe, payment result pages) need just a session.
    - ``active`` passes; ``canceled`` goes to pricing with ``expired=true``;
      anything else goes to pricing with ``required=true``.
    """

    def __init__(
        self,
        app,
        gated_prefixes: list[str] | None = None,
        auth_only_prefixes: list[str] | None = None,
    ):
        super().__init__(app)
        self.gated_prefixes = gated_prefixes if gated_prefixes is not None else settings.gated_path_prefixes
        self.auth_only_prefixes = (
            auth_only_prefixes if auth_only_prefixes is not None else settings.auth_only_path_prefixes
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith("/api/") or not _matches(path, self.gated_prefixes + self.auth_only_prefixes):
            return await call_next(request)

        session = request.cookies.get(settings.session_cookie_name)
        subscription_status = request.cookies.get(settings.subscription_cookie_name)
        origin = quote(path, safe="")

        if not session:
            if subscription_status:
                logger.info("Stale subscription cookie without session on %s, clearing", path)
                response = RedirectResponse(f"/login?from={origin}&reset=true", status_code=307)
                clear_subscription_cookie(response)
                return response
            logger.debug("No session cookie, redirecting to login from %s", path)
            return RedirectResponse(f"/login?from={origin}", status_code=307)

        if _matches(path, self.auth_only_prefixes):
            return await call_next(request)

        if subscription_status == ACTIVE_COOKIE_VALUE:
            return await call_next(request)

        if subscription_status == SubscriptionStatus.CANCELED.value:
            logger.info("Subscription canceled, redirecting %s to pricing", path)
            return RedirectResponse(f"/pricing?expired=true&from={origin}", status_code=307)

        logger.info("No active subscription (%s), redirecting %s to pricing", subscription_status or "unset", path)
        return RedirectResponse(f"/pricing?required=true&from={origin}", status_code=307)
