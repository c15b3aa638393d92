"""Cookie synchronizer — mirrors subscription status into a browser cookie.

The ``subscription_status`` cookie lets the gating middleware decide access
without touching the database or verifying a token. Every route that sets or
clears it goes through this module.
"""

import logging
from http.cookies import CookieError, SimpleCookie
from typing import Any

from starlette.requests import Request
from starlette.responses import Response

from quillsign.billing.plans import is_active_status
from quillsign.config import settings

logger = logging.getLogger(__name__)

ACTIVE_COOKIE_VALUE = "active"


def cookie_value_for_status(status: str) -> str:
    """``active`` and ``trialing`` both collapse to ``active``; others pass through."""
    if is_active_status(status):
        return ACTIVE_COOKIE_VALUE
    return str(getattr(status, "value", status))


def set_subscription_cookie(response: Response, status: str, http_only: bool = True) -> str:
    """Set the subscription cookie for ``status`` and return the value written."""
    value = cookie_value_for_status(status)
    response.set_cookie(
        key=settings.subscription_cookie_name,
        value=value,
        max_age=settings.subscription_cookie_max_age,
        path="/",
        httponly=http_only,
        secure=settings.secure_cookies,
        samesite="lax",
    )
    return value


def clear_subscription_cookie(response: Response) -> None:
    response.delete_cookie(settings.subscription_cookie_name, path="/")


def force_subscription_cookie(response: Response, status: str) -> str:
    """Drop whatever the browser holds and write ``status`` again."""
    logger.info("Force updating subscription cookie to: %s", status)
    clear_subscription_cookie(response)
    return set_subscription_cookie(response, status)


def emitted_cookie_value(response: Response, name: str) -> str | None:
    """Value of the last Set-Cookie header for ``name`` on the response."""
    value = None
    for header in response.headers.getlist("set-cookie"):
        jar = SimpleCookie()
        try:
            jar.load(header)
        except CookieError:
            continue
        if name in jar:
            value = jar[name].value
    return value


def synchronize_subscription_cookie(
    request: Request,
    response: Response,
    claims: dict[str, Any] | None,
) -> str | None:
    """Bring the request's subscription cookie in line with ``claims``.

    Returns the cookie value now in effect, or None when the claims carry no
    subscription status (the cookie is left alone).
    """
    if not claims:
        return None

    status = claims.get("subscriptionStatus")
    if not status:
        logger.warning("No subscription status found in claims, skipping cookie sync")
        return None

    expected = cookie_value_for_status(status)
    current = request.cookies.get(settings.subscription_cookie_name)
    if current == expected:
        logger.debug("Cookie already synchronized with claims: %s", expected)
        return current

    logger.info(
        "Synchronizing %s cookie: %s -> %s",
        settings.subscription_cookie_name,
        current or "(none)",
        expected,
    )
    set_subscription_cookie(response, status)

    # Re-check what actually went out; another writer on this response may
    # have overwritten it.
    if emitted_cookie_value(response, settings.subscription_cookie_name) != expected:
        logger.warning("Cookie not set correctly, forcing to %s", expected)
        force_subscription_cookie(response, status)
    return expected


def set_session_cookie(response: Response, access_token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=access_token,
        max_age=settings.jwt_access_token_expire_minutes * 60,
        path="/",
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
    )


def clear_session_cookies(response: Response) -> None:
    """Clear the session cookie together with the subscription mirror."""
    response.delete_cookie(settings.session_cookie_name, path="/")
    clear_subscription_cookie(response)
