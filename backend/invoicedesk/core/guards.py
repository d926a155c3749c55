"""Security gate run in front of every mutating endpoint.

Order: authenticate, rate limit (keyed by action and actor), origin check.
Ownership is checked afterwards by the route, once the resource id is known.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Callable

from fastapi import Depends, Request

from invoicedesk.core.csrf import validate_origin
from invoicedesk.core.deps import get_current_user, get_rate_limiter, log_security_event
from invoicedesk.core.errors import CsrfRejectedError, RateLimitedError
from invoicedesk.core.observability import csrf_rejections_total, rate_limit_denials_total
from invoicedesk.core.rate_limit import RateLimiter, rate_limit_key
from invoicedesk.core.settings import settings
from invoicedesk.models.user import User


def enforce_rate_limit(limiter: RateLimiter, *, request: Request, action: str, actor: str | int) -> None:
    setting_name = action.split(":")[-1]
    max_requests, window_seconds = settings.rate_limit_for(setting_name)
    decision = limiter.check(rate_limit_key(action, actor), max_requests, timedelta(seconds=window_seconds))
    if not decision.allowed:
        rate_limit_denials_total.labels(action=action).inc()
        log_security_event(
            "rate_limited",
            request=request,
            user_id=actor if isinstance(actor, int) else None,
            extra={"action": action, "reset_at": decision.reset_at.isoformat()},
        )
        raise RateLimitedError(decision.reset_at)


def enforce_same_origin(request: Request, *, user_id: int | None = None) -> None:
    origin = request.headers.get("origin")
    referer = request.headers.get("referer")
    if not validate_origin(origin, referer, request.headers.get("host")):
        csrf_rejections_total.inc()
        log_security_event(
            "csrf_rejected",
            request=request,
            user_id=user_id,
            extra={"origin": origin, "referer": referer},
        )
        raise CsrfRejectedError()


def write_guard(action: str) -> Callable[..., User]:
    """Build a dependency that authenticates, rate limits ``action`` and checks origin.

    ``action`` is namespaced like ``invoice:send``; the final segment selects
    the thresholds from settings (``rate_limit_send_max`` and friends).
    """

    def _guard(
        request: Request,
        current_user: User = Depends(get_current_user),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> User:
        enforce_rate_limit(limiter, request=request, action=action, actor=current_user.id)
        enforce_same_origin(request, user_id=current_user.id)
        return current_user

    return _guard
