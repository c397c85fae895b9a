# assistant/throttling.py

import time

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.throttling import BaseThrottle

from .ai_engine.rate_limit import RateLimitDecision, get_rate_limiter


class RateLimitExceeded(APIException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Rate limit exceeded"
    default_code = "rate_limited"

    def __init__(self, decision: RateLimitDecision, detail=None):
        super().__init__(detail)
        self.decision = decision
        self.retry_after = decision.retry_after
        self.reset_at_ms = int(time.time() * 1000) + decision.reset_in_ms


class EndpointRateThrottle(BaseThrottle):
    """
    Applies the per-user budget of ``view.rate_limit_scope``.

    The view may carry its own ``rate_limiter``; otherwise the process-wide
    limiter is used. The decision is kept on the request so the response can
    report the remaining budget.
    """

    def allow_request(self, request, view):
        scope = getattr(view, "rate_limit_scope", None)
        if scope is None or not request.user or not request.user.is_authenticated:
            return True
        limiter = getattr(view, "rate_limiter", None) or get_rate_limiter()
        self.decision = limiter.check(str(request.user.pk), scope)
        request.rate_limit_decision = self.decision
        return self.decision.allowed

    def wait(self):
        return self.decision.retry_after


class RateLimitedViewMixin:
    """Turns a denied budget into RateLimitExceeded and adds X-RateLimit-Remaining."""

    rate_limit_scope = None
    rate_limiter = None
    throttle_classes = [EndpointRateThrottle]

    def throttled(self, request, wait):
        raise RateLimitExceeded(request.rate_limit_decision)

    def finalize_response(self, request, response, *args, **kwargs):
        response = super().finalize_response(request, response, *args, **kwargs)
        decision = getattr(request, "rate_limit_decision", None)
        if decision is not None and decision.allowed:
            response["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
