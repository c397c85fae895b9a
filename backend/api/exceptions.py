# api/exceptions.py
"""
Single JSON error contract for every endpoint:

    {"success": false, "error": "<human readable>", "details": ...optional}

Our own throttling, provider throttling and provider failures are logged
differently even where they render alike.
"""

import logging

from django.db import DatabaseError
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from assistant.ai_engine.llm_client import UpstreamServiceError
from assistant.throttling import RateLimitExceeded

logger = logging.getLogger(__name__)


def _error(message, status_code, details=None, **extra):
    body = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    body.update(extra)
    return Response(body, status=status_code)


def _view_name(context):
    view = context.get("view")
    return type(view).__name__ if view is not None else "unknown view"


def api_exception_handler(exc, context):
    if isinstance(exc, UpstreamServiceError):
        if exc.rate_limited:
            logger.warning(f"Upstream AI provider throttled {_view_name(context)} ({exc.code})")
            return _error("AI rate limit exceeded", status.HTTP_429_TOO_MANY_REQUESTS)
        logger.error(f"Upstream AI failure in {_view_name(context)}: {exc.code} {exc.message}")
        return _error("AI service error", status.HTTP_503_SERVICE_UNAVAILABLE)

    if isinstance(exc, DatabaseError):
        logger.exception(f"Persistence failure in {_view_name(context)}: {exc}")
        return _error("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    is_http404 = isinstance(exc, Http404)
    response = exception_handler(exc, context)
    if response is None:
        # unhandled: let Django's 500 handling and logging take over
        return None

    if isinstance(exc, RateLimitExceeded):
        response.data = {"success": False, "error": str(exc.detail), "retryAfter": exc.retry_after}
        response["Retry-After"] = str(exc.retry_after)
        response["X-RateLimit-Remaining"] = "0"
        response["X-RateLimit-Reset"] = str(exc.reset_at_ms)
        return response

    if isinstance(exc, exceptions.ValidationError):
        response.data = {"success": False, "error": "Validation error", "details": response.data}
    elif isinstance(exc, (exceptions.NotAuthenticated, exceptions.AuthenticationFailed)):
        response.data = {"success": False, "error": "Unauthorized"}
    elif is_http404:
        response.data = {"success": False, "error": "Not found"}
    else:
        detail = getattr(exc, "detail", None)
        if isinstance(detail, str):
            response.data = {"success": False, "error": str(detail)}
        else:
            response.data = {"success": False, "error": "Request failed", "details": response.data}
    return response
