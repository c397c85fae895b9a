# assistant/ai_engine/llm_client.py
"""
Language Model Client
=====================

Thin service layer over the OpenAI Chat Completions API used by every AI
feature (chat, enrichment, research, drafting, similarity refinement).

This module has NO Django ORM dependencies. It handles API communication,
usage accounting and translation of provider failures into a single
``UpstreamServiceError`` that the API layer knows how to render.

Design Principles:
------------------
1. Deferred initialization: a missing API key never crashes at import or
   construction time; calls raise ``UpstreamServiceError(code="NOT_CONFIGURED")``.
2. One error type: callers distinguish provider throttling
   (``rate_limited=True``) from other provider failures, nothing else.
3. Streams are explicit objects that can be closed, so an abandoned
   consumer stops pulling from the provider.

Error Codes:
------------
NOT_CONFIGURED, AUTH_ERROR, RATE_LIMIT, TIMEOUT, CONNECTION_ERROR,
BAD_REQUEST, API_ERROR_<status>, JSON_PARSE_ERROR, EMPTY_RESPONSE
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from django.conf import settings
from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    OpenAI,
    RateLimitError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Custom Exceptions
# ---------------------------------------------------------------------------


class UpstreamServiceError(Exception):
    """
    The language-model provider failed or is unavailable.

    ``rate_limited`` is True only when the provider throttled us, which the
    API renders as 429 and logs apart from our own per-user throttling.
    """

    def __init__(self, message: str, code: str = "UPSTREAM_ERROR", rate_limited: bool = False):
        super().__init__(message)
        self.message = message
        self.code = code
        self.rate_limited = rate_limited


def translate_provider_error(exc: Exception) -> UpstreamServiceError:
    """Map an openai exception onto an UpstreamServiceError with an error code."""
    if isinstance(exc, AuthenticationError):
        logger.error(f"OpenAI authentication failed: {exc}")
        return UpstreamServiceError("Invalid API key or authentication failed", "AUTH_ERROR")
    if isinstance(exc, RateLimitError):
        logger.warning(f"OpenAI rate limit exceeded (upstream throttling): {exc}")
        return UpstreamServiceError("AI provider rate limit exceeded", "RATE_LIMIT", rate_limited=True)
    if isinstance(exc, APITimeoutError):
        logger.warning(f"OpenAI API timeout: {exc}")
        return UpstreamServiceError("AI request timed out", "TIMEOUT")
    if isinstance(exc, APIConnectionError):
        logger.error(f"OpenAI connection error: {exc}")
        return UpstreamServiceError("Could not connect to AI provider", "CONNECTION_ERROR")
    if isinstance(exc, BadRequestError):
        logger.error(f"OpenAI bad request: {exc}")
        return UpstreamServiceError("Invalid request to AI provider", "BAD_REQUEST")
    if isinstance(exc, APIStatusError):
        logger.error(f"OpenAI API status error: {exc.status_code} - {exc}")
        return UpstreamServiceError(
            f"AI provider error (status {exc.status_code})", f"API_ERROR_{exc.status_code}"
        )
    logger.exception(f"Unexpected AI provider error: {exc}")
    return UpstreamServiceError(f"Unexpected error: {type(exc).__name__}", "UNEXPECTED_ERROR")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class Completion:
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def usage(self) -> Dict[str, int]:
        return {"inputTokens": self.input_tokens, "outputTokens": self.output_tokens}


class ChatStream:
    """
    Iterator of text deltas over a streaming completion.

    Token usage is filled in from the final usage chunk and is only
    meaningful once iteration finished. ``close()`` releases the HTTP
    response so the provider stops generating for us.
    """

    def __init__(self, raw_stream: Any, model: str):
        self._raw = raw_stream
        self.model = model
        self.input_tokens = 0
        self.output_tokens = 0
        self.finished = False

    def __iter__(self) -> Iterator[str]:
        try:
            for chunk in self._raw:
                usage = getattr(chunk, "usage", None)
                if usage:
                    self.input_tokens = usage.prompt_tokens or 0
                    self.output_tokens = usage.completion_tokens or 0
                if chunk.choices:
                    text = chunk.choices[0].delta.content
                    if text:
                        yield text
        except APIError as e:
            raise translate_provider_error(e) from e
        self.finished = True

    @property
    def usage(self) -> Dict[str, int]:
        return {"inputTokens": self.input_tokens, "outputTokens": self.output_tokens}

    def close(self) -> None:
        self._raw.close()


# ---------------------------------------------------------------------------
# Main Service Class
# ---------------------------------------------------------------------------


class LLMClient:
    """
    Service class wrapping an ``OpenAI`` client.

    Attributes:
        model (str): Model identifier used for every call.
        client (OpenAI | None): Initialized client, or None if unavailable.
        is_configured (bool): Whether calls can be made.
        configuration_error (str | None): Why the client is unavailable.

    Example:
        >>> llm = LLMClient()
        >>> result = llm.complete([{"role": "user", "content": "Hello"}])
        >>> result.content
    """

    DEFAULT_MODEL: str = "gpt-4o-mini"
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_MAX_TOKENS: int = 2048
    DEFAULT_TIMEOUT: float = 30.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        **client_kwargs: Any,
    ) -> None:
        self.model: str = model or getattr(settings, "OPENAI_MODEL", None) or self.DEFAULT_MODEL
        self.timeout: float = timeout or getattr(settings, "OPENAI_TIMEOUT", None) or self.DEFAULT_TIMEOUT
        self.max_tokens: int = getattr(settings, "OPENAI_MAX_TOKENS", None) or self.DEFAULT_MAX_TOKENS
        self._client_kwargs: Dict[str, Any] = client_kwargs

        self.api_key: Optional[str] = None
        self.client: Optional[OpenAI] = None
        self.is_configured: bool = False
        self.configuration_error: Optional[str] = None

        self._configure(api_key)

    def _configure(self, api_key: Optional[str] = None) -> None:
        resolved_key = api_key or getattr(settings, "OPENAI_API_KEY", None) or ""
        if not resolved_key:
            self.configuration_error = (
                "OPENAI_API_KEY is not configured. "
                "Set the OPENAI_API_KEY environment variable or Django setting."
            )
            logger.warning(f"LLMClient: {self.configuration_error}")
            return

        try:
            self.api_key = resolved_key
            self.client = OpenAI(api_key=self.api_key, **self._client_kwargs)
            self.is_configured = True
            self.configuration_error = None
            logger.debug(f"LLMClient initialized with model={self.model}")
        except Exception as e:
            self.configuration_error = f"Failed to initialize OpenAI client: {str(e)}"
            logger.error(f"LLMClient: {self.configuration_error}")
            self.client = None
            self.is_configured = False

    def _require_client(self) -> OpenAI:
        if not self.is_configured or self.client is None:
            raise UpstreamServiceError(
                self.configuration_error or "AI provider not available", "NOT_CONFIGURED"
            )
        return self.client

    def complete(
        self,
        messages: List[Dict[str, str]],
        json_mode: bool = False,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Completion:
        """Blocking completion. Raises UpstreamServiceError on any provider failure."""
        client = self._require_client()
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.DEFAULT_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
            "timeout": self.timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = client.chat.completions.create(**kwargs)
        except APIError as e:
            raise translate_provider_error(e) from e

        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        logger.debug(f"LLMClient: raw response: {content[:200]}...")
        return Completion(
            content=content,
            model=getattr(response, "model", None) or self.model,
            input_tokens=(usage.prompt_tokens or 0) if usage else 0,
            output_tokens=(usage.completion_tokens or 0) if usage else 0,
        )

    def complete_json(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = 0.2,
        max_tokens: Optional[int] = None,
    ) -> tuple[Dict[str, Any], Completion]:
        """JSON-mode completion returning the decoded object and the raw completion."""
        completion = self.complete(messages, json_mode=True, temperature=temperature, max_tokens=max_tokens)
        if not completion.content:
            raise UpstreamServiceError("Empty response from AI", "EMPTY_RESPONSE")
        try:
            data = json.loads(completion.content)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode AI response as JSON: {e}")
            raise UpstreamServiceError("AI returned invalid JSON response", "JSON_PARSE_ERROR") from e
        if not isinstance(data, dict):
            raise UpstreamServiceError("AI returned invalid JSON response", "JSON_PARSE_ERROR")
        return data, completion

    def stream(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatStream:
        """Start a streaming completion. Errors while opening the stream raise immediately."""
        client = self._require_client()
        try:
            raw = client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.DEFAULT_TEMPERATURE if temperature is None else temperature,
                max_tokens=max_tokens or self.max_tokens,
                timeout=self.timeout,
                stream=True,
                stream_options={"include_usage": True},
            )
        except APIError as e:
            raise translate_provider_error(e) from e
        return ChatStream(raw, self.model)
