# assistant/tests/test_llm_client.py
"""
LLM Client Tests
================

The OpenAI SDK is mocked throughout; nothing here touches the network.
"""

import json
from unittest.mock import MagicMock, patch

import httpx
from django.test import SimpleTestCase, override_settings
from openai import APIConnectionError, AuthenticationError, RateLimitError

from assistant.ai_engine.llm_client import (
    ChatStream,
    LLMClient,
    UpstreamServiceError,
    translate_provider_error,
)


def create_mock_completion(content, prompt_tokens=5, completion_tokens=9, model="gpt-4o-mini"):
    mock_choice = MagicMock()
    mock_choice.message.content = content
    mock_response = MagicMock()
    mock_response.choices = [mock_choice]
    mock_response.model = model
    mock_response.usage.prompt_tokens = prompt_tokens
    mock_response.usage.completion_tokens = completion_tokens
    return mock_response


def create_mock_chunk(text=None, usage=None):
    chunk = MagicMock()
    if text is None:
        chunk.choices = []
    else:
        choice = MagicMock()
        choice.delta.content = text
        chunk.choices = [choice]
    chunk.usage = usage
    return chunk


def provider_error(cls, status_code):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status_code, request=request)
    return cls("provider says no", response=response, body=None)


# ===========================================================================
# CONFIGURATION
# ===========================================================================


class ConfigurationTests(SimpleTestCase):

    @override_settings(OPENAI_API_KEY="")
    def test_missing_key_defers_failure_to_call_time(self):
        """Construction never raises; calls raise NOT_CONFIGURED."""
        client = LLMClient()

        self.assertFalse(client.is_configured)
        with self.assertRaises(UpstreamServiceError) as ctx:
            client.complete([{"role": "user", "content": "hi"}])
        self.assertEqual(ctx.exception.code, "NOT_CONFIGURED")

    @override_settings(OPENAI_API_KEY="sk-test", OPENAI_MODEL="gpt-test")
    @patch("assistant.ai_engine.llm_client.OpenAI")
    def test_settings_are_used(self, mock_openai):
        client = LLMClient()

        self.assertTrue(client.is_configured)
        self.assertEqual(client.model, "gpt-test")
        mock_openai.assert_called_once_with(api_key="sk-test")


# ===========================================================================
# COMPLETIONS
# ===========================================================================


@override_settings(OPENAI_API_KEY="sk-test")
@patch("assistant.ai_engine.llm_client.OpenAI")
class CompletionTests(SimpleTestCase):

    def test_complete_returns_content_and_usage(self, mock_openai):
        mock_openai.return_value.chat.completions.create.return_value = create_mock_completion("hello")

        result = LLMClient().complete([{"role": "user", "content": "hi"}])

        self.assertEqual(result.content, "hello")
        self.assertEqual(result.usage, {"inputTokens": 5, "outputTokens": 9})

    def test_json_mode(self, mock_openai):
        create = mock_openai.return_value.chat.completions.create
        create.return_value = create_mock_completion(json.dumps({"ok": True}))

        data, _ = LLMClient().complete_json([{"role": "user", "content": "hi"}])

        self.assertEqual(data, {"ok": True})
        self.assertEqual(create.call_args.kwargs["response_format"], {"type": "json_object"})

    def test_invalid_json_raises(self, mock_openai):
        mock_openai.return_value.chat.completions.create.return_value = create_mock_completion("not json")

        with self.assertRaises(UpstreamServiceError) as ctx:
            LLMClient().complete_json([{"role": "user", "content": "hi"}])
        self.assertEqual(ctx.exception.code, "JSON_PARSE_ERROR")

    def test_provider_throttling_is_flagged(self, mock_openai):
        mock_openai.return_value.chat.completions.create.side_effect = provider_error(RateLimitError, 429)

        with self.assertRaises(UpstreamServiceError) as ctx:
            LLMClient().complete([{"role": "user", "content": "hi"}])
        self.assertTrue(ctx.exception.rate_limited)
        self.assertEqual(ctx.exception.code, "RATE_LIMIT")

    def test_stream_yields_deltas_and_usage(self, mock_openai):
        usage = MagicMock(prompt_tokens=3, completion_tokens=4)
        raw = MagicMock()
        raw.__iter__.return_value = iter([
            create_mock_chunk("Hel"), create_mock_chunk(""), create_mock_chunk("lo"), create_mock_chunk(usage=usage),
        ])
        mock_openai.return_value.chat.completions.create.return_value = raw

        stream = LLMClient().stream([{"role": "user", "content": "hi"}])

        self.assertEqual(list(stream), ["Hel", "lo"])
        self.assertTrue(stream.finished)
        self.assertEqual(stream.usage, {"inputTokens": 3, "outputTokens": 4})
        kwargs = mock_openai.return_value.chat.completions.create.call_args.kwargs
        self.assertTrue(kwargs["stream"])
        stream.close()
        raw.close.assert_called_once()


class ErrorTranslationTests(SimpleTestCase):

    def test_codes(self):
        self.assertEqual(translate_provider_error(provider_error(AuthenticationError, 401)).code, "AUTH_ERROR")
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        self.assertEqual(translate_provider_error(APIConnectionError(request=request)).code, "CONNECTION_ERROR")
        self.assertEqual(translate_provider_error(ValueError("odd")).code, "UNEXPECTED_ERROR")

    def test_mid_stream_error_is_translated(self):
        raw = MagicMock()
        raw.__iter__.side_effect = lambda: (_ for _ in ()).throw(provider_error(RateLimitError, 429))

        with self.assertRaises(UpstreamServiceError) as ctx:
            list(ChatStream(raw, "gpt-4o-mini"))
        self.assertTrue(ctx.exception.rate_limited)
