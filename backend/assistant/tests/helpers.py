# assistant/tests/helpers.py
"""Shared fixtures for assistant tests: a scripted LLM client and model factories."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

from django.contrib.auth import get_user_model
from django.utils import timezone

from assistant.ai_engine.keywords import categorize, task_keywords
from assistant.ai_engine.llm_client import Completion, UpstreamServiceError
from assistant.models import ExecutionHistory, TaskEnrichmentProposal
from tasks.models import Task

User = get_user_model()


# ===========================================================================
# FAKE LLM CLIENT
# ===========================================================================


class FakeStream:
    """Scripted stream: yields ``deltas`` and optionally raises ``fail_with`` after ``fail_after`` chunks."""

    def __init__(self, deltas, fail_after=None, fail_with=None, model="fake-model",
                 input_tokens=12, output_tokens=7):
        self.deltas = list(deltas)
        self.fail_after = fail_after
        self.fail_with = fail_with
        self.model = model
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.closed = False
        self.yielded = 0

    def __iter__(self):
        for index, delta in enumerate(self.deltas):
            if self.fail_after is not None and index == self.fail_after:
                raise self.fail_with
            self.yielded += 1
            yield delta
        if self.fail_after is not None and self.fail_after >= len(self.deltas):
            raise self.fail_with

    @property
    def usage(self):
        return {"inputTokens": self.input_tokens, "outputTokens": self.output_tokens}

    def close(self):
        self.closed = True


class FakeLLMClient:
    """
    Stand-in for LLMClient.

    ``replies`` are returned by ``complete`` in order (a dict reply is
    JSON-encoded for ``complete_json``); an exception instance in the list is
    raised instead. ``stream_obj`` is returned by ``stream``.
    """

    def __init__(self, replies: Optional[List[Any]] = None, stream_obj: Optional[FakeStream] = None,
                 stream_error: Optional[Exception] = None):
        self.replies = list(replies or [])
        self.stream_obj = stream_obj
        self.stream_error = stream_error
        self.calls: List[Dict[str, Any]] = []

    def _next(self):
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def complete(self, messages, json_mode=False, temperature=None, max_tokens=None):
        self.calls.append({"messages": messages, "json_mode": json_mode})
        reply = self._next()
        return Completion(content=str(reply), model="fake-model", input_tokens=10, output_tokens=20)

    def complete_json(self, messages, temperature=0.2, max_tokens=None):
        self.calls.append({"messages": messages, "json_mode": True})
        reply = self._next()
        return reply, Completion(content="{}", model="fake-model", input_tokens=10, output_tokens=20)

    def stream(self, messages, temperature=None, max_tokens=None):
        self.calls.append({"messages": messages, "stream": True})
        if self.stream_error is not None:
            raise self.stream_error
        return self.stream_obj


def upstream_error(rate_limited=False):
    if rate_limited:
        return UpstreamServiceError("AI provider rate limit exceeded", "RATE_LIMIT", rate_limited=True)
    return UpstreamServiceError("Could not connect to AI provider", "CONNECTION_ERROR")


# ===========================================================================
# MODEL FACTORIES
# ===========================================================================


def make_user(email="owner@example.com", **extra):
    return User.objects.create_user(email=email, password="testpass123", **extra)


def make_task(user, title="Write quarterly report", **fields):
    return Task.objects.create(user=user, title=title, **fields)


def make_history(user, title, estimated=None, actual=None, outcome=ExecutionHistory.Outcome.COMPLETED,
                 completed_days_ago=1, fingerprint=None, added_titles=None, stall_events=None, **fields):
    """A completed task plus its execution history row, bypassing the recorder."""
    completed_at = timezone.now() - timedelta(days=completed_days_ago)
    task = make_task(
        user, title=title, status=Task.Status.COMPLETED, completed_at=completed_at,
        estimated_minutes=estimated, actual_minutes=actual,
    )
    keywords = fingerprint if fingerprint is not None else task_keywords(title)
    return ExecutionHistory.objects.create(
        task=task,
        user=user,
        original_estimated_minutes=estimated,
        final_actual_minutes=actual,
        estimation_accuracy_ratio=(actual / estimated) if estimated and actual else None,
        subtasks_added_mid_execution=len(added_titles or []),
        added_subtask_titles=added_titles or [],
        stall_events=stall_events or [],
        total_stall_time_minutes=sum(e.get("durationMinutes", 0) for e in stall_events or []),
        outcome=outcome,
        completion_date=completed_at,
        task_category=categorize(keywords),
        keyword_fingerprint=keywords,
        **fields,
    )


def make_accepted_proposal(user, task):
    return TaskEnrichmentProposal.objects.create(
        task=task,
        user=user,
        proposed_title=task.title,
        status=TaskEnrichmentProposal.Status.ACCEPTED,
        accepted_fields=["title"],
    )
