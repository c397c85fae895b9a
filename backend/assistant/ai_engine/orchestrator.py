# assistant/ai_engine/orchestrator.py
"""
Conversational orchestration: resolve the conversation, build the layered
system prompt, call the model (streamed or buffered) and persist the turns.

Ordering per exchange:
    1. validation and ownership checks (no writes before they pass)
    2. user message persisted, counters refreshed
    3. model call
    4. assistant message persisted only after a complete response,
       counters refreshed again

Counters are recomputed from the stored messages, so replaying step 4 or
failing in step 3 can never leave them out of step with the rows.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError
from django.db.models import Count, Max, Sum
from rest_framework.exceptions import NotFound

from projects.models import Project
from tasks.models import Task
from ..models import Conversation, Message
from .artifacts import get_owned_task
from .llm_client import LLMClient, UpstreamServiceError
from .prompts import build_system_prompt

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW = 20


@dataclass
class PreparedExchange:
    conversation: Conversation
    user_message: Message
    model_messages: List[Dict[str, str]] = field(default_factory=list)


def refresh_counters(conversation: Conversation) -> None:
    """Recompute message_count, total_tokens and last_message_at from stored messages."""
    totals = conversation.messages.aggregate(
        count=Count("id"),
        input_tokens=Sum("input_tokens"),
        output_tokens=Sum("output_tokens"),
        last=Max("created_at"),
    )
    conversation.message_count = totals["count"] or 0
    conversation.total_tokens = (totals["input_tokens"] or 0) + (totals["output_tokens"] or 0)
    conversation.last_message_at = totals["last"]
    conversation.save(update_fields=["message_count", "total_tokens", "last_message_at", "updated_at"])


def sse_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


class ChatOrchestrator:
    """
    Entry points:
        prepare(...)        validate, resolve conversation, persist the user turn
        complete(prepared)  buffered reply
        stream(prepared)    generator of event dicts for Server-Sent Events
    """

    def __init__(self, llm_client: Optional[LLMClient] = None, history_window: Optional[int] = None):
        self._llm_client = llm_client
        self.history_window = history_window or getattr(settings, "AI_HISTORY_WINDOW", DEFAULT_HISTORY_WINDOW)

    @property
    def llm_client(self) -> LLMClient:
        if self._llm_client is None:
            self._llm_client = LLMClient()
        return self._llm_client

    # ------------------------------------------------------------------
    # resolution
    # ------------------------------------------------------------------

    def _owned_project(self, user, project_id) -> Project:
        try:
            project = Project.objects.filter(id=project_id, user=user).first()
        except (DjangoValidationError, ValueError):
            project = None
        if project is None:
            raise NotFound("Project not found")
        return project

    def _owned_conversation(self, user, conversation_id) -> Conversation:
        try:
            conversation = Conversation.objects.filter(id=conversation_id, user=user).first()
        except (DjangoValidationError, ValueError):
            conversation = None
        if conversation is None:
            raise NotFound("Conversation not found")
        return conversation

    def _system_prompt(self, task: Optional[Task], project: Optional[Project], conversation_type: str) -> str:
        subtask_titles = None
        if task is not None:
            subtask_titles = list(
                task.subtasks.exclude(status=Task.Status.DELETED).order_by("sort_order", "created_at")
                .values_list("title", flat=True)
            )
        project_counts = None
        if project is not None:
            live = Task.objects.filter(project=project).exclude(status=Task.Status.DELETED)
            project_counts = {
                "total": live.count(),
                "completed": live.filter(status=Task.Status.COMPLETED).count(),
            }
        return build_system_prompt(task, project, conversation_type, subtask_titles, project_counts)

    def _persisted_history(self, conversation: Conversation) -> List[Dict[str, str]]:
        recent = conversation.messages.exclude(role=Message.Role.SYSTEM).order_by("-created_at")[: self.history_window]
        return [{"role": m.role, "content": m.content} for m in reversed(list(recent))]

    def prepare(
        self,
        user,
        message: str,
        task_id=None,
        project_id=None,
        conversation_id=None,
        conversation_type: str = Conversation.Type.GENERAL,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> PreparedExchange:
        task = get_owned_task(user, task_id) if task_id else None
        project = self._owned_project(user, project_id) if project_id else None
        if project is None and task is not None and task.project_id:
            project = task.project

        if conversation_id:
            conversation = self._owned_conversation(user, conversation_id)
            conversation_type = conversation.type
        else:
            conversation = Conversation.objects.create(
                user=user,
                task=task,
                project=project,
                type=conversation_type,
                title=message.strip()[:100],
            )
            logger.info(f"Created {conversation_type} conversation {conversation.pk} for user {user.pk}")

        if history is not None:
            prior = [{"role": h["role"], "content": h["content"]} for h in history]
        else:
            prior = self._persisted_history(conversation)

        user_message = Message.objects.create(
            conversation=conversation,
            role=Message.Role.USER,
            content=message,
        )
        self._safe_refresh(conversation)

        model_messages = [{"role": "system", "content": self._system_prompt(task, project, conversation_type)}]
        model_messages.extend(prior)
        model_messages.append({"role": "user", "content": message})

        return PreparedExchange(conversation=conversation, user_message=user_message, model_messages=model_messages)

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    def _safe_refresh(self, conversation: Conversation) -> None:
        # stored messages stay even if the counter update fails
        try:
            refresh_counters(conversation)
        except DatabaseError as e:
            logger.error(f"Counter refresh failed for conversation {conversation.pk}: {e}")

    def _persist_assistant(self, conversation: Conversation, content: str, model: str,
                           input_tokens: int, output_tokens: int) -> Message:
        reply = Message.objects.create(
            conversation=conversation,
            role=Message.Role.ASSISTANT,
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model,
        )
        self._safe_refresh(conversation)
        return reply

    # ------------------------------------------------------------------
    # model calls
    # ------------------------------------------------------------------

    def complete(self, prepared: PreparedExchange) -> Dict[str, Any]:
        """Buffered exchange. UpstreamServiceError propagates after the user turn is stored."""
        result = self.llm_client.complete(prepared.model_messages)
        self._persist_assistant(
            prepared.conversation, result.content, result.model, result.input_tokens, result.output_tokens
        )
        return {
            "response": result.content,
            "conversationId": str(prepared.conversation.pk),
            "usage": result.usage,
        }

    def stream(self, prepared: PreparedExchange) -> Iterator[Dict[str, Any]]:
        """
        Yield ``message_start``, one ``content_block_delta`` per chunk, then
        ``message_stop`` once the reply is stored, or ``error`` on failure.

        Closing the generator (client disconnect) closes the upstream stream
        and discards the partial text; nothing of an unfinished reply is stored.
        """
        conversation_id = str(prepared.conversation.pk)
        yield {"type": "message_start", "conversationId": conversation_id}

        upstream = None
        try:
            upstream = self.llm_client.stream(prepared.model_messages)
            parts: List[str] = []
            for delta in upstream:
                parts.append(delta)
                yield {"type": "content_block_delta", "data": delta}

            self._persist_assistant(
                prepared.conversation, "".join(parts), upstream.model,
                upstream.input_tokens, upstream.output_tokens,
            )
            yield {"type": "message_stop", "usage": upstream.usage, "conversationId": conversation_id}

        except UpstreamServiceError as e:
            if e.rate_limited:
                yield {"type": "error", "error": "AI rate limit exceeded"}
            else:
                yield {"type": "error", "error": "AI service error"}
        except Exception as e:
            logger.exception(f"Chat stream failed for conversation {conversation_id}: {e}")
            yield {"type": "error", "error": "AI service error"}
        finally:
            if upstream is not None:
                upstream.close()

    def stream_sse(self, prepared: PreparedExchange) -> Iterator[str]:
        events = self.stream(prepared)
        try:
            for event in events:
                yield sse_event(event)
        finally:
            events.close()
