# assistant/tests/test_orchestrator.py
"""
Conversational Orchestrator Tests
=================================

Test Categories:
----------------
1. Preparation - ownership, conversation resolution, prompt layering
2. Streaming - event sequence, mid-stream failure, client disconnect
3. HTTP - buffered and SSE responses, upstream error mapping
"""

import json
from unittest.mock import patch

from django.test import TestCase
from rest_framework import status
from rest_framework.exceptions import NotFound
from rest_framework.test import APITestCase

from assistant.ai_engine.orchestrator import ChatOrchestrator, sse_event
from assistant.ai_engine.rate_limit import get_rate_limiter
from assistant.models import Conversation, Message
from assistant.tests.helpers import FakeLLMClient, FakeStream, make_task, make_user, upstream_error
from projects.models import Project
from tasks.models import Task


def parse_sse(body):
    events = []
    for block in body.split("\n\n"):
        if block.startswith("data: "):
            events.append(json.loads(block[len("data: "):]))
    return events


# ===========================================================================
# PREPARATION
# ===========================================================================


class PrepareTests(TestCase):

    def setUp(self):
        self.user = make_user()
        self.project = Project.objects.create(user=self.user, name="Launch", description="Q3 launch")
        self.task = make_task(self.user, title="Write launch post", project=self.project, priority="high")
        make_task(self.user, title="Collect screenshots", parent_task=self.task)
        self.orchestrator = ChatOrchestrator(llm_client=FakeLLMClient())

    def test_system_prompt_layers_task_and_project_context(self):
        prepared = self.orchestrator.prepare(self.user, "Help me start", task_id=self.task.id)

        system = prepared.model_messages[0]
        self.assertEqual(system["role"], "system")
        self.assertIn("## Current Task Context", system["content"])
        self.assertIn("- Title: Write launch post", system["content"])
        self.assertIn("- Description: None provided", system["content"])
        self.assertIn("- Due Date: Not set", system["content"])
        self.assertIn("Collect screenshots", system["content"])
        self.assertIn("## Project Context", system["content"])
        self.assertIn("- Project Name: Launch", system["content"])
        self.assertIn("- Total Tasks: 1", system["content"])
        self.assertEqual(prepared.model_messages[-1], {"role": "user", "content": "Help me start"})

    def test_new_conversation_is_scoped_and_titled(self):
        prepared = self.orchestrator.prepare(
            self.user, "Plan the launch " * 20, task_id=self.task.id, conversation_type="planning"
        )

        conversation = prepared.conversation
        self.assertEqual(conversation.task_id, self.task.id)
        self.assertEqual(conversation.project_id, self.project.id)
        self.assertEqual(conversation.type, Conversation.Type.PLANNING)
        self.assertEqual(len(conversation.title), 100)
        self.assertEqual(conversation.message_count, 1)

    def test_reused_conversation_supplies_history(self):
        first = self.orchestrator.prepare(self.user, "first question")
        Message.objects.create(conversation=first.conversation, role="assistant", content="first answer")

        second = self.orchestrator.prepare(self.user, "follow up", conversation_id=first.conversation.id)

        self.assertEqual(second.conversation.pk, first.conversation.pk)
        self.assertEqual(
            [m["content"] for m in second.model_messages[1:]],
            ["first question", "first answer", "follow up"],
        )

    def test_history_window_limits_persisted_turns(self):
        orchestrator = ChatOrchestrator(llm_client=FakeLLMClient(), history_window=2)
        first = orchestrator.prepare(self.user, "one")
        for text in ("two", "three"):
            Message.objects.create(conversation=first.conversation, role="user", content=text)

        prepared = orchestrator.prepare(self.user, "four", conversation_id=first.conversation.id)

        self.assertEqual([m["content"] for m in prepared.model_messages[1:]], ["two", "three", "four"])

    def test_supplied_history_replaces_persisted_history(self):
        history = [{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "reply"}]

        prepared = self.orchestrator.prepare(self.user, "now", history=history)

        self.assertEqual([m["content"] for m in prepared.model_messages[1:]], ["earlier", "reply", "now"])

    def test_foreign_ids_fail_before_any_write(self):
        """Ownership failures raise NotFound and store nothing."""
        intruder = make_user(email="intruder@example.com")
        own = self.orchestrator.prepare(self.user, "mine").conversation
        baseline = Message.objects.count()

        for kwargs, message in (
            ({"task_id": self.task.id}, "Task not found"),
            ({"project_id": self.project.id}, "Project not found"),
            ({"conversation_id": own.id}, "Conversation not found"),
        ):
            with self.assertRaisesMessage(NotFound, message):
                self.orchestrator.prepare(intruder, "hi", **kwargs)

        self.assertEqual(Message.objects.count(), baseline)
        self.assertFalse(Conversation.objects.filter(user=intruder).exists())


# ===========================================================================
# STREAMING
# ===========================================================================


class StreamTests(TestCase):

    def setUp(self):
        self.user = make_user()

    def test_event_sequence_and_persistence(self):
        stream = FakeStream(["Hel", "lo"], input_tokens=11, output_tokens=2)
        orchestrator = ChatOrchestrator(llm_client=FakeLLMClient(stream_obj=stream))
        prepared = orchestrator.prepare(self.user, "hi")

        events = list(orchestrator.stream(prepared))

        conversation_id = str(prepared.conversation.pk)
        self.assertEqual(events[0], {"type": "message_start", "conversationId": conversation_id})
        self.assertEqual(events[1:3], [
            {"type": "content_block_delta", "data": "Hel"},
            {"type": "content_block_delta", "data": "lo"},
        ])
        self.assertEqual(events[3], {
            "type": "message_stop",
            "usage": {"inputTokens": 11, "outputTokens": 2},
            "conversationId": conversation_id,
        })
        reply = prepared.conversation.messages.get(role="assistant")
        self.assertEqual(reply.content, "Hello")
        prepared.conversation.refresh_from_db()
        self.assertEqual(prepared.conversation.message_count, 2)
        self.assertEqual(prepared.conversation.total_tokens, 13)
        self.assertTrue(stream.closed)

    def test_mid_stream_failure_leaves_no_assistant_turn(self):
        """An upstream failure mid-stream stores only the user message."""
        stream = FakeStream(["partial ", "answer"], fail_after=1, fail_with=upstream_error())
        orchestrator = ChatOrchestrator(llm_client=FakeLLMClient(stream_obj=stream))
        prepared = orchestrator.prepare(self.user, "hi")

        events = list(orchestrator.stream(prepared))

        self.assertEqual(events[-1], {"type": "error", "error": "AI service error"})
        self.assertNotIn("message_stop", [e["type"] for e in events])
        prepared.conversation.refresh_from_db()
        self.assertEqual(prepared.conversation.message_count, 1)
        self.assertFalse(prepared.conversation.messages.filter(role="assistant").exists())
        self.assertTrue(stream.closed)

    def test_upstream_throttling_is_reported_in_band(self):
        orchestrator = ChatOrchestrator(llm_client=FakeLLMClient(stream_error=upstream_error(rate_limited=True)))
        prepared = orchestrator.prepare(self.user, "hi")

        events = list(orchestrator.stream(prepared))

        self.assertEqual([e["type"] for e in events], ["message_start", "error"])
        self.assertEqual(events[-1]["error"], "AI rate limit exceeded")

    def test_unexpected_failure_is_logged(self):
        stream = FakeStream(["x"], fail_after=0, fail_with=RuntimeError("boom"))
        orchestrator = ChatOrchestrator(llm_client=FakeLLMClient(stream_obj=stream))
        prepared = orchestrator.prepare(self.user, "hi")

        with self.assertLogs("assistant.ai_engine.orchestrator", level="ERROR"):
            events = list(orchestrator.stream(prepared))

        self.assertEqual(events[-1]["type"], "error")

    def test_client_disconnect_closes_upstream(self):
        """Closing the generator stops pulling chunks and discards partial text."""
        stream = FakeStream(["one", "two", "three"])
        orchestrator = ChatOrchestrator(llm_client=FakeLLMClient(stream_obj=stream))
        prepared = orchestrator.prepare(self.user, "hi")

        sse = orchestrator.stream_sse(prepared)
        next(sse)  # message_start
        next(sse)  # first delta
        sse.close()

        self.assertTrue(stream.closed)
        self.assertEqual(stream.yielded, 1)
        self.assertFalse(prepared.conversation.messages.filter(role="assistant").exists())

    def test_sse_framing(self):
        self.assertEqual(sse_event({"type": "message_start"}), 'data: {"type": "message_start"}\n\n')


# ===========================================================================
# HTTP
# ===========================================================================


class ChatAPITests(APITestCase):

    def setUp(self):
        get_rate_limiter.cache_clear()
        self.user = make_user()
        self.client.force_authenticate(user=self.user)

    def tearDown(self):
        get_rate_limiter.cache_clear()

    def post_chat(self, **payload):
        return self.client.post("/api/v1/ai/chat/", payload, format="json")

    @patch("assistant.ai_engine.orchestrator.LLMClient")
    def test_buffered_reply(self, mock_client_cls):
        mock_client_cls.return_value = FakeLLMClient(replies=["Sure, here is a plan."])

        response = self.post_chat(message="Plan my day", stream=False)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data["data"]
        self.assertEqual(data["response"], "Sure, here is a plan.")
        self.assertEqual(data["usage"], {"inputTokens": 10, "outputTokens": 20})
        conversation = Conversation.objects.get(pk=data["conversationId"])
        self.assertEqual(conversation.message_count, 2)

    @patch("assistant.ai_engine.orchestrator.LLMClient")
    def test_upstream_rate_limit_maps_to_429(self, mock_client_cls):
        mock_client_cls.return_value = FakeLLMClient(replies=[upstream_error(rate_limited=True)])

        response = self.post_chat(message="hi", stream=False)

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.data, {"success": False, "error": "AI rate limit exceeded"})
        self.assertNotIn("Retry-After", response)

    @patch("assistant.ai_engine.orchestrator.LLMClient")
    def test_upstream_failure_maps_to_503_and_keeps_user_turn(self, mock_client_cls):
        mock_client_cls.return_value = FakeLLMClient(replies=[upstream_error()])

        response = self.post_chat(message="hi", stream=False)

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response.data["error"], "AI service error")
        conversation = Conversation.objects.get(user=self.user)
        self.assertEqual(conversation.message_count, 1)

    @patch("assistant.ai_engine.orchestrator.LLMClient")
    def test_streamed_reply(self, mock_client_cls):
        mock_client_cls.return_value = FakeLLMClient(stream_obj=FakeStream(["Hi", " there"]))

        response = self.post_chat(message="hello")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response["Content-Type"], "text/event-stream")
        self.assertEqual(response["Cache-Control"], "no-cache")
        body = b"".join(response.streaming_content).decode()
        events = parse_sse(body)
        self.assertEqual([e["type"] for e in events],
                         ["message_start", "content_block_delta", "content_block_delta", "message_stop"])
        self.assertEqual(Message.objects.get(role="assistant").content, "Hi there")

    def test_missing_ai_configuration_answers_503(self):
        with self.settings(OPENAI_API_KEY=""):
            response = self.post_chat(message="hi", stream=False)

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)

    def test_foreign_task_answers_404(self):
        other = make_task(make_user(email="other@example.com"))

        response = self.post_chat(message="hi", taskId=str(other.id), stream=False)

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["error"], "Task not found")
        self.assertFalse(Conversation.objects.exists())

    def test_validation(self):
        self.assertEqual(self.post_chat(message="").status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(self.post_chat(message="x" * 10001).status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(
            self.post_chat(message="hi", conversationType="gossip").status_code, status.HTTP_400_BAD_REQUEST
        )
        history = [{"role": "user", "content": "x"}] * 51
        self.assertEqual(
            self.post_chat(message="hi", conversationHistory=history).status_code, status.HTTP_400_BAD_REQUEST
        )

    def test_conversation_routes(self):
        own = Conversation.objects.create(user=self.user, title="Mine")
        Message.objects.create(conversation=own, role="user", content="hello")
        Conversation.objects.create(user=make_user(email="other@example.com"), title="Theirs")

        listed = self.client.get("/api/v1/ai/conversations/")
        detail = self.client.get(f"/api/v1/ai/conversations/{own.id}/")

        self.assertEqual([c["title"] for c in listed.data["data"]["conversations"]], ["Mine"])
        self.assertEqual(detail.data["data"]["conversation"]["messages"][0]["content"], "hello")

    def test_foreign_conversation_detail_answers_404(self):
        theirs = Conversation.objects.create(user=make_user(email="other@example.com"))

        response = self.client.get(f"/api/v1/ai/conversations/{theirs.id}/")

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["error"], "Conversation not found")
