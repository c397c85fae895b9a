# assistant/views.py
import logging

from django.http import StreamingHttpResponse
from rest_framework import permissions, status
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import Conversation, ExecutionHistory
from .serializers import (
    AIArtifactSerializer,
    ApplyEnrichmentSerializer,
    ChatRequestSerializer,
    ContextCreateSerializer,
    ContextHistoryQuerySerializer,
    ContextQuerySerializer,
    ConversationDetailSerializer,
    ConversationSerializer,
    DecomposeRequestSerializer,
    DraftRequestSerializer,
    EnrichRequestSerializer,
    ResearchRequestSerializer,
    SimilarTasksRequestSerializer,
)
from .throttling import RateLimitedViewMixin
from .ai_engine.artifacts import ArtifactStore, get_owned_task
from .ai_engine.enrichment import EnrichmentService
from .ai_engine.generation import ContentGenerator
from .ai_engine.history import calculate_insights
from .ai_engine.orchestrator import ChatOrchestrator
from .ai_engine.similarity import SimilarityEngine, aggregate_to_api, match_to_api
from tasks.serializers import TaskSerializer

logger = logging.getLogger(__name__)


def _ok(data, status_code=status.HTTP_200_OK):
    return Response({"success": True, "data": data}, status=status_code)


class AIBaseView(RateLimitedViewMixin, APIView):
    permission_classes = [permissions.IsAuthenticated]


# ------------------------------------------------------------------
# Chat
# ------------------------------------------------------------------

class ChatView(AIBaseView):
    """
    POST: send a message to the assistant.

    With ``stream`` (the default) the reply arrives as Server-Sent Events;
    otherwise as one JSON body. Ownership of task, project and conversation
    is checked before anything is stored.
    """
    rate_limit_scope = "chat"

    def post(self, request, *args, **kwargs):
        serializer = ChatRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        orchestrator = ChatOrchestrator()
        prepared = orchestrator.prepare(
            request.user,
            data["message"],
            task_id=data.get("taskId"),
            project_id=data.get("projectId"),
            conversation_id=data.get("conversationId"),
            conversation_type=data.get("conversationType"),
            history=data.get("conversationHistory"),
        )

        if data.get("stream", True):
            response = StreamingHttpResponse(
                orchestrator.stream_sse(prepared), content_type="text/event-stream"
            )
            response["Cache-Control"] = "no-cache"
            response["X-Accel-Buffering"] = "no"
            return response

        return _ok(orchestrator.complete(prepared))

chat_view = ChatView.as_view()


class ConversationListView(AIBaseView):
    """GET: the user's conversations, newest activity first. ?taskId, ?includeArchived=true"""

    def get(self, request, *args, **kwargs):
        qs = Conversation.objects.filter(user=request.user)
        if request.query_params.get("includeArchived") != "true":
            qs = qs.filter(is_archived=False)
        if request.query_params.get("taskId"):
            get_owned_task(request.user, request.query_params["taskId"])
            qs = qs.filter(task_id=request.query_params["taskId"])
        qs = qs.order_by("-last_message_at", "-created_at")
        return _ok({"conversations": ConversationSerializer(qs, many=True).data})

conversation_list_view = ConversationListView.as_view()


class ConversationDetailView(AIBaseView):

    def get(self, request, pk, *args, **kwargs):
        conversation = Conversation.objects.filter(id=pk, user=request.user).prefetch_related("messages").first()
        if conversation is None:
            raise NotFound("Conversation not found")
        return _ok({"conversation": ConversationDetailSerializer(conversation).data})

conversation_detail_view = ConversationDetailView.as_view()


# ------------------------------------------------------------------
# Context (AI artifacts)
# ------------------------------------------------------------------

class ContextView(AIBaseView):
    """
    GET: artifacts of a task. ?taskId (required), ?type, ?currentOnly=false for all versions
    POST: save a new version; it becomes the current artifact of its type.
    """
    rate_limit_scope = "insights"

    def get(self, request, *args, **kwargs):
        query = ContextQuerySerializer(data=request.query_params.dict())
        query.is_valid(raise_exception=True)
        params = query.validated_data
        artifacts = ArtifactStore().get_current(
            request.user, params["taskId"], params.get("type"), params["currentOnly"]
        )
        return _ok({"contexts": AIArtifactSerializer(artifacts, many=True).data})

    def post(self, request, *args, **kwargs):
        serializer = ContextCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        artifact = ArtifactStore().save(
            request.user,
            data["taskId"],
            data["type"],
            data["content"],
            title=data.get("title"),
            metadata=data.get("metadata"),
        )
        return _ok({"context": AIArtifactSerializer(artifact).data}, status.HTTP_201_CREATED)

context_view = ContextView.as_view()


class ContextHistoryView(AIBaseView):
    rate_limit_scope = "insights"

    def get(self, request, *args, **kwargs):
        query = ContextHistoryQuerySerializer(data=request.query_params.dict())
        query.is_valid(raise_exception=True)
        versions = ArtifactStore().history(request.user, query.validated_data["taskId"], query.validated_data["type"])
        return _ok({"versions": AIArtifactSerializer(versions, many=True).data})

context_history_view = ContextHistoryView.as_view()


class ContextDetailView(AIBaseView):
    rate_limit_scope = "insights"

    def delete(self, request, pk, *args, **kwargs):
        ArtifactStore().delete(request.user, pk)
        return _ok({"deleted": str(pk)})

context_detail_view = ContextDetailView.as_view()


class ContextRestoreView(AIBaseView):
    rate_limit_scope = "insights"

    def post(self, request, pk, *args, **kwargs):
        artifact = ArtifactStore().restore(request.user, pk)
        return _ok({"context": AIArtifactSerializer(artifact).data})

context_restore_view = ContextRestoreView.as_view()


# ------------------------------------------------------------------
# Similarity, history and enrichment
# ------------------------------------------------------------------

class SimilarTasksView(AIBaseView):
    rate_limit_scope = "similar-tasks"

    def post(self, request, *args, **kwargs):
        serializer = SimilarTasksRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = SimilarityEngine().find_similar(
            request.user, data["title"], data.get("description"), limit=data["limit"]
        )
        return _ok({
            "tasks": [match_to_api(m) for m in result["matches"]],
            "aggregatedInsights": aggregate_to_api(result["aggregated"]),
        })

similar_tasks_view = SimilarTasksView.as_view()


class ExecutionInsightsView(AIBaseView):
    rate_limit_scope = "insights"

    def get(self, request, task_id, *args, **kwargs):
        task = get_owned_task(request.user, task_id)
        history = ExecutionHistory.objects.filter(task=task).first()
        return _ok({"insights": calculate_insights(history, task)})

execution_insights_view = ExecutionInsightsView.as_view()


class EnrichView(AIBaseView):
    rate_limit_scope = "enrich"

    def post(self, request, *args, **kwargs):
        serializer = EnrichRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return _ok(EnrichmentService().enrich(request.user, serializer.validated_data["taskId"]))

enrich_view = EnrichView.as_view()


class ApplyEnrichmentView(AIBaseView):
    rate_limit_scope = "apply-enrichment"

    def post(self, request, *args, **kwargs):
        serializer = ApplyEnrichmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        task = EnrichmentService().apply(
            request.user,
            data["taskId"],
            data["proposalId"],
            data["acceptedFields"],
            data.get("modifications"),
        )
        return _ok({"task": TaskSerializer(task, context={"request": request}).data})

apply_enrichment_view = ApplyEnrichmentView.as_view()


# ------------------------------------------------------------------
# Generation
# ------------------------------------------------------------------

class DecomposeView(AIBaseView):
    """POST: suggest subtasks for a task. Returns ``{subtasks, reasoning}``."""
    rate_limit_scope = "decompose"

    def post(self, request, *args, **kwargs):
        serializer = DecomposeRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return _ok(ContentGenerator().decompose(request.user, serializer.validated_data["taskId"]))

decompose_view = DecomposeView.as_view()


class ResearchView(AIBaseView):
    rate_limit_scope = "research"

    def post(self, request, *args, **kwargs):
        serializer = ResearchRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return _ok(ContentGenerator().research(
            request.user, data["taskId"], data["query"], save_to_context=data["saveToContext"]
        ))

research_view = ResearchView.as_view()


class DraftView(AIBaseView):
    rate_limit_scope = "draft"

    def post(self, request, *args, **kwargs):
        serializer = DraftRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return _ok(ContentGenerator().draft(
            request.user,
            data["taskId"],
            data["action"],
            content=data.get("content"),
            selected_text=data.get("selectedText"),
        ))

draft_view = DraftView.as_view()
