# assistant/serializers.py
from rest_framework import serializers

from .models import AIArtifact, Conversation, Message
from .ai_engine.enrichment import VALID_ACCEPTED_FIELDS
from .ai_engine.prompts import DRAFT_INSTRUCTIONS


# ------------------------------------------------------------------
# Requests
# ------------------------------------------------------------------

class HistoryTurnSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=[Message.Role.USER, Message.Role.ASSISTANT])
    content = serializers.CharField(max_length=10000, trim_whitespace=False)


class ChatRequestSerializer(serializers.Serializer):
    message = serializers.CharField(min_length=1, max_length=10000)
    taskId = serializers.UUIDField(required=False, allow_null=True)
    projectId = serializers.UUIDField(required=False, allow_null=True)
    conversationId = serializers.UUIDField(required=False, allow_null=True)
    conversationType = serializers.ChoiceField(
        choices=Conversation.Type.choices, required=False, default=Conversation.Type.GENERAL
    )
    conversationHistory = HistoryTurnSerializer(many=True, required=False, allow_null=True)
    stream = serializers.BooleanField(required=False, default=True)

    def validate_conversationHistory(self, value):
        if value is not None and len(value) > 50:
            raise serializers.ValidationError("At most 50 history turns are allowed.")
        return value


class SimilarTasksRequestSerializer(serializers.Serializer):
    title = serializers.CharField(min_length=1, max_length=500)
    description = serializers.CharField(max_length=5000, required=False, allow_blank=True, allow_null=True)
    limit = serializers.IntegerField(min_value=1, max_value=20, required=False, default=5)


class ContextQuerySerializer(serializers.Serializer):
    taskId = serializers.UUIDField()
    type = serializers.ChoiceField(choices=AIArtifact.Type.choices, required=False)
    currentOnly = serializers.BooleanField(required=False, default=True)


class ContextHistoryQuerySerializer(serializers.Serializer):
    taskId = serializers.UUIDField()
    type = serializers.ChoiceField(choices=AIArtifact.Type.choices)


class ContextCreateSerializer(serializers.Serializer):
    taskId = serializers.UUIDField()
    type = serializers.ChoiceField(choices=AIArtifact.Type.choices)
    title = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)
    content = serializers.CharField(min_length=1, max_length=100000)
    metadata = serializers.DictField(required=False, allow_null=True)


class EnrichRequestSerializer(serializers.Serializer):
    taskId = serializers.UUIDField()


class EnrichModificationsSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=500, required=False)
    description = serializers.CharField(max_length=5000, required=False, allow_blank=True)
    dueDate = serializers.DateTimeField(required=False)
    estimatedMinutes = serializers.IntegerField(min_value=1, required=False)
    priority = serializers.ChoiceField(choices=["high", "medium", "low", "none"], required=False)


class ApplyEnrichmentSerializer(serializers.Serializer):
    taskId = serializers.UUIDField()
    proposalId = serializers.UUIDField()
    acceptedFields = serializers.ListField(
        child=serializers.ChoiceField(choices=VALID_ACCEPTED_FIELDS), allow_empty=True
    )
    modifications = EnrichModificationsSerializer(required=False, allow_null=True)


class DecomposeRequestSerializer(serializers.Serializer):
    taskId = serializers.UUIDField()


class ResearchRequestSerializer(serializers.Serializer):
    taskId = serializers.UUIDField()
    query = serializers.CharField(min_length=1, max_length=2000)
    saveToContext = serializers.BooleanField(required=False, default=False)


class DraftRequestSerializer(serializers.Serializer):
    taskId = serializers.UUIDField()
    action = serializers.ChoiceField(choices=list(DRAFT_INSTRUCTIONS))
    content = serializers.CharField(max_length=50000, required=False, allow_blank=True, allow_null=True)
    selectedText = serializers.CharField(max_length=50000, required=False, allow_blank=True, allow_null=True)

    def validate(self, attrs):
        if attrs["action"] != "generate" and not (attrs.get("content") or attrs.get("selectedText")):
            raise serializers.ValidationError(
                {"content": [f"Content or selectedText is required for '{attrs['action']}'."]}
            )
        return attrs


# ------------------------------------------------------------------
# Responses
# ------------------------------------------------------------------

class AIArtifactSerializer(serializers.ModelSerializer):
    taskId = serializers.UUIDField(source="task_id", read_only=True)
    conversationId = serializers.UUIDField(source="conversation_id", read_only=True, allow_null=True)
    isCurrent = serializers.BooleanField(source="is_current", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)

    class Meta:
        model = AIArtifact
        fields = [
            "id", "taskId", "conversationId", "type", "title", "content",
            "version", "isCurrent", "metadata", "createdAt", "updatedAt",
        ]
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    inputTokens = serializers.IntegerField(source="input_tokens", read_only=True, allow_null=True)
    outputTokens = serializers.IntegerField(source="output_tokens", read_only=True, allow_null=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Message
        fields = ["id", "role", "content", "inputTokens", "outputTokens", "model", "createdAt"]
        read_only_fields = fields


class ConversationSerializer(serializers.ModelSerializer):
    taskId = serializers.UUIDField(source="task_id", read_only=True, allow_null=True)
    projectId = serializers.UUIDField(source="project_id", read_only=True, allow_null=True)
    isArchived = serializers.BooleanField(source="is_archived", read_only=True)
    messageCount = serializers.IntegerField(source="message_count", read_only=True)
    totalTokens = serializers.IntegerField(source="total_tokens", read_only=True)
    lastMessageAt = serializers.DateTimeField(source="last_message_at", read_only=True, allow_null=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Conversation
        fields = [
            "id", "title", "type", "taskId", "projectId", "isArchived",
            "messageCount", "totalTokens", "lastMessageAt", "createdAt",
        ]
        read_only_fields = fields


class ConversationDetailSerializer(ConversationSerializer):
    messages = MessageSerializer(many=True, read_only=True)

    class Meta(ConversationSerializer.Meta):
        fields = ConversationSerializer.Meta.fields + ["messages"]
        read_only_fields = fields
