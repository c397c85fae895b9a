import uuid

from django.db import models
from django.db.models import Q
from django.conf import settings
from django.utils.translation import gettext_lazy as _
from projects.models import Project
from tasks.models import Task


class Conversation(models.Model):
    """
    A chat thread between a user and the assistant, optionally scoped to a
    task or a project. ``message_count`` and ``total_tokens`` are derived
    from the persisted messages, never incremented blindly.
    """

    class Type(models.TextChoices):
        GENERAL = 'general', _('General')
        DECOMPOSE = 'decompose', _('Decompose')
        RESEARCH = 'research', _('Research')
        DRAFT = 'draft', _('Draft')
        PLANNING = 'planning', _('Planning')
        COACHING = 'coaching', _('Coaching')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='conversations',
    )
    task = models.ForeignKey(Task, on_delete=models.SET_NULL, null=True, blank=True, related_name='conversations')
    project = models.ForeignKey(Project, on_delete=models.SET_NULL, null=True, blank=True, related_name='conversations')

    title = models.CharField(max_length=255, blank=True, default='')
    type = models.CharField(max_length=20, choices=Type.choices, default=Type.GENERAL)
    is_archived = models.BooleanField(default=False)

    message_count = models.PositiveIntegerField(default=0)
    total_tokens = models.PositiveIntegerField(default=0)
    last_message_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-updated_at']

    def __str__(self):
        return f"Conversation {self.id} ({self.type})"


class Message(models.Model):

    class Role(models.TextChoices):
        USER = 'user', _('User')
        ASSISTANT = 'assistant', _('Assistant')
        SYSTEM = 'system', _('System')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name='messages')
    role = models.CharField(max_length=20, choices=Role.choices)
    content = models.TextField()

    # null for user turns
    input_tokens = models.PositiveIntegerField(null=True, blank=True)
    output_tokens = models.PositiveIntegerField(null=True, blank=True)
    model = models.CharField(max_length=100, blank=True, default='')
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return f"{self.role}: {self.content[:40]}"


class AIArtifact(models.Model):
    """
    Versioned AI-generated content attached to a task.

    For a given (task, type) at most one row is current; the database
    enforces it with a partial unique constraint so concurrent saves from
    different processes cannot both win.
    """

    class Type(models.TextChoices):
        RESEARCH = 'research', _('Research')
        DRAFT = 'draft', _('Draft')
        OUTLINE = 'outline', _('Outline')
        SUMMARY = 'summary', _('Summary')
        SUGGESTION = 'suggestion', _('Suggestion')
        NOTE = 'note', _('Note')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    task = models.ForeignKey(Task, on_delete=models.CASCADE, related_name='ai_artifacts')
    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.SET_NULL,
        null=True, blank=True,
        related_name='artifacts',
    )
    type = models.CharField(max_length=20, choices=Type.choices)
    title = models.CharField(max_length=255, blank=True, default='')
    content = models.TextField()
    version = models.PositiveIntegerField(default=1)
    is_current = models.BooleanField(default=True)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-updated_at']
        constraints = [
            models.UniqueConstraint(
                fields=['task', 'type'],
                condition=Q(is_current=True),
                name='one_current_artifact_per_task_type',
            ),
            models.UniqueConstraint(
                fields=['task', 'type', 'version'],
                name='unique_artifact_version',
            ),
        ]

    def __str__(self):
        return f"{self.type} v{self.version} for {self.task_id}"


class ExecutionHistory(models.Model):
    """
    Snapshot of planned vs. actual effort, written once when an
    AI-enriched task is completed. Rows are never updated afterwards.
    """

    class Outcome(models.TextChoices):
        COMPLETED = 'completed', _('Completed')
        COMPLETED_LATE = 'completed_late', _('Completed late')
        ABANDONED = 'abandoned', _('Abandoned')
        DELEGATED = 'delegated', _('Delegated')
        DEFERRED = 'deferred', _('Deferred')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    task = models.OneToOneField(Task, on_delete=models.CASCADE, related_name='execution_history')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='execution_history',
    )

    original_estimated_minutes = models.PositiveIntegerField(null=True, blank=True)
    final_actual_minutes = models.PositiveIntegerField(null=True, blank=True)
    estimation_accuracy_ratio = models.FloatField(null=True, blank=True)

    original_subtask_count = models.PositiveIntegerField(default=0)
    subtasks_added_mid_execution = models.PositiveIntegerField(default=0)
    added_subtask_titles = models.JSONField(default=list, blank=True)

    stall_events = models.JSONField(default=list, blank=True)
    total_stall_time_minutes = models.PositiveIntegerField(default=0)

    outcome = models.CharField(max_length=20, choices=Outcome.choices)
    completion_date = models.DateTimeField(null=True, blank=True)
    days_overdue = models.PositiveIntegerField(null=True, blank=True)

    task_category = models.CharField(max_length=50, blank=True, default='general')
    keyword_fingerprint = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-completion_date']
        verbose_name_plural = 'execution history'

    def __str__(self):
        return f"History for {self.task_id}: {self.outcome}"


class TaskEnrichmentProposal(models.Model):

    class Status(models.TextChoices):
        PENDING = 'pending', _('Pending')
        ACCEPTED = 'accepted', _('Accepted')
        REJECTED = 'rejected', _('Rejected')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    task = models.ForeignKey(Task, on_delete=models.CASCADE, related_name='enrichment_proposals')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='enrichment_proposals',
    )

    proposed_title = models.CharField(max_length=500, blank=True, default='')
    proposed_description = models.TextField(blank=True, default='')
    proposed_due_date = models.DateTimeField(null=True, blank=True)
    proposed_estimated_minutes = models.PositiveIntegerField(null=True, blank=True)
    proposed_priority = models.CharField(max_length=10, choices=Task.Priority.choices, default=Task.Priority.NONE)
    proposed_subtasks = models.JSONField(default=list, blank=True)

    similarity_analysis = models.JSONField(default=dict, blank=True)
    insights = models.JSONField(default=dict, blank=True)

    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    accepted_fields = models.JSONField(default=list, blank=True)
    user_modifications = models.JSONField(null=True, blank=True)

    ai_model = models.CharField(max_length=100, blank=True, default='')
    input_tokens = models.PositiveIntegerField(default=0)
    output_tokens = models.PositiveIntegerField(default=0)
    processing_time_ms = models.PositiveIntegerField(default=0)

    responded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Proposal {self.id} for {self.task_id} ({self.status})"
