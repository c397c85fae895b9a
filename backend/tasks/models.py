import uuid

from django.db import models
from django.conf import settings
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from projects.models import Project


class Task(models.Model):
    """
    A unit of work owned by one user, optionally inside a project and
    optionally a subtask of another task.

    ``metadata`` is free-form JSON. Two keys carry meaning elsewhere:
    ``source == 'ai_suggested'`` marks subtasks created from an accepted
    enrichment proposal, and ``stallEvents`` holds ``{reason, durationMinutes}``
    entries recorded while the task was blocked.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', _('Pending')
        IN_PROGRESS = 'in_progress', _('In progress')
        COMPLETED = 'completed', _('Completed')
        DELETED = 'deleted', _('Deleted')

    class Priority(models.TextChoices):
        HIGH = 'high', _('High')
        MEDIUM = 'medium', _('Medium')
        LOW = 'low', _('Low')
        NONE = 'none', _('None')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='tasks',
        verbose_name=_("user")
    )

    project = models.ForeignKey(
        Project,
        on_delete=models.SET_NULL,
        null=True, blank=True,
        related_name='tasks',
        verbose_name=_("project")
    )

    parent_task = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True, blank=True,
        related_name='subtasks',
        verbose_name=_("parent task")
    )

    title = models.CharField(max_length=500, verbose_name=_("title"))
    description = models.TextField(blank=True, default='', verbose_name=_("description"))

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        verbose_name=_("status")
    )
    priority = models.CharField(
        max_length=10,
        choices=Priority.choices,
        default=Priority.NONE,
        verbose_name=_("priority")
    )

    due_date = models.DateTimeField(null=True, blank=True, verbose_name=_("due date"))
    estimated_minutes = models.PositiveIntegerField(null=True, blank=True, verbose_name=_("estimated minutes"))
    actual_minutes = models.PositiveIntegerField(null=True, blank=True, verbose_name=_("actual minutes"))
    completed_at = models.DateTimeField(null=True, blank=True, verbose_name=_("completed at"))
    sort_order = models.IntegerField(default=0, verbose_name=_("sort order"))

    metadata = models.JSONField(default=dict, blank=True, verbose_name=_("metadata"))

    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("created at"))
    updated_at = models.DateTimeField(auto_now=True, verbose_name=_("updated at"))

    class Meta:
        verbose_name = _("Task")
        verbose_name_plural = _("Tasks")
        ordering = ['due_date', 'sort_order', '-created_at']
        indexes = [
            models.Index(fields=['user', 'status'], name='task_user_status_idx'),
        ]

    def __str__(self):
        return f"Task for {self.user.email}: {self.title}"

    @property
    def is_completed(self):
        return self.status == self.Status.COMPLETED

    @property
    def is_ai_suggested(self):
        return isinstance(self.metadata, dict) and self.metadata.get('source') == 'ai_suggested'

    def mark_completed(self, actual_minutes=None, when=None):
        self.status = self.Status.COMPLETED
        self.completed_at = when or timezone.now()
        if actual_minutes is not None:
            self.actual_minutes = actual_minutes

    def reopen(self):
        self.status = self.Status.PENDING
        self.completed_at = None
