import uuid

from django.db import models
from django.conf import settings
from django.utils.translation import gettext_lazy as _


class Project(models.Model):
    """
    A named group of tasks. Its name, description and task counts are
    handed to the assistant as conversation context.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='projects',
        verbose_name=_("user")
    )

    name = models.CharField(max_length=255, verbose_name=_("name"))
    description = models.TextField(blank=True, verbose_name=_("description"))
    color = models.CharField(max_length=20, blank=True, default='', verbose_name=_("color"))

    # Soft delete mechanism
    is_archived = models.BooleanField(default=False, verbose_name=_("is archived"))

    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("created at"))
    updated_at = models.DateTimeField(auto_now=True, verbose_name=_("updated at"))

    class Meta:
        verbose_name = _("Project")
        verbose_name_plural = _("Projects")
        ordering = ['name', 'created_at']

    def __str__(self):
        return f"{self.user.email}: {self.name}"
