# assistant/ai_engine/artifacts.py
"""
Versioned storage for AI-generated content attached to tasks.

For every (task, type) pair there is at most one current artifact and the
versions run 1, 2, 3, ... Saving a new version happens in one transaction
that locks the owning task row, flips the old current row and inserts the
next version. The partial unique constraint on ``AIArtifact`` is the final
guard: a writer that loses a race gets an IntegrityError and retries.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Max
from django.utils import timezone
from rest_framework.exceptions import NotFound

from tasks.models import Task
from ..models import AIArtifact

logger = logging.getLogger(__name__)


def get_owned_task(user, task_id) -> Task:
    """
    The caller's live task, or NotFound.

    Missing and foreign tasks raise the same error so the response never
    reveals whether a task id exists.
    """
    try:
        task = Task.objects.filter(id=task_id, user=user).exclude(status=Task.Status.DELETED).first()
    except (DjangoValidationError, ValueError):
        task = None
    if task is None:
        raise NotFound("Task not found")
    return task


class ArtifactStore:

    MAX_SAVE_ATTEMPTS = 3

    def save(
        self,
        user,
        task_id,
        type: str,
        content: str,
        title: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        conversation=None,
    ) -> AIArtifact:
        task = get_owned_task(user, task_id)

        for attempt in range(1, self.MAX_SAVE_ATTEMPTS + 1):
            try:
                with transaction.atomic():
                    return self._insert_next_version(task, type, content, title, metadata, conversation)
            except IntegrityError as e:
                if attempt == self.MAX_SAVE_ATTEMPTS:
                    logger.error(f"Artifact save for Task {task.pk}/{type} failed after {attempt} attempts: {e}")
                    raise
                logger.warning(f"Concurrent artifact save for Task {task.pk}/{type}, retrying ({attempt})")

    def _insert_next_version(self, task, type, content, title, metadata, conversation) -> AIArtifact:
        # serialize writers of the same task; a no-op lock on sqlite
        list(Task.objects.select_for_update().filter(pk=task.pk).values_list("pk", flat=True))

        siblings = AIArtifact.objects.filter(task=task, type=type)
        latest = siblings.aggregate(latest=Max("version"))["latest"] or 0
        siblings.filter(is_current=True).update(is_current=False, updated_at=timezone.now())

        artifact = AIArtifact.objects.create(
            task=task,
            type=type,
            title=(title or "")[:255],
            content=content,
            version=latest + 1,
            is_current=True,
            metadata=metadata or {},
            conversation=conversation,
        )
        logger.info(f"Saved {type} artifact v{artifact.version} for Task {task.pk}")
        return artifact

    def get_current(self, user, task_id, type: Optional[str] = None, current_only: bool = True) -> List[AIArtifact]:
        task = get_owned_task(user, task_id)
        qs = AIArtifact.objects.filter(task=task)
        if type:
            qs = qs.filter(type=type)
        if current_only:
            qs = qs.filter(is_current=True)
        return list(qs.order_by("-updated_at", "-version"))

    def history(self, user, task_id, type: str) -> List[AIArtifact]:
        task = get_owned_task(user, task_id)
        return list(AIArtifact.objects.filter(task=task, type=type).order_by("-version"))

    def _owned_artifact(self, user, artifact_id) -> AIArtifact:
        try:
            artifact = (
                AIArtifact.objects.select_related("task")
                .filter(id=artifact_id, task__user=user)
                .exclude(task__status=Task.Status.DELETED)
                .first()
            )
        except (DjangoValidationError, ValueError):
            artifact = None
        if artifact is None:
            raise NotFound("Context not found")
        return artifact

    def restore(self, user, artifact_id) -> AIArtifact:
        """
        Make an older version current again by saving its content as a new
        version. Existing versions are never rewritten.
        """
        artifact = self._owned_artifact(user, artifact_id)
        if artifact.is_current:
            return artifact
        metadata = dict(artifact.metadata or {})
        metadata["restoredFromVersion"] = artifact.version
        return self.save(
            user,
            artifact.task_id,
            artifact.type,
            artifact.content,
            title=artifact.title,
            metadata=metadata,
            conversation=artifact.conversation,
        )

    def delete(self, user, artifact_id) -> None:
        """Delete one version; if it was current, the newest remaining version takes over."""
        artifact = self._owned_artifact(user, artifact_id)
        with transaction.atomic():
            list(Task.objects.select_for_update().filter(pk=artifact.task_id).values_list("pk", flat=True))
            was_current = artifact.is_current
            task_id, type = artifact.task_id, artifact.type
            artifact.delete()
            if was_current:
                newest = AIArtifact.objects.filter(task_id=task_id, type=type).order_by("-version").first()
                if newest is not None:
                    newest.is_current = True
                    newest.save(update_fields=["is_current", "updated_at"])
        logger.info(f"Deleted {type} artifact {artifact_id} for Task {task_id}")
