# assistant/ai_engine/celery_tasks.py

import logging
from typing import Optional

from celery import shared_task
from django.contrib.auth import get_user_model

from .history import ExecutionHistoryRecorder

# Configure logging for background worker monitoring
logger = logging.getLogger(__name__)


@shared_task(ignore_result=True, time_limit=30, soft_time_limit=25)
def record_execution_history(task_id: str, user_id: int, outcome: Optional[str] = None) -> Optional[str]:
    """
    Worker: snapshot a completed task's execution history.

    Best effort and at most once: failures are logged and swallowed, the job
    is never retried and the completion request never hears about it.
    """
    try:
        user = get_user_model().objects.filter(pk=user_id).first()
        if user is None:
            logger.warning(f"User {user_id} not found. Skipping execution history for Task {task_id}.")
            return None

        history = ExecutionHistoryRecorder().record(user, task_id, outcome=outcome)
        return str(history.id) if history is not None else None

    except Exception as exc:
        logger.exception(f"Execution history recording failed for Task {task_id}: {exc}")
        return None
