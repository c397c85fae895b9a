# assistant/ai_engine/history.py
"""
Execution history: what was planned vs. what happened, per completed task.

Only tasks that went through an accepted enrichment proposal are recorded,
so the corpus used for similar-task matching stays AI-relevant. A row is
written once and never updated.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.db import IntegrityError, transaction

from tasks.models import Task
from ..models import ExecutionHistory, TaskEnrichmentProposal
from .keywords import categorize, task_keywords

logger = logging.getLogger(__name__)

CLOSE_OUT_OUTCOMES = (
    ExecutionHistory.Outcome.ABANDONED,
    ExecutionHistory.Outcome.DELEGATED,
    ExecutionHistory.Outcome.DEFERRED,
)


def has_accepted_proposal(user, task_id) -> bool:
    return TaskEnrichmentProposal.objects.filter(
        task_id=task_id,
        user=user,
        status=TaskEnrichmentProposal.Status.ACCEPTED,
    ).exists()


def estimation_ratio(estimated: Optional[int], actual: Optional[int]) -> Optional[float]:
    """actual / estimated, or None when either side is missing or zero."""
    if not estimated or not actual:
        return None
    return actual / estimated


def days_overdue(task: Task) -> Optional[int]:
    if task.due_date is None:
        return None
    if task.completed_at is None:
        return 0
    delta = task.completed_at.date() - task.due_date.date()
    return max(0, delta.days)


def classify_outcome(overdue: Optional[int], close_out: Optional[str] = None) -> str:
    if close_out in CLOSE_OUT_OUTCOMES:
        return close_out
    if overdue:
        return ExecutionHistory.Outcome.COMPLETED_LATE
    return ExecutionHistory.Outcome.COMPLETED


def _stall_events(task: Task) -> List[Dict[str, Any]]:
    events = []
    raw = (task.metadata or {}).get("stallEvents") or []
    for event in raw:
        if not isinstance(event, dict) or not event.get("reason"):
            continue
        try:
            minutes = max(0, int(event.get("durationMinutes") or 0))
        except (TypeError, ValueError):
            minutes = 0
        events.append({"reason": str(event["reason"]), "durationMinutes": minutes})
    return events


class ExecutionHistoryRecorder:

    def record(self, user, task_id, outcome: Optional[str] = None) -> Optional[ExecutionHistory]:
        """
        Snapshot a completed task.

        Returns None when the task is not completed, not owned by ``user`` or
        never had an accepted enrichment proposal. A second call for the same
        task returns the existing row.
        """
        task = Task.objects.filter(id=task_id, user=user, status=Task.Status.COMPLETED).first()
        if task is None:
            logger.info(f"Execution history skipped: Task {task_id} is not a completed task of user {user.pk}")
            return None

        if not has_accepted_proposal(user, task_id):
            logger.debug(f"Execution history skipped: Task {task_id} has no accepted enrichment")
            return None

        existing = ExecutionHistory.objects.filter(task=task).first()
        if existing is not None:
            return existing

        subtasks = list(task.subtasks.exclude(status=Task.Status.DELETED).order_by("created_at"))
        original = [s for s in subtasks if s.is_ai_suggested]
        added = [s for s in subtasks if not s.is_ai_suggested]

        stall_events = _stall_events(task)
        overdue = days_overdue(task)
        keywords = task_keywords(task.title, task.description)

        try:
            with transaction.atomic():
                history = ExecutionHistory.objects.create(
                    task=task,
                    user=user,
                    original_estimated_minutes=task.estimated_minutes,
                    final_actual_minutes=task.actual_minutes,
                    estimation_accuracy_ratio=estimation_ratio(task.estimated_minutes, task.actual_minutes),
                    original_subtask_count=len(original),
                    subtasks_added_mid_execution=len(added),
                    added_subtask_titles=[s.title for s in added],
                    stall_events=stall_events,
                    total_stall_time_minutes=sum(e["durationMinutes"] for e in stall_events),
                    outcome=classify_outcome(overdue, outcome),
                    completion_date=task.completed_at,
                    days_overdue=overdue,
                    task_category=categorize(keywords),
                    keyword_fingerprint=keywords,
                )
        except IntegrityError:
            # a concurrent job recorded it first
            return ExecutionHistory.objects.get(task=task)

        logger.info(f"Execution history recorded for Task {task_id} ({history.outcome})")
        return history


def calculate_insights(history: Optional[ExecutionHistory], task: Optional[Task] = None) -> Dict[str, Any]:
    """
    Human-readable analysis of one execution history row.

    Suggestions are independent and always appear in the same order:
    estimate overrun, added subtasks, stall time, lateness.
    """
    if history is None:
        return {"hasHistory": False, "suggestions": []}

    ratio = history.estimation_accuracy_ratio
    added = history.subtasks_added_mid_execution or 0
    stall = history.total_stall_time_minutes or 0
    overdue = history.days_overdue or 0

    accuracy = None
    if ratio:
        accuracy = round(min(ratio, 1 / ratio) * 100)

    suggestions = []
    if ratio and ratio > 1.5:
        suggestions.append(
            f"This task took {round((ratio - 1) * 100)}% longer than estimated. "
            "Consider adding buffer time for similar tasks."
        )
    if added > 2:
        suggestions.append(
            f"{added} subtasks were added during execution. "
            "Future similar tasks may benefit from more upfront planning."
        )
    if stall > 30:
        suggestions.append(
            f"Significant stall time detected ({stall} minutes). Review blockers for patterns."
        )
    if overdue > 0:
        plural = "day" if overdue == 1 else "days"
        suggestions.append(
            f"Task was {overdue} {plural} overdue. "
            "Consider earlier starts or adjusted due dates for similar tasks."
        )

    return {
        "hasHistory": True,
        "taskId": str(history.task_id),
        "taskTitle": task.title if task is not None else None,
        "estimatedMinutes": history.original_estimated_minutes,
        "actualMinutes": history.final_actual_minutes,
        "estimationAccuracyPercentage": accuracy,
        "wasOverEstimate": bool(ratio) and ratio < 1,
        "wasUnderEstimate": bool(ratio) and ratio > 1,
        "additionalSubtasksNeeded": added,
        "addedSubtaskTitles": list(history.added_subtask_titles or []),
        "totalStallTime": stall,
        "stallEvents": list(history.stall_events or []),
        "daysOverdue": history.days_overdue,
        "wasOnTime": not overdue,
        "outcome": history.outcome,
        "suggestions": suggestions,
    }
