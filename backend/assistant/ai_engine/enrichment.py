# assistant/ai_engine/enrichment.py
"""
Task enrichment: the model proposes a refined title, description, estimate,
due date, priority and subtasks for a task; the user accepts the proposal
field by field. Accepted proposals are what make a completed task eligible
for execution history.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework.exceptions import NotFound, ValidationError

from tasks.models import Task
from ..models import TaskEnrichmentProposal
from .artifacts import get_owned_task
from .llm_client import LLMClient
from .prompts import build_enrichment_messages
from .similarity import SimilarityEngine, match_to_api, aggregate_to_api

logger = logging.getLogger(__name__)

VALID_ACCEPTED_FIELDS = ("title", "description", "dueDate", "estimatedMinutes", "priority", "subtasks")
SUBTASK_TYPES = ("action", "research", "draft", "plan", "review")
CONFIDENCE_LEVELS = ("high", "medium", "low")
MAX_SUBTASKS = 7

BASE_PREDICTION = {"high": 80, "medium": 65, "low": 50}


def _positive_int(value) -> Optional[int]:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _parse_due(value) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def _strings(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    return [str(v) for v in values if v]


def parse_enrichment(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize the model's JSON into a proposal with safe defaults."""
    subtasks = []
    raw_subtasks = data.get("subtasks") if isinstance(data.get("subtasks"), list) else []
    for index, item in enumerate(raw_subtasks[:MAX_SUBTASKS]):
        if not isinstance(item, dict) or not str(item.get("title") or "").strip():
            continue
        subtask_type = item.get("type") if item.get("type") in SUBTASK_TYPES else "action"
        subtasks.append({
            "title": str(item["title"]).strip()[:500],
            "estimatedMinutes": _positive_int(item.get("estimatedMinutes")),
            "type": subtask_type,
            "aiCanDo": bool(item.get("aiCanDo", subtask_type in ("research", "draft", "plan"))),
            "suggestedOrder": _positive_int(item.get("suggestedOrder")) or index + 1,
        })

    insights = data.get("insights") if isinstance(data.get("insights"), dict) else {}
    confidence = insights.get("estimationConfidence")
    priority = data.get("priority")

    return {
        "title": str(data.get("refinedTitle") or "").strip()[:500],
        "description": str(data.get("description") or "").strip()[:5000],
        "estimated_minutes": _positive_int(data.get("estimatedMinutes")),
        "due_date": _parse_due(data.get("suggestedDueDate")),
        "priority": priority if priority in Task.Priority.values else Task.Priority.NONE,
        "subtasks": subtasks,
        "confidence": confidence if confidence in CONFIDENCE_LEVELS else "medium",
        "risk_factors": _strings(insights.get("riskFactors")),
        "key_assumptions": _strings(insights.get("keyAssumptions")),
    }


def success_prediction(similar_count: int, success_rate: int, confidence: str) -> int:
    """Predicted success percentage from the similar tasks' success rate and model confidence."""
    if similar_count == 0:
        return BASE_PREDICTION.get(confidence, BASE_PREDICTION["medium"])
    prediction = success_rate
    if confidence == "high":
        prediction = min(prediction + 10, 95)
    elif confidence == "low":
        prediction = max(prediction - 15, 30)
    return round(prediction)


def proposal_to_api(proposal: TaskEnrichmentProposal) -> Dict[str, Any]:
    return {
        "proposedTitle": proposal.proposed_title,
        "proposedDescription": proposal.proposed_description,
        "proposedDueDate": proposal.proposed_due_date.isoformat() if proposal.proposed_due_date else None,
        "proposedEstimatedMinutes": proposal.proposed_estimated_minutes,
        "proposedPriority": proposal.proposed_priority,
        "proposedSubtasks": proposal.proposed_subtasks,
    }


class EnrichmentService:

    def __init__(self, llm_client: Optional[LLMClient] = None, similarity_engine: Optional[SimilarityEngine] = None):
        self._llm_client = llm_client
        self.similarity_engine = similarity_engine or SimilarityEngine(llm_client=llm_client, refine=False)

    @property
    def llm_client(self) -> LLMClient:
        if self._llm_client is None:
            self._llm_client = LLMClient()
        return self._llm_client

    def enrich(self, user, task_id) -> Dict[str, Any]:
        task = get_owned_task(user, task_id)
        started = time.monotonic()

        similar = self.similarity_engine.find_similar(
            user, task.title, task.description, exclude_task_id=task.pk
        )
        data, completion = self.llm_client.complete_json(build_enrichment_messages(task, similar))
        parsed = parse_enrichment(data)

        aggregated = similar["aggregated"]
        similarity_analysis = {
            "matchedTasks": [match_to_api(m) for m in similar["matches"]],
            "aggregatedInsights": aggregate_to_api(aggregated),
        }
        insights = {
            "estimationConfidence": parsed["confidence"],
            "riskFactors": parsed["risk_factors"],
            "keyAssumptions": parsed["key_assumptions"],
            "successPrediction": success_prediction(
                len(similar["matches"]), aggregated["success_rate"], parsed["confidence"]
            ),
        }

        proposal = TaskEnrichmentProposal.objects.create(
            task=task,
            user=user,
            proposed_title=parsed["title"] or task.title,
            proposed_description=parsed["description"],
            proposed_due_date=parsed["due_date"],
            proposed_estimated_minutes=parsed["estimated_minutes"],
            proposed_priority=parsed["priority"],
            proposed_subtasks=parsed["subtasks"],
            similarity_analysis=similarity_analysis,
            insights=insights,
            ai_model=completion.model,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info(
            f"Enrichment proposal {proposal.pk} created for Task {task.pk} "
            f"({len(parsed['subtasks'])} subtasks, {len(similar['matches'])} similar tasks)"
        )

        return {
            "proposalId": str(proposal.pk),
            "proposal": proposal_to_api(proposal),
            "similarTasks": similarity_analysis,
            "insights": insights,
            "usage": completion.usage,
        }

    def apply(
        self,
        user,
        task_id,
        proposal_id,
        accepted_fields: Iterable[str],
        modifications: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """
        Apply the accepted fields of a pending proposal to its task.

        User modifications win over proposed values. Accepted subtasks are
        created with ``metadata.source = 'ai_suggested'``. An empty field
        list rejects the proposal.
        """
        accepted = [f for f in accepted_fields if f in VALID_ACCEPTED_FIELDS]
        mods = dict(modifications or {})

        with transaction.atomic():
            # lock the proposal so concurrent applies answer it once
            proposal = (
                TaskEnrichmentProposal.objects.select_for_update()
                .filter(id=proposal_id, user=user)
                .first()
            )
            if proposal is None:
                raise NotFound("Enrichment proposal not found")
            task = get_owned_task(user, task_id)
            if proposal.task_id != task.pk:
                raise NotFound("Enrichment proposal not found")
            if proposal.status != TaskEnrichmentProposal.Status.PENDING:
                raise ValidationError({"proposalId": ["This proposal has already been answered."]})

            if "title" in accepted:
                task.title = mods.get("title") or proposal.proposed_title or task.title
            if "description" in accepted:
                task.description = mods.get("description", proposal.proposed_description)
            if "dueDate" in accepted and (mods.get("dueDate") or proposal.proposed_due_date):
                task.due_date = mods.get("dueDate") or proposal.proposed_due_date
            if "estimatedMinutes" in accepted:
                task.estimated_minutes = mods.get("estimatedMinutes") or proposal.proposed_estimated_minutes
            if "priority" in accepted:
                task.priority = mods.get("priority") or proposal.proposed_priority
            task.save()

            if "subtasks" in accepted:
                for index, subtask in enumerate(proposal.proposed_subtasks or []):
                    Task.objects.create(
                        user=user,
                        project_id=task.project_id,
                        parent_task=task,
                        title=subtask["title"],
                        estimated_minutes=subtask.get("estimatedMinutes"),
                        sort_order=subtask.get("suggestedOrder") or index + 1,
                        status=Task.Status.PENDING,
                        priority=Task.Priority.NONE,
                        metadata={
                            "source": "ai_suggested",
                            "subtaskType": subtask.get("type"),
                            "aiCanDo": subtask.get("aiCanDo", False),
                        },
                    )

            if isinstance(mods.get("dueDate"), datetime):
                mods["dueDate"] = mods["dueDate"].isoformat()
            proposal.status = (
                TaskEnrichmentProposal.Status.ACCEPTED if accepted else TaskEnrichmentProposal.Status.REJECTED
            )
            proposal.accepted_fields = accepted
            proposal.user_modifications = mods or None
            proposal.responded_at = timezone.now()
            proposal.save()

        logger.info(f"Enrichment proposal {proposal.pk} {proposal.status} for Task {task.pk}: {accepted}")
        return task
