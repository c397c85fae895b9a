# assistant/ai_engine/similarity.py
"""
Similar-task matching over a user's execution history.

Matching is a keyword-overlap heuristic: the candidate's keyword
fingerprint is compared with each history row's stored fingerprint using
the Jaccard ratio. Optionally the top candidates are re-scored by the
language model; any failure there falls back to the heuristic ranking.
With refinement disabled the result is deterministic for a given corpus.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings

from ..models import ExecutionHistory
from .keywords import categorize, task_keywords
from .llm_client import UpstreamServiceError
from .prompts import build_similarity_messages

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
MAX_LIMIT = 20
TOP_COMMON = 5
SUCCESS_OUTCOME = ExecutionHistory.Outcome.COMPLETED

# Oldest completion sorts last among equal scores.
_EPOCH = datetime.min.replace(tzinfo=dt_timezone.utc)


def jaccard_score(a: Iterable[str], b: Iterable[str]) -> int:
    """Overlap of two keyword sets as a rounded 0-100 integer."""
    left, right = set(a), set(b)
    union = left | right
    if not union:
        return 0
    return round(100 * len(left & right) / len(union))


def symmetric_accuracy(ratio: Optional[float]) -> Optional[float]:
    """``min(r, 1/r)``: over- and under-estimates reduce accuracy alike. None when unusable."""
    if not ratio or ratio <= 0:
        return None
    return min(ratio, 1 / ratio)


def _rank_common(values: Iterable[str]) -> List[str]:
    counts = Counter(v for v in values if v)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [value for value, _ in ranked[:TOP_COMMON]]


def empty_aggregate() -> Dict[str, Any]:
    return {
        "avg_estimation_accuracy": 0,
        "common_subtasks_added": [],
        "common_stall_points": [],
        "success_rate": 0,
        "total_matches": 0,
    }


def aggregate_insights(matches: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Summary statistics over matched tasks, as rounded percentages.

    Rows without an estimation ratio are skipped from the accuracy average,
    never counted as zero.
    """
    if not matches:
        return empty_aggregate()

    accuracies = [
        acc for acc in (symmetric_accuracy(m["execution_insights"]["estimated_vs_actual"]) for m in matches)
        if acc is not None
    ]
    avg_accuracy = round(100 * sum(accuracies) / len(accuracies)) if accuracies else 0
    successes = sum(1 for m in matches if m["execution_insights"]["outcome"] == SUCCESS_OUTCOME)

    return {
        "avg_estimation_accuracy": avg_accuracy,
        "common_subtasks_added": _rank_common(
            title for m in matches for title in m["execution_insights"]["added_subtask_titles"]
        ),
        "common_stall_points": _rank_common(
            reason for m in matches for reason in m["execution_insights"]["stall_points"]
        ),
        "success_rate": round(100 * successes / len(matches)),
        "total_matches": len(matches),
    }


def _stall_reasons(stall_events) -> List[str]:
    reasons = []
    for event in stall_events or []:
        if isinstance(event, dict) and event.get("reason"):
            reasons.append(str(event["reason"]))
    return reasons


class SimilarityEngine:
    """
    Finds a user's completed tasks that resemble a new title/description.

    Args:
        llm_client: client used for optional refinement; created lazily.
        refine: enable model refinement; defaults to ``AI_SIMILARITY_REFINEMENT``.
        history_scan_limit: most recent history rows considered.
    """

    def __init__(self, llm_client=None, refine: Optional[bool] = None, history_scan_limit: int = 500):
        self._llm_client = llm_client
        self.refine = getattr(settings, "AI_SIMILARITY_REFINEMENT", False) if refine is None else refine
        self.history_scan_limit = history_scan_limit

    @property
    def llm_client(self):
        if self._llm_client is None:
            from .llm_client import LLMClient
            self._llm_client = LLMClient()
        return self._llm_client

    def find_similar(
        self,
        user,
        title: str,
        description: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        exclude_task_id=None,
    ) -> Dict[str, Any]:
        limit = max(1, min(int(limit or DEFAULT_LIMIT), MAX_LIMIT))
        keywords = task_keywords(title, description)
        if not keywords:
            return {"keywords": [], "matches": [], "aggregated": empty_aggregate()}

        category = categorize(keywords)
        candidates = self._score_history(user, keywords, category, exclude_task_id)

        if self.refine and candidates:
            pool = candidates[: min(MAX_LIMIT, limit * 2)]
            candidates = self._refine(title, description, pool) + candidates[len(pool):]

        matches = candidates[:limit]
        return {
            "keywords": keywords,
            "matches": matches,
            "aggregated": aggregate_insights(matches),
        }

    def _score_history(self, user, keywords: List[str], category: str, exclude_task_id=None) -> List[Dict[str, Any]]:
        rows = ExecutionHistory.objects.filter(user=user).select_related("task")
        if exclude_task_id is not None:
            rows = rows.exclude(task_id=exclude_task_id)
        rows = rows.order_by("-completion_date")[: self.history_scan_limit]

        scored = []
        for row in rows:
            fingerprint = list(row.keyword_fingerprint or [])
            shared = [k for k in keywords if k in fingerprint]
            if not shared:
                continue

            reasons = [f"Shared keywords: {', '.join(shared)}"]
            if category != "general" and row.task_category == category:
                reasons.append(f"Same category: {category}")

            scored.append({
                "task_id": str(row.task_id),
                "title": row.task.title,
                "keywords": fingerprint,
                "similarity_score": jaccard_score(keywords, fingerprint),
                "match_reasons": reasons,
                "category": row.task_category,
                "completed_at": row.completion_date,
                "execution_insights": {
                    "estimated_minutes": row.original_estimated_minutes,
                    "actual_minutes": row.final_actual_minutes,
                    "estimated_vs_actual": row.estimation_accuracy_ratio,
                    "subtasks_added": row.subtasks_added_mid_execution,
                    "added_subtask_titles": list(row.added_subtask_titles or []),
                    "stall_points": _stall_reasons(row.stall_events),
                    "outcome": row.outcome,
                },
            })

        return self._sort(scored)

    @staticmethod
    def _sort(matches: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        # two stable passes: recency first, then score, so score wins and recency breaks ties
        matches = sorted(matches, key=lambda m: m["completed_at"] or _EPOCH, reverse=True)
        return sorted(matches, key=lambda m: m["similarity_score"], reverse=True)

    def _refine(self, title: str, description: Optional[str], pool: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        try:
            data, _ = self.llm_client.complete_json(build_similarity_messages(title, description, pool))
            by_id = {m["task_id"]: m for m in pool}
            refined = []
            for item in data.get("matches", []):
                match = by_id.get(str(item.get("taskId")))
                if match is None:
                    continue
                score = max(0, min(100, int(round(float(item["score"])))))
                reason = str(item.get("reason") or "").strip()
                refined.append((match, score, reason))
        except (UpstreamServiceError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Similarity refinement failed, using keyword ranking: {e}")
            return pool

        for match, score, reason in refined:
            match["similarity_score"] = score
            if reason:
                match["match_reasons"] = match["match_reasons"] + [reason]
        return self._sort(pool)


def match_to_api(match: Dict[str, Any]) -> Dict[str, Any]:
    """Response shape of one match. ``estimationAccuracy`` is ``round(ratio x 100)``."""
    insights = match["execution_insights"]
    ratio = insights["estimated_vs_actual"]
    completed_at = match.get("completed_at")
    return {
        "taskId": match["task_id"],
        "title": match["title"],
        "similarityScore": match["similarity_score"],
        "matchReasons": match["match_reasons"],
        "completedAt": completed_at.isoformat() if completed_at else None,
        "executionData": {
            "estimatedMinutes": insights["estimated_minutes"],
            "actualMinutes": insights["actual_minutes"],
            "estimationAccuracy": round(ratio * 100) if ratio else None,
            "subtasksAdded": insights["subtasks_added"],
            "stallPoints": insights["stall_points"],
            "outcome": insights["outcome"],
        },
    }


def aggregate_to_api(aggregated: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "avgEstimationAccuracy": aggregated["avg_estimation_accuracy"],
        "commonSubtasksAdded": aggregated["common_subtasks_added"],
        "commonStallPoints": aggregated["common_stall_points"],
        "successRate": aggregated["success_rate"],
        "totalMatches": aggregated["total_matches"],
    }
