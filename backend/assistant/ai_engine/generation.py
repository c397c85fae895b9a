# assistant/ai_engine/generation.py

import logging
from typing import Any, Dict, List, Optional

from tasks.models import Task
from ..models import AIArtifact
from .artifacts import ArtifactStore, get_owned_task
from .llm_client import LLMClient, UpstreamServiceError
from .prompts import build_decompose_messages, build_draft_messages, build_research_messages

logger = logging.getLogger(__name__)

MAX_SOURCES = 10
MAX_SUBTASKS = 7


def _sources(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    sources = []
    for item in raw:
        if isinstance(item, dict):
            item = item.get("url") or item.get("title")
        if item:
            sources.append(str(item))
    return sources[:MAX_SOURCES]


def _subtask_titles(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    titles = []
    for item in raw:
        if isinstance(item, dict):
            item = item.get("title")
        title = str(item or "").strip()[:500]
        if title:
            titles.append(title)
    return titles[:MAX_SUBTASKS]


class ContentGenerator:
    """Subtask suggestions, research answers and drafts for a task."""

    def __init__(self, llm_client: Optional[LLMClient] = None, store: Optional[ArtifactStore] = None):
        self._llm_client = llm_client
        self.store = store or ArtifactStore()

    @property
    def llm_client(self) -> LLMClient:
        if self._llm_client is None:
            self._llm_client = LLMClient()
        return self._llm_client

    def decompose(self, user, task_id) -> Dict[str, Any]:
        """
        Suggest 3-7 ordered subtasks for a task. Nothing is created; the
        client turns accepted suggestions into subtasks itself.
        """
        task = get_owned_task(user, task_id)
        existing = list(
            task.subtasks.exclude(status=Task.Status.DELETED)
            .order_by("sort_order", "created_at")
            .values_list("title", flat=True)
        )
        data, completion = self.llm_client.complete_json(
            build_decompose_messages(task, existing), temperature=0.5
        )

        subtasks = _subtask_titles(data.get("subtasks"))
        if not subtasks:
            raise UpstreamServiceError("AI returned no subtasks", "EMPTY_RESPONSE")
        logger.info(f"Decomposed Task {task.pk} into {len(subtasks)} suggested subtasks")
        return {
            "subtasks": subtasks,
            "reasoning": str(data.get("reasoning") or "").strip(),
            "usage": completion.usage,
        }

    def research(self, user, task_id, query: str, save_to_context: bool = False) -> Dict[str, Any]:
        task = get_owned_task(user, task_id)
        data, completion = self.llm_client.complete_json(build_research_messages(task, query), temperature=0.3)

        findings = str(data.get("findings") or "").strip()
        if not findings:
            raise UpstreamServiceError("AI returned an empty research result", "EMPTY_RESPONSE")
        sources = _sources(data.get("sources"))

        result: Dict[str, Any] = {"findings": findings, "sources": sources, "usage": completion.usage}
        if save_to_context:
            artifact = self.store.save(
                user,
                task.pk,
                AIArtifact.Type.RESEARCH,
                findings,
                title=f"Research: {query[:100]}",
                metadata={
                    "query": query,
                    "sources": [
                        {"url": s if s.startswith("http") else None, "title": s}
                        for s in sources
                    ],
                },
            )
            result["contextId"] = str(artifact.pk)
        return result

    def draft(
        self,
        user,
        task_id,
        action: str,
        content: Optional[str] = None,
        selected_text: Optional[str] = None,
    ) -> Dict[str, Any]:
        task = get_owned_task(user, task_id)
        completion = self.llm_client.complete(build_draft_messages(task, action, content, selected_text))

        text = completion.content.strip()
        if not text:
            raise UpstreamServiceError("AI returned an empty draft", "EMPTY_RESPONSE")

        artifact = self.store.save(
            user,
            task.pk,
            AIArtifact.Type.DRAFT,
            text,
            title=f"AI Draft ({action})",
            metadata={
                "draftType": "general",
                "action": action,
                "wordCount": len(text.split()),
            },
        )
        logger.info(f"Draft ({action}) saved as v{artifact.version} for Task {task.pk}")
        return {
            "content": text,
            "contextId": str(artifact.pk),
            "version": artifact.version,
            "usage": completion.usage,
        }
