# assistant/ai_engine/prompts.py
"""System prompts and prompt builders for the assistant features."""

import json
from typing import Any, Dict, List, Optional


TASK_ASSISTANT_PROMPT = (
    "You are the assistant built into TaskPilot, a task management app. "
    "Help the user get their tasks done.\n\n"
    "Guidelines:\n"
    "- Be concise and actionable; suggest specific next steps.\n"
    "- Use the task and project context below when it is provided.\n"
    "- Take priority and due dates into account.\n"
    "- When proposing subtasks, start each with a verb and keep it completable in one sitting.\n"
    "- Say so when you are unsure and offer alternatives.\n"
    "- Use bullet points for lists and keep answers under 200 words unless more is needed."
)

CONVERSATION_TYPE_HINTS = {
    "decompose": "Focus on breaking the task into 3-7 ordered, concrete subtasks.",
    "research": "Focus on gathering accurate, practical information for the task.",
    "draft": "Focus on producing written content the user can use directly.",
    "planning": "Focus on sequencing, time estimates and scheduling.",
    "coaching": "Focus on unblocking the user and keeping momentum without lecturing.",
}

DECOMPOSE_PROMPT = (
    "You break tasks down inside a task management app. "
    "Analyze the task, then list 3-7 subtasks in the order they should be done.\n\n"
    "Each subtask starts with an action verb (Write, Review, Research, Schedule, ...), "
    "is specific, and fits in one sitting of 30 minutes to 2 hours. "
    "Avoid vague items such as \"Think about X\".\n\n"
    "Return JSON with this shape:\n"
    '{"reasoning": "1-2 sentence analysis", "subtasks": ["first subtask", ...]}'
)

RESEARCH_PROMPT = (
    "You are a research assistant inside a task management app. "
    "Answer the research question for the given task.\n\n"
    "Return JSON with this shape:\n"
    '{"findings": "markdown with sections Key Findings, Important Details, '
    'Recommended Next Steps", "sources": ["source name or URL", ...]}\n'
    "Prefer accuracy over breadth and state uncertainty plainly."
)

DRAFT_PROMPT = (
    "You are a writing assistant inside a task management app. "
    "Produce clear, professional, ready-to-use text. "
    "Return only the text itself, with no preamble."
)

DRAFT_INSTRUCTIONS = {
    "generate": (
        "Create a complete, well-structured draft that accomplishes this task. "
        "Use sections where they help and keep the content actionable."
    ),
    "improve": (
        "Improve the following text: make it clearer, tighter and more professional "
        "while keeping its meaning and intent."
    ),
    "expand": (
        "Expand the following text with relevant detail, examples and supporting points "
        "while keeping its tone."
    ),
    "summarize": (
        "Summarize the following text into its key points, keeping every decision and action item."
    ),
}

TASK_ENRICHMENT_PROMPT = (
    "You are a task planning expert. Enrich the user's task with concrete suggestions. "
    "Make reasonable assumptions instead of asking questions.\n\n"
    "Propose:\n"
    "1. refinedTitle: action-oriented, starting with a verb\n"
    "2. description: definition of done and key constraints\n"
    "3. estimatedMinutes: total duration in minutes\n"
    "4. suggestedDueDate: ISO 8601 datetime or null\n"
    "5. priority: high|medium|low|none\n"
    "6. subtasks: 3-7 items {title, estimatedMinutes, type (action|research|draft|plan|review), "
    "aiCanDo (bool), suggestedOrder (int)}\n"
    "7. insights: {estimationConfidence (high|medium|low), riskFactors: [string], keyAssumptions: [string]}\n\n"
    "Use the history of similar completed tasks, when given, to calibrate estimates. "
    "Return ONLY valid JSON with exactly these keys."
)

SIMILARITY_REFINEMENT_PROMPT = (
    "You compare a new task with tasks the user completed before. "
    "Score each candidate from 0 to 100:\n"
    "90-100 nearly identical work, 70-89 same kind of work, 50-69 related, "
    "below 50 weakly related.\n"
    'Return JSON: {"matches": [{"taskId": "...", "score": 0, "reason": "..."}]}. '
    "Only include candidates from the list."
)


def _format_due(task) -> str:
    return task.due_date.isoformat() if task.due_date else "Not set"


def build_system_prompt(
    task=None,
    project=None,
    conversation_type: str = "general",
    subtask_titles: Optional[List[str]] = None,
    project_counts: Optional[Dict[str, int]] = None,
) -> str:
    """
    Base instructions plus optional task and project sections.
    Context is only ever appended to the base prompt.
    """
    parts = [TASK_ASSISTANT_PROMPT]

    hint = CONVERSATION_TYPE_HINTS.get(conversation_type)
    if hint:
        parts.append(hint)

    if task is not None:
        subtasks = ", ".join(subtask_titles) if subtask_titles else "None"
        parts.append(
            "## Current Task Context\n"
            f"- Title: {task.title}\n"
            f"- Description: {task.description or 'None provided'}\n"
            f"- Priority: {task.priority}\n"
            f"- Due Date: {_format_due(task)}\n"
            f"- Status: {task.status}\n"
            f"- Existing Subtasks: {subtasks}"
        )

    if project is not None:
        counts = project_counts or {}
        parts.append(
            "## Project Context\n"
            f"- Project Name: {project.name}\n"
            f"- Description: {project.description or 'None provided'}\n"
            f"- Total Tasks: {counts.get('total', 0)}\n"
            f"- Completed Tasks: {counts.get('completed', 0)}"
        )

    return "\n\n".join(parts)


def build_enrichment_messages(task, similar: Dict[str, Any]) -> List[Dict[str, str]]:
    lines = [
        "Task to enrich:",
        f"Title: {task.title}",
        f"Description: {task.description or 'No description provided'}",
        f"Project: {task.project.name if task.project_id else 'None'}",
        f"Current estimate (minutes): {task.estimated_minutes or 'None'}",
    ]

    matches = similar.get("matches") or []
    if matches:
        lines.append("")
        lines.append("Similar completed tasks:")
        for match in matches:
            insights = match["execution_insights"]
            ratio = insights["estimated_vs_actual"]
            ratio_text = f", took {ratio:.1f}x the estimate" if ratio else ""
            lines.append(f'- "{match["title"]}" ({match["similarity_score"]}% match{ratio_text})')

        aggregated = similar["aggregated"]
        lines.append("")
        lines.append("Historical insights:")
        lines.append(f"- Average estimation accuracy: {aggregated['avg_estimation_accuracy']}%")
        lines.append(f"- Success rate: {aggregated['success_rate']}%")
        if aggregated["common_subtasks_added"]:
            lines.append(f"- Subtasks often added late: {', '.join(aggregated['common_subtasks_added'])}")
        if aggregated["common_stall_points"]:
            lines.append(f"- Common blockers: {', '.join(aggregated['common_stall_points'])}")

    return [
        {"role": "system", "content": TASK_ENRICHMENT_PROMPT},
        {"role": "user", "content": "\n".join(lines)},
    ]


def build_decompose_messages(task, existing_subtasks: Optional[List[str]] = None) -> List[Dict[str, str]]:
    due = task.due_date.date().isoformat() if task.due_date else "No due date"
    lines = [
        f"Title: {task.title}",
        f"Description: {task.description or 'No description provided'}",
        f"Priority: {task.priority}",
        f"Due Date: {due}",
    ]
    if existing_subtasks:
        lines.append(f"Existing Subtasks: {', '.join(existing_subtasks)}")
    return [
        {"role": "system", "content": DECOMPOSE_PROMPT},
        {"role": "user", "content": "Break down this task into subtasks:\n\n" + "\n".join(lines)},
    ]


def build_research_messages(task, query: str) -> List[Dict[str, str]]:
    user_content = (
        f"Task: {task.title}\n"
        f"Description: {task.description or 'No description'}\n\n"
        f"Research question: {query}"
    )
    return [
        {"role": "system", "content": RESEARCH_PROMPT},
        {"role": "user", "content": user_content},
    ]


def build_draft_messages(
    task,
    action: str,
    content: Optional[str] = None,
    selected_text: Optional[str] = None,
) -> List[Dict[str, str]]:
    lines = [
        DRAFT_INSTRUCTIONS[action],
        "",
        f"Task: {task.title}",
        f"Description: {task.description or 'No description'}",
    ]
    source = selected_text or content
    if action != "generate" and source:
        lines.extend(["", "Text:", source])
    elif action == "generate" and content:
        lines.extend(["", "Existing notes to build on:", content])
    return [
        {"role": "system", "content": DRAFT_PROMPT},
        {"role": "user", "content": "\n".join(lines)},
    ]


def build_similarity_messages(title: str, description: Optional[str], candidates: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    payload = {
        "newTask": {"title": title, "description": description or ""},
        "candidates": [
            {"taskId": c["task_id"], "title": c["title"], "keywords": c["keywords"]}
            for c in candidates
        ],
    }
    return [
        {"role": "system", "content": SIMILARITY_REFINEMENT_PROMPT},
        {"role": "user", "content": json.dumps(payload)},
    ]
