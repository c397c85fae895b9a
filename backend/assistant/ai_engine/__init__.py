"""
AI engine for the assistant app.

Modules:
    rate_limit    per-user fixed-window budgets for AI endpoints
    llm_client    OpenAI wrapper with a single upstream error type
    artifacts     versioned AI content attached to tasks
    similarity    keyword-overlap matching over execution history
    history       completion snapshots and execution insights
    orchestrator  conversations and streamed chat
    enrichment    task enrichment proposals
    generation    research and draft generation
"""
