# assistant/tests/__init__.py
"""
Assistant App Test Suite
========================

Modules:
--------
- test_rate_limit: fixed-window limiter, stores and the 429 contract
- test_artifacts: artifact versioning, restore/delete and the context routes
- test_similarity: keyword matching, aggregation and refinement fallback
- test_history: execution history recording, insights and the completion hook
- test_orchestrator: chat preparation, streaming and error mapping
- test_enrichment: proposals and field-by-field application
- test_generation: research and draft generation
- test_llm_client: OpenAI wrapper with the SDK mocked

The OpenAI SDK is never called; tests inject helpers.FakeLLMClient or
patch the ``LLMClient`` name in the module under test.
"""
