# retrieval_chat/__init__.py
"""
Retrieval chat service (question condensation + retrieval + streamed answer).
Structure:
- config.py      : settings via Pydantic Settings
- errors.py      : InvalidRequestError / PipelineError
- db.py          : KnowledgeBase (Chroma client + sentence-transformers embedder)
- retrieval.py   : RetrievalService, Document
- prompting.py   : history formatter, document combiner, PromptBuilder
- llm.py         : LLMAdapter (completion + streaming)
- core.py        : ApplicationCore (condense -> retrieve -> combine -> stream)
- api.py         : FastAPI endpoints (/health, /api/chat/retrieval[/stream|/answer])
"""
