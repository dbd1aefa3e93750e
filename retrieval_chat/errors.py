# retrieval_chat/errors.py
from __future__ import annotations


class InvalidRequestError(ValueError):
    """The request body cannot start a pipeline run (maps to HTTP 400)."""


class PipelineError(RuntimeError):
    """
    A collaborator (LLM, embedder, vector store) failed during a run.

    `stage` is the pipeline stage the failure happened in; the original
    exception is chained as __cause__.
    """

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage
