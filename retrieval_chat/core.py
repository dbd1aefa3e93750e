# retrieval_chat/core.py
from __future__ import annotations
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncGenerator, Dict, List, Optional
import json
import logging
import time
import unicodedata

from fastapi.concurrency import run_in_threadpool

from .errors import InvalidRequestError, PipelineError
from .llm import LLMAdapter
from .prompting import PromptBuilder, combine_documents, format_chat_history
from .retrieval import Document, RetrievalService

logger = logging.getLogger(__name__)
log = logging.getLogger("metrics")


class PipelineStage(str, Enum):
    RECEIVED = "received"
    CONDENSING = "condensing"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PreparedAnswer:
    """Everything the answer stage needs, produced before the first byte is sent."""
    question: str
    chat_history: str
    standalone_question: str
    documents: List[Document]
    context: str
    answer_messages: List[Dict]
    marks: Dict[str, float] = field(default_factory=dict)
    metrics: Optional[Dict] = None


class ApplicationCore:
    """
    Orchestration: messages -> condense -> retrieve -> combine -> LLM stream.

    Stages run strictly one after another; the first failure ends the run
    as a PipelineError carrying the stage name. Nothing is retried.
    """

    def __init__(self, retrieval: RetrievalService, prompting: PromptBuilder, llm: LLMAdapter) -> None:
        self.retrieval = retrieval
        self.prompting = prompting
        self.llm = llm

    # ---------- Stages ----------
    async def prepare(self, messages: List[Dict]) -> PreparedAnswer:
        """Run every stage up to (not including) answer generation."""
        marks: Dict[str, float] = {"start": time.perf_counter()}

        question = (messages[-1].get("content") or "") if messages else ""
        if not question.strip():
            e = InvalidRequestError(
                "the last message has no content" if messages else "messages must contain at least one message"
            )
            self._finish(marks, PipelineStage.RECEIVED, ok=False, error=e)
            raise e

        chat_history = format_chat_history(messages[:-1])

        stage = PipelineStage.CONDENSING
        try:
            marks["condense_start"] = time.perf_counter()
            condense_messages = self.prompting.build_condense_messages(chat_history, question)
            standalone_question = (await self.llm.complete(condense_messages)).strip()
            marks["condense_end"] = time.perf_counter()
            logger.debug("standalone question: %r", standalone_question)

            stage = PipelineStage.RETRIEVING
            marks["retrieval_start"] = time.perf_counter()
            # Chroma and sentence-transformers are blocking
            documents = await run_in_threadpool(self.retrieval.search, standalone_question)
            marks["retrieval_end"] = time.perf_counter()
        except Exception as e:
            self._finish(marks, stage, ok=False, error=e)
            raise PipelineError(stage.value, str(e)) from e

        context = combine_documents(documents)
        answer_messages = self.prompting.build_answer_messages(context, standalone_question)
        return PreparedAnswer(
            question=question,
            chat_history=chat_history,
            standalone_question=standalone_question,
            documents=documents,
            context=context,
            answer_messages=answer_messages,
            marks=marks,
        )

    async def generate(self, prepared: PreparedAnswer) -> AsyncGenerator[bytes, None]:
        """Yield the answer as UTF-8 chunks as the LLM produces them."""
        marks = prepared.marks
        stage = PipelineStage.GENERATING
        emitted_chars = 0
        chunks = 0
        ok = False
        error: Optional[Exception] = None

        marks["llm_req"] = time.perf_counter()
        try:
            async with aclosing(self.llm.stream(prepared.answer_messages)) as tokens:
                async for text in tokens:
                    if stage is PipelineStage.GENERATING:
                        stage = PipelineStage.STREAMING
                        marks["first_token"] = time.perf_counter()
                    emitted_chars += len(text)
                    chunks += 1
                    marks["last_token"] = time.perf_counter()
                    yield text.encode("utf-8")
            ok = True
        except Exception as e:
            error = e
            raise PipelineError(stage.value, str(e)) from e
        finally:
            # also reached when the client goes away and the generator is closed
            prepared.metrics = self._finish(
                marks,
                stage,
                ok=ok,
                error=error,
                emitted_chars=emitted_chars,
                chunks=chunks,
            )

    async def stream(self, messages: List[Dict]) -> AsyncGenerator[bytes, None]:
        prepared = await self.prepare(messages)
        async for chunk in self.generate(prepared):
            yield chunk

    async def answer_once(self, messages: List[Dict]) -> Dict:
        """
        Non-streaming variant of stream():
        - runs the same pipeline
        - returns the whole answer, the standalone question, sources and metrics
        """
        prepared = await self.prepare(messages)
        parts: List[bytes] = [chunk async for chunk in self.generate(prepared)]
        return {
            "answer": b"".join(parts).decode("utf-8"),
            "standalone_question": prepared.standalone_question,
            "sources": self._sources(prepared.documents),
            "metrics": prepared.metrics,
        }

    # ---------- Helpers ----------
    @staticmethod
    def _sources(documents: List[Document]) -> List[str]:
        sources: List[str] = []
        seen = set()
        for doc in documents:
            raw_title = doc.meta.get("title") or doc.meta.get("source") or ""
            if not raw_title:
                continue
            title_norm = unicodedata.normalize("NFKC", str(raw_title)).strip()
            key = " ".join(title_norm.lower().split())
            if key in seen:
                continue
            seen.add(key)
            sources.append(title_norm)
        return sources

    @staticmethod
    def _ms(a: Optional[float], b: Optional[float]) -> Optional[float]:
        if a is None or b is None:
            return None
        return round((b - a) * 1000.0, 2)

    def _finish(
        self,
        marks: Dict[str, float],
        stage: PipelineStage,
        ok: bool,
        error: Optional[Exception] = None,
        emitted_chars: int = 0,
        chunks: int = 0,
    ) -> Dict:
        m = marks.get
        end = m("last_token") or m("llm_req") or m("retrieval_end") or m("condense_end") or time.perf_counter()
        if error is not None:
            final = PipelineStage.FAILED
        else:
            # stage is where a consumer stopped reading if not ok
            final = PipelineStage.DONE if ok else stage
        metrics = {
            "stage": final.value,
            "failed_stage": stage.value if error is not None else None,
            "durations_ms": {
                "condense": self._ms(m("condense_start"), m("condense_end")),
                "retrieval": self._ms(m("retrieval_start"), m("retrieval_end")),
                "llm_time_to_first_token": self._ms(m("llm_req"), m("first_token")),
                "llm_stream_duration": self._ms(m("first_token"), m("last_token")),
                "total": self._ms(m("start"), end),
            },
            "sizes": {"emitted_chars": emitted_chars, "chunks": chunks},
            "ok": ok,
        }
        if error is not None:
            metrics["error"] = {"type": type(error).__name__, "message": str(error)}
        log.info(json.dumps(metrics, ensure_ascii=False))
        return metrics
