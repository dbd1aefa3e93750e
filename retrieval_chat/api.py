# retrieval_chat/api.py
from __future__ import annotations
from typing import AsyncIterator, List
from contextlib import aclosing, asynccontextmanager
import json
import logging

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from .config import settings
from .core import ApplicationCore, PreparedAnswer
from .db import KnowledgeBase
from .errors import InvalidRequestError, PipelineError
from .llm import LLMAdapter
from .prompting import PromptBuilder
from .retrieval import RetrievalService

logger = logging.getLogger(__name__)


# ---------- App & DI ----------
kb = KnowledgeBase(settings)
retrieval = RetrievalService(kb, settings)
prompting = PromptBuilder()
llm = LLMAdapter(settings)
core = ApplicationCore(retrieval, prompting, llm)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await llm.startup()
    yield
    await llm.shutdown()


app = FastAPI(title="Retrieval Chat", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


def get_core() -> ApplicationCore:
    return core


# ---------- Models ----------
class ChatMessage(BaseModel):
    role: str
    content: str


class ChatPayload(BaseModel):
    messages: List[ChatMessage] = []


# ---------- Helpers ----------
async def _prepare(core: ApplicationCore, payload: ChatPayload) -> PreparedAnswer:
    """Runs condense + retrieval before any response byte goes out."""
    try:
        return await core.prepare([m.model_dump() for m in payload.messages])
    except InvalidRequestError as e:
        raise HTTPException(400, str(e))
    except PipelineError as e:
        logger.exception("Pipeline failed before streaming")
        raise HTTPException(500, f"{e.stage} failed")


async def _first_chunk(chunks: AsyncIterator[bytes]) -> bytes:
    """Pull the first answer chunk so a failing LLM call still becomes an error status."""
    try:
        return await anext(chunks)
    except StopAsyncIteration:
        return b""
    except PipelineError as e:
        logger.exception("Answer generation failed before the first chunk")
        raise HTTPException(500, f"{e.stage} failed")


# ---------- Endpoints ----------
@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/chat/retrieval")
async def chat_retrieval(payload: ChatPayload, core: ApplicationCore = Depends(get_core)):
    """
    POST /api/chat/retrieval
    Body:
      {
        "messages": [{"role": "user", "content": "What is the refund policy?"}]
      }
    Response: the answer as a chunked text/plain stream.
    """
    prepared = await _prepare(core, payload)
    chunks = core.generate(prepared)
    first = await _first_chunk(chunks)

    async def body():
        async with aclosing(chunks):
            if first:
                yield first
            async for chunk in chunks:
                yield chunk

    return StreamingResponse(body(), media_type="text/plain; charset=utf-8")


@app.post("/api/chat/retrieval/stream")
async def chat_retrieval_events(payload: ChatPayload, request: Request, core: ApplicationCore = Depends(get_core)):
    """
    POST /api/chat/retrieval/stream
    Same body as /api/chat/retrieval. Server-Sent Events:
      - event: message, data: {"delta": "..."}
      - event: error, data: {"type": "...", "message": "..."}
      - event: done, data: {"ok": true|false}
    """
    prepared = await _prepare(core, payload)
    chunks = core.generate(prepared)
    first = await _first_chunk(chunks)

    def _message(chunk: bytes) -> ServerSentEvent:
        return ServerSentEvent(
            event="message",
            data=json.dumps({"delta": chunk.decode("utf-8")}, ensure_ascii=False),
        )

    async def gen():
        ok = False
        try:
            async with aclosing(chunks):
                if first:
                    yield _message(first)
                async for chunk in chunks:
                    if await request.is_disconnected():
                        return
                    yield _message(chunk)
            ok = True
        except PipelineError as e:
            cause = e.__cause__ or e
            yield ServerSentEvent(
                event="error",
                data=json.dumps({"type": type(cause).__name__, "message": str(e)}),
            )
        yield ServerSentEvent(event="done", data=json.dumps({"ok": ok}))

    return EventSourceResponse(gen(), headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})


@app.post("/api/chat/retrieval/answer")
async def chat_retrieval_answer(payload: ChatPayload, core: ApplicationCore = Depends(get_core)):
    """
    POST /api/chat/retrieval/answer
    Same body, non-streaming. Response:
      {
        "answer": "...",
        "standalone_question": "...",
        "sources": [...],
        "metrics": {...}
      }
    """
    try:
        return await core.answer_once([m.model_dump() for m in payload.messages])
    except InvalidRequestError as e:
        raise HTTPException(400, str(e))
    except PipelineError as e:
        logger.exception("Pipeline failed")
        raise HTTPException(500, f"{e.stage} failed")
