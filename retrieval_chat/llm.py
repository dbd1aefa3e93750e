# retrieval_chat/llm.py
from __future__ import annotations
from typing import AsyncGenerator, List, Dict, Optional
import json
import logging

import httpx

from .config import settings

logger = logging.getLogger(__name__)


class LLMAdapter:
    """
    Client for an OpenAI-compatible /chat/completions endpoint.
    complete() returns the whole answer, stream() yields text deltas.
    """

    def __init__(self, _settings: settings.__class__) -> None:
        self._settings = _settings
        self.client: Optional[httpx.AsyncClient] = None

    async def startup(self) -> None:
        if self.client is None:
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
            self.client = httpx.AsyncClient(
                base_url=self._settings.LLM_BASE_URL.rstrip("/"),
                timeout=httpx.Timeout(self._settings.LLM_TIMEOUT),
                limits=limits,
                headers={
                    "Authorization": f"Bearer {self._settings.LLM_API_KEY}",
                    "Content-Type": "application/json",
                },
            )

    async def shutdown(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    def _payload(self, messages: List[Dict], stream: bool, temperature: Optional[float], max_tokens: Optional[int]) -> Dict:
        payload = {
            "model": self._settings.LLM_MODEL,
            "messages": messages,
            "temperature": self._settings.LLM_TEMPERATURE if temperature is None else temperature,
            "stream": stream,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        return payload

    async def complete(
        self,
        messages: List[Dict],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        await self.startup()
        assert self.client is not None
        payload = self._payload(messages, False, temperature, max_tokens)
        r = await self.client.post("/chat/completions", json=payload)
        r.raise_for_status()
        data = r.json()
        choices = data.get("choices") or []
        if not choices:
            raise ValueError("LLM response contained no choices")
        return (choices[0].get("message") or {}).get("content") or ""

    async def stream(
        self,
        messages: List[Dict],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncGenerator[str, None]:
        await self.startup()
        assert self.client is not None
        payload = self._payload(messages, True, temperature, max_tokens or self._settings.LLM_MAX_TOKENS)
        async with self.client.stream("POST", "/chat/completions", json=payload) as r:
            r.raise_for_status()
            async for line in r.aiter_lines():
                if not line or not line.startswith("data:"):
                    continue
                chunk = line.removeprefix("data:").strip()
                if chunk == "[DONE]":
                    break
                text = self._extract_delta_text(chunk)
                if text:
                    yield text

    @staticmethod
    def _extract_delta_text(chunk: str) -> Optional[str]:
        """
        Expects one JSON object from the stream (data: {...}) and returns
        choices[0].delta.content, or a top-level "content" some providers send.
        """
        try:
            obj = json.loads(chunk)
        except json.JSONDecodeError:
            logger.warning("Skipping non-JSON stream line: %r", chunk[:200])
            return None

        choices = obj.get("choices") or []
        if choices:
            delta = choices[0].get("delta") or {}
            text = delta.get("content")
            if text is not None:
                return text
        return obj.get("content")
