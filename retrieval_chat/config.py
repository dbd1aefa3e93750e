# retrieval_chat/config.py
from __future__ import annotations
from typing import List, Optional
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global app settings.

    Values come from the environment or .env. Nothing is required: the
    defaults point at OpenAI and a local Chroma folder, so only LLM_API_KEY
    has to be set for a real deployment.
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # LLM (OpenAI-compatible)
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_API_KEY: str = ""
    LLM_MODEL: str = "gpt-4"
    LLM_TEMPERATURE: float = 0.2
    LLM_MAX_TOKENS: int = 600
    LLM_TIMEOUT: float = 120.0

    # Embeddings (sentence-transformers name or local snapshot folder)
    EMBEDDING_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"

    # Chroma: local path, or remote server when CHROMA_HOST is set
    CHROMA_PATH: str = "data/chroma"
    CHROMA_HOST: Optional[str] = None
    CHROMA_PORT: int = 8000
    CHROMA_SSL: bool = False
    CHROMA_TOKEN: Optional[str] = None
    COLLECTION_NAME: str = "documents"

    # Retrieval
    TOP_K: int = 4

    # HTTP / logging
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    LOG_LEVEL: str = "INFO"

    @field_validator("CHROMA_PATH", mode="after")
    def _ensure_dirs(cls, v: str) -> str:
        Path(v).mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("TOP_K", mode="after")
    def _check_top_k(cls, v: int) -> int:
        if v < 1:
            raise ValueError("TOP_K must be >= 1")
        return v


settings = Settings()
