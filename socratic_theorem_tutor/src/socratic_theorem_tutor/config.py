"""
Tutor Configuration

Settings are read from environment variables (a local .env file is loaded
first). Every provider call is bounded by a timeout taken from here.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass
class TutorSettings:
    """Runtime settings for the tutoring engine."""
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    model: str = "gpt-4o-mini"

    # Embeddings
    embedding_provider: str = "openai"  # "openai" or "huggingface"
    embedding_model: str = "text-embedding-3-small"
    embedding_timeout: float = 10.0

    # Generation
    llm_timeout: float = 60.0
    temperature: float = 0.8
    max_tokens: int = 1500

    # Retrieval / guidance / history
    retrieval_top_k: int = 3
    max_guiding_questions: int = 5
    session_max_messages: int = 20

    knowledge_dir: str = "data/knowledge"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    @classmethod
    def from_env(cls) -> "TutorSettings":
        """Build settings from the current environment."""
        embedding_provider = os.getenv("EMBEDDING_PROVIDER", "openai").lower()
        default_embedding_model = (
            "all-MiniLM-L6-v2" if embedding_provider == "huggingface" else "text-embedding-3-small"
        )
        cors = os.getenv("CORS_ORIGINS", "http://localhost:3000")
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            embedding_provider=embedding_provider,
            embedding_model=os.getenv("EMBEDDING_MODEL", default_embedding_model),
            embedding_timeout=_env_float("EMBEDDING_TIMEOUT_SECONDS", 10.0),
            llm_timeout=_env_float("LLM_TIMEOUT_SECONDS", 60.0),
            temperature=_env_float("LLM_TEMPERATURE", 0.8),
            max_tokens=_env_int("LLM_MAX_TOKENS", 1500),
            retrieval_top_k=_env_int("RETRIEVAL_TOP_K", 3),
            max_guiding_questions=_env_int("MAX_GUIDING_QUESTIONS", 5),
            session_max_messages=min(_env_int("SESSION_MAX_MESSAGES", 20), 20),
            knowledge_dir=os.getenv("KNOWLEDGE_DIR", "data/knowledge"),
            cors_origins=[origin.strip() for origin in cors.split(",") if origin.strip()],
        )


_settings: Optional[TutorSettings] = None


def get_settings() -> TutorSettings:
    """Get or create the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = TutorSettings.from_env()
    return _settings
