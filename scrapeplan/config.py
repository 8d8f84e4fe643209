"""Centralised settings for scrapeplan.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("SCRAPEPLAN_WORKSPACE", Path.home() / ".scrapeplan_data")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite plan store."""
        return self.workspace_dir / "plans.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    # ------------------------------------------------------------------
    # Completion service (chat model)
    # ------------------------------------------------------------------
    llm_provider: str = field(
        default_factory=lambda: os.environ.get("LLM_PROVIDER", "ollama")
    )
    llm_fallback_provider: str = field(
        default_factory=lambda: os.environ.get("LLM_FALLBACK_PROVIDER", "")
    )
    ollama_base_url: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    ollama_chat_model: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_CHAT_MODEL", "ministral-3:8b")
    )
    openai_chat_model: str = field(
        default_factory=lambda: os.environ.get("OPENAI_CHAT_MODEL", "gpt-4o-mini")
    )
    completion_timeout: float = field(
        default_factory=lambda: float(os.environ.get("COMPLETION_TIMEOUT", "15.0"))
    )
    model_confidence_threshold: float = field(
        default_factory=lambda: float(os.environ.get("MODEL_CONFIDENCE_THRESHOLD", "0.7"))
    )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    min_similarity_score: float = field(
        default_factory=lambda: float(os.environ.get("MIN_SIMILARITY_SCORE", "0.6"))
    )
    municipal_similarity_score: float = field(
        default_factory=lambda: float(os.environ.get("MUNICIPAL_SIMILARITY_SCORE", "0.5"))
    )

    # ------------------------------------------------------------------
    # Fetcher
    # ------------------------------------------------------------------
    rate_limit_delay: float = field(
        default_factory=lambda: float(os.environ.get("RATE_LIMIT_DELAY", "1.0"))
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "30.0"))
    )

    # ------------------------------------------------------------------
    # Plans / execution
    # ------------------------------------------------------------------
    default_rate_limit_ms: int = field(
        default_factory=lambda: int(os.environ.get("DEFAULT_RATE_LIMIT_MS", "1000"))
    )
    max_content_pages: int = field(
        default_factory=lambda: int(os.environ.get("MAX_CONTENT_PAGES", "3"))
    )
    execution_max_pages: int = field(
        default_factory=lambda: int(os.environ.get("EXECUTION_MAX_PAGES", "5"))
    )

    # ------------------------------------------------------------------
    # Workflow engine
    # ------------------------------------------------------------------
    workflow_retention_seconds: float = field(
        default_factory=lambda: float(os.environ.get("WORKFLOW_RETENTION_SECONDS", "300"))
    )

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


# Module-level singleton, import this everywhere:
#   from scrapeplan.config import settings
settings = Settings()
