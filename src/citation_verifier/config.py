"""Runtime configuration for the citation verifier."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError

MISSING_REFERENCE_MODES = ("log", "skip")

DEFAULT_GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models"


@dataclass(frozen=True)
class CheckerConfig:
    """Explicit configuration value passed into every component."""

    grobid_url: str = "http://localhost:8070"
    grobid_timeout: float = 120.0
    grobid_max_retries: int = 3
    grobid_backoff: float = 0.5
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-pro"
    gemini_endpoint: str = DEFAULT_GEMINI_ENDPOINT
    oracle_timeout: float = 60.0
    document_db_path: Path = Path("data/document-database")
    log_level: str = "INFO"
    missing_reference_handling: str = "log"
    confidence_threshold: float = 0.7
    max_source_chars: int = 100_000
    context_window: int = 200
    id_max_length: int = 50
    title_match_threshold: float = 0.6
    session_retention_seconds: float = 3600.0
    persist_uploads: bool = True
    deduplicate_references: bool = False

    def __post_init__(self) -> None:
        if self.missing_reference_handling not in MISSING_REFERENCE_MODES:
            raise ConfigError(
                f"MISSING_REF_HANDLING must be one of {', '.join(MISSING_REFERENCE_MODES)}; "
                f"got {self.missing_reference_handling!r}"
            )
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigError("CONFIDENCE_THRESHOLD must be between 0 and 1")
        if self.id_max_length < 8:
            raise ConfigError("id_max_length must be at least 8")

    @property
    def documents_dir(self) -> Path:
        return Path(self.document_db_path) / "documents"

    @property
    def index_path(self) -> Path:
        return Path(self.document_db_path) / "index.json"

    @property
    def oracle_enabled(self) -> bool:
        return bool(self.gemini_api_key)

    @classmethod
    def from_env(
        cls, env: Optional[Mapping[str, str]] = None, dotenv: bool = True
    ) -> "CheckerConfig":
        """Build a configuration from environment variables (and a .env file)."""

        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        def number(name: str, default: float, cast=float):
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return cast(raw)
            except ValueError as exc:
                raise ConfigError(f"{name} must be numeric, got {raw!r}") from exc

        def flag(name: str, default: bool) -> bool:
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                return default
            return raw.strip().lower() in {"1", "true", "yes", "on"}

        return cls(
            grobid_url=env.get("GROBID_URL", cls.grobid_url).rstrip("/"),
            grobid_timeout=number("GROBID_TIMEOUT", cls.grobid_timeout),
            grobid_max_retries=number("GROBID_MAX_RETRIES", cls.grobid_max_retries, int),
            grobid_backoff=number("GROBID_BACKOFF", cls.grobid_backoff),
            gemini_api_key=env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY") or "",
            gemini_model=env.get("GEMINI_MODEL", cls.gemini_model),
            gemini_endpoint=env.get("GEMINI_ENDPOINT", cls.gemini_endpoint).rstrip("/"),
            oracle_timeout=number("ORACLE_TIMEOUT", cls.oracle_timeout),
            document_db_path=Path(env.get("DOCUMENT_DB_PATH", str(cls.document_db_path))),
            log_level=env.get("LOG_LEVEL", cls.log_level).upper(),
            missing_reference_handling=env.get(
                "MISSING_REF_HANDLING", cls.missing_reference_handling
            ).strip().lower(),
            confidence_threshold=number("CONFIDENCE_THRESHOLD", cls.confidence_threshold),
            max_source_chars=number("MAX_SOURCE_CHARS", cls.max_source_chars, int),
            context_window=number("CONTEXT_WINDOW", cls.context_window, int),
            session_retention_seconds=number(
                "SESSION_RETENTION_SECONDS", cls.session_retention_seconds
            ),
            persist_uploads=flag("PERSIST_UPLOADS", cls.persist_uploads),
            deduplicate_references=flag("DEDUPLICATE_REFERENCES", cls.deduplicate_references),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a basic root handler; entry points call this once."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = ["CheckerConfig", "MISSING_REFERENCE_MODES", "configure_logging"]
