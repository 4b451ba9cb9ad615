"""Exception types raised across the citation verification pipeline."""
from __future__ import annotations

from pathlib import Path
from typing import Optional


class CitationVerifierError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(CitationVerifierError):
    """Raised when configuration values cannot be used."""


class ExtractionServiceError(CitationVerifierError):
    """The fulltext extraction service was unreachable or refused the request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OracleServiceError(CitationVerifierError):
    """The verification oracle could not be reached or returned a non-200 reply."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OracleReplyError(CitationVerifierError):
    """The oracle answered, but not with a usable verdict."""

    def __init__(self, message: str, raw_reply: str):
        super().__init__(message)
        self.raw_reply = raw_reply


class MalformedDocumentError(CitationVerifierError):
    """A TEI payload or stored document unit could not be parsed."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


__all__ = [
    "CitationVerifierError",
    "ConfigError",
    "ExtractionServiceError",
    "OracleServiceError",
    "OracleReplyError",
    "MalformedDocumentError",
]
