"""Citation extraction and source verification toolkit."""

from .app import CitationCheckerApp
from .config import CheckerConfig
from .models import CitationContext, DocumentExtraction, DocumentRecord, Reference, ReferenceUsage, ValidationIssue
from .store import DocumentStore
from .grobid import GrobidClient
from .oracle import GeminiOracle, VerificationOracle
from .session import VerificationSessionManager

__all__ = [
    "CitationCheckerApp",
    "CheckerConfig",
    "CitationContext",
    "DocumentExtraction",
    "DocumentRecord",
    "Reference",
    "ReferenceUsage",
    "ValidationIssue",
    "DocumentStore",
    "GrobidClient",
    "GeminiOracle",
    "VerificationOracle",
    "VerificationSessionManager",
]
