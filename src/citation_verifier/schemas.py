"""Wire payloads: oracle verdicts, progress events and API responses."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ReferenceStatus(str, Enum):
    PENDING = "pending"
    VERIFYING = "verifying"
    VALID = "valid"
    INVALID = "invalid"
    UNCERTAIN = "uncertain"
    MISSING = "missing"
    ERROR = "error"
    SKIPPED = "skipped"


class OracleStep(str, Enum):
    SUBMITTED = "submitted"
    AWAITING_RESULT = "awaiting-result"
    SCORED = "scored"

    @property
    def progress(self) -> int:
        return list(OracleStep).index(self) + 1


class VerificationResult(WireModel):
    """Structured verdict returned by the oracle for one reference usage."""

    is_verified: StrictBool
    confidence_score: float = Field(allow_inf_nan=False)
    match_location: Optional[str] = None
    explanation: str = "No explanation provided"

    @field_validator("confidence_score")
    @classmethod
    def clamp_score(cls, value: float) -> float:
        return max(0.0, min(1.0, value))

    @field_validator("match_location", mode="before")
    @classmethod
    def stringify_location(cls, value):
        if value is None or isinstance(value, str):
            return value
        return str(value)


class ProcessedReference(WireModel):
    id: str
    title: str
    status: ReferenceStatus = ReferenceStatus.PENDING
    link: str = "#"
    context_count: int = 0
    merged_ids: List[str] = Field(default_factory=list)
    result: Optional[VerificationResult] = None
    raw_reply: Optional[str] = None
    error: Optional[str] = None


class VerificationReport(WireModel):
    document_title: str
    total_citations_checked: int = 0
    verified_citations: int = 0
    unverified_citations: int = 0
    inconclusive_citations: int = 0
    missing_references: int = 0
    failed_references: int = 0
    results: List[ProcessedReference] = Field(default_factory=list)


class ProgressEvent(WireModel):
    """One snapshot pushed to progress subscribers."""

    session_id: str
    status: str
    current_reference: str = ""
    current_index: int = 0
    total_references: int = 0
    gemini_status: Optional[str] = None
    current_step: Optional[str] = None
    step_progress: Optional[int] = None
    total_steps: Optional[int] = None
    gemini_status_message: Optional[str] = None
    gemini_result: Optional[VerificationResult] = None
    processed_references: List[ProcessedReference] = Field(default_factory=list)
    error: Optional[str] = None
    report: Optional[VerificationReport] = None

    @property
    def terminal(self) -> bool:
        return self.status in ("completed", "error")

    def to_sse(self) -> str:
        """Format as a Server-Sent Event frame."""
        return f"data: {self.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


class VerifyResponse(WireModel):
    session_id: str
    progress: str


class BatchResult(WireModel):
    processed_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    message: str = ""


__all__ = [
    "BatchResult",
    "OracleStep",
    "ProcessedReference",
    "ProgressEvent",
    "ReferenceStatus",
    "VerificationReport",
    "VerificationResult",
    "VerifyResponse",
]
