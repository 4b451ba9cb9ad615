"""Per-upload verification sessions.

Each session runs as its own asyncio task through the states::

    created -> extracting -> verifying -> completed | error

and publishes one :class:`~citation_verifier.schemas.ProgressEvent` per
transition and per oracle sub-step to its progress channel. References are
verified one at a time in document order; a failure for one reference is
recorded on that reference and the session moves on.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Dict, List, Optional

from .app import CitationCheckerApp
from .config import CheckerConfig
from .errors import CitationVerifierError, OracleReplyError
from .models import ReferenceUsage, SessionStatus, VerificationSession
from .oracle import VerificationOracle
from .progress import ProgressChannel, ProgressRegistry
from .schemas import (
    OracleStep,
    ProcessedReference,
    ProgressEvent,
    ReferenceStatus,
    VerificationReport,
    VerificationResult,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Session cancelled"

STEP_MESSAGES = {
    OracleStep.SUBMITTED: "Sending citation contexts to Gemini",
    OracleStep.AWAITING_RESULT: "Waiting for Gemini to compare the citation with the source",
    OracleStep.SCORED: "Verification result received",
}


def build_report(
    title: str, references: List[ProcessedReference], missing_handling: str = "log"
) -> VerificationReport:
    """Summarize the outcome of every processed reference."""

    counts: Dict[ReferenceStatus, int] = {status: 0 for status in ReferenceStatus}
    for reference in references:
        counts[reference.status] += 1
    missing = counts[ReferenceStatus.MISSING]
    return VerificationReport(
        document_title=title,
        total_citations_checked=sum(
            count
            for status, count in counts.items()
            if status not in (ReferenceStatus.PENDING, ReferenceStatus.SKIPPED)
        ),
        verified_citations=counts[ReferenceStatus.VALID],
        unverified_citations=counts[ReferenceStatus.INVALID] + (missing if missing_handling == "log" else 0),
        inconclusive_citations=counts[ReferenceStatus.UNCERTAIN] + (missing if missing_handling == "skip" else 0),
        missing_references=missing,
        failed_references=counts[ReferenceStatus.ERROR],
        results=[reference.model_copy(deep=True) for reference in references],
    )


class VerificationSessionManager:
    """Creates, runs, cancels and prunes verification sessions."""

    def __init__(
        self,
        app: CitationCheckerApp,
        oracle: Optional[VerificationOracle] = None,
        config: Optional[CheckerConfig] = None,
    ) -> None:
        self.app = app
        self.oracle = oracle
        self.config = config or app.config
        self.sessions: Dict[str, VerificationSession] = {}
        self.channels = ProgressRegistry()
        self._tasks: Dict[str, asyncio.Task] = {}

    # -- public API -------------------------------------------------------

    def start_session(self, payload: bytes, filename: str, verify: bool = True) -> str:
        """Register a session and schedule its run on the running event loop."""

        self.prune_expired()
        session_id = uuid.uuid4().hex
        session = VerificationSession(session_id=session_id, document_title=filename)
        self.sessions[session_id] = session
        self.channels.create(session_id)
        self._emit(session)
        task = asyncio.get_running_loop().create_task(
            self._run(session, payload, filename, verify), name=f"verification-{session_id}"
        )
        self._tasks[session_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(session_id, None))
        logger.info("Started verification session %s for %s", session_id, filename)
        return session_id

    def get(self, session_id: str) -> Optional[VerificationSession]:
        return self.sessions.get(session_id)

    def channel(self, session_id: str) -> Optional[ProgressChannel]:
        return self.channels.get(session_id)

    def latest_event(self, session_id: str) -> Optional[ProgressEvent]:
        channel = self.channels.get(session_id)
        return channel.latest if channel else None

    def cancel(self, session_id: str) -> bool:
        """Request cancellation; returns False for unknown or finished sessions."""

        session = self.sessions.get(session_id)
        if session is None or session.status.terminal:
            return False
        session.cancel_event.set()
        logger.info("Cancellation requested for session %s", session_id)
        return True

    async def wait(self, session_id: str) -> Optional[VerificationSession]:
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.shield(task)
        return self.sessions.get(session_id)

    def prune_expired(self, now: Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        expired = [
            session_id
            for session_id, session in self.sessions.items()
            if session.finished_at is not None
            and now - session.finished_at > self.config.session_retention_seconds
        ]
        for session_id in expired:
            del self.sessions[session_id]
            self.channels.discard(session_id)
        if expired:
            logger.debug("Pruned %d expired sessions", len(expired))
        return len(expired)

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    # -- state machine ----------------------------------------------------

    async def _run(self, session: VerificationSession, payload: bytes, filename: str, verify: bool) -> None:
        try:
            await self._execute(session, payload, filename, verify)
        except Exception as exc:
            logger.exception("Session %s failed unexpectedly", session.session_id)
            self._fail(session, f"Unexpected error: {exc}")

    async def _execute(self, session: VerificationSession, payload: bytes, filename: str, verify: bool) -> None:
        session.status = SessionStatus.EXTRACTING
        self._emit(session)
        try:
            tei = await self.app.to_tei(payload, filename)
            extraction = self.app.process_tei(tei)
        except CitationVerifierError as exc:
            logger.warning("Extraction failed for session %s: %s", session.session_id, exc)
            self._fail(session, f"Extraction failed: {exc}")
            return

        session.document_title = extraction.metadata.title
        if self.config.persist_uploads:
            self._persist(extraction.metadata, filename)

        usages = extraction.usages
        session.total_references = len(usages)
        session.processed_references = [
            ProcessedReference(
                id=usage.reference.id,
                title=usage.reference.title or usage.reference.raw_text or usage.reference.id,
                link=usage.reference.link,
                context_count=usage.citation_count,
                merged_ids=list(usage.merged_ids),
            )
            for usage in usages
        ]

        if not verify:
            for processed in session.processed_references:
                processed.status = ReferenceStatus.SKIPPED
            session.current_index = len(usages)
            self._complete(session)
            return

        session.status = SessionStatus.VERIFYING
        self._emit(session)
        for position, usage in enumerate(usages):
            if session.cancelled:
                self._cancel_remaining(session, position)
                return
            await self._verify_usage(session, position, usage)
        self._complete(session)

    async def _verify_usage(self, session: VerificationSession, position: int, usage: ReferenceUsage) -> None:
        processed = session.processed_references[position]
        processed.status = ReferenceStatus.VERIFYING
        session.current_reference = processed.title
        self._emit(session)

        try:
            source = self.app.store.find_for_reference(usage.reference)
        except (CitationVerifierError, OSError) as exc:
            logger.warning("Document lookup failed for %s: %s", processed.id, exc)
            self._fail_reference(session, position, f"Document lookup failed: {exc}")
            return
        if source is None:
            if self.config.missing_reference_handling == "log":
                logger.warning("Reference not found in database: %s", processed.title)
            else:
                logger.info("Skipping reference missing from database: %s", processed.title)
            processed.status = ReferenceStatus.MISSING
            processed.error = "Source document not found in the document database"
            self._advance(session, position)
            return

        if self.oracle is None:
            self._fail_reference(session, position, "No verification oracle configured")
            return

        self._emit_step(session, OracleStep.SUBMITTED)
        self._emit_step(session, OracleStep.AWAITING_RESULT)
        try:
            result = await self.oracle.verify(usage, source)
        except OracleReplyError as exc:
            logger.warning("Unusable oracle reply for %s: %s", processed.id, exc)
            processed.raw_reply = exc.raw_reply
            self._fail_reference(session, position, str(exc))
            return
        except (CitationVerifierError, OSError) as exc:
            logger.warning("Oracle call failed for %s: %s", processed.id, exc)
            self._fail_reference(session, position, str(exc))
            return

        processed.result = result
        processed.status = self._status_for(result)
        self._advance(
            session,
            position,
            gemini_status=OracleStep.SCORED.value,
            current_step=STEP_MESSAGES[OracleStep.SCORED],
            step_progress=OracleStep.SCORED.progress,
            total_steps=len(OracleStep),
            gemini_result=result,
        )

    def _fail_reference(self, session: VerificationSession, position: int, message: str) -> None:
        processed = session.processed_references[position]
        processed.status = ReferenceStatus.ERROR
        processed.error = message
        self._advance(session, position, gemini_status="error", gemini_status_message=message)

    def _status_for(self, result: VerificationResult) -> ReferenceStatus:
        if not result.is_verified:
            return ReferenceStatus.INVALID
        if result.confidence_score >= self.config.confidence_threshold:
            return ReferenceStatus.VALID
        return ReferenceStatus.UNCERTAIN

    def _advance(self, session: VerificationSession, position: int, **extra) -> None:
        session.current_index = position + 1
        self._emit(session, **extra)

    def _emit_step(self, session: VerificationSession, step: OracleStep) -> None:
        self._emit(
            session,
            gemini_status=step.value,
            current_step=STEP_MESSAGES[step],
            step_progress=step.progress,
            total_steps=len(OracleStep),
        )

    def _cancel_remaining(self, session: VerificationSession, position: int) -> None:
        for processed in session.processed_references[position:]:
            processed.status = ReferenceStatus.SKIPPED
        logger.info("Session %s cancelled at reference %d", session.session_id, position)
        self._fail(session, CANCELLED_MESSAGE)

    def _persist(self, metadata, filename: str) -> None:
        store = self.app.store
        if store.is_processed(filename):
            logger.debug("%s is already in the document database", filename)
            return
        try:
            self.app.ingest_metadata(metadata, source_path=filename)
        except OSError as exc:
            logger.warning("Could not store uploaded document %s: %s", filename, exc)

    def _complete(self, session: VerificationSession) -> None:
        session.status = SessionStatus.COMPLETED
        session.current_reference = ""
        session.report = build_report(
            session.document_title,
            session.processed_references,
            self.config.missing_reference_handling,
        )
        session.finished_at = time.monotonic()
        self._emit(session, report=session.report)
        logger.info(
            "Session %s completed: %d verified, %d unverified, %d errors",
            session.session_id,
            session.report.verified_citations,
            session.report.unverified_citations,
            session.report.failed_references,
        )

    def _fail(self, session: VerificationSession, message: str) -> None:
        session.status = SessionStatus.ERROR
        session.error = message
        session.finished_at = time.monotonic()
        self._emit(session, error=message)

    def _emit(self, session: VerificationSession, **extra) -> None:
        channel = self.channels.get(session.session_id)
        if channel is None:
            return
        event = ProgressEvent(
            session_id=session.session_id,
            status=session.status.value,
            current_reference=session.current_reference,
            current_index=session.current_index,
            total_references=session.total_references,
            processed_references=[ref.model_copy(deep=True) for ref in session.processed_references],
            **extra,
        )
        channel.emit(event)


__all__ = ["CANCELLED_MESSAGE", "VerificationSessionManager", "build_report"]
