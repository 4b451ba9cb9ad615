"""FastAPI + Tailwind interface for the citation verifier.

Run with:
    uvicorn citation_verifier.web:app --reload
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse

from .app import CitationCheckerApp
from .config import CheckerConfig, configure_logging
from .errors import CitationVerifierError, ExtractionServiceError, MalformedDocumentError
from .grobid import GrobidClient
from .oracle import GeminiOracle, VerificationOracle
from .report import extraction_payload
from .schemas import VerifyResponse
from .session import VerificationSessionManager
from .store import DocumentStore

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _layout(content: str) -> str:
    """Wrap provided content in a Tailwind-powered HTML page."""

    return f"""
    <!doctype html>
    <html lang=\"en\" class=\"h-full bg-gray-50\">
    <head>
        <meta charset=\"utf-8\" />
        <title>Citation Verifier</title>
        <link href=\"https://cdn.jsdelivr.net/npm/tailwindcss@3.4.4/dist/tailwind.min.css\" rel=\"stylesheet\" />
    </head>
    <body class=\"min-h-full py-10\">
        <div class=\"max-w-5xl mx-auto px-4\">
            <div class=\"bg-white shadow rounded-lg p-6\">
                <h1 class=\"text-3xl font-semibold text-gray-900\">Citation Verifier</h1>
                <p class=\"text-gray-600 mt-2\">Upload a paper (PDF or GROBID TEI) to check whether each citing sentence matches the cited source.</p>
                {content}
            </div>
        </div>
    </body>
    </html>
    """


UPLOAD_FORM = """
    <form id=\"verify-form\" class=\"bg-gray-50 border border-gray-200 rounded-lg p-4 mt-6\">
        <h2 class=\"text-xl font-semibold text-gray-800\">Upload paper</h2>
        <label class=\"block text-sm font-medium text-gray-700 mb-2\" for=\"file\">PDF or TEI XML</label>
        <input type=\"file\" name=\"file\" accept=\".pdf,.xml,.tei\" required class=\"block w-full text-sm text-gray-800\" />
        <div class=\"flex items-center gap-2 mt-3\">
            <input type=\"checkbox\" id=\"verify\" name=\"verify\" value=\"true\" checked class=\"h-4 w-4 text-indigo-600 border-gray-300 rounded\" />
            <label for=\"verify\" class=\"text-sm text-gray-700\">Verify citations with Gemini</label>
        </div>
        <button type=\"submit\" class=\"mt-4 inline-flex items-center px-4 py-2 bg-indigo-600 text-white rounded-md shadow hover:bg-indigo-700\">Start verification</button>
    </form>
    <div class=\"mt-8\">
        <h2 class=\"text-xl font-semibold text-gray-800\">Progress</h2>
        <p id=\"status\" class=\"text-sm text-gray-600 mt-2\">Waiting for upload.</p>
        <ul id=\"references\" class=\"mt-3 space-y-1 text-sm\"></ul>
    </div>
    <script>
    const form = document.getElementById('verify-form');
    form.addEventListener('submit', async (event) => {
        event.preventDefault();
        const data = new FormData(form);
        if (!data.has('verify')) { data.append('verify', 'false'); }
        const response = await fetch('/api/verify', {method: 'POST', body: data});
        const body = await response.json();
        if (!response.ok) { document.getElementById('status').textContent = String(body.detail); return; }
        const source = new EventSource(body.progress);
        source.onmessage = (message) => {
            const progress = JSON.parse(message.data);
            const step = progress.currentStep ? ' - ' + progress.currentStep : '';
            document.getElementById('status').textContent =
                progress.status + ' (' + progress.currentIndex + '/' + progress.totalReferences + ')' + step;
            const items = progress.processedReferences.map((ref) => {
                const item = document.createElement('li');
                const status = document.createElement('span');
                status.className = 'font-mono';
                status.textContent = ref.status;
                item.append(status, ' ' + ref.title);
                return item;
            });
            document.getElementById('references').replaceChildren(...items);
            if (progress.status === 'completed' || progress.status === 'error') { source.close(); }
        };
    });
    </script>
"""


def create_app(
    config: Optional[CheckerConfig] = None,
    grobid: Optional[GrobidClient] = None,
    oracle: Optional[VerificationOracle] = None,
    store: Optional[DocumentStore] = None,
) -> FastAPI:
    """Build the web app; collaborators default to ones built from ``config``."""

    config = config or CheckerConfig.from_env()
    grobid = grobid or GrobidClient.from_config(config)
    if oracle is None and config.oracle_enabled:
        oracle = GeminiOracle.from_config(config)
    checker = CitationCheckerApp(config=config, store=store, grobid=grobid)
    manager = VerificationSessionManager(checker, oracle=oracle, config=config)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await manager.shutdown()
        await grobid.aclose()
        if oracle is not None:
            await oracle.aclose()

    app = FastAPI(
        title="Citation Verifier",
        description="Check citing sentences against their sources",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.checker = checker
    app.state.sessions = manager

    @app.get("/", response_class=HTMLResponse)
    async def home() -> HTMLResponse:
        """Serve the upload form and live progress view."""
        return HTMLResponse(_layout(UPLOAD_FORM))

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "oracleEnabled": oracle is not None}

    @app.post("/api/verify")
    async def start_verification(
        file: UploadFile = File(...), verify: bool = Form(True)
    ) -> Dict[str, Any]:
        """Accept an upload and start a verification session."""

        payload = await file.read()
        if not payload:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")
        session_id = manager.start_session(payload, file.filename or "upload.pdf", verify=verify)
        return VerifyResponse(
            session_id=session_id, progress=f"/api/verification-progress/{session_id}"
        ).to_wire()

    @app.get("/api/verification-progress/{session_id}")
    async def verification_progress(session_id: str) -> StreamingResponse:
        """Replay the session's events, then stream live ones until it finishes."""

        channel = manager.channel(session_id)
        if channel is None:
            raise HTTPException(status_code=404, detail="Session not found")

        async def event_stream():
            async for event in channel.stream():
                yield event.to_sse()

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.get("/api/sessions/{session_id}")
    async def session_status(session_id: str) -> Dict[str, Any]:
        event = manager.latest_event(session_id)
        if event is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return event.to_wire()

    @app.post("/api/sessions/{session_id}/cancel")
    async def cancel_session(session_id: str) -> Dict[str, Any]:
        if manager.get(session_id) is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return {"sessionId": session_id, "cancelled": manager.cancel(session_id)}

    @app.post("/api/extract")
    async def extract(file: UploadFile = File(...)) -> Dict[str, Any]:
        """Return the citation map of an upload without verifying it."""

        payload = await file.read()
        try:
            tei = await checker.to_tei(payload, file.filename or "upload.pdf")
            extraction = checker.process_tei(tei)
        except ExtractionServiceError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except MalformedDocumentError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return extraction_payload(extraction)

    @app.post("/api/rebuild-index")
    async def rebuild_index() -> Dict[str, Any]:
        try:
            indexed = checker.store.rebuild_index()
        except (CitationVerifierError, OSError) as exc:
            raise HTTPException(status_code=500, detail=f"Index rebuild failed: {exc}") from exc
        return {"indexedCount": indexed, "skippedCount": checker.store.last_skipped}

    @app.get("/api/documents/{key:path}")
    async def get_document(key: str) -> Dict[str, Any]:
        record = checker.store.get(key)
        if record is None:
            raise HTTPException(status_code=404, detail="Document not found")
        return record.to_json_dict()

    @app.get("/api/check-grobid")
    async def check_grobid() -> JSONResponse:
        alive = await grobid.is_alive()
        body = {
            "status": "ok" if alive else "unavailable",
            "url": grobid.base_url,
            "message": "GROBID service is running" if alive else "GROBID service is not reachable",
        }
        return JSONResponse(body, status_code=200 if alive else 502)

    return app


app = create_app()


def main() -> None:
    """Run the FastAPI app using uvicorn."""

    import uvicorn

    config = CheckerConfig.from_env()
    configure_logging(config.log_level)
    uvicorn.run(
        "citation_verifier.web:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=False,
    )


__all__ = ["app", "create_app", "main"]
