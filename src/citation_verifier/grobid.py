"""Async client for the GROBID fulltext extraction service."""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

import httpx

from .config import CheckerConfig
from .errors import ExtractionServiceError

logger = logging.getLogger(__name__)

FULLTEXT_PATH = "api/processFulltextDocument"
ALIVE_PATH = "api/isalive"


class GrobidClient:
    """Turns PDF bytes into TEI XML through a running GROBID server."""

    def __init__(
        self,
        base_url: str = "http://localhost:8070",
        timeout: float = 120.0,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_factor = backoff_factor
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=self._headers())

    @classmethod
    def from_config(cls, config: CheckerConfig) -> "GrobidClient":
        return cls(
            config.grobid_url,
            timeout=config.grobid_timeout,
            max_retries=config.grobid_max_retries,
            backoff_factor=config.grobid_backoff,
        )

    @staticmethod
    def _headers() -> Dict[str, str]:
        return {"Accept": "application/xml", "User-Agent": "citation-verifier/0.1"}

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    async def is_alive(self) -> bool:
        try:
            response = await self._client.get(self._url(ALIVE_PATH), timeout=10.0)
        except httpx.HTTPError as exc:
            logger.warning("GROBID health check failed: %s", exc)
            return False
        return response.status_code == 200

    async def process_fulltext(self, payload: bytes, filename: str = "document.pdf") -> str:
        """Return the TEI XML GROBID produces for ``payload``.

        503 responses (GROBID busy) and transport errors are retried with
        exponential backoff; anything else non-200 fails immediately.
        """

        data: Dict[str, List[str] | str] = {
            "consolidateCitations": "1",
            "includeRawCitations": "1",
            "teiCoordinates": ["ref", "biblStruct"],
        }
        last_error: Optional[str] = None
        status_code: Optional[int] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._client.post(
                    self._url(FULLTEXT_PATH),
                    data=data,
                    files={"input": (filename, payload, "application/pdf")},
                )
            except httpx.RequestError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                status_code = None
            else:
                if response.status_code == 200:
                    return response.text
                status_code = response.status_code
                last_error = f"HTTP {response.status_code}"
                if response.status_code != 503:
                    break
            if attempt < self.max_retries:
                delay = self.backoff_factor * (2 ** (attempt - 1))
                logger.info(
                    "GROBID request for %s failed (%s); retry %d/%d in %.1fs",
                    filename,
                    last_error,
                    attempt,
                    self.max_retries - 1,
                    delay,
                )
                await asyncio.sleep(delay)
        raise ExtractionServiceError(
            f"GROBID could not process {filename}: {last_error}", status_code=status_code
        )

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["GrobidClient"]
