"""Verification oracle: asks Gemini whether citing sentences match their source."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .config import CheckerConfig
from .errors import OracleReplyError, OracleServiceError
from .models import DocumentRecord, ReferenceUsage
from .schemas import VerificationResult

logger = logging.getLogger(__name__)

FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

PROMPT_TEMPLATE = """You are a scholarly citation verifier that evaluates whether a citation accurately represents the source material.

SOURCE DOCUMENT:
Title: {title}
Authors: {authors}
{details}
DOCUMENT CONTENT:
{content}

CITATION CONTEXTS TO VERIFY:
{contexts}

TASK:
1. Determine if the citation contexts accurately represent what is stated in the source document.
2. Quote the section of the source document that confirms or contradicts the citation.
3. Decide whether the citation misrepresents the source, takes it out of context or makes claims not present in it.

IMPORTANT: Provide your verification result in the following JSON format:
{{
  "isVerified": boolean,
  "confidenceScore": number between 0 and 1,
  "matchLocation": "specific text from the source document that matches",
  "explanation": "detailed explanation of your reasoning"
}}
"""


def build_prompt(usage: ReferenceUsage, source: DocumentRecord, max_source_chars: int = 100_000) -> str:
    content = source.full_text
    if len(content) > max_source_chars:
        content = f"{content[:max_source_chars]}... [content truncated for length]"
    details = "".join(
        f"{label}: {value}\n"
        for label, value in (("DOI", source.doi), ("Year", source.year), ("Journal", source.journal))
        if value
    )
    contexts = "\n".join(
        f"{number}. {context.surrounding_text or context.text}"
        for number, context in enumerate(usage.usage_contexts, start=1)
    )
    return PROMPT_TEMPLATE.format(
        title=source.title,
        authors=", ".join(source.authors),
        details=details,
        content=content,
        contexts=contexts or usage.reference.title,
    )


def extract_json(text: str) -> str:
    """Pull the JSON object out of a reply that may wrap it in prose or a code fence."""
    fenced = FENCED_JSON.search(text)
    if fenced:
        return fenced.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start: end + 1]
    return text.strip()


def parse_reply(text: str) -> VerificationResult:
    try:
        return VerificationResult.model_validate_json(extract_json(text))
    except ValidationError as exc:
        raise OracleReplyError(f"Oracle reply is not a valid verdict: {exc.errors()[0]['msg']}", raw_reply=text) from exc


class VerificationOracle:
    """Judges whether a reference's usage contexts are supported by its source."""

    async def verify(self, usage: ReferenceUsage, source: DocumentRecord) -> VerificationResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class GeminiOracle(VerificationOracle):
    """Calls the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-pro",
        endpoint: str = "https://generativelanguage.googleapis.com/v1beta/models",
        timeout: float = 60.0,
        max_source_chars: int = 100_000,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.max_source_chars = max_source_chars
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config: CheckerConfig) -> "GeminiOracle":
        return cls(
            config.gemini_api_key,
            model=config.gemini_model,
            endpoint=config.gemini_endpoint,
            timeout=config.oracle_timeout,
            max_source_chars=config.max_source_chars,
        )

    @property
    def url(self) -> str:
        return f"{self.endpoint}/{self.model}:generateContent"

    def _payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.1, "responseMimeType": "application/json"},
        }

    async def verify(self, usage: ReferenceUsage, source: DocumentRecord) -> VerificationResult:
        if not self.api_key:
            raise OracleServiceError("GEMINI_API_KEY is not configured")
        prompt = build_prompt(usage, source, self.max_source_chars)
        try:
            response = await self._client.post(
                self.url,
                json=self._payload(prompt),
                headers={"x-goog-api-key": self.api_key},
            )
        except httpx.RequestError as exc:
            raise OracleServiceError(f"Gemini request failed: {exc}") from exc
        if response.status_code != 200:
            raise OracleServiceError(
                f"Gemini returned HTTP {response.status_code}", status_code=response.status_code
            )
        text = self._reply_text(response)
        logger.debug("Gemini reply for %s: %s", usage.reference.id, text[:200])
        return parse_reply(text)

    @staticmethod
    def _reply_text(response: httpx.Response) -> str:
        try:
            data = response.json()
            parts: List[Dict[str, Any]] = data["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise OracleReplyError("Gemini response has no candidate text", raw_reply=response.text) from exc

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "GeminiOracle",
    "VerificationOracle",
    "build_prompt",
    "extract_json",
    "parse_reply",
]
