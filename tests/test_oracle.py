import json

import httpx
import pytest
import respx
from pydantic import ValidationError

from citation_verifier.errors import OracleReplyError, OracleServiceError
from citation_verifier.models import (
    CitationContext,
    CitationPosition,
    DocumentRecord,
    Reference,
    ReferenceUsage,
)
from citation_verifier.oracle import GeminiOracle, build_prompt, extract_json, parse_reply
from citation_verifier.schemas import VerificationResult

GEMINI_URL = "http://gemini.test/v1beta/models/gemini-1.5-pro:generateContent"


@pytest.fixture()
def usage():
    return ReferenceUsage(
        reference=Reference(id="b1", title="Attention Is All You Need"),
        usage_contexts=[
            CitationContext(
                text="[1]",
                reference_ids=["b1"],
                position=CitationPosition(page=2, offset=31),
                surrounding_text="Transformers rely only on attention [1].",
            )
        ],
    )


@pytest.fixture()
def source():
    return DocumentRecord(
        id="attention_is_all_you_need",
        title="Attention Is All You Need",
        authors=["Ashish Vaswani"],
        full_text="We propose the Transformer, based solely on attention mechanisms.",
        doi="10.5555/attention",
    )


def _gemini_reply(text):
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def test_prompt_lists_contexts_and_truncates_source(usage, source):
    source.full_text = "x" * 50
    prompt = build_prompt(usage, source, max_source_chars=10)

    assert "1. Transformers rely only on attention [1]." in prompt
    assert "x" * 10 + "... [content truncated for length]" in prompt
    assert "x" * 11 not in prompt
    assert "DOI: 10.5555/attention" in prompt
    assert "Authors: Ashish Vaswani" in prompt


def test_extract_json_handles_fences_and_prose():
    fenced = 'Here you go:\n```json\n{"isVerified": true}\n```\nThanks'
    assert extract_json(fenced) == '{"isVerified": true}'
    assert extract_json('Verdict: {"a": 1} done') == '{"a": 1}'


def test_parse_reply_clamps_and_defaults():
    result = parse_reply('{"isVerified": true, "confidenceScore": 1.7}')

    assert result.is_verified is True
    assert result.confidence_score == 1.0
    assert result.explanation == "No explanation provided"


def test_parse_reply_rejects_malformed_verdicts():
    with pytest.raises(OracleReplyError) as excinfo:
        parse_reply('{"isVerified": "maybe", "confidenceScore": 0.4}')
    assert excinfo.value.raw_reply.startswith('{"isVerified": "maybe"')

    with pytest.raises(OracleReplyError):
        parse_reply("I could not decide.")


@pytest.mark.parametrize(
    "literal, value", [("NaN", float("nan")), ("Infinity", float("inf")), ("-Infinity", float("-inf"))]
)
def test_non_finite_scores_are_rejected(literal, value):
    with pytest.raises(OracleReplyError):
        parse_reply('{"isVerified": true, "confidenceScore": %s}' % literal)

    with pytest.raises(ValidationError):
        VerificationResult(is_verified=True, confidence_score=value)


@pytest.mark.asyncio
async def test_gemini_oracle_returns_verdict(usage, source):
    verdict = {
        "isVerified": True,
        "confidenceScore": 0.92,
        "matchLocation": "based solely on attention mechanisms",
        "explanation": "The source says exactly this.",
    }
    oracle = GeminiOracle("test-key", endpoint="http://gemini.test/v1beta/models")
    try:
        with respx.mock:
            route = respx.post(GEMINI_URL).mock(
                return_value=_gemini_reply(f"```json\n{json.dumps(verdict)}\n```")
            )
            result = await oracle.verify(usage, source)
    finally:
        await oracle.aclose()

    assert result.is_verified is True
    assert result.confidence_score == pytest.approx(0.92)
    assert result.match_location == "based solely on attention mechanisms"
    request = route.calls.last.request
    assert request.headers["x-goog-api-key"] == "test-key"
    payload = json.loads(request.content)
    assert "Transformers rely only on attention" in payload["contents"][0]["parts"][0]["text"]


@pytest.mark.asyncio
async def test_gemini_http_error_raises_service_error(usage, source):
    oracle = GeminiOracle("test-key", endpoint="http://gemini.test/v1beta/models")
    try:
        with respx.mock:
            respx.post(GEMINI_URL).mock(return_value=httpx.Response(429, json={"error": "quota"}))
            with pytest.raises(OracleServiceError) as excinfo:
                await oracle.verify(usage, source)
    finally:
        await oracle.aclose()

    assert excinfo.value.status_code == 429


@pytest.mark.asyncio
async def test_gemini_without_candidates_raises_reply_error(usage, source):
    oracle = GeminiOracle("test-key", endpoint="http://gemini.test/v1beta/models")
    try:
        with respx.mock:
            respx.post(GEMINI_URL).mock(return_value=httpx.Response(200, json={"candidates": []}))
            with pytest.raises(OracleReplyError):
                await oracle.verify(usage, source)
    finally:
        await oracle.aclose()


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_request(usage, source):
    oracle = GeminiOracle("")
    try:
        with pytest.raises(OracleServiceError):
            await oracle.verify(usage, source)
    finally:
        await oracle.aclose()
