import httpx
import pytest
import respx

from citation_verifier.errors import ExtractionServiceError
from citation_verifier.grobid import GrobidClient

FULLTEXT_URL = "http://grobid.test/api/processFulltextDocument"


@pytest.mark.asyncio
async def test_process_fulltext_posts_pdf(sample_tei):
    client = GrobidClient("http://grobid.test/", backoff_factor=0)
    try:
        with respx.mock:
            route = respx.post(FULLTEXT_URL).mock(return_value=httpx.Response(200, text=sample_tei))
            tei = await client.process_fulltext(b"%PDF-1.4 fake", "paper.pdf")
    finally:
        await client.aclose()

    assert "Deep Learning for NLP" in tei
    request = route.calls.last.request
    body = request.content
    assert b'name="input"; filename="paper.pdf"' in body
    assert b"consolidateCitations" in body
    assert b"teiCoordinates" in body


@pytest.mark.asyncio
async def test_busy_service_is_retried(sample_tei):
    client = GrobidClient("http://grobid.test", max_retries=3, backoff_factor=0)
    try:
        with respx.mock:
            route = respx.post(FULLTEXT_URL).mock(
                side_effect=[httpx.Response(503), httpx.Response(503), httpx.Response(200, text=sample_tei)]
            )
            tei = await client.process_fulltext(b"%PDF", "paper.pdf")
    finally:
        await client.aclose()

    assert route.call_count == 3
    assert tei.startswith("<?xml")


@pytest.mark.asyncio
async def test_retries_exhausted_raise_extraction_error():
    client = GrobidClient("http://grobid.test", max_retries=2, backoff_factor=0)
    try:
        with respx.mock:
            route = respx.post(FULLTEXT_URL).mock(side_effect=httpx.ConnectError("refused"))
            with pytest.raises(ExtractionServiceError) as excinfo:
                await client.process_fulltext(b"%PDF", "paper.pdf")
    finally:
        await client.aclose()

    assert route.call_count == 2
    assert excinfo.value.status_code is None
    assert "ConnectError" in str(excinfo.value)


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    client = GrobidClient("http://grobid.test", max_retries=3, backoff_factor=0)
    try:
        with respx.mock:
            route = respx.post(FULLTEXT_URL).mock(return_value=httpx.Response(400))
            with pytest.raises(ExtractionServiceError) as excinfo:
                await client.process_fulltext(b"%PDF", "paper.pdf")
    finally:
        await client.aclose()

    assert route.call_count == 1
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_is_alive():
    client = GrobidClient("http://grobid.test")
    try:
        with respx.mock:
            respx.get("http://grobid.test/api/isalive").mock(return_value=httpx.Response(200, text="true"))
            assert await client.is_alive() is True
        with respx.mock:
            respx.get("http://grobid.test/api/isalive").mock(side_effect=httpx.ConnectError("down"))
            assert await client.is_alive() is False
    finally:
        await client.aclose()
