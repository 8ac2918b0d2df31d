"""Tests for the Case.dev HTTP client."""

import httpx
import pytest

from caseflow.api.models import DocumentRef, VaultObject
from caseflow.errors import CaseApiError, CaseConnectionError


@pytest.mark.asyncio
async def test_error_carries_server_message(fake_api, make_client):
    fake_api.add("GET", "/api/ocr/missing", httpx.Response(404, json={"error": "Job not found"}))
    client = make_client()

    with pytest.raises(CaseApiError) as exc:
        await client.ocr.get("missing")

    assert exc.value.status_code == 404
    assert exc.value.message == "Job not found"
    await client.aclose()


@pytest.mark.asyncio
async def test_error_without_body_uses_generic_message(fake_api, make_client):
    fake_api.add("GET", "/api/workflows", httpx.Response(502, text="Bad gateway"))
    client = make_client()

    with pytest.raises(CaseApiError, match="API Error: 502"):
        await client.workflows.list()
    await client.aclose()


@pytest.mark.asyncio
async def test_transport_failure_is_wrapped(fake_api, make_client):
    fake_api.add("GET", "/api/vaults", httpx.ReadTimeout("timed out"))
    client = make_client()

    with pytest.raises(CaseConnectionError) as exc:
        await client.vaults.list()

    assert isinstance(exc.value, CaseApiError)
    assert exc.value.status_code == 0
    assert "timed out" in exc.value.message
    await client.aclose()


@pytest.mark.asyncio
async def test_requests_send_bearer_key(fake_api, make_client):
    fake_api.add("GET", "/api/vaults", {"vaults": [{"id": "v1", "name": "Matter"}]})
    client = make_client()

    vaults = await client.vaults.list()

    assert vaults[0].name == "Matter"
    assert fake_api.calls[0].headers["Authorization"] == "Bearer sk_test"
    await client.aclose()


@pytest.mark.asyncio
async def test_ocr_submit_body(fake_api, make_client):
    fake_api.add("POST", "/api/ocr", {"id": "ocr_1"})
    client = make_client()

    job_id = await client.ocr.submit(
        vault_id="v1", object_id="o1", filename="lease.pdf", engine="paddle", tables=True
    )

    assert job_id == "ocr_1"
    assert fake_api.body() == {
        "engine": "paddle",
        "features": {"embed": False, "tables": True},
        "vaultId": "v1",
        "objectId": "o1",
        "filename": "lease.pdf",
    }
    await client.aclose()


@pytest.mark.asyncio
async def test_submit_requires_a_source(make_client):
    client = make_client()
    with pytest.raises(ValueError):
        await client.ocr.submit()
    with pytest.raises(ValueError):
        await client.transcription.submit(vault_id="v1")
    await client.aclose()


@pytest.mark.asyncio
async def test_transcription_submit_body(fake_api, make_client):
    fake_api.add("POST", "/api/transcription", {"id": "tr_1"})
    client = make_client()

    await client.transcription.submit(audio_url="https://x/a.mp3", word_boost=["estoppel"])

    assert fake_api.body() == {
        "languageCode": "en",
        "speakerLabels": True,
        "punctuate": True,
        "formatText": True,
        "wordBoost": ["estoppel"],
        "audioUrl": "https://x/a.mp3",
    }
    await client.aclose()


@pytest.mark.asyncio
async def test_execute_combined_sends_document_refs(fake_api, make_client):
    fake_api.add(
        "POST",
        "/api/workflows/wf_1/execute-combined",
        {"id": "ex_1", "status": "completed", "output": {"format": "json", "data": {"a": 1}}},
    )
    client = make_client()
    doc = VaultObject.model_validate({"id": "o1", "vaultId": "v1", "filename": "a.pdf"})

    result = await client.workflows.execute_combined("wf_1", [DocumentRef.from_object(doc)])

    assert result.output.data == {"a": 1}
    assert fake_api.body() == {"documents": [{"id": "o1", "vaultId": "v1", "name": "a.pdf"}]}
    await client.aclose()


@pytest.mark.asyncio
async def test_upload_text_uses_presigned_url_without_auth(fake_api, make_client):
    fake_api.add(
        "POST",
        "/api/vaults/v1/upload",
        {"uploadUrl": "https://storage.test/put/abc?sig=1", "objectId": "obj_1"},
    )
    fake_api.add("PUT", "/put/abc", httpx.Response(200))
    fake_api.add("POST", "/api/vaults/v1/ingest/obj_1", {"status": "processing"})
    client = make_client()

    result = await client.vaults.upload_text("v1", "summary.json", '{"a": 1}')

    assert result == {"vault_id": "v1", "object_id": "obj_1", "filename": "summary.json"}
    put = fake_api.calls[1]
    assert put.url.host == "storage.test"
    assert "Authorization" not in put.headers
    assert put.content == b'{"a": 1}'
    assert fake_api.count("POST", "/api/vaults/v1/ingest/obj_1") == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_search_reads_chunks(fake_api, make_client):
    fake_api.add(
        "POST",
        "/api/vaults/v1/search",
        {"results": [{"text": "Term is 5 years", "object_id": "o1", "score": 0.9}]},
    )
    client = make_client()

    chunks = await client.vaults.search("v1", "term", top_k=3, filters={"object_id": "o1"})

    assert chunks[0].text == "Term is 5 years"
    assert fake_api.body() == {
        "query": "term",
        "topK": 3,
        "method": "hybrid",
        "filters": {"object_id": "o1"},
    }
    await client.aclose()
