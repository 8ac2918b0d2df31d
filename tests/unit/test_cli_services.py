import httpx
from typer.testing import CliRunner

import caseflow.cli as cli
from caseflow.cli import app

RUNNER = CliRunner()


def _use(monkeypatch, make_client):
    monkeypatch.setattr(cli, "_client", make_client)


def test_ocr_submit_and_watch(fake_api, make_client, monkeypatch):
    _use(monkeypatch, make_client)
    fake_api.add("POST", "/api/ocr", {"id": "ocr_1"})
    fake_api.add(
        "GET",
        "/api/ocr/ocr_1",
        {"id": "ocr_1", "status": "processing", "chunk_count": 2, "chunks_completed": 1},
        {"id": "ocr_1", "status": "completed", "chunk_count": 2, "chunks_completed": 2},
    )

    result = RUNNER.invoke(app, ["ocr", "submit", "https://x/doc.pdf", "--watch"])

    assert result.exit_code == 0, result.stdout
    assert "Submitted OCR job ocr_1" in result.stdout
    assert "processing\t50%" in result.stdout
    assert "Job completed" in result.stdout


def test_ocr_show_failed_job_with_watch(fake_api, make_client, monkeypatch):
    _use(monkeypatch, make_client)
    fake_api.add("GET", "/api/ocr/ocr_2", {"id": "ocr_2", "status": "failed", "error": "corrupt file"})

    result = RUNNER.invoke(app, ["ocr", "show", "ocr_2", "--watch"])

    assert result.exit_code == 1
    assert "corrupt file" in result.stdout
    assert fake_api.count("GET", "/api/ocr/ocr_2") == 2


def test_submit_error_shows_server_message(fake_api, make_client, monkeypatch):
    _use(monkeypatch, make_client)
    fake_api.add("POST", "/api/transcription", httpx.Response(400, json={"error": "Unsupported audio"}))

    result = RUNNER.invoke(app, ["transcription", "submit", "https://x/a.wav"])

    assert result.exit_code == 1
    assert "Unsupported audio" in result.stdout


def test_unreachable_api_exits_cleanly(fake_api, make_client, monkeypatch):
    _use(monkeypatch, make_client)
    fake_api.add("POST", "/api/ocr", httpx.ConnectError("connection refused"))

    result = RUNNER.invoke(app, ["ocr", "submit", "https://x/doc.pdf"])

    assert result.exit_code == 1
    assert "Could not reach Case.dev: connection refused" in result.stdout


def test_transcription_show_prints_text(fake_api, make_client, monkeypatch):
    _use(monkeypatch, make_client)
    fake_api.add("GET", "/api/transcription/tr_1", {"id": "tr_1", "status": "completed", "text": "Hello."})

    result = RUNNER.invoke(app, ["transcription", "show", "tr_1"])

    assert result.exit_code == 0, result.stdout
    assert "Transcription tr_1: completed" in result.stdout
    assert "Hello." in result.stdout


def test_workflow_list_and_run(fake_api, make_client, monkeypatch):
    _use(monkeypatch, make_client)
    fake_api.add("GET", "/api/workflows", {"workflows": [{"id": "wf_1", "name": "Summarize"}]})
    fake_api.add("GET", "/api/vaults/v1/objects/d1", {"id": "d1", "filename": "memo.pdf"})
    fake_api.add("GET", "/api/vaults/v1/objects/d1/text", {"text": "memo"})
    fake_api.add(
        "POST",
        "/api/workflows/wf_1/execute",
        {"id": "ex_1", "status": "completed", "output": {"format": "text", "data": "A short memo."}},
    )

    listed = RUNNER.invoke(app, ["workflow", "list"])
    assert "wf_1\tSummarize" in listed.stdout

    result = RUNNER.invoke(app, ["workflow", "run", "wf_1", "--vault", "v1", "--document", "d1"])
    assert result.exit_code == 0, result.stdout
    assert "memo.pdf\tcompleted" in result.stdout
    assert "A short memo." in result.stdout


def test_table_run_reports_final_progress(fake_api, make_client, monkeypatch):
    _use(monkeypatch, make_client)
    fake_api.add(
        "GET",
        "/api/tabular-analysis/ta_1",
        {
            "id": "ta_1",
            "name": "Leases",
            "status": "draft",
            "documents": [{"id": "d1", "title": "a.pdf"}],
            "columns": [{"id": "c1", "name": "Landlord", "order": 0}],
        },
        {"id": "ta_1", "status": "completed", "rows": [{"documentId": "d1", "data": {"c1": {"value": "Acme"}}}]},
    )
    fake_api.add("POST", "/api/tabular-analysis/ta_1/run-workflow", {})

    result = RUNNER.invoke(app, ["table", "run", "ta_1"])

    assert result.exit_code == 0, result.stdout
    assert "Analysis ta_1: completed (100%)" in result.stdout


def test_vault_commands(fake_api, make_client, monkeypatch):
    _use(monkeypatch, make_client)
    fake_api.add("GET", "/api/vaults", {"vaults": []})
    fake_api.add(
        "POST",
        "/api/vaults/v1/search",
        {"chunks": [{"text": "Rent is due monthly", "object_name": "lease.pdf", "score": 0.82}]},
    )

    assert "No vaults found" in RUNNER.invoke(app, ["vault", "list"]).stdout
    result = RUNNER.invoke(app, ["vault", "search", "v1", "rent"])
    assert "[0.82] lease.pdf: Rent is due monthly" in result.stdout
