"""Tests for the tabular extraction grid."""

import asyncio

import httpx
import pytest

from caseflow.api.models import TabularAnalysis
from caseflow.errors import CaseApiError, GridLockedError, InvalidColumnError
from caseflow.events import NOTIFY, EventBus
from caseflow.tabular import ExtractionGrid, compute_progress


def analysis(**overrides):
    data = {
        "id": "ta_1",
        "name": "Leases",
        "status": "draft",
        "vaultId": "v1",
        "documents": [{"id": "d1", "title": "a.pdf"}, {"id": "d2", "title": "b.pdf"}, {"id": "d3", "title": "c.pdf"}],
        "columns": [
            {"id": "c1", "name": "Landlord", "prompt": "Who is the landlord?", "order": 0},
            {"id": "c2", "name": "Rent", "prompt": "Monthly rent", "dataType": "number", "order": 1},
        ],
        "rows": [],
    }
    data.update(overrides)
    return TabularAnalysis.model_validate(data)


def cell(value):
    return {"value": value, "confidence": 0.8}


@pytest.mark.parametrize(
    "rows, expected",
    [
        ([{"documentId": "d1", "data": {"c1": cell("A")}}], 17),
        (
            [
                {"documentId": "d1", "data": {"c1": cell("A"), "c2": cell(1)}},
                {"documentId": "d2", "data": {"c1": cell("B")}},
            ],
            50,
        ),
        (
            [
                {"documentId": d, "data": {"c1": cell("X"), "c2": cell(2)}}
                for d in ("d1", "d2", "d3")
            ],
            100,
        ),
    ],
)
def test_compute_progress(rows, expected):
    assert compute_progress(rows, document_count=3, column_count=2) == expected


def test_compute_progress_without_cells():
    assert compute_progress([], 0, 2) == 0
    assert compute_progress([{"documentId": "d1"}], 3, 2) == 0


@pytest.mark.asyncio
async def test_add_column_saves_then_applies(fake_api, make_client):
    fake_api.add("PUT", "/api/tabular-analysis/ta_1", {"ok": True})
    client = make_client()
    grid = ExtractionGrid(client, analysis())

    column = await grid.add_column()

    assert column.name == "New Column"
    assert column.order == 2
    assert column.data_type == "text"
    sent = fake_api.body()["columns"]
    assert [c["id"] for c in sent] == ["c1", "c2", column.id]
    assert sent[1]["dataType"] == "number"
    assert len(grid.columns) == 3
    await client.aclose()


@pytest.mark.asyncio
async def test_failed_save_leaves_columns_unchanged(fake_api, make_client):
    fake_api.add("PUT", "/api/tabular-analysis/ta_1", httpx.Response(500, json={"error": "db down"}))
    client = make_client()
    grid = ExtractionGrid(client, analysis())

    with pytest.raises(CaseApiError):
        await grid.update_column("c1", name="Lessor")

    assert grid.columns[0].name == "Landlord"
    await client.aclose()


@pytest.mark.asyncio
async def test_delete_column_renumbers_and_drops_cells(fake_api, make_client):
    fake_api.add("PUT", "/api/tabular-analysis/ta_1", {"ok": True})
    client = make_client()
    grid = ExtractionGrid(
        client,
        analysis(rows=[{"documentId": "d1", "data": {"c1": cell("A"), "c2": cell(10)}}]),
    )
    assert grid.progress == 33

    await grid.delete_column("c1")

    assert [(c.id, c.order) for c in grid.columns] == [("c2", 0)]
    assert grid.get_cell("d1", "c1") is None
    assert grid.get_cell("d1", "c2").value == 10
    assert grid.progress == 33
    with pytest.raises(InvalidColumnError):
        await grid.delete_column("nope")
    await client.aclose()


@pytest.mark.asyncio
async def test_run_extraction_polls_until_complete(fake_api, make_client):
    fake_api.add("POST", "/api/tabular-analysis/ta_1/run-workflow", {"started": True})
    fake_api.add(
        "GET",
        "/api/tabular-analysis/ta_1",
        {"status": "processing", "rows": [{"documentId": "d1", "data": {"c1": cell("A")}}]},
        {"status": "processing", "rows": [{"documentId": "d2", "data": {"c1": cell("B"), "c9": cell("?")}}]},
        {
            "status": "completed",
            "rows": [
                {"documentId": d, "data": {"c1": cell("X"), "c2": cell(5)}} for d in ("d1", "d2", "d3")
            ],
        },
    )
    client = make_client()
    bus = EventBus()
    notes = []
    bus.subscribe(NOTIFY, notes.append)
    grid = ExtractionGrid(client, analysis(), bus=bus)
    seen = []
    original = grid._apply_snapshot

    def spy(snapshot):
        original(snapshot)
        seen.append(grid.progress)

    grid._apply_snapshot = spy

    result = await grid.run_extraction()

    assert result.status == "completed"
    assert seen[:2] == [17, 33]
    assert grid.progress == 100
    assert grid.completed_cells("d2") == 2
    assert notes == [{"level": "success", "message": "Extraction completed for Leases"}]
    assert not grid.is_running
    await client.aclose()


@pytest.mark.asyncio
async def test_cells_for_unknown_columns_are_dropped(fake_api, make_client):
    fake_api.add("POST", "/api/tabular-analysis/ta_1/run-workflow", {})
    fake_api.add(
        "GET",
        "/api/tabular-analysis/ta_1",
        {"status": "completed", "rows": [{"documentId": "d1", "data": {"c1": cell("A"), "gone": cell("Z")}}]},
    )
    client = make_client()
    grid = ExtractionGrid(client, analysis())

    await grid.run_extraction()

    assert grid.get_cell("d1", "gone") is None
    assert grid.completed_cells("d1") == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_column_edits_are_locked_while_running(fake_api, make_client):
    fake_api.add("POST", "/api/tabular-analysis/ta_1/run-workflow", {})
    fake_api.add("GET", "/api/tabular-analysis/ta_1", {"status": "processing", "rows": []})
    client = make_client()
    grid = ExtractionGrid(client, analysis(), interval=0.01)

    await grid.run_extraction(wait=False)
    await asyncio.sleep(0.02)
    assert grid.is_running

    with pytest.raises(GridLockedError):
        await grid.add_column()
    with pytest.raises(GridLockedError):
        await grid.delete_column("c1")
    with pytest.raises(GridLockedError):
        await grid.run_extraction()

    await grid.close()
    assert not grid.is_running
    assert fake_api.count("PUT", "/api/tabular-analysis/ta_1") == 0
    await client.aclose()


@pytest.mark.asyncio
async def test_run_requires_columns(fake_api, make_client):
    client = make_client()
    grid = ExtractionGrid(client, analysis(columns=[]))

    with pytest.raises(InvalidColumnError):
        await grid.run_extraction()
    assert fake_api.calls == []
    await client.aclose()


@pytest.mark.asyncio
async def test_resume_follows_run_in_progress(fake_api, make_client):
    fake_api.add(
        "GET",
        "/api/tabular-analysis/ta_1",
        {"status": "processing"},
        {"status": "failed"},
    )
    client = make_client()
    grid = ExtractionGrid(client, analysis(status="processing"))

    assert grid.resume()
    await grid.wait()

    assert grid.status == "failed"
    assert not grid.resume()
    await client.aclose()


def test_row_selection(make_client):
    grid = ExtractionGrid(make_client(), analysis())
    grid.toggle_row("d1")
    assert grid.selected_rows == {"d1"}
    grid.toggle_all_rows()
    assert grid.selected_rows == {"d1", "d2", "d3"}
    grid.toggle_all_rows()
    assert grid.selected_rows == set()
    grid.toggle_row("d1")
    grid.toggle_row("d1")
    assert grid.selected_rows == set()
