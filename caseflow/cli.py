"""Command line interface for the caseflow legal-ops toolkit."""

from __future__ import annotations

import asyncio
import json
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml
from pydantic import ValidationError

from caseflow import (
    ActionRunner,
    CaseClient,
    ExtractionGrid,
    OcrJobView,
    RunMode,
    TranscriptionJobView,
    WorkflowRunner,
    get_repository,
    load_config,
)
from caseflow.actions import Action, ActionBuilder, load_sample
from caseflow.errors import CaseflowError, StepReferenceError

app = typer.Typer(help="CLI for Case.dev legal-ops workflows")

# Command groups
ocr_app = typer.Typer(help="Commands for OCR jobs")
transcription_app = typer.Typer(help="Commands for transcription jobs")
workflow_app = typer.Typer(help="Commands for remote workflows")
action_app = typer.Typer(help="Commands for locally authored actions")
table_app = typer.Typer(help="Commands for tabular extraction")
vault_app = typer.Typer(help="Commands for vaults")

app.add_typer(ocr_app, name="ocr")
app.add_typer(transcription_app, name="transcription")
app.add_typer(workflow_app, name="workflow")
app.add_typer(action_app, name="action")
app.add_typer(table_app, name="table")
app.add_typer(vault_app, name="vault")


@app.callback()
def main() -> None:
    """caseflow CLI entry point."""
    pass


def _client() -> CaseClient:
    return CaseClient(load_config())


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except CaseflowError as e:
        _fail(str(e))


# ----------------------------------------------------------------------
# OCR
@ocr_app.command("submit")
def ocr_submit(
    document_url: str,
    engine: str = typer.Option("doctr", help="doctr, tesseract, paddle or google"),
    tables: bool = typer.Option(False, help="Extract tables"),
    embed: bool = typer.Option(False, help="Embed the text for search"),
    watch: bool = typer.Option(False, help="Poll until the job finishes"),
) -> None:
    """
    Submit a document for OCR.

    Example:
        caseflow ocr submit https://example.com/contract.pdf --engine tesseract --watch
    """

    async def _submit() -> None:
        async with _client() as client:
            job_id = await client.ocr.submit(
                document_url=document_url, engine=engine, tables=tables, embed=embed
            )
            typer.echo(f"Submitted OCR job {job_id}")
            if watch:
                await _watch_ocr(client, job_id)

    _run(_submit())


async def _watch_ocr(client: CaseClient, job_id: str) -> None:
    view = OcrJobView(
        client,
        job_id,
        on_update=lambda job: typer.echo(f"{job.status}\t{job.progress}%"),
    )
    async with view:
        await view.wait()
    _print_job_outcome(view.status, view.error_text)


def _print_job_outcome(status: Optional[str], error: Optional[str]) -> None:
    if error:
        typer.secho(f"Job {status}: {error}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Job {status}")


@ocr_app.command("show")
def ocr_show(
    job_id: str,
    watch: bool = typer.Option(False, help="Poll until the job finishes"),
) -> None:
    """Show the status of an OCR job."""

    async def _show() -> None:
        async with _client() as client:
            if watch:
                await _watch_ocr(client, job_id)
                return
            data = await client.ocr.get(job_id)
            typer.echo(f"OCR job {job_id}: {data.get('status')}")
            if data.get("chunk_count"):
                typer.echo(
                    f"Chunks: {data.get('chunks_completed', 0)}/{data['chunk_count']}"
                )
            if data.get("error"):
                typer.echo(f"Error: {data['error']}")

    _run(_show())


# ----------------------------------------------------------------------
# Transcription
@transcription_app.command("submit")
def transcription_submit(
    audio_url: str,
    language: str = typer.Option("en", help="Language code"),
    speaker_labels: bool = typer.Option(True, help="Label speakers"),
    watch: bool = typer.Option(False, help="Poll until the job finishes"),
) -> None:
    """Submit an audio file for transcription."""

    async def _submit() -> None:
        async with _client() as client:
            job_id = await client.transcription.submit(
                audio_url=audio_url,
                language_code=language,
                speaker_labels=speaker_labels,
            )
            typer.echo(f"Submitted transcription job {job_id}")
            if watch:
                await _watch_transcription(client, job_id)

    _run(_submit())


async def _watch_transcription(client: CaseClient, job_id: str) -> None:
    view = TranscriptionJobView(
        client, job_id, on_update=lambda job: typer.echo(f"{job.status}")
    )
    async with view:
        job = await view.wait()
    if job is not None and job.status == "completed":
        for utterance in job.utterances:
            typer.echo(f"{utterance.speaker or '?'}: {utterance.text}")
        if not job.utterances and job.text:
            typer.echo(job.text)
    _print_job_outcome(view.status, view.error_text)


@transcription_app.command("show")
def transcription_show(
    job_id: str,
    watch: bool = typer.Option(False, help="Poll until the job finishes"),
) -> None:
    """Show the status of a transcription job."""

    async def _show() -> None:
        async with _client() as client:
            if watch:
                await _watch_transcription(client, job_id)
                return
            data = await client.transcription.get(job_id)
            typer.echo(f"Transcription {job_id}: {data.get('status')}")
            if data.get("text"):
                typer.echo(data["text"])
            if data.get("error"):
                typer.echo(f"Error: {data['error']}")

    _run(_show())


# ----------------------------------------------------------------------
# Workflows
@workflow_app.command("list")
def workflow_list() -> None:
    """List workflows available to the API key."""

    async def _list() -> None:
        async with _client() as client:
            workflows = await client.workflows.list()
        if not workflows:
            typer.echo("No workflows found")
            return
        for wf in workflows:
            typer.echo(f"{wf.id}\t{wf.name}")

    _run(_list())


@workflow_app.command("run")
def workflow_run(
    workflow_id: str,
    vault: str = typer.Option(..., help="Vault holding the documents"),
    document: List[str] = typer.Option(..., help="Vault object id; repeat for several"),
    mode: RunMode = typer.Option(RunMode.SEPARATE, help="separate or combined"),
) -> None:
    """
    Run a workflow over vault documents.

    Example:
        caseflow workflow run wf_summary --vault v1 --document d1 --document d2
    """

    async def _execute() -> None:
        async with _client() as client:
            runner = WorkflowRunner(client, mode=mode)
            runner.select_workflow(workflow_id)
            runner.toggle_vault(vault)
            for object_id in document:
                runner.toggle_document(await client.vaults.get_object(vault, object_id))
            results = await runner.run()
        for result in results:
            typer.echo(f"{result.document_name}\t{result.status}")
            if result.output.url:
                typer.echo(f"  {result.output.url}")
            elif result.output.data is not None:
                data = result.output.data
                typer.echo(f"  {data if isinstance(data, str) else json.dumps(data)}")

    _run(_execute())


# ----------------------------------------------------------------------
# Actions
def _load_action(path: Optional[Path], sample: Optional[str]) -> Action:
    if sample:
        try:
            return load_sample(sample)
        except KeyError:
            _fail(f"Unknown sample action: {sample}")
    if path is None:
        _fail("Provide an action file or --sample")
    if not path.exists():
        _fail("Specified path does not exist")
    data = yaml.safe_load(path.read_text()) or {}
    if "definition" not in data:
        data = {"definition": data}
    data.setdefault("id", path.stem)
    data.setdefault("name", path.stem)
    try:
        return Action.model_validate(data)
    except (ValidationError, StepReferenceError) as e:
        _fail(f"Invalid action: {e}")


def _parse_inputs(pairs: List[str], input_json: Optional[str]) -> Dict[str, Any]:
    values: Dict[str, Any] = json.loads(input_json) if input_json else {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            _fail(f"Input must be KEY=VALUE, got {pair}")
        values[key] = value
    return values


@action_app.command("validate")
def action_validate(path: Path) -> None:
    """Check an action file (YAML or JSON) for authoring problems."""
    data = yaml.safe_load(path.read_text()) if path.exists() else None
    if data is None:
        _fail("Specified path does not exist")
    builder = ActionBuilder()
    error = builder.load_json(json.dumps(data if "definition" in data else {"definition": data}))
    if error:
        _fail(f"Invalid action: {error}")
    problems = builder.problems()
    if problems:
        for problem in problems:
            typer.secho(problem, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"{len(builder.steps)} steps OK")


@action_app.command("run")
def action_run(
    path: Optional[Path] = typer.Argument(None),
    sample: Optional[str] = typer.Option(None, help="Run a built-in sample action"),
    input: List[str] = typer.Option([], "--input", "-i", help="KEY=VALUE input"),
    input_json: Optional[str] = typer.Option(None, help="Input object as JSON"),
) -> None:
    """
    Execute an action locally, step by step.

    Example:
        caseflow action run --sample act_contract_analysis -i contract_url=https://...
    """
    action = _load_action(path, sample)
    values = _parse_inputs(input, input_json)

    run_id = str(uuid.uuid4())

    async def _execute() -> None:
        async with _client() as client:
            runner = ActionRunner(client, repository=get_repository())
            try:
                run = await runner.run(action, values, run_id=run_id)
            except CaseflowError:
                typer.echo(f"Run {run_id}: failed")
                raise
        typer.echo(f"Run {run.run_id}: {run.status}")
        for step in run.steps:
            typer.echo(f"- {step.step_id}: {step.status}")

    _run(_execute())


@action_app.command("runs")
def action_runs() -> None:
    """List recorded action runs."""
    repo = get_repository()
    runs = asyncio.run(repo.list_runs())
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.run_id}\t{run.action_name}\t{run.status}")


@action_app.command("show")
def action_show(run_id: str) -> None:
    """Show a recorded action run with each step's outcome."""
    repo = get_repository()
    run = asyncio.run(repo.get_run(run_id))
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run.run_id}: {run.status}")
    if run.input:
        typer.echo(f"Input: {json.dumps(run.input)}")
    if run.error:
        typer.echo(f"Error: {run.error}")
    for step in run.steps:
        typer.echo(
            f"- {step.step_id} ({step.service}): {step.status}"
            + (
                f" ({step.started_at} -> {step.completed_at})"
                if step.started_at or step.completed_at
                else ""
            )
        )


# ----------------------------------------------------------------------
# Tabular extraction
@table_app.command("run")
def table_run(analysis_id: str) -> None:
    """Start extraction for a tabular analysis and follow its progress."""

    async def _execute() -> None:
        async with _client() as client:
            grid = await ExtractionGrid.load(client, analysis_id)
            last = -1

            async def _progress() -> None:
                nonlocal last
                while grid.is_running:
                    if grid.progress != last:
                        last = grid.progress
                        typer.echo(f"{grid.status}\t{grid.progress}%")
                    await asyncio.sleep(grid.interval)

            await grid.run_extraction(wait=False)
            await asyncio.gather(_progress(), grid.wait())
        typer.echo(f"Analysis {analysis_id}: {grid.status} ({grid.progress}%)")

    _run(_execute())


# ----------------------------------------------------------------------
# Vaults
@vault_app.command("list")
def vault_list() -> None:
    """List vaults."""

    async def _list() -> None:
        async with _client() as client:
            vaults = await client.vaults.list()
        if not vaults:
            typer.echo("No vaults found")
            return
        for vault in vaults:
            typer.echo(f"{vault.id}\t{vault.name}")

    _run(_list())


@vault_app.command("search")
def vault_search(
    vault_id: str,
    query: str,
    top_k: int = typer.Option(10, help="Number of chunks to return"),
) -> None:
    """Search a vault."""

    async def _search() -> None:
        async with _client() as client:
            chunks = await client.vaults.search(vault_id, query, top_k=top_k)
        if not chunks:
            typer.echo("No results")
            return
        for chunk in chunks:
            typer.echo(f"[{chunk.score:.2f}] {chunk.object_name or chunk.object_id}: {chunk.text}")

    _run(_search())


if __name__ == "__main__":
    app()
