"""
Root Typer application for the docpredict CLI.

Every command builds an :class:`~docpredict.container.Application` from
``DOCPREDICT_*`` settings. The default repository is in-memory, so commands
that read earlier work (``predictions``, ``results``, ``export`` ...) need
``--database`` or ``DOCPREDICT_REPOSITORY_BACKEND=sql``.
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from docpredict.cli.utils import (
    console,
    err_console,
    models_table,
    prediction_to_dict,
    predictions_table,
    print_json,
    run_with_app,
)
from docpredict.container import Application
from docpredict.core.errors import DocPredictError
from docpredict.core.logging import configure_logging
from docpredict.core.models import CorrectedDocumentInput, DocumentInput, PredictionResultFilter
from docpredict.core.settings import DocPredictSettings, RepositoryBackend, get_settings
from docpredict.sources import FileRowSource

app = Typer(
    name="docpredict",
    help="docpredict: batch predictions over tabular documents.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError, version as pkg_version

        from docpredict import __version__

        try:
            v = pkg_version("docpredict")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"docpredict {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    database: str | None = typer.Option(
        None, "--database", "-d", help="SQLAlchemy URL; switches to the SQL repository."
    ),
    models_file: Path | None = typer.Option(None, "--models", help="JSON file of model descriptors."),
) -> None:
    """docpredict CLI: ingest documents, review predictions, upload corrections."""
    try:
        settings = get_settings()
    except ValueError as e:
        err_console.print(f"[bold red]Invalid configuration:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    updates: dict = {}
    if database:
        updates.update(repository_backend=RepositoryBackend.SQL, database_url=database)
    if models_file is not None:
        updates["models_file"] = models_file
    if updates:
        settings = settings.model_copy(update=updates)

    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    ctx.obj = settings


def _factory(ctx: typer.Context):
    settings: DocPredictSettings = ctx.obj

    def build() -> Application:
        return Application(settings)

    return build


# ── Documents ────────────────────────────────────────────────────────────


@app.command("ingest")
def ingest(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="CSV, PSV, TSV or XLSX file"),
    name: str | None = typer.Option(None, "--name", help="Document name (defaults to the file name)"),
    description: str | None = typer.Option(None, "--description"),
    worksheet: str | None = typer.Option(None, "--worksheet", help="XLSX worksheet name"),
    start_row: int | None = typer.Option(None, "--start-row", help="1-based header row"),
    predict_field: str | None = typer.Option(None, "--predict-field", help="Column holding provided values"),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Ingest a file and wait for its predictions."""

    async def _run(application: Application):
        source = FileRowSource(file, worksheet_name=worksheet, start_row=start_row)
        document = await application.documents.add_document(
            DocumentInput(
                name=name or source.name,
                description=description,
                worksheet_name=worksheet,
                worksheet_start_row=start_row,
                predict_field=predict_field,
            ),
            source,
        )
        await application.orchestrator.drain()
        document = await application.documents.get_document(document.id)
        return document, await application.documents.list_predictions(document.id)

    document, predictions = run_with_app(_factory(ctx), _run)

    if json_out:
        print_json({
            "id": document.id,
            "name": document.name,
            "status": document.status.value,
            "predictions": [prediction_to_dict(p) for p in predictions],
        })
        return

    console.print(f"[green]✓[/green] Document [cyan]{document.id}[/cyan] {document.name} ({document.status.value})")
    if predictions:
        console.print(predictions_table(predictions))


@app.command("documents")
def list_documents(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List ingested documents."""

    async def _run(application: Application):
        return (await application.documents.list_documents()).items

    documents = run_with_app(_factory(ctx), _run)

    if json_out:
        print_json([
            {"id": d.id, "name": d.name, "status": d.status.value, "createdAt": d.created_at.isoformat()}
            for d in documents
        ])
        return

    if not documents:
        console.print("[dim]No documents[/dim]")
        return
    for d in documents:
        console.print(f"[cyan]{d.id}[/cyan]  {d.name}  [bold]{d.status.value}[/bold]")


@app.command("original")
def original(
    ctx: typer.Context,
    document_id: str = typer.Argument(..., help="Document ID"),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show where the uploaded file of a document is kept."""

    async def _run(application: Application):
        document = await application.documents.get_document(document_id)
        return document, await application.documents.get_original_document(document_id)

    document, path = run_with_app(_factory(ctx), _run)

    if json_out:
        print_json({"id": document.id, "originalUrl": document.original_url, "path": str(path)})
        return

    console.print(f"[cyan]{document.id}[/cyan]  {document.original_url}")
    console.print(str(path))


# ── Predictions ──────────────────────────────────────────────────────────


@app.command("predict")
def predict(
    ctx: typer.Context,
    document_id: str = typer.Argument(..., help="Document ID"),
    model: str | None = typer.Option(None, "--model", "-m", help="Model name (defaults to the default model)"),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Run a prediction for an existing document."""

    async def _run(application: Application):
        prediction = await application.orchestrator.create_prediction(document_id, model)
        return await application.documents.get_prediction(prediction.id)

    prediction = run_with_app(_factory(ctx), _run)

    if json_out:
        print_json(prediction_to_dict(prediction))
        return
    console.print(predictions_table([prediction], title=f"Prediction for {document_id}"))


@app.command("predictions")
def list_predictions(
    ctx: typer.Context,
    document_id: str = typer.Argument(..., help="Document ID"),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List a document's predictions with their performance summaries."""

    async def _run(application: Application):
        await application.documents.get_document(document_id)
        return await application.documents.list_predictions(document_id)

    predictions = run_with_app(_factory(ctx), _run)

    if json_out:
        print_json([prediction_to_dict(p) for p in predictions])
        return
    if not predictions:
        console.print("[dim]No predictions[/dim]")
        return
    console.print(predictions_table(predictions))


@app.command("results")
def list_results(
    ctx: typer.Context,
    prediction_id: str = typer.Argument(..., help="Prediction ID"),
    filter: PredictionResultFilter = typer.Option(PredictionResultFilter.ALL, "--filter", "-f"),
    page: int = typer.Option(1, "--page", min=1),
    page_size: int = typer.Option(50, "--page-size", help="Rows per page, -1 for all"),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show prediction results, optionally filtered by agreement and confidence."""

    async def _run(application: Application):
        return await application.documents.list_prediction_results(prediction_id, page, page_size, filter)

    try:
        results = run_with_app(_factory(ctx), _run)
    except ValueError as e:
        err_console.print(f"[bold red]{e}[/bold red]")
        raise typer.Exit(code=1) from e

    if json_out:
        print_json({
            "page": results.page,
            "pageSize": results.page_size,
            "totalCount": results.total_count,
            "items": [
                {
                    "id": r.id,
                    "rowId": r.row_id,
                    "predictionValue": r.prediction_value,
                    "providedValue": r.provided_value,
                    "confidence": r.confidence,
                    "agree": r.agree,
                }
                for r in results.items
            ],
        })
        return

    for r in results.items:
        mark = "[green]agree[/green]" if r.agree else "[red]disagree[/red]"
        confidence = "-" if r.confidence is None else f"{r.confidence:.2f}"
        console.print(f"[cyan]{r.id}[/cyan]  {r.prediction_value!s:<24} {confidence:>5}  {mark}")
    console.print(f"[dim]{len(results.items)} of {results.total_count}[/dim]")


# ── Corrections and export ───────────────────────────────────────────────


@app.command("correct")
def correct(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Edited export of a prediction"),
    document_id: str = typer.Option(..., "--document", help="Document ID"),
    prediction_id: str = typer.Option(..., "--prediction", help="Prediction ID"),
    description: str | None = typer.Option(None, "--description"),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Upload corrected prediction values."""

    async def _run(application: Application):
        source = FileRowSource(file)
        await application.documents.add_corrected_document(
            CorrectedDocumentInput(
                name=source.name,
                document_id=document_id,
                prediction_id=prediction_id,
                description=description,
            ),
            source,
        )
        return await application.documents.get_prediction(prediction_id)

    prediction = run_with_app(_factory(ctx), _run)

    if json_out:
        print_json(prediction_to_dict(prediction))
        return
    summary = prediction.performance_summary
    corrected = summary.corrected_records if summary else 0
    console.print(f"[green]✓[/green] {corrected} corrected records on [cyan]{prediction_id}[/cyan]")


@app.command("export")
def export(
    ctx: typer.Context,
    prediction_id: str = typer.Argument(..., help="Prediction ID"),
    out: Path = typer.Argument(..., help="Destination CSV file"),
) -> None:
    """Write a prediction as CSV, ready to be edited and uploaded with ``correct``."""

    async def _run(application: Application):
        with out.open("w", newline="", encoding="utf-8") as stream:
            return await application.documents.export_prediction_csv(prediction_id, stream)

    written = run_with_app(_factory(ctx), _run)
    console.print(f"[green]✓[/green] Wrote {written} rows to {out}")


# ── Models ───────────────────────────────────────────────────────────────


@app.command("models")
def list_models(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List registered prediction models."""
    settings: DocPredictSettings = ctx.obj
    try:
        models = Application(settings).registry.list_models()
    except DocPredictError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(code=1) from e

    if json_out:
        print_json([
            {
                "id": m.id,
                "name": m.name,
                "deploymentId": m.deployment_id,
                "label": m.label,
                "inputs": list(m.field_names),
                "default": m.default,
            }
            for m in models
        ])
        return
    console.print(models_table(models))


__all__ = ["app"]
