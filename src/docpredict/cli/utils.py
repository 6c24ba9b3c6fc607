"""
CLI utility helpers: consoles, async bridging, and output formatting.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from docpredict.container import Application
from docpredict.core.errors import DocPredictError
from docpredict.core.models import Prediction
from docpredict.registry import ModelDescriptor

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


def run_with_app(app_factory: Callable[[], Application], func: Callable[[Application], Awaitable[T]]) -> T:
    """Start an :class:`Application`, await ``func(app)``, close it.

    docpredict errors are printed and turned into exit code 1.
    """

    async def main() -> T:
        async with app_factory() as app:
            return await func(app)

    try:
        return asyncio.run(main())
    except DocPredictError as e:
        err_console.print(f"[bold red]Error[/bold red] ({e.category.value}): {e.message}")
        raise typer.Exit(code=1) from e


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


# ── Renderers ────────────────────────────────────────────────────────────


def prediction_to_dict(prediction: Prediction) -> dict[str, Any]:
    summary = prediction.performance_summary
    return {
        "id": prediction.id,
        "documentId": prediction.document_id,
        "model": prediction.model,
        "date": prediction.date.isoformat(),
        "predictionField": prediction.prediction_field,
        "predictionUrl": prediction.prediction_url,
        "performanceSummary": summary.to_dict() if summary else None,
    }


def predictions_table(predictions: Sequence[Prediction], title: str = "Predictions") -> Table:
    table = Table(title=title)
    table.add_column("Prediction", style="cyan", no_wrap=True)
    table.add_column("Model")
    table.add_column("Total", justify="right")
    table.add_column("Agree >=", justify="right", style="green")
    table.add_column("Agree <", justify="right")
    table.add_column("Disagree >=", justify="right", style="red")
    table.add_column("Disagree <", justify="right")
    table.add_column("Corrected", justify="right")
    table.add_column("Rows", justify="right")

    for prediction in predictions:
        s = prediction.performance_summary
        if s is None:
            table.add_row(prediction.id, prediction.model, *["-"] * 7)
            continue
        table.add_row(
            prediction.id,
            prediction.model,
            str(s.total_count),
            str(s.agree_above_threshold),
            str(s.agree_below_threshold),
            str(s.disagree_above_threshold),
            str(s.disagree_below_threshold),
            str(s.corrected_records),
            str(s.grand_total),
        )
    return table


def models_table(models: Sequence[ModelDescriptor]) -> Table:
    table = Table(title="Models")
    table.add_column("Name", style="cyan")
    table.add_column("Deployment")
    table.add_column("Label")
    table.add_column("Inputs", justify="right")
    table.add_column("Default")
    for model in models:
        table.add_row(
            model.name,
            model.deployment_id,
            model.label,
            str(len(model.inputs)),
            "yes" if model.default else "",
        )
    return table
