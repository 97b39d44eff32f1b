from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from rndc_bridge.batch.tracker import BatchTracker
from rndc_bridge.client import ApiBatchSource, BatchApiClient, Notification, ReconciliationPoller, SubmissionWorkflow
from rndc_bridge.config import settings
from rndc_bridge.data.spreadsheet import SpreadsheetAdapter
from rndc_bridge.data.storage import Database
from rndc_bridge.domain.models import OperationKind
from rndc_bridge.exceptions import RndcBridgeError
from rndc_bridge.records.factory import SubmissionRecordFactory
from rndc_bridge.services.exporter import ResultsExporter
from rndc_bridge.sync.rndc_client import RndcClient

cli = typer.Typer(help="RNDC Bridge CLI")


def _configure_logging() -> None:
    logging.basicConfig(level=getattr(logging, settings.logging.level.upper(), logging.INFO))


def _transport() -> RndcClient:
    rndc = settings.rndc
    return RndcClient(
        ws_url=rndc.active_ws_url,
        timeout=rndc.timeout_seconds,
        max_retries=rndc.max_retries,
        backoff_seconds=rndc.backoff_seconds,
    )


def _echo_notification(notification: Notification) -> None:
    color = {"error": typer.colors.RED, "warning": typer.colors.YELLOW, "success": typer.colors.GREEN}
    typer.secho(f"{notification.title}: {notification.message}", fg=color.get(notification.level))


@cli.command()
def version() -> None:
    """Print runtime version."""
    typer.echo(f"{settings.app.name} {settings.app.version}")


@cli.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host to bind"),
    port: int = typer.Option(8000, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload for local development"),
) -> None:
    """Run the batch API server."""
    uvicorn.run(
        "rndc_bridge.api.main:app",
        host=host,
        port=port,
        reload=reload,
        app_dir="src",
    )


@cli.command()
def preview(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Spreadsheet (.xlsx or .csv)"),
    kind: OperationKind = typer.Option(..., help="Operation kind of every row"),
    query: bool = typer.Option(True, help="Look up loaded quantities in the registry (shipment completions)"),
    show_xml: bool = typer.Option(False, help="Print the generated XML of each record"),
) -> None:
    """Build the records for a spreadsheet without submitting them."""
    _configure_logging()
    try:
        rows = SpreadsheetAdapter.load(file)
        factory = SubmissionRecordFactory.for_kind(kind, query=_transport().aquery if query else None)
        records = asyncio.run(factory.from_rows(rows, kind))
    except RndcBridgeError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    for record in records:
        start = record.event_start.display if record.event_start else ""
        end = record.event_end.display if record.event_end else ""
        flag = " (!)" if any(e and e.degraded for e in (record.event_start, record.event_end)) else ""
        typer.echo(f"{record.row_index:>4}  {record.row_key:<24} {start} -> {end}{flag}")
        if show_xml:
            typer.echo(record.xml_request)
    typer.echo(f"{len(records)} registros")


@cli.command()
def submit(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Spreadsheet (.xlsx or .csv)"),
    kind: OperationKind = typer.Option(..., help="Operation kind of every row"),
    api_url: Optional[str] = typer.Option(None, help="Batch API base URL"),
    ws_url: Optional[str] = typer.Option(None, help="RNDC endpoint override"),
    wait: bool = typer.Option(True, help="Poll until the batch completes"),
) -> None:
    """Submit a spreadsheet as one batch and follow it to completion."""
    _configure_logging()
    try:
        rows = SpreadsheetAdapter.load(file)
    except RndcBridgeError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    client = BatchApiClient(api_url or settings.batch.api_url, api_token=settings.security.api_token)
    source = ApiBatchSource(client)

    async def run() -> Optional[str]:
        poller = ReconciliationPoller(
            source, interval=settings.batch.poll_interval_seconds, notify=_echo_notification, name=kind.value
        )
        factory = SubmissionRecordFactory.for_kind(kind, query=_transport().aquery)
        workflow = SubmissionWorkflow(factory=factory, submitter=source, poller=poller)
        records = await workflow.prepare(rows, kind)
        batch_id = await workflow.submit(records, ws_url=ws_url)
        if batch_id and wait:
            await poller.wait()
        elif batch_id:
            await poller.aclose()
        return batch_id

    batch_id = asyncio.run(run())
    if not batch_id:
        typer.echo("Nada enviado")
        raise typer.Exit(code=1)
    typer.echo(f"Lote {batch_id}")


@cli.command()
def export(
    batch_id: str = typer.Argument(..., help="Batch id"),
    output_dir: Optional[Path] = typer.Option(None, help="Directory for the .xlsx file"),
) -> None:
    """Export a batch's per-record results to Excel (reads the local database)."""
    tracker = BatchTracker(Database(settings.paths.db_path))
    try:
        path = ResultsExporter(tracker, output_dir=output_dir).save_batch(batch_id)
    except RndcBridgeError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.echo(str(path))


if __name__ == "__main__":
    cli()
