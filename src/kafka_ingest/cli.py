"""Typer CLI for Kafka ingestion jobs."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from kafka_ingest.config.loader import load_input_config
from kafka_ingest.config.models import ConfigError, KafkaInputConfig
from kafka_ingest.observability.logging import configure_logging
from kafka_ingest.output.writers import JsonLinesWriter, RowWriter
from kafka_ingest.pipeline.runner import IngestJob

console = Console()
app = typer.Typer(name="kafka-ingest", help="Bounded Kafka topic ingestion")


def _load(config_path: str) -> KafkaInputConfig:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return load_input_config(path)
    except ConfigError as exc:
        console.print(f"[red]Invalid config:[/red] {exc}")
        raise typer.Exit(1) from exc


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to ingestion YAML"),
) -> None:
    """Validate an ingestion configuration file."""
    config = _load(config_path)
    console.print(f"[green]Valid[/green] format={config.serialize_format}")
    console.print(f"  brokers:     {config.bootstrap_servers}")
    console.print(f"  topics:      {config.topics}")
    console.print(f"  seek:        {config.seek_mode}")
    if config.timestamp_for_seeking is not None:
        console.print(f"  seek from:   {config.timestamp_for_seeking}")
    console.print(f"  termination: {config.termination_mode}")
    console.print(f"  columns:     {[c.name for c in config.columns]}")


def _no_writer(task_index: int) -> RowWriter:
    msg = "plan does not write rows"
    raise RuntimeError(msg)


@app.command()
def plan(
    config_path: str = typer.Argument(..., help="Path to ingestion YAML"),
    slots: int | None = typer.Option(None, "--slots", min=1, help="Task slot count"),
) -> None:
    """Show how partitions would be split across tasks."""
    config = _load(config_path)
    job = IngestJob(config, _no_writer, slot_count=slots)
    planned = job.plan()

    table = Table(title="Partition assignment")
    table.add_column("Task", style="cyan")
    table.add_column("Partitions")
    for index, slot in enumerate(planned.assignments):
        table.add_row(str(index), ", ".join(slot) if slot else "[dim](idle)[/dim]")
    console.print(table)


@app.command()
def run(
    config_path: str = typer.Argument(..., help="Path to ingestion YAML"),
    output_dir: Path = typer.Option(..., "--output-dir", help="Directory for JSONL output"),
    slots: int | None = typer.Option(None, "--slots", min=1, help="Task slot count"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
) -> None:
    """Plan and run every task, writing one JSONL file per task."""
    configure_logging(json=json_logs)
    config = _load(config_path)

    job = IngestJob(
        config,
        lambda task_index: JsonLinesWriter(output_dir, task_index),
        slot_count=slots,
    )
    try:
        reports = job.run()
    except ConfigError as exc:
        console.print(f"[red]Invalid config:[/red] {exc}")
        raise typer.Exit(1) from exc
    except Exception as exc:
        console.print(f"[red]Ingestion failed:[/red] {exc}")
        raise typer.Exit(1) from exc

    table = Table(title="Task reports")
    table.add_column("Task", style="cyan")
    table.add_column("Partitions")
    table.add_column("Rows", justify="right")
    table.add_column("Null values", justify="right")
    table.add_column("Empty polls", justify="right")
    table.add_column("Exit")
    for r in reports:
        table.add_row(
            str(r.task_index),
            str(len(r.partitions)),
            str(r.rows_emitted),
            str(r.null_values_skipped),
            str(r.empty_polls),
            str(r.exit_reason),
        )
    console.print(table)
    console.print(f"[green]Rows written:[/green] {sum(r.rows_emitted for r in reports)}")
