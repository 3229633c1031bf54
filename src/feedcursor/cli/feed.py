"""Change feed CLI commands."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _load_settings(concurrency: int | None = None):
    """Get settings, applying command line overrides."""
    from feedcursor.core.config import get_settings

    settings = get_settings().model_copy(deep=True)
    if concurrency is not None:
        settings.feed.max_concurrency = concurrency
    return settings


def _create_runtime(settings):
    """Build the runtime a command runs against."""
    from feedcursor.core.runtime import FeedRuntime

    return FeedRuntime(settings)


@click.command()
def ensure() -> None:
    """Create the configured collection and its partition ranges."""
    async def _ensure():
        runtime = _create_runtime(_load_settings())
        async with runtime.context() as rt:
            ranges = await rt.reader.resolver.list_partition_ranges(rt.collection)
            return rt.collection, ranges

    collection, ranges = asyncio.run(_ensure())

    console.print(f"[green]✓[/green] Collection {collection.namespace} is ready")
    console.print(f"  Partition key: {collection.partition_key_path}")
    console.print(f"  Partition ranges: {', '.join(r.id for r in ranges)}")


@click.command()
@click.option(
    "--checkpoint-file",
    "-f",
    type=click.Path(dir_okay=False, path_type=Path),
    help="JSON checkpoint file to resume from and update, instead of the checkpoint store",
)
@click.option("--consumer", help="Consumer name the checkpoint is stored under")
@click.option("--concurrency", type=click.IntRange(min=1), help="Partitions drained at once")
@click.option("--prune", is_flag=True, help="Drop checkpoint entries of retired partitions")
@click.option("--show-records", is_flag=True, help="Print every change read")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
def read(
    checkpoint_file: Path | None,
    consumer: str | None,
    concurrency: int | None,
    prune: bool,
    show_records: bool,
    output_format: str,
) -> None:
    """Read all changes made since the last checkpoint."""
    from feedcursor.feed.checkpoint import Checkpoint

    checkpoint: Checkpoint | None = None
    if checkpoint_file is not None and checkpoint_file.exists():
        checkpoint = Checkpoint.from_dict(json.loads(checkpoint_file.read_text()))
    elif checkpoint_file is not None:
        checkpoint = Checkpoint()

    def on_change(record) -> None:
        if show_records:
            click.echo(f"\tRead document {record.id} from partition {record.partition_id}")

    async def _read():
        runtime = _create_runtime(_load_settings(concurrency))
        async with runtime.context() as rt:
            result = await rt.read_once(
                checkpoint,
                on_change=on_change,
                consumer=consumer,
                persist=checkpoint_file is None,
            )
            removed: list[str] = []
            if prune:
                ranges = await rt.reader.resolver.list_partition_ranges(rt.collection)
                removed = result.checkpoint.prune(r.id for r in ranges)
                if checkpoint_file is None:
                    await rt.save_checkpoint(result.checkpoint, consumer)
            return result, removed

    try:
        result, removed = asyncio.run(_read())
    finally:
        # Progress up to the last consumed batch survives a failed read
        if checkpoint_file is not None:
            checkpoint_file.write_text(json.dumps(checkpoint.to_dict(), indent=2))

    if output_format == "json":
        data = result.to_dict()
        data["pruned"] = removed
        click.echo(json.dumps(data, indent=2))
        return

    table = Table(title=f"Checkpoint ({result.change_count} changes read)")
    table.add_column("Partition", style="cyan")
    table.add_column("Continuation")
    for partition_id, token in result.checkpoint.items():
        table.add_row(partition_id, token)
    console.print(table)

    if removed:
        console.print(f"[yellow]Pruned retired partitions:[/yellow] {', '.join(removed)}")
    if result.cancelled:
        console.print("[yellow]Read was cancelled; checkpoint kept at the last batch[/yellow]")


@click.command()
@click.option("--interval", default=5.0, type=float, help="Seconds between read calls")
@click.option("--consumer", help="Consumer name the checkpoint is stored under")
@click.option("--concurrency", type=click.IntRange(min=1), help="Partitions drained at once")
def follow(interval: float, consumer: str | None, concurrency: int | None) -> None:
    """Keep reading new changes until interrupted."""
    def on_change(record) -> None:
        click.echo(json.dumps(record.to_dict(), default=str))

    async def _follow():
        runtime = _create_runtime(_load_settings(concurrency))
        async with runtime.context() as rt:
            return await rt.follow(interval=interval, on_change=on_change, consumer=consumer)

    console.print(f"[bold]Following change feed[/bold] every {interval}s (Ctrl+C to stop)")
    total = asyncio.run(_follow())
    console.print(f"\n[yellow]Stopped after {total} changes[/yellow]")
