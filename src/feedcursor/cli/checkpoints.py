"""Checkpoint management CLI commands."""

from __future__ import annotations

import asyncio
import json

import click
from rich.console import Console
from rich.table import Table

console = Console()


async def _with_store(action):
    """Run an action against the configured checkpoint store."""
    from motor.motor_asyncio import AsyncIOMotorClient

    from feedcursor.core.config import get_settings
    from feedcursor.feed.checkpoint_store import CheckpointStore

    settings = get_settings()
    client = AsyncIOMotorClient(
        settings.mongodb.uri.get_secret_value(),
        serverSelectionTimeoutMS=settings.mongodb.server_selection_timeout_ms,
    )
    store = CheckpointStore(
        client=client,
        database=settings.mongodb.database,
        collection=settings.mongodb.checkpoints_collection,
    )
    try:
        return await action(store)
    finally:
        client.close()


@click.group()
def checkpoints() -> None:
    """Manage persisted checkpoints."""
    pass


@checkpoints.command("list")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
def list_checkpoints(output_format: str) -> None:
    """List all persisted checkpoints."""
    items = asyncio.run(_with_store(lambda store: store.list_all()))

    if output_format == "json":
        click.echo(json.dumps(items, indent=2, default=str))
        return

    table = Table(title="Checkpoints")
    table.add_column("Namespace", style="cyan")
    table.add_column("Consumer")
    table.add_column("Partitions")
    table.add_column("Updated")

    for item in items:
        table.add_row(
            item["namespace"],
            item["consumer"],
            str(item["entries"]),
            str(item["updated_at"] or "-"),
        )

    console.print(table)


@checkpoints.command("show")
@click.argument("namespace")
@click.option("--consumer", default=None, help="Consumer name (default from settings)")
def show_checkpoint(namespace: str, consumer: str | None) -> None:
    """Show the tokens of one checkpoint as JSON."""
    from feedcursor.core.config import get_settings

    name = consumer or get_settings().feed.consumer_name
    checkpoint = asyncio.run(_with_store(lambda store: store.load(namespace, name)))
    click.echo(json.dumps(checkpoint.to_dict(), indent=2))


@checkpoints.command("delete")
@click.argument("namespace")
@click.option("--consumer", default=None, help="Consumer name (default from settings)")
@click.confirmation_option(prompt="Delete this checkpoint? The next read starts from the beginning.")
def delete_checkpoint(namespace: str, consumer: str | None) -> None:
    """Delete one checkpoint."""
    from feedcursor.core.config import get_settings

    name = consumer or get_settings().feed.consumer_name
    deleted = asyncio.run(_with_store(lambda store: store.delete(namespace, name)))

    if deleted:
        console.print(f"[green]✓[/green] Deleted checkpoint {namespace} ({name})")
    else:
        console.print(f"[yellow]No checkpoint for {namespace} ({name})[/yellow]")
