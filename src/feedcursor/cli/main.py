"""Main CLI entry point."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console

from feedcursor import __version__

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="feedcursor")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """
    feedcursor - Checkpointed reader for partitioned change feeds.

    Use 'feedcursor COMMAND --help' for more information on a command.
    """
    ctx.ensure_object(dict)


# Import and register commands
from feedcursor.cli.checkpoints import checkpoints
from feedcursor.cli.feed import ensure, follow, read

cli.add_command(checkpoints)
cli.add_command(ensure)
cli.add_command(read)
cli.add_command(follow)


@cli.command()
def info() -> None:
    """Show application information."""
    from feedcursor.core.config import get_settings

    settings = get_settings()

    console.print(f"[bold]feedcursor[/bold] v{__version__}")
    console.print(f"Environment: {settings.environment}")
    console.print(f"MongoDB: {settings.mongodb.uri.get_secret_value().split('@')[-1]}")
    console.print(f"Collection: {settings.feed.database_id}.{settings.feed.collection_id}")
    console.print(f"Partition key: {settings.feed.partition_key_path}")
    console.print(f"Concurrency: {settings.feed.max_concurrency}")


@cli.command()
@click.option("--format", "output_format", type=click.Choice(["yaml", "json", "env"]), default="yaml")
def config(output_format: str) -> None:
    """Show current configuration."""
    import json

    import yaml

    from feedcursor.core.config import get_settings

    settings = get_settings()
    config_dict = settings.model_dump(mode="json")

    def redact(obj):
        if isinstance(obj, dict):
            return {
                k: "***" if any(s in k.lower() for s in ("secret", "password", "token", "uri"))
                else redact(v)
                for k, v in obj.items()
            }
        elif isinstance(obj, list):
            return [redact(v) for v in obj]
        return obj

    redacted = redact(config_dict)

    if output_format == "json":
        click.echo(json.dumps(redacted, indent=2))
    elif output_format == "env":
        def flatten(obj, prefix=""):
            items = []
            for k, v in obj.items():
                key = f"{prefix}__{k}".upper() if prefix else k.upper()
                if isinstance(v, dict):
                    items.extend(flatten(v, key))
                else:
                    items.append(f"FEEDCURSOR_{key}={v}")
            return items
        for line in flatten(redacted):
            click.echo(line)
    else:
        click.echo(yaml.safe_dump(redacted, default_flow_style=False))


@cli.command()
@click.option(
    "--backend",
    type=click.Choice(["memory", "mongo"]),
    default="memory",
    help="Store to run the walkthrough against",
)
@click.option("--count", "reading_count", default=100, type=int, help="Readings inserted first")
@click.option("--reset/--no-reset", default=True, help="Drop the demo collection before starting")
@click.option("--quiet", is_flag=True, help="Only print the summary")
def demo(backend: str, reading_count: int, reset: bool, quiet: bool) -> None:
    """Insert readings and read them back through the change feed."""
    from feedcursor.core.config import get_settings
    from feedcursor.core.runtime import FeedRuntime
    from feedcursor.demo import run_demo
    from feedcursor.store.memory import InMemoryFeedStore

    settings = get_settings()
    feed = settings.feed

    async def _demo():
        store = None
        if backend == "memory":
            store = InMemoryFeedStore(
                partition_count=feed.partition_count,
                range_page_size=feed.range_page_size,
                batch_size=feed.batch_size,
            )

        runtime = FeedRuntime(settings, store=store)
        async with runtime.context() as rt:
            collection = rt.collection
            if reset:
                await rt.store.drop_collection(collection)
                collection = await rt.store.ensure_collection(
                    feed.database_id, feed.collection_id, feed.partition_key_path
                )
            return await run_demo(
                rt.store,
                collection,
                rt.reader,
                reading_count=reading_count,
                echo=None if quiet else click.echo,
            )

    report = asyncio.run(_demo())

    console.print(
        f"[green]✓[/green] Initial read: {report.initial_changes} changes, "
        f"incremental read: {report.incremental_changes} changes"
    )


if __name__ == "__main__":
    cli()
