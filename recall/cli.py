"""Click-based CLI for the recall engine."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click

from recall.app import RecallApp
from recall.config import RecallConfig
from recall.errors import ValidationError
from recall.memory.models import Memory
from recall.patterns.models import PatternType, Timeframe

logger = logging.getLogger(__name__)


def build_app(ctx: click.Context) -> RecallApp:
    """Create the engine from the group options stored on the context."""
    config: RecallConfig = ctx.obj["config"]
    return RecallApp(config, sweep_on_ingest=False)


def read_memories(path: Path) -> list[Memory]:
    """Parse a JSON-lines file of embedded memories.

    Raises:
        click.ClickException: On the first malformed line
    """
    memories = []
    with open(path) as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                memories.append(Memory.from_dict(json.loads(line)))
            except (ValueError, ValidationError, KeyError, TypeError) as e:
                raise click.ClickException(f"{path}:{line_number}: {e}")
    return memories


@click.group()
@click.option(
    "--storage",
    "-s",
    envvar="RECALL_STORAGE_PATH",
    type=click.Path(file_okay=False, path_type=Path),
    help="Storage directory (default: $RECALL_STORAGE_PATH, or in-memory)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="JSON config file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def cli(ctx: click.Context, storage: Optional[Path], config_path: Optional[Path], verbose: bool) -> None:
    """Memory & recall engine: clusters, patterns and predictions."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = RecallConfig.load(config_path) if config_path is not None else RecallConfig()
    if storage is not None:
        config.store.storage_path = storage
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    logger.debug(f"CLI initialized (storage={config.store.storage_path})")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def ingest(ctx: click.Context, file: Path) -> None:
    """Store and cluster memories from a JSON-lines FILE.

    Examples:

        recall --storage ./data ingest memories.jsonl
    """
    memories = read_memories(file)
    app = build_app(ctx)

    async def run() -> int:
        stored = 0
        try:
            for memory in memories:
                cluster = await app.ingestion.ingest(memory)
                if cluster is not None:
                    stored += 1
        finally:
            await app.close()
        return stored

    try:
        clustered = asyncio.run(run())
    except ValidationError as e:
        raise click.ClickException(f"Ingest failed: {e}")

    click.echo(f"Ingested {len(memories)} memories ({clustered} clustered)")


@cli.command()
@click.option("--user", "-u", "user_id", required=True, help="User id")
@click.option("--maintain", is_flag=True, help="Run dormancy/prune/merge maintenance first")
@click.pass_context
def clusters(ctx: click.Context, user_id: str, maintain: bool) -> None:
    """Print a user's clusters, emergent themes and concept hierarchy."""
    app = build_app(ctx)
    if maintain:
        report = app.engine.maintain(user_id)
        app.engine.save()
        logger.info(
            f"Maintenance: {len(report.dormant)} dormant, {len(report.pruned)} pruned, "
            f"{len(report.merged)} merged"
        )
    try:
        response = app.insight.query_clusters({"userId": user_id})
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(response.to_wire(), indent=2))


@cli.command()
@click.option("--user", "-u", "user_id", required=True, help="User id")
@click.option(
    "--pattern",
    "-p",
    type=click.Choice([t.query_name for t in PatternType], case_sensitive=False),
    required=True,
    help="Pattern type to query",
)
@click.option(
    "--timeframe",
    "-t",
    type=click.Choice([t.value for t in Timeframe], case_sensitive=False),
    default=Timeframe.ALL.value,
    show_default=True,
    help="Window to look back over",
)
@click.pass_context
def patterns(ctx: click.Context, user_id: str, pattern: str, timeframe: str) -> None:
    """Print patterns and predictions of one type for a user."""
    app = build_app(ctx)

    async def run():
        try:
            return await app.insight.query_patterns(
                {"userId": user_id, "pattern": pattern, "timeframe": timeframe}
            )
        finally:
            await app.close()

    try:
        response = asyncio.run(run())
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(response.to_wire(), indent=2))


if __name__ == "__main__":
    cli()
