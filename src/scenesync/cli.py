"""CLI entrypoint for scenesync."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click
from pydantic import ValidationError

from scenesync.config.store import SettingsStore, with_engine_overrides
from scenesync.paths import settings_path
from scenesync.runtime_logging import configure_runtime_logging, read_records
from scenesync.scene.cancellation import BuildCancelled
from scenesync.scene.engine import TraversalEngine
from scenesync.scene.errors import SceneSyncError
from scenesync.scene.model import SceneNode
from scenesync.transport import HttpInvoker
from scenesync.version import __version__


@click.group(invoke_without_command=True, context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--log-level", default=None, help="off, error, warning, info or debug")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False))
@click.pass_context
def main(ctx: click.Context, log_level: str | None, log_file: str | None) -> None:
    """scenesync: mirror a remote scene graph into a local tree."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["log_file"] = log_file
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command()
@click.argument("url", required=False)
@click.option("--strategy", type=click.Choice(["eager", "staged"]), default=None)
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="Max in-flight remote calls")
@click.option("--max-depth", type=click.IntRange(min=1), default=None)
@click.option("--json", "as_json", is_flag=True, help="Print the tree as JSON")
@click.pass_context
def build(
    ctx: click.Context,
    url: str | None,
    strategy: str | None,
    concurrency: int | None,
    max_depth: int | None,
    as_json: bool,
) -> None:
    """Mirror the scene once and print it."""
    logger = configure_runtime_logging(level=ctx.obj.get("log_level"), log_file=ctx.obj.get("log_file"))
    settings = with_engine_overrides(
        SettingsStore().load(),
        strategy=strategy,
        concurrency_limit=concurrency,
        max_depth=max_depth,
    )
    engine_settings = settings.engine
    server_url = url or settings.server.url

    async def run() -> tuple[list[SceneNode], int]:
        async with HttpInvoker(server_url, timeout=settings.server.timeout_s) as http:
            engine = TraversalEngine(http, engine_settings, logger=logger)
            tree = await engine.build()
            return tree, len(engine.store)

    try:
        tree, node_count = asyncio.run(run())
    except BuildCancelled as exc:
        raise click.ClickException(str(exc)) from exc
    except SceneSyncError as exc:
        raise click.ClickException(f"Scene build failed: {exc}") from exc

    if as_json:
        payload = {"url": server_url, "node_count": node_count, "tree": [node.to_dict() for node in tree]}
        click.echo(json.dumps(payload, indent=2))
        return
    for node in tree:
        _echo_node(node, 0, frozenset())
    click.echo(f"{node_count} nodes")


@main.command()
@click.argument("url", required=False)
@click.pass_context
def view(ctx: click.Context, url: str | None) -> None:
    """Open the live outliner."""
    from scenesync.app import SceneSyncApp

    app = SceneSyncApp(url=url, log_level=ctx.obj.get("log_level"), log_file=ctx.obj.get("log_file"))
    app.run()


@main.command("settings-path")
def settings_path_command() -> None:
    """Print settings file path."""
    click.echo(str(settings_path()))


@main.command("set")
@click.argument("key")
@click.argument("value")
def set_command(key: str, value: str) -> None:
    """Persist one setting, e.g. `scenesync set engine.strategy eager`."""
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    try:
        settings = SettingsStore().update(key, parsed)
    except KeyError as exc:
        raise click.ClickException(str(exc.args[0])) from exc
    except ValidationError as exc:
        raise click.ClickException(f"Invalid value for {key}: {exc.errors()[0]['msg']}") from exc
    click.echo(f"{key} = {dict(settings.setting_items()).get(key, value)}")


@main.command()
def about() -> None:
    """Show version and project summary."""
    payload = {
        "name": "scenesync",
        "version": __version__,
        "description": "Incremental mirroring of remote scene graphs",
    }
    click.echo(json.dumps(payload, indent=2))


@main.command()
@click.argument("path")
@click.option("--limit", type=int, default=100, show_default=True)
@click.option("--event", "event_prefix", default=None, help="Only events starting with this prefix")
@click.option("--level", "min_level", default=None, help="Minimum level to show")
def replay(path: str, limit: int, event_prefix: str | None, min_level: str | None) -> None:
    """Print the tail of a JSONL runtime log."""
    file_path = Path(path).expanduser().resolve()
    if not file_path.exists():
        raise click.ClickException(f"File not found: {file_path}")

    records = list(read_records(file_path, event_prefix=event_prefix, min_level=min_level))
    for record in records[-limit:]:
        click.echo(json.dumps(record, sort_keys=True))


def _echo_node(node: SceneNode, depth: int, path: frozenset[int]) -> None:
    suffix = f" ({node.type})" if node.type else ""
    handle = "-" if node.handle is None else str(node.handle)
    click.echo(f"{'  ' * depth}{node.name}{suffix} #{handle}")
    if id(node) in path:
        return
    for child in node.children:
        _echo_node(child, depth + 1, path | {id(node)})


if __name__ == "__main__":
    main()
