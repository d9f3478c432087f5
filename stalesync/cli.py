"""Click-based CLI for stalesync - staleness-driven replica sync."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from pydantic import ValidationError
from rich.markup import escape
from rich.prompt import Confirm
from rich.syntax import Syntax

from stalesync import __version__
from stalesync.config import (
    ensure_config_exists,
    get_config_path,
    load_config,
    validate_config_file,
)
from stalesync.config.schema import StalesyncConfig
from stalesync.output.console import Console
from stalesync.output.log import read_log_tail
from stalesync.runtime import Replica, build_replica
from stalesync.sync.coordinator import OutcomeStatus, SyncOutcome
from stalesync.sync.errors import SyncError

console = Console()


def _config_path(ctx: click.Context) -> Path:
    return ctx.obj.get("config_path") or get_config_path()


def _load(ctx: click.Context) -> StalesyncConfig:
    """Load configuration or exit with a readable error."""
    try:
        return load_config(_config_path(ctx))
    except FileNotFoundError as e:
        console.print_error(escape(str(e)))
        sys.exit(1)
    except ValidationError as e:
        console.print_error(f"Invalid configuration:\n{escape(str(e))}")
        sys.exit(1)


def _replica(ctx: click.Context, verbose: bool = False) -> tuple[Replica, Console]:
    config = _load(ctx)
    out = Console(verbose=verbose or config.output.verbose, colored=config.output.colored)
    return build_replica(config, console=out), out


def _print_outcomes(out: Console, outcomes: list[SyncOutcome]) -> None:
    for outcome in outcomes:
        out.print_outcome(outcome)
    if len(outcomes) > 1:
        out.print()
        out.print_summary(outcomes)


def _exit_on_failure(outcomes: list[SyncOutcome]) -> None:
    if any(o.status in (OutcomeStatus.FAILED, OutcomeStatus.REJECTED_STALE) for o in outcomes):
        sys.exit(1)


def _parse_fields(values: tuple[str, ...]) -> dict:
    fields = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got '{item}'", param_hint="--field")
        # YAML scalars so numbers and booleans keep their type
        fields[key] = yaml.safe_load(raw) if raw else ""
    return fields


@click.group()
@click.version_option(version=__version__, prog_name="stalesync")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Configuration file (default: ~/.config/stalesync/config.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path]) -> None:
    """stalesync - keep a local replica fresh against its server.

    Downloads only when a collection is stale, uploads pending local
    changes as deltas, and refuses writes based on outdated knowledge.

    \b
    Replica: ~/.local/share/stalesync/replica/
    Server:  ~/.local/share/stalesync/server/
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option("--type", "-t", "entity_type", help="Only show this entity type")
@click.pass_context
def status(ctx: click.Context, entity_type: Optional[str]) -> None:
    """Show cursor age and staleness per entity type."""
    replica, out = _replica(ctx)
    try:
        rows = replica.status(entity_type)
    except KeyError as e:
        console.print_error(str(e.args[0]))
        sys.exit(1)
    out.print_info(f"Owner: {replica.owner_id}")
    out.print_status(rows)


@cli.command()
@click.option("--type", "-t", "entity_type", help="Only sync this entity type")
@click.option("--force", is_flag=True, help="Sync even if the replica is fresh")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
@click.pass_context
def sync(ctx: click.Context, entity_type: Optional[str], force: bool, verbose: bool) -> None:
    """Download changes for stale entity types.

    Fresh types are skipped unless --force is given. A type with a cursor
    receives a delta; a type without one receives a full snapshot.
    """
    replica, out = _replica(ctx, verbose)
    try:
        outcomes = replica.sync(entity_type, force=force)
    except KeyError as e:
        console.print_error(str(e.args[0]))
        sys.exit(1)
    _print_outcomes(out, outcomes)
    _exit_on_failure(outcomes)


@cli.command()
@click.argument("entity_type")
@click.argument("entity_id")
@click.option("--field", "-f", "fields", multiple=True, help="Payload field as key=value (repeatable)")
@click.pass_context
def put(ctx: click.Context, entity_type: str, entity_id: str, fields: tuple[str, ...]) -> None:
    """Create or update a local record.

    The change is queued and uploaded by the next 'push'.

    \b
    Example:
        stalesync put tasks t-1 -f title="Buy milk" -f done=false
    """
    payload = _parse_fields(fields)
    replica, out = _replica(ctx)
    try:
        record = replica.put(entity_type, entity_id, payload)
    except KeyError as e:
        console.print_error(str(e.args[0]))
        sys.exit(1)
    except SyncError as e:
        console.print_error(str(e))
        sys.exit(1)
    out.print_success(f"Saved {entity_type}/{record.id} locally (pending upload)")


@cli.command()
@click.argument("entity_type")
@click.argument("entity_id")
@click.pass_context
def delete(ctx: click.Context, entity_type: str, entity_id: str) -> None:
    """Soft-delete a local record and queue the deletion."""
    replica, out = _replica(ctx)
    try:
        deleted = replica.delete(entity_type, entity_id)
    except KeyError as e:
        console.print_error(str(e.args[0]))
        sys.exit(1)
    if not deleted:
        out.print_warning(f"{entity_type}/{entity_id} not found in the local replica")
        sys.exit(1)
    out.print_success(f"Deleted {entity_type}/{entity_id} locally (pending upload)")


@cli.command("list")
@click.argument("entity_type")
@click.option("--deleted", is_flag=True, help="Include soft-deleted records")
@click.pass_context
def list_records(ctx: click.Context, entity_type: str, deleted: bool) -> None:
    """List records of one entity type in the local replica."""
    replica, out = _replica(ctx)
    try:
        replica.require_type(entity_type)
    except KeyError as e:
        console.print_error(str(e.args[0]))
        sys.exit(1)
    records = replica.store.list_all(replica.owner_id, entity_type, include_deleted=deleted)
    out.print_records(entity_type, records)


@cli.command()
@click.option("--type", "-t", "entity_type", help="Only push this entity type")
@click.option("--full", is_flag=True, help="Upload the complete collection instead of a delta")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
@click.pass_context
def push(ctx: click.Context, entity_type: Optional[str], full: bool, verbose: bool) -> None:
    """Upload pending local changes.

    Uploads are refused while the replica is stale; run 'sync' first.
    If the server moved on since the last sync, the pending write is
    discarded and the replica refreshed.
    """
    replica, out = _replica(ctx, verbose)
    try:
        outcomes = replica.push(entity_type, full=full)
    except KeyError as e:
        console.print_error(str(e.args[0]))
        sys.exit(1)
    _print_outcomes(out, outcomes)
    _exit_on_failure(outcomes)


@cli.command()
@click.option("--once", is_flag=True, help="Run a single tick and exit")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
@click.pass_context
def watch(ctx: click.Context, once: bool, verbose: bool) -> None:
    """Keep stale entity types synced on a timer.

    The interval backs off while nothing changes. Stop with Ctrl+C.
    """
    replica, out = _replica(ctx, verbose)

    def report(tick) -> None:
        for outcome in tick.outcomes:
            if outcome.status is not OutcomeStatus.FRESH or out.verbose:
                out.print_outcome(outcome)
        if tick.next_interval and out.verbose:
            out.print(f"[dim]next tick in {tick.next_interval / 1000:.0f}s[/dim]")

    scheduler = replica.scheduler(on_report=report)
    try:
        if once:
            scheduler.tick()
            return
        out.print_info(f"Watching {', '.join(scheduler.entity_types) or 'nothing'} (Ctrl+C to stop)")
        scheduler.run_forever()
    except KeyboardInterrupt:
        out.print()
        out.print_info("Stopped")
    finally:
        scheduler.close()


@cli.command()
@click.option("--type", "-t", "entity_type", help="Only reset this entity type")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def reset(ctx: click.Context, entity_type: Optional[str], yes: bool) -> None:
    """Forget sync cursors so the next sync downloads everything."""
    replica, out = _replica(ctx)
    target = entity_type or "all entity types"
    if not yes and not Confirm.ask(f"Reset cursors for {target}?", default=False):
        out.print_info("Aborted")
        return
    try:
        cleared = replica.reset(entity_type)
    except KeyError as e:
        console.print_error(str(e.args[0]))
        sys.exit(1)
    out.print_success(f"Cleared {cleared} cursor(s)")


@cli.command()
@click.option("--lines", "-n", default=50, help="Number of lines to show")
@click.pass_context
def log(ctx: click.Context, lines: int) -> None:
    """Show recent sync events from the event log."""
    config = _load(ctx)
    if not config.output.log_file:
        console.print_info("Event log disabled (output.log_file is not set)")
        return

    entries = read_log_tail(Path(config.output.log_file), lines)
    if not entries:
        console.print_info("No sync events logged yet. Run 'sync' first.")
        return
    console.print("\n".join(entries), markup=False, highlight=False)


# ============================================================================
# Configuration Commands
# ============================================================================


@cli.group()
def config() -> None:
    """Configuration management.

    \b
    Keys:
      owner_id                    Owner whose collections are synced
      replica.path                Local replica directory
      server.path                 Server store directory
      entity_types.<name>         staleness_threshold_ms, enabled
      scheduler.*                 base_interval_ms, max_interval_ms, adaptive
      sync.conflict_refresh       delta or full
    """
    pass


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing configuration")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Create a default configuration file."""
    path = _config_path(ctx)
    if path.exists() and force:
        path.unlink()
    path, created = ensure_config_exists(path)
    if created:
        console.print_success(f"Created configuration: {path}")
    else:
        console.print_warning(f"Configuration already exists: {path} (use --force to overwrite)")


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the configuration file."""
    path = _config_path(ctx)
    if not path.exists():
        console.print_warning(f"Configuration file not found: {path}")
        console.print_info("Run 'stalesync config init' to create one.")
        return
    console.print(f"[dim]{path}[/dim]")
    console.print(Syntax(path.read_text(encoding="utf-8"), "yaml", theme="monokai"))


@config.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Validate the configuration file."""
    valid, errors = validate_config_file(_config_path(ctx))
    if valid:
        console.print_success("Configuration is valid")
        return
    console.print_error(f"Configuration has {len(errors)} errors:")
    for error in errors:
        console.print(f"  [red]-[/red] {error}")
    sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
