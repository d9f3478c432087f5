# Stalesync Console Output
# Rich-based console output for user-friendly display

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from stalesync.sync.coordinator import OutcomeStatus, SyncOutcome
from stalesync.sync.errors import ErrorKind
from stalesync.sync.interfaces import SyncMode, SyncObserver
from stalesync.sync.records import EntityRecord


@dataclass
class TypeStatus:
    """Status row for one entity type."""

    entity_type: str
    enabled: bool
    threshold_ms: int
    last_sync_time: Optional[int] = None
    age_ms: Optional[int] = None
    stale: bool = True
    records: int = 0
    pending: int = 0


def format_timestamp(timestamp: Optional[int]) -> str:
    """Render epoch milliseconds as a UTC time."""
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def format_duration(millis: Optional[int]) -> str:
    """Render a duration in the largest sensible unit."""
    if millis is None:
        return "-"
    seconds = millis / 1000
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


class Console:
    """
    Console output manager using Rich.

    Provides formatted output for sync operations.
    """

    def __init__(self, *, verbose: bool = False, colored: bool = True, console: Optional[RichConsole] = None):
        """
        Initialize console.

        Args:
            verbose: Enable verbose output.
            colored: Enable colored output.
            console: Rich console to write to (a new one if not provided).
        """
        self.verbose = verbose
        self._console = console or RichConsole(no_color=not colored)

    def print(self, *args, **kwargs) -> None:
        """Print to console."""
        self._console.print(*args, **kwargs)

    def print_error(self, message: str) -> None:
        """Print error message."""
        self._console.print(f"[red]Error:[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print warning message."""
        self._console.print(f"[yellow]Warning:[/yellow] {message}")

    def print_observer_failure(self, observer: SyncObserver, hook: str, error: Exception) -> None:
        """Report an event sink that raised. The sync itself carries on."""
        self.print_error(f"{type(observer).__name__}.{hook} failed: {escape(str(error))}")

    def print_success(self, message: str) -> None:
        """Print success message."""
        self._console.print(f"[green]{message}[/green]")

    def print_info(self, message: str) -> None:
        """Print info message."""
        self._console.print(f"[blue]{message}[/blue]")

    def print_status(self, rows: list[TypeStatus]) -> None:
        """Print a status table, one row per entity type."""
        if not rows:
            self._console.print("[dim]No entity types configured[/dim]")
            return

        table = Table(title="Replica Status", show_header=True, header_style="bold")
        table.add_column("Type", style="cyan")
        table.add_column("Last Sync")
        table.add_column("Age", justify="right")
        table.add_column("Threshold", justify="right")
        table.add_column("State", justify="center")
        table.add_column("Records", justify="right")
        table.add_column("Pending", justify="right")

        for row in rows:
            if not row.enabled:
                state = "[dim]disabled[/dim]"
            elif row.stale:
                state = "[yellow]stale[/yellow]"
            else:
                state = "[green]fresh[/green]"
            pending = f"[yellow]{row.pending}[/yellow]" if row.pending else "0"
            table.add_row(
                row.entity_type,
                format_timestamp(row.last_sync_time),
                format_duration(row.age_ms),
                format_duration(row.threshold_ms),
                state,
                str(row.records),
                pending,
            )

        self._console.print()
        self._console.print(table)
        self._console.print()

    def print_records(self, entity_type: str, records: list[EntityRecord]) -> None:
        """Print the records of one entity type."""
        if not records:
            self._console.print(f"[dim]No {entity_type} in the local replica[/dim]")
            return

        table = Table(title=entity_type, show_header=True, header_style="bold")
        table.add_column("Id", style="cyan")
        table.add_column("Payload")
        table.add_column("Updated")
        if self.verbose or any(r.is_deleted for r in records):
            table.add_column("Deleted")

        for record in records:
            payload = ", ".join(f"{k}={v}" for k, v in record.payload.items())
            row = [record.id, payload, format_timestamp(record.updated_at)]
            if len(table.columns) == 4:
                row.append(format_timestamp(record.deleted_at) if record.is_deleted else "")
            table.add_row(*row)

        self._console.print(table)

    def print_outcome(self, outcome: SyncOutcome) -> None:
        """Print a one-line summary of a coordinator call."""
        name = f"[bold]{outcome.entity_type}[/bold]"
        status = outcome.status

        if status is OutcomeStatus.FRESH:
            self._console.print(f"[green]✓[/green] {name} - fresh, nothing to do")
        elif status is OutcomeStatus.BUSY:
            self._console.print(f"[dim]○[/dim] {name} - sync already in progress")
        elif status is OutcomeStatus.NOTHING_TO_UPLOAD:
            self._console.print(f"[green]✓[/green] {name} - no pending changes")
        elif status in (OutcomeStatus.SYNCED, OutcomeStatus.UPLOADED):
            mode = outcome.mode.value if outcome.mode else "?"
            extra = " [yellow](fell back to full)[/yellow]" if outcome.fell_back else ""
            self._console.print(f"[green]✓[/green] {name} - {mode}, {outcome.change_count} changes{extra}")
        elif status is OutcomeStatus.CONFLICT and outcome.conflict is not None:
            self._console.print(
                f"[yellow]⚠[/yellow] {name} - conflict: server cursor "
                f"{format_timestamp(outcome.conflict.server_cursor)} is ahead of "
                f"{format_timestamp(outcome.conflict.client_cursor)}; pending write discarded"
            )
        elif status is OutcomeStatus.REJECTED_STALE:
            self._console.print(f"[yellow]⚠[/yellow] {name} - replica stale, upload rejected; refresh and retry")
        else:
            kind = outcome.error_kind.value if outcome.error_kind else "unknown"
            self._console.print(f"[red]✗[/red] {name} - failed ({kind}): {outcome.error}")

        if outcome.refresh is not None:
            self._console.print("  [dim]refresh:[/dim]", end=" ")
            self.print_outcome(outcome.refresh)

    def print_summary(self, outcomes: list[SyncOutcome]) -> None:
        """Print a summary panel for several outcomes."""
        synced = sum(1 for o in outcomes if o.status in (OutcomeStatus.SYNCED, OutcomeStatus.UPLOADED))
        changes = sum(o.change_count for o in outcomes)
        conflicts = sum(1 for o in outcomes if o.status is OutcomeStatus.CONFLICT)
        failed = sum(1 for o in outcomes if o.status is OutcomeStatus.FAILED)
        ok = failed == 0

        self._console.print(
            Panel(
                f"{'[green]Sync completed[/green]' if ok else '[red]Sync completed with errors[/red]'}\n"
                f"Types: {synced}/{len(outcomes)} synced\n"
                f"Changes: {changes}, {conflicts} conflicts, {failed} errors",
                title="Summary",
                border_style="red" if not ok else ("yellow" if conflicts else "green"),
            )
        )


class ConsoleObserver(SyncObserver):
    """Renders coordinator events as they happen."""

    def __init__(self, console: Console):
        self.console = console

    def sync_started(self, entity_type: str, mode: SyncMode) -> None:
        if self.console.verbose:
            self.console.print(f"[dim]… {entity_type}: {mode.value} started[/dim]")

    def sync_completed(self, entity_type: str, mode: SyncMode, change_count: int) -> None:
        if self.console.verbose:
            self.console.print(f"[dim]… {entity_type}: {mode.value} done, {change_count} changes[/dim]")

    def sync_conflict(self, entity_type: str, server_cursor: int, client_cursor: Optional[int]) -> None:
        self.console.print_warning(
            f"{entity_type}: server moved on at {format_timestamp(server_cursor)}, "
            f"local knowledge from {format_timestamp(client_cursor)}"
        )

    def sync_error(self, entity_type: str, error_kind: ErrorKind) -> None:
        if error_kind is ErrorKind.AUTH:
            self.console.print_error(f"{entity_type}: authentication rejected, sign in again")
        elif self.console.verbose:
            self.console.print_warning(f"{entity_type}: {error_kind.value} error")
