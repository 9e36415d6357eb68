"""Rich output formatting for the headshot CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from headshot_engine.models.generation import Generation
    from headshot_engine.models.usage import CreditStats, LedgerEntry, UsageSnapshot
    from headshot_engine.sweeper import SweepReport


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    "completed": "green",
    "failed": "red",
    "processing": "yellow",
    "queued": "dim",
}


def _coloured_status(status: str) -> str:
    """Return a Rich markup string with the status colour-coded."""
    colour = _STATUS_COLOURS.get(status, "white")
    return f"[{colour}]{status}[/{colour}]"


def _limit_text(value: int | None) -> str:
    return "unlimited" if value is None else str(value)


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


def display_usage(console: Console, user_id: str, snapshot: UsageSnapshot) -> None:
    """Render a user's current allowance.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    user_id:
        The user the snapshot belongs to.
    snapshot:
        Read-only allowance view from the usage guard.
    """
    lines = [
        f"[bold]User:[/bold]      {user_id}",
        f"[bold]Tier:[/bold]      {snapshot.tier.value}",
        f"[bold]Used:[/bold]      {snapshot.used}",
        f"[bold]Limit:[/bold]     {_limit_text(snapshot.limit)}",
        f"[bold]Remaining:[/bold] {_limit_text(snapshot.remaining)}",
    ]
    if snapshot.reset_date is not None:
        lines.append(f"[bold]Resets:[/bold]    {snapshot.reset_date.isoformat()}")
    if snapshot.credits is not None:
        lines.append(f"[bold]Credits:[/bold]   {snapshot.credits}")

    border = "red" if snapshot.remaining == 0 else "blue"
    console.print(Panel("\n".join(lines), title="Usage", border_style=border))

    if snapshot.message:
        console.print(f"[dim]{snapshot.message}[/dim]")
    if snapshot.show_upgrade and snapshot.recommended_tier is not None:
        console.print(f"[yellow]Consider upgrading to {snapshot.recommended_tier.value}.[/yellow]")


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------


def display_credit_history(console: Console, user_id: str, stats: CreditStats, entries: list[LedgerEntry]) -> None:
    """Render the credit balance followed by a ledger table."""
    console.print(
        Panel(
            "\n".join(
                [
                    f"[bold]Balance:[/bold]      {stats.current_balance}",
                    f"[bold]Purchased:[/bold]    {stats.total_purchased}",
                    f"[bold]Used:[/bold]         {stats.total_used}",
                    f"[bold]Transactions:[/bold] {stats.transaction_count}",
                ]
            ),
            title=f"Credits: {user_id}",
            border_style="blue",
        )
    )

    if not entries:
        console.print("[dim]No ledger entries.[/dim]")
        return

    table = Table(title="Ledger (newest first)")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Type")
    table.add_column("Delta", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Description")
    table.add_column("Created")

    for entry in entries:
        delta_style = "green" if entry.delta > 0 else "red"
        table.add_row(
            str(entry.id),
            entry.entry_type.value,
            f"[{delta_style}]{entry.delta:+d}[/{delta_style}]",
            str(entry.balance_after),
            entry.description,
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Generations
# ---------------------------------------------------------------------------


def display_generation(console: Console, generation: Generation) -> None:
    """Render one generation's state."""
    lines = [
        f"[bold]ID:[/bold]       {generation.id}",
        f"[bold]User:[/bold]     {generation.user_id}",
        f"[bold]Status:[/bold]   {_coloured_status(generation.status.value)}",
        f"[bold]Provider:[/bold] {generation.provider.value if generation.provider else '(none)'}",
        f"[bold]Job:[/bold]      {generation.provider_job_id or '(none)'}",
        f"[bold]Created:[/bold]  {generation.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    if generation.result_url:
        lines.append(f"[bold]Result:[/bold]   {generation.result_url}")
    if generation.error_message:
        lines.append(f"[bold]Error:[/bold]    [red]{generation.error_message}[/red]")
    console.print(Panel("\n".join(lines), title="Generation", border_style="blue"))


def display_sweep_report(console: Console, report: SweepReport) -> None:
    """Render the counts from one stale generation sweep."""
    table = Table(title="Stale Generation Sweep")
    table.add_column("Examined", justify="right")
    table.add_column("Reconciled", justify="right", style="green")
    table.add_column("Expired", justify="right", style="red")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_row(str(report.examined), str(report.reconciled), str(report.expired), str(report.skipped))
    console.print(table)
