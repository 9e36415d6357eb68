"""Headshot CLI application -- Typer-based operator interface.

Provides commands for schema setup, tier and credit administration,
usage inspection, generation lookup, stale generation sweeping and
running the API server locally.  Human-readable output goes to *stderr*
via Rich; ``--json`` writes machine-readable results to *stdout* so that
scripts can compose cleanly.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import AsyncGenerator, Coroutine
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import httpx
import typer
from headshot_engine.config import EngineSettings, load_engine_settings
from headshot_engine.credits import CreditsLedger
from headshot_engine.guard import UsageGuard
from headshot_engine.models.tiers import Tier
from headshot_engine.models.usage import LedgerEntryType
from headshot_engine.orchestrator import to_generation
from headshot_engine.providers import build_adapters
from headshot_engine.state.database import get_engine, session_scope
from headshot_engine.state.repository import GenerationRepository, ProfileRepository
from headshot_engine.state.sqlite_adapter import create_local_tables
from headshot_engine.sweeper import StaleGenerationSweeper
from headshot_engine.webhooks import WebhookGateway, build_verifiers
from pydantic import ValidationError
from rich.console import Console
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cli.display import display_credit_history, display_generation, display_sweep_report, display_usage

T = TypeVar("T")

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="headshot",
    help="Headshot generation orchestrator - administration and local serving.",
    no_args_is_help=True,
)
console = Console(stderr=True)

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_database_url: str | None = None


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        help="Database URL override (defaults to HEADSHOT_DATABASE_URL).",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output, _database_url  # noqa: PLW0603
    _json_output = json_mode
    _database_url = database_url


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings() -> EngineSettings:
    """Load engine settings, applying the ``--database-url`` override."""
    overrides: dict[str, Any] = {"database_url": _database_url} if _database_url else {}
    try:
        return load_engine_settings(**overrides)
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(code=3) from exc


@asynccontextmanager
async def _open_database(settings: EngineSettings) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Yield a session factory and dispose the engine afterwards."""
    engine = get_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion, converting database errors into exit code 3."""
    try:
        return asyncio.run(coro)
    except SQLAlchemyError as exc:
        console.print(f"[red]Database error: {exc}[/red]")
        raise typer.Exit(code=3) from exc


def _emit_json(data: Any) -> None:
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


# ---------------------------------------------------------------------------
# init-db
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db() -> None:
    """Create all tables if they do not exist.

    Intended for local SQLite databases and development.  Production
    PostgreSQL schemas are managed with Alembic.
    """
    settings = _settings()

    async def _create() -> None:
        engine = get_engine(settings.database_url)
        try:
            await create_local_tables(engine)
        finally:
            await engine.dispose()

    _run(_create())
    console.print("[green]✓[/green] Database tables ensured")


# ---------------------------------------------------------------------------
# set-tier
# ---------------------------------------------------------------------------


@app.command("set-tier")
def set_tier(
    user_id: str = typer.Argument(..., help="User identifier."),
    tier: Tier = typer.Argument(..., help="Subscription tier to assign."),
) -> None:
    """Create a profile or change its subscription tier."""
    settings = _settings()

    async def _upsert() -> None:
        async with _open_database(settings) as factory, session_scope(factory) as session:
            await ProfileRepository(session).upsert(user_id, tier.value)

    _run(_upsert())

    if _json_output:
        _emit_json({"user_id": user_id, "tier": tier.value})
    else:
        console.print(f"User [bold]{user_id}[/bold] is now on the [cyan]{tier.value}[/cyan] tier")


# ---------------------------------------------------------------------------
# usage
# ---------------------------------------------------------------------------


@app.command()
def usage(user_id: str = typer.Argument(..., help="User identifier.")) -> None:
    """Show a user's tier, consumption and remaining allowance."""
    settings = _settings()

    async def _snapshot():
        async with _open_database(settings) as factory, session_scope(factory) as session:
            raw_tier = await ProfileRepository(session).get_tier(user_id)
            if raw_tier is None:
                return None
            return await UsageGuard(session, settings.tier_policies()).snapshot(user_id, Tier(raw_tier))

    snapshot = _run(_snapshot())
    if snapshot is None:
        console.print(f"[red]No profile found for user '{user_id}'.[/red]")
        raise typer.Exit(code=3)

    if _json_output:
        _emit_json({"user_id": user_id, **snapshot.model_dump(mode="json")})
    else:
        display_usage(console, user_id, snapshot)


# ---------------------------------------------------------------------------
# credits / grant
# ---------------------------------------------------------------------------


@app.command()
def credits(
    user_id: str = typer.Argument(..., help="User identifier."),
    limit: int = typer.Option(20, "--limit", help="Maximum number of ledger entries to show.", min=1, max=500),
) -> None:
    """Show a user's credit balance and recent ledger entries."""
    settings = _settings()

    async def _load():
        async with _open_database(settings) as factory, session_scope(factory) as session:
            ledger = CreditsLedger(session)
            return await ledger.stats(user_id), await ledger.history(user_id, limit=limit)

    stats, entries = _run(_load())

    if _json_output:
        _emit_json(
            {
                "user_id": user_id,
                **stats.model_dump(mode="json"),
                "entries": [entry.model_dump(mode="json") for entry in entries],
            }
        )
    else:
        display_credit_history(console, user_id, stats, entries)


@app.command()
def grant(
    user_id: str = typer.Argument(..., help="User identifier."),
    amount: int = typer.Argument(..., help="Number of credits to add.", min=1),
    description: str = typer.Option("Manual credit grant", "--description", "-d", help="Ledger description."),
    purchase: bool = typer.Option(
        False,
        "--purchase/--bonus",
        help="Record the grant as a purchase instead of a bonus.",
    ),
) -> None:
    """Add credits to a user's balance."""
    settings = _settings()
    entry_type = LedgerEntryType.PURCHASE if purchase else LedgerEntryType.BONUS

    async def _grant():
        async with _open_database(settings) as factory, session_scope(factory) as session:
            return await CreditsLedger(session).grant(
                user_id,
                amount,
                description,
                entry_type=entry_type,
                metadata={"source": "cli"},
            )

    result = _run(_grant())
    if not result.success:
        console.print(f"[red]Grant failed: {result.error}[/red]")
        raise typer.Exit(code=3)

    if _json_output:
        _emit_json({"user_id": user_id, "granted": amount, "balance": result.balance})
    else:
        console.print(f"[green]✓[/green] Granted {amount} credits to [bold]{user_id}[/bold] (balance {result.balance})")


# ---------------------------------------------------------------------------
# generation
# ---------------------------------------------------------------------------


@app.command()
def generation(generation_id: str = typer.Argument(..., help="Generation identifier.")) -> None:
    """Show the current state of one generation."""
    settings = _settings()

    async def _load():
        async with _open_database(settings) as factory, session_scope(factory) as session:
            row = await GenerationRepository(session).get(generation_id)
            return to_generation(row) if row is not None else None

    found = _run(_load())
    if found is None:
        console.print(f"[red]Generation '{generation_id}' not found.[/red]")
        raise typer.Exit(code=3)

    if _json_output:
        _emit_json(found.model_dump(mode="json"))
    else:
        display_generation(console, found)


# ---------------------------------------------------------------------------
# sweep
# ---------------------------------------------------------------------------


@app.command()
def sweep(
    max_age_minutes: int | None = typer.Option(
        None,
        "--max-age-minutes",
        help="Treat non-terminal generations older than this as stale (defaults to configuration).",
        min=1,
    ),
    limit: int = typer.Option(100, "--limit", help="Maximum number of generations to examine.", min=1),
) -> None:
    """Reconcile or expire generations stuck in queued/processing.

    Each stale generation is first checked against its provider; those
    still without a terminal status are marked failed.
    """
    settings = _settings()

    async def _sweep():
        async with _open_database(settings) as factory, httpx.AsyncClient(
            timeout=settings.provider_timeout_seconds
        ) as http_client:
            adapters = build_adapters(settings, http_client)
            gateway = WebhookGateway(factory, build_verifiers(settings))
            sweeper = StaleGenerationSweeper(
                factory,
                gateway,
                adapters,
                max_age_minutes=max_age_minutes or settings.stale_generation_max_age_minutes,
            )
            return await sweeper.sweep(limit=limit)

    report = _run(_sweep())

    if _json_output:
        _emit_json(report.model_dump())
    else:
        display_sweep_report(console, report)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address."),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on."),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes (development only)."),
) -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    console.print(f"[green]✓[/green] API server starting on http://{host}:{port}")
    console.print(f"[green]✓[/green] OpenAPI docs at http://{host}:{port}/docs")
    console.print(f"[green]✓[/green] Readiness probe at http://{host}:{port}/ready")

    config = uvicorn.Config("api.main:app", host=host, port=port, reload=reload, log_level="info", access_log=False)
    uvicorn.Server(config).run()
