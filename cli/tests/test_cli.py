"""Tests for cli/cli/app.py -- the headshot operator CLI.

Uses typer.testing.CliRunner to invoke each command against a file-backed
SQLite database in a temporary directory, so every command exercises the
real engine without any external service.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from headshot_engine.state.database import session_scope
from headshot_engine.state.repository import GenerationRepository
from headshot_engine.state.sqlite_adapter import get_local_engine
from sqlalchemy.ext.asyncio import async_sessionmaker
from typer.testing import CliRunner

from cli.app import app

runner = CliRunner()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "state.db"


@pytest.fixture()
def db(db_path: Path) -> list[str]:
    """Return the global options pointing at an initialised database."""
    options = ["--database-url", f"sqlite+aiosqlite:///{db_path}"]
    result = runner.invoke(app, [*options, "init-db"])
    assert result.exit_code == 0, result.output
    return options


def _json(db: list[str], *args: str) -> dict:
    result = runner.invoke(app, [*db, "--json", *args])
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def _create_generation(db_path: Path) -> str:
    async def _create() -> str:
        engine = get_local_engine(db_path)
        try:
            async with session_scope(async_sessionmaker(engine, expire_on_commit=False)) as session:
                row = await GenerationRepository(session).create(
                    user_id="user-1", upload_id="upload-1", model="sdxl", style="corporate"
                )
                return row.id
        finally:
            await engine.dispose()

    return asyncio.run(_create())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestHelp:
    def test_lists_commands(self) -> None:
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("init-db", "set-tier", "usage", "credits", "grant", "generation", "sweep", "serve"):
            assert command in result.output


class TestInitDb:
    def test_creates_database_file(self, db_path: Path) -> None:
        result = runner.invoke(app, ["--database-url", f"sqlite+aiosqlite:///{db_path}", "init-db"])

        assert result.exit_code == 0
        assert "Database tables ensured" in result.output
        assert db_path.exists()

    def test_is_idempotent(self, db: list[str]) -> None:
        result = runner.invoke(app, [*db, "init-db"])
        assert result.exit_code == 0


class TestTiersAndUsage:
    """set-tier and usage."""

    def test_new_free_user_has_full_allowance(self, db: list[str]) -> None:
        assert runner.invoke(app, [*db, "set-tier", "user-1", "free"]).exit_code == 0

        data = _json(db, "usage", "user-1")

        assert data["user_id"] == "user-1"
        assert data["tier"] == "free"
        assert data["used"] == 0
        assert data["limit"] == 3
        assert data["remaining"] == 3

    def test_human_output(self, db: list[str]) -> None:
        runner.invoke(app, [*db, "set-tier", "user-1", "pro"])

        result = runner.invoke(app, [*db, "usage", "user-1"])

        assert result.exit_code == 0
        assert "pro" in result.output
        assert "Remaining" in result.output

    def test_changing_tier_overwrites(self, db: list[str]) -> None:
        runner.invoke(app, [*db, "set-tier", "user-1", "free"])
        runner.invoke(app, [*db, "set-tier", "user-1", "enterprise"])

        assert _json(db, "usage", "user-1")["tier"] == "enterprise"

    def test_unknown_tier_is_rejected(self, db: list[str]) -> None:
        result = runner.invoke(app, [*db, "set-tier", "user-1", "platinum"])
        assert result.exit_code == 2

    def test_unknown_user_exits_3(self, db: list[str]) -> None:
        result = runner.invoke(app, [*db, "usage", "nobody"])

        assert result.exit_code == 3
        assert "No profile found" in result.output


class TestCredits:
    """grant and credits."""

    def test_bonus_grant_recorded(self, db: list[str]) -> None:
        granted = _json(db, "grant", "buyer", "25")
        assert granted == {"user_id": "buyer", "granted": 25, "balance": 25}

        data = _json(db, "credits", "buyer")

        assert data["current_balance"] == 25
        [entry] = data["entries"]
        assert entry["entry_type"] == "bonus"
        assert entry["description"] == "Manual credit grant"
        assert entry["metadata"] == {"source": "cli"}

    def test_purchase_grant_counts_as_purchased(self, db: list[str]) -> None:
        _json(db, "grant", "buyer", "10", "--purchase", "-d", "Invoice 42")

        data = _json(db, "credits", "buyer")

        assert data["total_purchased"] == 10
        assert data["entries"][0]["entry_type"] == "purchase"
        assert data["entries"][0]["description"] == "Invoice 42"

    def test_grants_accumulate(self, db: list[str]) -> None:
        _json(db, "grant", "buyer", "10")
        second = _json(db, "grant", "buyer", "5")

        assert second["balance"] == 15

    def test_non_positive_amount_rejected(self, db: list[str]) -> None:
        result = runner.invoke(app, [*db, "grant", "buyer", "0"])
        assert result.exit_code == 2

    def test_human_output_shows_ledger(self, db: list[str]) -> None:
        runner.invoke(app, [*db, "grant", "buyer", "3"])

        result = runner.invoke(app, [*db, "credits", "buyer"])

        assert result.exit_code == 0
        assert "Ledger" in result.output
        assert "+3" in result.output


class TestGeneration:
    def test_shows_generation(self, db: list[str], db_path: Path) -> None:
        generation_id = _create_generation(db_path)

        data = _json(db, "generation", generation_id)

        assert data["id"] == generation_id
        assert data["status"] == "queued"
        assert data["provider"] is None

    def test_unknown_generation_exits_3(self, db: list[str]) -> None:
        result = runner.invoke(app, [*db, "generation", "missing"])

        assert result.exit_code == 3
        assert "not found" in result.output


class TestSweep:
    def test_empty_store_reports_nothing(self, db: list[str]) -> None:
        data = _json(db, "sweep", "--max-age-minutes", "30")
        assert data == {"examined": 0, "reconciled": 0, "expired": 0, "skipped": 0}
