import pytest
from typer.testing import CliRunner

from inventory_ledger import database
from inventory_ledger.cli import app
from inventory_ledger.config import Settings, get_settings

runner = CliRunner()


@pytest.fixture(name="cli_env")
def cli_env_fixture(tmp_path, monkeypatch):  # type: ignore[no-untyped-def]
    monkeypatch.setenv("INVENTORY_LEDGER_DATABASE_URL", f"sqlite:///{tmp_path / 'data' / 'cli.db'}")
    monkeypatch.setenv("INVENTORY_LEDGER_LOG_LEVEL", "warning")
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_session_factory", None)
    get_settings.cache_clear()
    yield tmp_path
    if database._engine is not None:
        database._engine.dispose()
    get_settings.cache_clear()


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("INVENTORY_LEDGER_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("INVENTORY_LEDGER_STRICT_RESERVATIONS", "yes")
    monkeypatch.setenv("INVENTORY_LEDGER_MAX_PAGE_SIZE", "20")
    settings = Settings()
    assert settings.max_attempts == 7
    assert settings.strict_reservations is True
    assert settings.clamp_page_size(None) == settings.default_page_size
    assert settings.clamp_page_size(500) == 20


def test_database_path_for_sqlite_only() -> None:
    assert Settings(database_url="sqlite:///:memory:").database_path is None
    assert Settings(database_url="postgresql://db/inventory").database_path is None
    assert Settings(database_url="sqlite:////tmp/x.db").database_path.name == "x.db"


def test_cli_record_lifecycle(cli_env) -> None:
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0, result.output
    assert (cli_env / "data" / "cli.db").exists()

    result = runner.invoke(app, ["create-record", "SKU001", "--on-hand", "5", "--reorder-level", "2"])
    assert result.exit_code == 0, result.output
    assert "Created inventory record SKU001" in result.output

    result = runner.invoke(app, ["adjust", "SKU001", "3", "--reason", "purchase", "--reference", "PO-9"])
    assert result.exit_code == 0, result.output
    assert "on_hand=8" in result.output

    result = runner.invoke(app, ["adjust", "SKU001", "3", "--reason", "purchase", "--reference", "PO-9"])
    assert "(replayed)" in result.output

    result = runner.invoke(app, ["adjust", "SKU001", "--", "-50"])
    assert result.exit_code == 1
    assert "INSUFFICIENT_STOCK" in result.output

    result = runner.invoke(app, ["list-inventory"])
    assert result.exit_code == 0
    assert "SKU001" in result.output

    result = runner.invoke(app, ["reconcile"])
    assert result.exit_code == 0, result.output
    assert "SKU001" in result.output


def test_cli_reports_unknown_product(cli_env) -> None:
    result = runner.invoke(app, ["reconcile", "NOPE"])
    assert result.exit_code == 1
    assert "NOT_FOUND" in result.output
