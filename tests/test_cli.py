# tests/test_cli.py
import pytest
from fastapi.testclient import TestClient
from typer.testing import CliRunner

from mcp_ledger.cli import config, utils_cli
from mcp_ledger.cli.main_cli import app as cli_app
from mcp_ledger.main import app

runner = CliRunner()


@pytest.fixture
def gateway(monkeypatch):
    """Route the CLI's HTTP calls into the application in-process."""
    client = TestClient(app)
    monkeypatch.setattr(config, "LEDGER_CLI_API_BASE_URL", "http://ledger.test")
    monkeypatch.setattr(config, "LEDGER_CLI_ADMIN_API_KEY", "test-admin-key")

    def fake_request(method, url, json=None, params=None, headers=None, timeout=None):
        return client.request(method, url.replace("http://ledger.test", ""), json=json, params=params, headers=headers)

    monkeypatch.setattr(utils_cli.requests, "request", fake_request)
    return client


def test_generate_secret():
    result = runner.invoke(cli_app, ["utils", "generate-secret", "--bytes", "32"])
    assert result.exit_code == 0
    assert len(result.stdout.strip()) >= 43


def test_set_level_and_show(gateway, user):
    result = runner.invoke(cli_app, ["admin", "permissions", "set-level", user.user_id, "2"])
    assert result.exit_code == 0, result.stdout
    assert '"permission_level": 2' in result.stdout

    result = runner.invoke(cli_app, ["admin", "permissions", "show", user.user_id])
    assert result.exit_code == 0
    assert "Approve and update" in result.stdout


def test_level_out_of_range_is_rejected_locally(gateway, user):
    result = runner.invoke(cli_app, ["admin", "permissions", "set-level", user.user_id, "5"])
    assert result.exit_code != 0


def test_api_error_exits_non_zero(gateway):
    result = runner.invoke(cli_app, ["admin", "permissions", "show", "nobody"])
    assert result.exit_code == 1
    assert "Expected status 200, got 404" in result.stdout


def test_wrong_admin_key_exits_non_zero(gateway, monkeypatch):
    monkeypatch.setattr(config, "LEDGER_CLI_ADMIN_API_KEY", "wrong")
    result = runner.invoke(cli_app, ["admin", "users", "list"])
    assert result.exit_code == 1
