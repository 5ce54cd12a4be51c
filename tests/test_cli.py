"""CLI tests — commands that need no running server."""

from click.testing import CliRunner

from quickserv.auth.jwt import verify_token
from quickserv.cli.main import _ws_url, main


def test_token_command_prints_verifiable_token():
    result = CliRunner().invoke(main, ["token", "42", "--role", "provider"])
    assert result.exit_code == 0
    payload = verify_token(result.output.strip())
    assert payload["sub"] == "42"
    assert payload["role"] == "provider"


def test_token_command_rejects_unknown_role():
    result = CliRunner().invoke(main, ["token", "42", "--role", "root"])
    assert result.exit_code != 0


def test_read_needs_id_or_all():
    result = CliRunner().invoke(main, ["read", "--token", "x"])
    assert result.exit_code == 2
    assert "NOTIFICATION_ID or --all" in result.output


def test_commands_need_a_token(monkeypatch):
    monkeypatch.delenv("QUICKSERV_TOKEN", raising=False)
    result = CliRunner().invoke(main, ["notifications"])
    assert result.exit_code == 1


def test_ws_url_follows_api_url(monkeypatch):
    monkeypatch.setenv("QUICKSERV_API_URL", "https://api.quickserv.example/")
    assert _ws_url() == "wss://api.quickserv.example/ws"
    monkeypatch.setenv("QUICKSERV_API_URL", "http://localhost:8000")
    assert _ws_url() == "ws://localhost:8000/ws"
