from __future__ import annotations

from typing import Any

from typer.testing import CliRunner

from scripts import run_server

runner = CliRunner()


def _capture_run(monkeypatch) -> list[tuple[str, dict[str, Any]]]:
    calls: list[tuple[str, dict[str, Any]]] = []

    def fake_run(app_path: str, **kwargs: Any) -> None:
        calls.append((app_path, kwargs))

    monkeypatch.setattr(run_server.uvicorn, "run", fake_run)
    return calls


def test_defaults_serve_screenshot_app(monkeypatch) -> None:
    for key in ("HOST", "PORT", "APP_MODULE", "SERVER_RELOAD", "SERVER_WORKERS", "SERVER_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    calls = _capture_run(monkeypatch)

    result = runner.invoke(run_server.app, [])

    assert result.exit_code == 0, result.output
    app_path, kwargs = calls[0]
    assert app_path == "screenshot_api.main:app"
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 3000
    assert kwargs["reload"] is False
    assert kwargs["workers"] == 1


def test_env_and_flags_override_defaults(monkeypatch) -> None:
    monkeypatch.setenv("PORT", "8123")
    monkeypatch.setenv("SERVER_LOG_LEVEL", "DEBUG")
    calls = _capture_run(monkeypatch)

    result = runner.invoke(run_server.app, ["--host", "127.0.0.1", "--reload"])

    assert result.exit_code == 0, result.output
    _, kwargs = calls[0]
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 8123
    assert kwargs["reload"] is True
    assert kwargs["log_level"] == "debug"


def test_invalid_port_env_is_reported(monkeypatch) -> None:
    monkeypatch.setenv("PORT", "not-a-port")
    _capture_run(monkeypatch)

    result = runner.invoke(run_server.app, [])

    assert result.exit_code != 0
