from __future__ import annotations

import asyncio
import datetime as dt
import logging
from unittest.mock import AsyncMock, patch

import httpx
import pytest

import main
from entrywatch.config import Settings
from entrywatch.domain import ConfigError, DateRange, FatalSinkError


def _settings(**overrides) -> Settings:
    values = dict(
        date_range=DateRange(dt.date(2025, 1, 1), dt.date(2025, 1, 3)),
        search_states=("CA",),
        api_rate_limit_seconds=0,
        max_concurrent_fetches=2,
        max_retries=1,
        fetch_interval_minutes=30,
    )
    values.update(overrides)
    return Settings(**values)


def _args(once: bool):
    return type("Args", (), {"once": once, "env_file": None})()


def test_main_once_forces_single_cycle() -> None:
    settings = _settings()

    with (
        patch("main.load_settings", return_value=settings),
        patch("main.drive", new_callable=AsyncMock) as drive,
        patch("main.argparse.ArgumentParser.parse_args", return_value=_args(once=True)),
    ):
        assert main.main() == 0

    drive.assert_awaited_once()
    args = drive.await_args.args
    assert args[1] == settings.date_range
    assert args[2].region_codes == frozenset({"CA"})
    assert args[3] == 2
    assert args[4] == 0
    assert drive.await_args.kwargs["fatal_sink_errors"] is False


def test_main_uses_configured_interval_without_once() -> None:
    with (
        patch("main.load_settings", return_value=_settings()),
        patch("main.drive", new_callable=AsyncMock) as drive,
        patch("main.argparse.ArgumentParser.parse_args", return_value=_args(once=False)),
    ):
        assert main.main() == 0

    assert drive.await_args.args[4] == 30


def test_main_returns_2_on_config_error() -> None:
    with (
        patch("main.load_settings", side_effect=ConfigError("SEARCH_STATES is empty")),
        patch("main.drive", new_callable=AsyncMock) as drive,
        patch("main.argparse.ArgumentParser.parse_args", return_value=_args(once=True)),
    ):
        assert main.main() == 2

    drive.assert_not_awaited()


def test_main_reraises_fatal_errors() -> None:
    with (
        patch("main.load_settings", return_value=_settings()),
        patch("main.drive", new_callable=AsyncMock, side_effect=FatalSinkError("token revoked")),
        patch("main.argparse.ArgumentParser.parse_args", return_value=_args(once=False)),
    ):
        with pytest.raises(FatalSinkError):
            main.main()


def test_run_wires_real_components_end_to_end(tmp_path) -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        day = request.url.params["timestamp"]
        calls.append(day)
        if day == "2025-01-01":
            return httpx.Response(
                200,
                json=[
                    {"id": 1, "name": "A", "state": "CA", "city": "X", "address": "1 St", "postalCode": "1"},
                    {"id": 2, "name": "B", "state": "NY", "city": "Y", "address": "2 St", "postalCode": "2"},
                ],
            )
        if day == "2025-01-02":
            return httpx.Response(200, json=[])
        return httpx.Response(503)

    real_client = httpx.AsyncClient
    out = tmp_path / "appointments.csv"
    settings = _settings(csv_path=str(out), retry_backoff_seconds=0)

    with patch(
        "main.httpx.AsyncClient",
        side_effect=lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    ):
        asyncio.run(main.run(settings, once=True))

    lines = out.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert lines[1].startswith("2025-01-01,1,A,CA")
    # Date 3 fails twice (max_retries=1), the others once each.
    assert sorted(calls) == ["2025-01-01", "2025-01-02", "2025-01-03", "2025-01-03"]


def test_unknown_log_level_falls_back_to_info(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "verbose")

    with patch("main.logging.basicConfig") as basic_config:
        main._setup_logging()

    assert basic_config.call_args.kwargs["level"] == logging.INFO


def test_known_log_level_is_used(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")

    with patch("main.logging.basicConfig") as basic_config:
        main._setup_logging()

    assert basic_config.call_args.kwargs["level"] == logging.DEBUG
