"""Tests for timestamps, validation and the command-line interface."""

from datetime import datetime, timezone

import pytest

from kubewake import cli
from kubewake.exceptions import ConfigurationError, InvalidCapacityError
from kubewake.models import EngineConfig
from kubewake.timestamps import format_age, parse_timestamp, timestamp_seconds
from kubewake.validation import (
    validate_backend_url, validate_capacity, validate_host, validate_interval,
    validate_port, validate_stream_url
)

NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class TestTimestamps:
    @pytest.mark.parametrize("ts,expected", [
        ("2024-01-15T11:59:48Z", "12s"),
        ("2024-01-15T11:56:00Z", "4m"),
        ("2024-01-15T09:00:00Z", "3h"),
        ("2024-01-13T11:00:00Z", "2d"),
        ("2024-01-15T12:00:00Z", "0s"),
        ("2024-01-15T12:05:00Z", "0s"),
        ("", ""),
        ("yesterday", ""),
    ])
    def test_format_age(self, ts, expected) -> None:
        assert format_age(ts, NOW) == expected

    def test_parse_accepts_offsets_and_naive(self) -> None:
        assert parse_timestamp("2024-01-15T13:00:00+01:00") == NOW
        assert parse_timestamp("2024-01-15T12:00:00") == NOW
        assert parse_timestamp(None) is None

    def test_unparseable_sorts_as_epoch(self) -> None:
        assert timestamp_seconds("garbage") == 0.0
        assert timestamp_seconds("2024-01-15T12:00:00Z") == NOW.timestamp()


class TestValidation:
    def test_port(self) -> None:
        assert validate_port(8090) == 8090
        for bad in (0, 70000, -1, True):
            with pytest.raises(ConfigurationError):
                validate_port(bad)

    def test_host(self) -> None:
        assert validate_host("  0.0.0.0 ") == "0.0.0.0"
        with pytest.raises(ConfigurationError):
            validate_host("   ")
        with pytest.raises(ConfigurationError):
            validate_host("a" * 254)

    def test_interval(self) -> None:
        assert validate_interval(5) == 5.0
        with pytest.raises(ConfigurationError):
            validate_interval(0)
        with pytest.raises(ConfigurationError):
            validate_interval(0.5, "Poll interval", minimum=1.0)

    def test_capacity(self) -> None:
        assert validate_capacity(10) == 10
        with pytest.raises(InvalidCapacityError):
            validate_capacity(0)

    def test_urls(self) -> None:
        assert validate_backend_url("https://dash.example.com/") == "https://dash.example.com"
        assert validate_stream_url("wss://dash.example.com/ws") == "wss://dash.example.com/ws"
        for bad in ("", "dash.example.com", "ftp://x"):
            with pytest.raises(ConfigurationError):
                validate_backend_url(bad)
        with pytest.raises(ConfigurationError):
            validate_stream_url("http://dash.example.com/ws")


class TestStreamUrl:
    @pytest.mark.parametrize("backend,expected", [
        ("http://localhost:8080", "ws://localhost:8080/api/v1/events/ws"),
        ("https://dash.example.com/", "wss://dash.example.com/api/v1/events/ws"),
    ])
    def test_derived_from_backend(self, backend, expected) -> None:
        assert EngineConfig(backend_url=backend).resolved_stream_url() == expected

    def test_explicit_url_wins(self) -> None:
        config = EngineConfig(stream_url="ws://other:9000/stream")
        assert config.resolved_stream_url() == "ws://other:9000/stream"


class TestCli:
    def test_defaults(self, monkeypatch) -> None:
        for name in ("KUBEWAKE_HOST", "KUBEWAKE_PORT", "KUBEWAKE_BACKEND_URL"):
            monkeypatch.delenv(name, raising=False)
        config = cli.build_config(cli.build_parser().parse_args(["serve"]))
        assert config.host == "localhost"
        assert config.port == 8090
        assert config.engine.backend_url == "http://localhost:8080"
        assert config.engine.stream
        assert config.engine.reconnect_interval == 5.0
        assert not config.use_kubeconfig

    def test_environment_defaults(self, monkeypatch) -> None:
        monkeypatch.setenv("KUBEWAKE_PORT", "9100")
        monkeypatch.setenv("KUBEWAKE_BACKEND_URL", "https://dash.example.com")
        config = cli.build_config(cli.build_parser().parse_args(["serve"]))
        assert config.port == 9100
        assert config.engine.backend_url == "https://dash.example.com"

    def test_options(self) -> None:
        args = cli.build_parser().parse_args([
            "serve", "--no-stream", "--cluster", "prod", "--cluster", "staging",
            "--poll-interval", "15", "--max-events", "100", "--kubeconfig", "/tmp/kc",
        ])
        config = cli.build_config(args)
        assert not config.engine.stream
        assert config.engine.clusters == ("prod", "staging")
        assert config.engine.poll_interval == 15.0
        assert config.engine.max_events_per_cluster == 100
        assert config.use_kubeconfig
        assert config.kubeconfig == "/tmp/kc"

    def test_invalid_config_exits_2(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc:
            cli.main(["serve", "--port", "0"])
        assert exc.value.code == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_server_error_exits_1(self, monkeypatch, capsys) -> None:
        async def failing_server(config):
            raise ConfigurationError("bad kubeconfig")

        monkeypatch.setattr(cli, "run_server", failing_server)
        with pytest.raises(SystemExit) as exc:
            cli.main(["serve", "--kubeconfig", "/nope"])
        assert exc.value.code == 1
        assert "bad kubeconfig" in capsys.readouterr().err

    def test_unexpected_error_exits_1(self, monkeypatch, capsys) -> None:
        async def failing_server(config):
            raise OSError("address already in use")

        monkeypatch.setattr(cli, "run_server", failing_server)
        with pytest.raises(SystemExit) as exc:
            cli.main(["serve"])
        assert exc.value.code == 1
        assert "Server error: address already in use" in capsys.readouterr().err
