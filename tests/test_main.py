"""Tests for the CLI entry point."""

import argparse
import logging
from unittest.mock import patch

import pytest

from server_status_monitor.__main__ import (
    APP_NAME,
    EXIT_CONFIG_ERROR,
    EXIT_SUCCESS,
    configure_logging,
    create_parser,
    main,
    parse_endpoint,
    print_banner,
    run_config_check,
    validate_config,
)
from server_status_monitor.config import clear_settings_cache


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Point the store at a temp file and clear channel credentials."""
    for name in (
        "LOG_LEVEL",
        "HTTP_PORT",
        "TELEGRAM_BOT_TOKEN",
        "WHATSAPP_GATEWAY_URL",
        "SMTP_HOST",
        "SMTP_USER",
        "REDIS_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestParseEndpoint:
    """Tests for HOST:PORT parsing."""

    def test_valid_endpoint(self):
        assert parse_endpoint("play.example.net:19132") == ("play.example.net", 19132)

    def test_ipv6_style_keeps_last_colon(self):
        assert parse_endpoint("::1:25565") == ("::1", 25565)

    @pytest.mark.parametrize("value", ["play.example.net", ":19132", "host:abc", "host:70000"])
    def test_invalid_endpoint(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_endpoint(value)


class TestCreateParser:
    """Tests for argument parser creation."""

    def test_parser_has_config_check(self):
        parser = create_parser()
        args = parser.parse_args(["--config-check"])
        assert args.config_check is True

    def test_parser_has_log_level(self):
        parser = create_parser()
        args = parser.parse_args(["--log-level", "DEBUG"])
        assert args.log_level == "DEBUG"

    def test_parser_has_dry_run(self):
        parser = create_parser()
        args = parser.parse_args(["--dry-run"])
        assert args.dry_run is True

    def test_parser_has_http_port(self):
        parser = create_parser()
        args = parser.parse_args(["--http-port", "9090"])
        assert args.http_port == 9090

    def test_parser_add_target(self):
        parser = create_parser()
        args = parser.parse_args(
            ["--add-target", "play.example.net:19132", "--name", "Lobby", "--variant", "java"]
        )
        assert args.add_target == ("play.example.net", 19132)
        assert args.name == "Lobby"
        assert args.variant == "java"

    def test_parser_defaults(self):
        parser = create_parser()
        args = parser.parse_args([])
        assert args.config_check is False
        assert args.check_once is False
        assert args.log_level is None
        assert args.dry_run is False
        assert args.http_port is None
        assert args.add_target is None
        assert args.variant == "bedrock"


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_logging_info(self):
        configure_logging("INFO")
        assert logging.getLogger().level == logging.INFO

    def test_configure_logging_debug(self):
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_noisy_libraries_quieted(self):
        configure_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING


class TestPrintBanner:
    """Tests for banner printing."""

    def test_banner_contains_app_name(self, capsys):
        print_banner()
        captured = capsys.readouterr()
        assert APP_NAME in captured.out

    def test_banner_contains_version(self, capsys):
        print_banner()
        captured = capsys.readouterr()
        assert "v0.1.0" in captured.out


class TestValidateConfig:
    """Tests for configuration validation."""

    def test_validate_config_success(self):
        assert validate_config() is not None

    def test_validate_config_failure(self, monkeypatch, capsys):
        monkeypatch.setenv("LOG_LEVEL", "TRACE")

        assert validate_config() is None

        captured = capsys.readouterr()
        assert "Configuration validation failed" in captured.err


class TestRunConfigCheck:
    """Tests for config check mode."""

    def test_config_check_prints_summary(self, capsys):
        settings = validate_config()
        assert settings is not None

        assert run_config_check(settings) == EXIT_SUCCESS

        captured = capsys.readouterr()
        assert "Configuration is valid!" in captured.out
        assert "Configuration:" in captured.out
        assert "no notification channel is configured" in captured.out

    def test_config_check_without_warning_when_channel_set(self, monkeypatch, capsys):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        settings = validate_config()
        assert settings is not None

        run_config_check(settings)

        captured = capsys.readouterr()
        assert "no notification channel" not in captured.out
        assert "123:abc" not in captured.out


class TestMain:
    """Tests for main entry point."""

    def test_main_with_config_check(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["--config-check"])

        assert exc_info.value.code == EXIT_SUCCESS

    def test_main_with_invalid_config(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "TRACE")

        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == EXIT_CONFIG_ERROR

    def test_main_rejects_invalid_http_port(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["--http-port", "0"])

        assert exc_info.value.code == EXIT_CONFIG_ERROR

    @patch("server_status_monitor.__main__.run_monitor")
    @patch("server_status_monitor.__main__.asyncio.run")
    def test_main_runs_monitor(self, mock_asyncio_run, mock_run_monitor):
        mock_asyncio_run.return_value = EXIT_SUCCESS

        with pytest.raises(SystemExit) as exc_info:
            main(["--dry-run"])

        assert exc_info.value.code == EXIT_SUCCESS
        mock_asyncio_run.assert_called_once()
        settings = mock_run_monitor.call_args.args[0]
        assert settings.dry_run is True

    def test_main_adds_target(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--add-target", "play.example.net:19132", "--name", "Lobby"])

        assert exc_info.value.code == EXIT_SUCCESS
        captured = capsys.readouterr()
        assert "Added target 1: Lobby" in captured.out


class TestIntegration:
    """Integration tests for CLI invocation."""

    def test_cli_help_option(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["-h"])

        assert exc_info.value.code == 0
        captured = capsys.readouterr()
        assert "server-status-monitor" in captured.out
        assert "--config-check" in captured.out
        assert "--add-target" in captured.out

    def test_cli_version_option(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert "0.1.0" in capsys.readouterr().out

    def test_cli_invalid_log_level(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--log-level", "INVALID"])

        assert exc_info.value.code != 0
        assert "invalid choice" in capsys.readouterr().err
