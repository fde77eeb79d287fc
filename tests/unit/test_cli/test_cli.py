"""Tests for the command-line interface."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest

from termlink.cli import _status, build_executor, main, parse_args
from termlink.config.settings import LoggingConfig, Settings
from termlink.utils.logging import setup_logging


@pytest.fixture(autouse=True)
def no_proxy(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def package_logger():
    """The termlink logger, reset after the test."""
    logger = logging.getLogger("termlink")
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


class TestParseArgs:
    def test_serve(self) -> None:
        args = parse_args(["serve", "--port", "4000"])
        assert args.command == "serve"
        assert args.port == 4000
        assert args.host is None

    def test_connect_defaults(self) -> None:
        args = parse_args(["connect"])
        assert args.url is None
        assert args.mode is None
        assert args.exec_line is None

    def test_connect_exec(self) -> None:
        args = parse_args(["connect", "ws://h:1/", "--mode", "keypress", "--exec", "abc 1"])
        assert args.url == "ws://h:1/"
        assert args.mode == "keypress"
        assert args.exec_line == "abc 1"

    def test_run_keeps_remaining_arguments(self) -> None:
        args = parse_args(["-v", "run", "deploy", "--force", "x"])
        assert args.verbose is True
        assert args.args == ["deploy", "--force", "x"]

    def test_config_path(self) -> None:
        args = parse_args(["-c", "custom.yaml", "status"])
        assert args.config == Path("custom.yaml")

    def test_invalid_mode(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["connect", "--mode", "raw"])


class TestBuildExecutor:
    def test_extensions_and_help(self) -> None:
        settings = Settings()
        settings.commands.extensions = {"greet": "echo hi"}
        registry = build_executor(settings)
        assert registry.command_names == ["greet", "help"]
        assert "Runs: echo hi" in registry.render_help()


class TestStatus:
    def test_unreachable_server(self, free_port: int, capsys: pytest.CaptureFixture[str]) -> None:
        args = parse_args(["status", f"ws://127.0.0.1:{free_port}/"])
        assert _status(Settings(), args) == 1
        assert "not reachable" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_running_server(self, serve, capsys: pytest.CaptureFixture[str]) -> None:
        async with serve() as handle:
            args = parse_args(["status", handle.url])
            code = await asyncio.to_thread(_status, Settings(), args)

        assert code == 0
        out = capsys.readouterr().out
        assert "ok (0 session(s))" in out


class TestMain:
    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 0
        assert "usage: termlink" in capsys.readouterr().out

    def test_status_exit_code(
        self, package_logger, free_port: int, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        with pytest.raises(SystemExit) as exc_info:
            main(["status", f"ws://127.0.0.1:{free_port}/"])
        assert exc_info.value.code == 1


class TestSetupLogging:
    def test_configures_package_logger(self, package_logger, tmp_path: Path) -> None:
        log_file = tmp_path / "termlink.log"
        setup_logging(LoggingConfig(level="debug", file=str(log_file)))
        assert package_logger.level == logging.DEBUG
        assert len(package_logger.handlers) == 2

        setup_logging(LoggingConfig(level="WARNING"))
        assert package_logger.level == logging.WARNING
        assert len(package_logger.handlers) == 1
        assert "Logging initialized" in log_file.read_text()
