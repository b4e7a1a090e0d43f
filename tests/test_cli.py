"""Tests for the marketplace-escrow-sweep command."""

from __future__ import annotations

import json
import logging
import sys
from datetime import timedelta

import pytest
import structlog

from marketplace_escrow import cli
from marketplace_escrow.config import Settings
from marketplace_escrow.domain.exceptions import TransientStoreFailure
from marketplace_escrow.logging_config import setup_logging_from_settings
from marketplace_escrow.services.sweep_worker import ExpirySweepWorker
from tests.conftest import T0, WINDOW


async def _noop() -> None:
    return None


@pytest.fixture
def patched_cli(monkeypatch):
    monkeypatch.setattr(cli, "close_db", _noop)
    monkeypatch.setattr(cli, "setup_logging_from_settings", lambda settings, **kwargs: None)
    return monkeypatch


@pytest.fixture
def command_logging(capsys):
    """Configure logging the way ``cli.main`` does, then restore the root logger."""
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    setup_logging_from_settings(Settings(app_log_level="DEBUG"), stream=sys.stderr)
    yield
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)
    structlog.reset_defaults()


class TestSweepCommand:
    @pytest.mark.asyncio
    async def test_single_sweep_prints_result(
        self, patched_cli, command_logging, seed, session_factory, clock, ledger, capsys
    ) -> None:
        seeded = await seed()
        clock.set(T0 + WINDOW + timedelta(seconds=1))
        patched_cli.setattr(cli, "get_session_factory", lambda: session_factory)
        patched_cli.setattr(
            cli,
            "ExpirySweepWorker",
            lambda factory, **kwargs: ExpirySweepWorker(factory, clock, **kwargs),
        )
        capsys.readouterr()

        exit_code = await cli._run(cli._parse_args(["--max-concurrency", "1"]))

        assert exit_code == 0
        captured = capsys.readouterr()
        output = json.loads(captured.out)
        assert output["processed"] == 1
        assert output["failed"] == 0
        assert output["timestamp"] == (T0 + WINDOW + timedelta(seconds=1)).isoformat()
        assert "sweep.finished" in captured.err
        assert (await ledger.confirmation(seeded.confirmation_id)).auto_released is True

    def test_logging_is_sent_to_stderr(self, patched_cli) -> None:
        streams = []

        class DownWorker:
            def __init__(self, *args, **kwargs) -> None:
                pass

            async def run_sweep(self):
                raise TransientStoreFailure("ledger down")

        patched_cli.setattr(
            cli,
            "setup_logging_from_settings",
            lambda settings, stream=None: streams.append(stream),
        )
        patched_cli.setattr(cli, "get_session_factory", lambda: None)
        patched_cli.setattr(cli, "ExpirySweepWorker", DownWorker)

        cli.main([])

        assert streams == [sys.stderr]

    def test_unreachable_ledger_exits_non_zero(self, patched_cli) -> None:
        class DownWorker:
            def __init__(self, *args, **kwargs) -> None:
                pass

            async def run_sweep(self):
                raise TransientStoreFailure("ledger down")

        patched_cli.setattr(cli, "get_session_factory", lambda: None)
        patched_cli.setattr(cli, "ExpirySweepWorker", DownWorker)

        assert cli.main([]) == 1

    def test_parse_loop_options(self) -> None:
        args = cli._parse_args(["--loop", "-i", "30"])
        assert args.loop is True
        assert args.interval == 30.0
        assert args.max_concurrency is None
