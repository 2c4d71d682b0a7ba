"""Tests for the command-line entry point."""

import argparse
from collections.abc import Iterator
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bods_loki.config import Settings, get_settings
from bods_loki.main import build_config, build_parser, main


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Isolate each test from BODS_* variables and the settings cache."""
    for name in ("BODS_API_KEY", "BODS_LINE_REFS", "BODS_INTERVAL", "BODS_DRY_RUN"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _args(settings: Settings, *argv: str) -> argparse.Namespace:
    return build_parser(settings).parse_args(list(argv))


class TestBuildConfig:
    """Tests for turning CLI arguments into a pipeline config."""

    def test_flags_override_settings(self) -> None:
        settings = Settings(_env_file=None)
        args = _args(
            settings,
            "--api-key=secret",
            "--line-refs=49x, 7",
            "--interval=1m30s",
            "--dry-run",
        )

        config = build_config(args, settings)

        assert config.api_key == "secret"
        assert config.line_refs == ["49x", "7"]
        assert config.interval == timedelta(seconds=90)
        assert config.dry_run is True

    def test_environment_supplies_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BODS_API_KEY", "from-env")
        monkeypatch.setenv("BODS_LINE_REFS", "18")
        settings = Settings(_env_file=None)

        config = build_config(_args(settings), settings)

        assert config.api_key == "from-env"
        assert config.line_refs == ["18"]
        assert config.interval == timedelta(seconds=30)

    @pytest.mark.parametrize("interval", ["soon", "0", "-5s"])
    def test_bad_interval_rejected(self, interval: str) -> None:
        settings = Settings(_env_file=None)

        with pytest.raises(ValueError):
            build_config(_args(settings, "--api-key=k", f"--interval={interval}"), settings)


class TestMain:
    """Tests for main() exit codes."""

    def test_missing_api_key_exits_1(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([]) == 1

        err = capsys.readouterr().err
        assert "API key is required" in err
        assert "usage: bods-loki" in err

    def test_invalid_interval_exits_1(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--api-key=k", "--interval=often"]) == 1

        assert "invalid interval" in capsys.readouterr().err

    def test_blank_line_refs_exits_1(self, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("bods_loki.main.setup_logging"):
            assert main(["--api-key=k", "--line-refs=,"]) == 1

        assert "failed to create pipeline" in capsys.readouterr().err

    def test_runs_pipeline_until_done(self) -> None:
        pipeline = MagicMock()
        pipeline.run = AsyncMock()
        pipeline.aclose = AsyncMock()

        with (
            patch("bods_loki.main.setup_logging") as mock_setup,
            patch("bods_loki.main.Pipeline", return_value=pipeline) as mock_pipeline,
        ):
            assert main(["--api-key=k", "--dry-run", "--line-refs=49x"]) == 0

        mock_setup.assert_called_once()
        config = mock_pipeline.call_args.args[0]
        assert config.dry_run is True
        assert config.line_refs == ["49x"]
        pipeline.run.assert_awaited_once()
        pipeline.aclose.assert_awaited_once()
