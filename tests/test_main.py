"""
Tests for the command line entry point.
"""

import pytest
import yaml
from unittest.mock import patch

from config.settings import (
    BotConfig,
    EngineConfig,
    ExchangeConfig,
    GridAdjustmentConfig,
    GridConfig,
    InvestmentConfig,
    PositionConfig,
)
from gridbot.main import main, parse_args, print_config_summary, run


def paper_config(name="paper"):
    return BotConfig(
        exchange=ExchangeConfig(name=name, paper_initial_price=100.0, paper_volatility=0.0),
        investment=InvestmentConfig(total_investment=1000.0),
        grid=GridConfig(num_levels=5, lower_bound=80.0, upper_bound=120.0, auto_range=False),
        position=PositionConfig(
            drift_correction_enabled=False,
            grid_adjustment=GridAdjustmentConfig(enabled=False),
        ),
        engine=EngineConfig(max_retries=0, retry_base_delay=0.0, shutdown_timeout=1.0),
    )


class TestParseArgs:
    """Tests for argument parsing."""

    def test_defaults(self):
        """Test flags default to off."""
        args = parse_args(["config.yaml"])

        assert args.config == "config.yaml"
        assert args.paper is False
        assert args.dry_run is False
        assert args.once is False
        assert args.log_level is None

    def test_flags(self):
        """Test every flag is parsed."""
        args = parse_args([
            "config.yaml", "--paper", "--once", "--dry-run",
            "--log-level", "DEBUG", "--log-file", "bot.log",
        ])

        assert args.paper and args.once and args.dry_run
        assert args.log_level == "DEBUG"
        assert args.log_file == "bot.log"

    def test_invalid_log_level(self):
        """Test unknown log levels are rejected."""
        with pytest.raises(SystemExit):
            parse_args(["config.yaml", "--log-level", "LOUD"])


class TestConfigSummary:
    """Tests for print_config_summary."""

    def test_explicit_range(self, capsys):
        """Test fixed bounds are printed."""
        print_config_summary(paper_config())

        output = capsys.readouterr().out
        assert "Exchange: paper" in output
        assert "Grid range: 80.0 - 120.0" in output
        assert "Grid levels: 5 (linear)" in output

    def test_auto_range(self, capsys):
        """Test auto-range is described."""
        print_config_summary(BotConfig())

        assert "auto (2x historical volatility)" in capsys.readouterr().out


class TestRun:
    """Tests for the synchronous entry point."""

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "exchange": {"name": "kraken"},
            "logging": {"file_path": None},
        }))
        return path

    def test_dry_run(self, config_file):
        """Test dry run validates and exits cleanly."""
        with patch("gridbot.main.setup_logging") as mock_logging:
            with pytest.raises(SystemExit) as exc_info:
                run([str(config_file), "--dry-run", "--log-level", "WARNING"])

        assert exc_info.value.code == 0
        mock_logging.assert_called_once_with("WARNING", None, 10, 5)

    def test_paper_flag_overrides_exchange(self, config_file):
        """Test --paper replaces the configured exchange."""
        with patch("gridbot.main.setup_logging"), \
                patch("gridbot.main.print_config_summary") as mock_summary:
            with pytest.raises(SystemExit):
                run([str(config_file), "--paper", "--dry-run"])

        assert mock_summary.call_args[0][0].exchange.name == "paper"

    def test_invalid_config_exits(self, tmp_path, capsys):
        """Test an invalid config exits with code 1."""
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"grid": {"num_levels": 2}}))

        with pytest.raises(SystemExit) as exc_info:
            run([str(path)])

        assert exc_info.value.code == 1
        assert "Error loading config" in capsys.readouterr().out


class TestMain:
    """Tests for the async entry point."""

    @pytest.mark.asyncio
    async def test_single_cycle(self):
        """Test --once initializes, runs one cycle and stops."""
        args = parse_args(["config.yaml", "--once"])

        assert await main(args, paper_config()) == 0

    @pytest.mark.asyncio
    async def test_missing_credentials(self, capsys):
        """Test a live exchange without credentials fails fast."""
        args = parse_args(["config.yaml", "--once"])

        assert await main(args, paper_config(name="kraken")) == 1
        assert "requires GRIDBOT_API_KEY" in capsys.readouterr().out
