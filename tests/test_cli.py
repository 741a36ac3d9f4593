"""
Tests for the command line interface.
"""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from valreport import __version__
from valreport.cli.main import _load_engagement, _usage_table, app
from valreport.usage import UsageTotals

runner = CliRunner()


class TestCommands:
    """Test the informational commands."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_config_redacts_key(self, mock_env_vars: dict[str, str]) -> None:
        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert "GENERATION_MODEL" in result.output
        assert "sk-ant-REDACTED" not in result.output


class TestLoadEngagement:
    """Test reading an engagement file."""

    def test_relative_model_path_resolved(self, temp_dir: Path) -> None:
        path = temp_dir / "engagement.json"
        path.write_text(
            '{"id": "eng-001", "valuation_date": "2025-12-31", "model_file_path": "acme.xlsx"}',
            encoding="utf-8",
        )

        engagement = _load_engagement(path)

        assert engagement.id == "eng-001"
        assert engagement.model_file_path == str((temp_dir / "acme.xlsx").resolve())


class TestUsageTable:
    """Test the per-stage usage summary."""

    def test_rows_and_total(self) -> None:
        usage = {
            "researching_company": UsageTotals(
                calls=2, input_tokens=1200, output_tokens=300, cost_usd=0.0081
            ),
            "generating_narratives": UsageTotals(
                calls=4, input_tokens=5000, output_tokens=2000, cost_usd=0.045
            ),
        }

        table = _usage_table(usage)

        assert table.row_count == 3
        assert list(table.columns[0].cells) == [
            "researching_company",
            "generating_narratives",
            "[bold]Total[/bold]",
        ]
        assert list(table.columns[1].cells)[-1] == "6"
        assert list(table.columns[2].cells)[-1] == "6,200"
        assert list(table.columns[4].cells)[-1] == "$0.0531"
