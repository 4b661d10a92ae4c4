# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Tests for ledger reporting."""

import csv
import io
from unittest.mock import patch

import pytest
from rich.console import Console

from sortctl.cli.report import display_entries, main, write_csv
from sortctl.core.executor import RunResult, RunStatus
from sortctl.core.ledger import ResultLedger
from sortctl.core.schema import RunConfig


@pytest.fixture
def ledger(tmp_path):
    ledger = ResultLedger(tmp_path / "ledger.jsonl")
    for threads, result in [
        ("4", RunResult(status=RunStatus.SUCCESS, wall_clock=2.1, duration=2.0, exit_code=0)),
        ("8", RunResult(status=RunStatus.TIMED_OUT, wall_clock=60.0, message="timed out after 60.0s")),
    ]:
        config = RunConfig(
            sweep_name="s",
            backend="clickhouse",
            target="http://localhost:8123/default",
            input_file="data.dat",
            format="kvbin",
            table="bench_data",
            memory_limit="1GB",
            threads=threads,
            axis="threads",
            axis_value=threads,
        )
        ledger.append(config, result)
    return ledger


class TestReport:
    """Tests for the report views."""

    def test_csv(self, ledger):
        """Test one CSV row per entry with empty cells for missing values."""
        stream = io.StringIO()
        write_csv(ledger.replay(), stream)
        rows = list(csv.DictReader(io.StringIO(stream.getvalue())))
        summary = [(r["threads"], r["status"], r["duration"]) for r in rows]
        assert summary == [("4", "success", "2.0"), ("8", "timed_out", "")]

    def test_display_entries(self, ledger, capsys):
        """Test that the table lists each status."""
        with patch("sortctl.cli.report.console", Console(width=200)):
            display_entries(ledger.replay(), title="Results")
        out = capsys.readouterr().out
        assert "success" in out
        assert "timed_out" in out

    def test_display_empty(self, capsys):
        """Test the empty ledger message."""
        display_entries([])
        assert "No results recorded" in capsys.readouterr().out

    def test_main_accepts_directory(self, ledger, tmp_path, capsys):
        """Test that the sweep log directory can be given instead of the file."""
        with patch("sortctl.cli.report.setup_logging"):
            with pytest.raises(SystemExit) as exc:
                main([str(tmp_path), "--csv"])
        assert exc.value.code == 0
        assert capsys.readouterr().out.startswith("sequence,backend")

    def test_main_missing_ledger(self, tmp_path):
        """Test that a missing ledger exits with status 1."""
        with patch("sortctl.cli.report.setup_logging"):
            with pytest.raises(SystemExit) as exc:
                main([str(tmp_path / "nope.jsonl")])
        assert exc.value.code == 1
