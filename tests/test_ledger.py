# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Tests for the append-only result ledger."""

import json
from dataclasses import replace
from unittest.mock import patch

import pytest

from sortctl.core.executor import RunResult, RunStatus
from sortctl.core.ledger import ResultLedger
from sortctl.core.schema import RunConfig


@pytest.fixture
def run_config():
    return RunConfig(
        sweep_name="duckdb_parallelism",
        backend="duckdb",
        target="./duckdb_bench.db",
        input_file="testdata/test_gensort.dat",
        format="gensort",
        table="bench_data",
        memory_limit="2GB",
        threads="8",
        axis="threads",
        axis_value="8",
        output_path="./out/result_8_threads",
        temp_dir="./duckdb_temp",
        timeout_seconds=7200.0,
    )


def success(duration=1.5):
    return RunResult(status=RunStatus.SUCCESS, wall_clock=1.7, duration=duration, exit_code=0, output="TIMING: 1.5\n")


class TestResultLedger:
    """Tests for ResultLedger."""

    def test_append_and_replay(self, tmp_path, run_config):
        """Test that an entry round-trips including its full RunConfig."""
        ledger = ResultLedger(tmp_path / "ledger.jsonl")
        entry = ledger.append(run_config, success(), log_file=tmp_path / "run.log")

        entries = ResultLedger(tmp_path / "ledger.jsonl").replay()
        assert entries == [entry]
        assert entries[0].config == run_config
        assert entries[0].status == "success"
        assert entries[0].duration == 1.5
        assert entries[0].log_file == str(tmp_path / "run.log")

    def test_one_json_object_per_line(self, tmp_path, run_config):
        """Test the on-disk format."""
        ledger = ResultLedger(tmp_path / "ledger.jsonl")
        ledger.append(run_config, success())
        ledger.append(run_config, RunResult(status=RunStatus.TIMED_OUT, wall_clock=10.0, message="timed out"))

        lines = (tmp_path / "ledger.jsonl").read_text().splitlines()
        assert len(lines) == 2
        second = json.loads(lines[1])
        assert second["status"] == "timed_out"
        assert second["duration"] is None
        assert second["config"]["threads"] == "8"

    def test_sequence_continues_across_instances(self, tmp_path, run_config):
        """Test that reopening a ledger keeps numbering in attempt order."""
        ResultLedger(tmp_path / "ledger.jsonl").append(run_config, success())
        entry = ResultLedger(tmp_path / "ledger.jsonl").append(run_config, success())
        assert entry.sequence == 2

    def test_duplicates_preserved(self, tmp_path, run_config):
        """Test that repeated attempts of one point are all kept."""
        ledger = ResultLedger(tmp_path / "ledger.jsonl")
        ledger.append(run_config, RunResult(status=RunStatus.FAILED, wall_clock=1.0, exit_code=1))
        ledger.append(run_config, success())
        assert [e.status for e in ledger.entries_for(run_config)] == ["failed", "success"]

    def test_truncated_last_line_skipped(self, tmp_path, run_config):
        """Test that a crash mid-write does not break replay."""
        path = tmp_path / "ledger.jsonl"
        ledger = ResultLedger(path)
        ledger.append(run_config, success())
        with path.open("a") as f:
            f.write('{"sequence": 2, "config": {"sweep_na')

        entries = ResultLedger(path).replay()
        assert len(entries) == 1

    def test_sequence_not_reused_after_unreadable_line(self, tmp_path, run_config):
        """Test that numbering continues past a skipped line and the next append stays readable."""
        path = tmp_path / "ledger.jsonl"
        ResultLedger(path).append(run_config, success())
        with path.open("a") as f:
            f.write('{"sequence": 2, "config": {"sweep_na')

        entry = ResultLedger(path).append(run_config, success())

        assert entry.sequence == 3
        assert [e.sequence for e in ResultLedger(path).replay()] == [1, 3]

    def test_missing_file(self, tmp_path):
        """Test that a fresh ledger replays as empty."""
        assert ResultLedger(tmp_path / "ledger.jsonl").replay() == []

    def test_measured(self, tmp_path, run_config):
        """Test measured() across attempts and points."""
        ledger = ResultLedger(tmp_path / "ledger.jsonl")
        other = replace(run_config, threads="16", axis_value="16")
        ledger.append(run_config, success(duration=None))
        ledger.append(other, success())

        assert ledger.measured(run_config) is False
        assert ledger.measured(other) is True

    def test_index_groups_by_config(self, tmp_path, run_config):
        """Test that index() keys entries by the full RunConfig."""
        ledger = ResultLedger(tmp_path / "ledger.jsonl")
        other = replace(run_config, memory_limit="4GB")
        ledger.append(run_config, success())
        ledger.append(other, success())
        ledger.append(run_config, success())

        index = ledger.index()
        assert len(index[run_config]) == 2
        assert len(index[other]) == 1

    def test_fsync_on_append(self, tmp_path, run_config):
        """Test that every append is synced before returning."""
        ledger = ResultLedger(tmp_path / "ledger.jsonl")
        with patch("sortctl.core.ledger.os.fsync") as mock_fsync:
            ledger.append(run_config, success())
        mock_fsync.assert_called_once()

    def test_write_failure_raises(self, tmp_path, run_config):
        """Test that a failed write is surfaced to the caller."""
        ledger = ResultLedger(tmp_path / "ledger.jsonl")
        with patch("sortctl.core.ledger.os.fsync", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                ledger.append(run_config, success())
