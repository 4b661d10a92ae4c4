# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Tests for the sweep runtime context."""

from datetime import datetime

from sortctl.core.runtime import RuntimeContext
from sortctl.core.sweep import resolve_plan


class TestRuntimeContext:
    """Tests for RuntimeContext."""

    def test_log_dir_from_template(self, make_config, tmp_path):
        """Test {name} and {timestamp} expansion of the configured log_dir."""
        config = make_config(log_dir=str(tmp_path / "logs" / "{name}_{timestamp}"))
        runtime = RuntimeContext.from_config(config, timestamp="20250102_030405")
        assert runtime.log_dir == (tmp_path / "logs" / "test_sweep_20250102_030405").resolve()
        assert runtime.ledger_path.name == "ledger.jsonl"

    def test_explicit_log_dir_wins(self, make_config, tmp_path):
        """Test that --log-dir overrides the config."""
        runtime = RuntimeContext.from_config(make_config(), log_dir=tmp_path / "mine")
        assert runtime.log_dir == (tmp_path / "mine").resolve()

    def test_run_log_path(self, make_config, tmp_path):
        """Test the per-run log file name and same-second collisions."""
        config = make_config(sweep={"memory_limit": ["512MB"]})
        runtime = RuntimeContext.from_config(config, log_dir=tmp_path)
        run = next(iter(resolve_plan(config)))
        started = datetime(2025, 1, 2, 3, 4, 5)

        first = runtime.run_log_path(run, started)
        assert first.name == "duckdb_512MB_4threads_20250102_030405.log"
        first.write_text("")
        assert runtime.run_log_path(run, started).name == "duckdb_512MB_4threads_20250102_030405_1.log"

    def test_unsafe_characters_replaced(self, make_config, tmp_path):
        """Test that knob values cannot escape the log directory."""
        config = make_config(sweep={"memory_limit": ["../2 GB"]})
        runtime = RuntimeContext.from_config(config, log_dir=tmp_path)
        path = runtime.run_log_path(next(iter(resolve_plan(config))), datetime(2025, 1, 1))
        assert path.parent == runtime.log_dir
        assert "/" not in path.name
