# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures for sortctl tests."""

import pytest

from sortctl.core.schema import SweepConfig


def sweep_dict(tmp_path, backend=None, run=None, sweep=None, **top):
    """Build a raw sweep mapping rooted in tmp_path.

    ``run`` is merged over a base without cool-down; the other sections replace.
    """
    data = {
        "name": "test_sweep",
        "backend": backend or {"type": "duckdb", "db_file": str(tmp_path / "bench.db")},
        "dataset": {"input_file": str(tmp_path / "data.dat"), "format": "gensort", "table": "bench_data"},
        "run": {"memory_limit": "2GB", "threads": 4, "cooldown_seconds": 0, **(run or {})},
        "sweep": sweep if sweep is not None else {"threads": [4, 8]},
    }
    data.update(top)
    return data


@pytest.fixture
def make_config(tmp_path):
    """Factory for validated SweepConfig objects."""

    def _make(**kwargs) -> SweepConfig:
        return SweepConfig.Schema().load(sweep_dict(tmp_path, **kwargs))

    return _make
