# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Tests for sweep plan expansion."""

import pytest

from sortctl.core.sweep import PlanError, SweepAxis, expand_template, resolve_plan


class TestExpandTemplate:
    """Tests for expand_template function."""

    def test_output_path_template(self):
        """Test the typical per-point output path."""
        result = expand_template("./out/result_{threads}_threads", {"threads": "8"})
        assert result == "./out/result_8_threads"

    def test_multiple_placeholders_in_string(self):
        """Test multiple placeholders in same string."""
        result = expand_template("{name}/{memory_limit}_{threads}", {"name": "s", "memory_limit": "2GB", "threads": 4})
        assert result == "s/2GB_4"

    def test_nested_structures(self):
        """Test placeholder replacement in nested dicts and lists."""
        template = {"run": {"output": "{threads}", "args": ["--threads", "{threads}"]}}
        assert expand_template(template, {"threads": "16"}) == {"run": {"output": "16", "args": ["--threads", "16"]}}

    def test_list_value_as_whole_placeholder(self):
        """Test that list values replace entire placeholder."""
        assert expand_template("{items}", {"items": [1, 2, 3]}) == [1, 2, 3]

    def test_list_value_embedded_in_string(self):
        """Test that list values become comma-separated when embedded."""
        assert expand_template("values: {items}", {"items": [1, 2, 3]}) == "values: 1,2,3"

    def test_non_string_passthrough(self):
        """Test that non-string primitives pass through unchanged."""
        assert expand_template(42, {"x": "y"}) == 42
        assert expand_template(None, {"x": "y"}) is None

    def test_missing_placeholder_unchanged(self):
        """Test that unmatched placeholders remain as-is."""
        assert expand_template("{missing}", {"other": "value"}) == "{missing}"


class TestSweepAxis:
    """Tests for SweepAxis validation."""

    def test_valid_axis(self):
        """Test that declared order is kept."""
        axis = SweepAxis("threads", ("44", "4", "16"))
        assert axis.values == ("44", "4", "16")

    def test_empty_axis_rejected(self):
        """Test that an axis without values is a plan error."""
        with pytest.raises(PlanError, match="no values"):
            SweepAxis("threads", ())

    def test_blank_value_rejected(self):
        """Test that an empty string value is a plan error."""
        with pytest.raises(PlanError, match="empty value"):
            SweepAxis("memory_limit", ("1GB", "  "))

    def test_unknown_axis_rejected(self):
        """Test that only known knobs can be swept."""
        with pytest.raises(PlanError, match="Unknown sweep axis"):
            SweepAxis("batch_size", ("1",))


class TestResolvePlan:
    """Tests for resolve_plan and SweepPlan iteration."""

    def test_single_axis(self, make_config):
        """Test one point per value, other knobs at their base value."""
        plan = resolve_plan(make_config(sweep={"threads": [4, 8, 16]}))
        runs = list(plan)

        assert len(plan) == 3
        assert [r.threads for r in runs] == ["4", "8", "16"]
        assert all(r.memory_limit == "2GB" for r in runs)
        assert all(r.axis == "threads" for r in runs)
        assert [r.axis_value for r in runs] == ["4", "8", "16"]

    def test_single_mode_varies_one_axis_at_a_time(self, make_config):
        """Test that two axes in single mode are swept independently."""
        plan = resolve_plan(make_config(sweep={"threads": [8, 16], "memory_limit": ["1GB", "4GB"]}))
        runs = [(r.memory_limit, r.threads) for r in plan]
        assert runs == [("2GB", "8"), ("2GB", "16"), ("1GB", "4"), ("4GB", "4")]
        assert len(plan) == 4

    def test_product_mode(self, make_config):
        """Test cartesian product with the first axis outermost."""
        plan = resolve_plan(
            make_config(sweep={"memory_limit": ["1GB", "2GB"], "threads": [4, 8]}, sweep_mode="product")
        )
        runs = [(r.memory_limit, r.threads) for r in plan]
        assert runs == [("1GB", "4"), ("1GB", "8"), ("2GB", "4"), ("2GB", "8")]
        assert len(plan) == 4
        first = next(iter(plan))
        assert first.axis == "memory_limit+threads"
        assert first.axis_value == "1GB,4"

    def test_plan_is_restartable(self, make_config):
        """Test that iterating twice yields identical points."""
        plan = resolve_plan(make_config())
        assert list(plan) == list(plan)

    def test_output_template_expanded(self, make_config, tmp_path):
        """Test {threads}, {memory_limit} and {name} in the output path."""
        run = {"memory_limit": "2GB", "threads": 4, "output": str(tmp_path / "{name}/{memory_limit}_{threads}.parquet")}
        runs = list(resolve_plan(make_config(run=run)))
        assert runs[0].output_path == str(tmp_path / "test_sweep/2GB_4.parquet")
        assert runs[1].output_path == str(tmp_path / "test_sweep/2GB_8.parquet")

    def test_run_config_fields(self, make_config, tmp_path):
        """Test that points carry the dataset, target and timeout."""
        run = list(resolve_plan(make_config()))[0]
        assert run.sweep_name == "test_sweep"
        assert run.backend == "duckdb"
        assert run.target == str(tmp_path / "bench.db")
        assert run.table == "bench_data"
        assert run.format == "gensort"
        assert run.timeout_seconds == 7200

    def test_malformed_value_passed_through(self, make_config):
        """Test that units are not validated."""
        runs = list(resolve_plan(make_config(sweep={"memory_limit": ["lots"]})))
        assert runs[0].memory_limit == "lots"

    def test_artifact_collision_rejected(self, make_config, tmp_path):
        """Test that two points writing the same output are rejected."""
        run = {"threads": 4, "output": str(tmp_path / "sorted.parquet")}
        with pytest.raises(PlanError, match="collide"):
            resolve_plan(make_config(run=run, sweep={"threads": [4, 8]}))

    def test_duplicate_values_collide(self, make_config, tmp_path):
        """Test that repeated axis values with a per-point template still collide."""
        run = {"threads": 4, "output": str(tmp_path / "out_{threads}")}
        with pytest.raises(PlanError):
            resolve_plan(make_config(run=run, sweep={"threads": [4, 4]}))

    def test_nested_artifacts_rejected(self, make_config, tmp_path):
        """Test that one artifact inside another is rejected."""
        run = {"memory_limit": "out", "threads": 4, "output": str(tmp_path / "{memory_limit}")}
        with pytest.raises(PlanError):
            resolve_plan(make_config(run=run, sweep={"memory_limit": ["out", "out/sub"]}))

    def test_count_mode_has_no_collisions(self, make_config):
        """Test that points without output never collide."""
        plan = resolve_plan(make_config(sweep={"threads": [4, 4]}))
        assert len(plan) == 2

    def test_empty_sweep_rejected(self, make_config):
        """Test that a sweep without axes is a plan error."""
        with pytest.raises(PlanError):
            resolve_plan(make_config(sweep={}))

    def test_empty_axis_rejected(self, make_config):
        """Test that an axis with an empty list is a plan error."""
        with pytest.raises(PlanError):
            resolve_plan(make_config(sweep={"threads": []}))
