# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Sweep plan expansion.

This module turns a validated SweepConfig into the ordered sequence of
RunConfig values the controller executes:
- expand_template(): {param} placeholder substitution
- SweepAxis: one knob and its declared values
- SweepPlan: lazy, restartable iteration over sweep points
- resolve_plan(): build and validate a plan
"""

import itertools
import os
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sortctl.core.schema import SWEEP_AXES, RunConfig, SweepConfig


class PlanError(ValueError):
    """The sweep file cannot be expanded into a valid plan."""


def expand_template(template: Any, values: dict[str, Any]) -> Any:
    """Recursively expand template strings with values.

    Args:
        template: Template object (dict, list, str, or other)
        values: Dictionary of parameter values to substitute

    Returns:
        Expanded template with {param} placeholders replaced
    """
    if isinstance(template, dict):
        return {k: expand_template(v, values) for k, v in template.items()}
    elif isinstance(template, list):
        return [expand_template(item, values) for item in template]
    elif isinstance(template, str):
        result = template
        for key, value in values.items():
            placeholder = f"{{{key}}}"
            if isinstance(value, list):
                # A bare placeholder keeps the list, an embedded one joins it
                if result == placeholder:
                    return value
                result = result.replace(placeholder, ",".join(str(v) for v in value))
            else:
                result = result.replace(placeholder, str(value))
        return result
    else:
        return template


@dataclass(frozen=True)
class SweepAxis:
    """One swept knob and its values, in declaration order."""

    name: str
    values: tuple[str, ...]

    def __post_init__(self):
        if self.name not in SWEEP_AXES:
            raise PlanError(f"Unknown sweep axis '{self.name}'. Available: {', '.join(SWEEP_AXES)}")
        if not self.values:
            raise PlanError(f"Sweep axis '{self.name}' has no values")
        for value in self.values:
            if not str(value).strip():
                raise PlanError(f"Sweep axis '{self.name}' contains an empty value")


class SweepPlan:
    """Finite, restartable sequence of sweep points.

    Iteration is pure computation: every call to ``iter()`` starts over and
    yields the same RunConfig values in the same order.

    In ``single`` mode each axis is varied on its own while the other knobs
    stay at their base values. In ``product`` mode the cartesian product of
    all axes is taken, first axis outermost.
    """

    def __init__(self, config: SweepConfig, axes: Sequence[SweepAxis]):
        self.config = config
        self.axes = tuple(axes)
        self.mode = config.sweep_mode

    def __iter__(self) -> Iterator[RunConfig]:
        base = {"threads": self.config.run.threads, "memory_limit": self.config.run.memory_limit}

        if self.mode == "product":
            names = [axis.name for axis in self.axes]
            for combo in itertools.product(*(axis.values for axis in self.axes)):
                knobs = {**base, **dict(zip(names, combo, strict=True))}
                yield build_run_config(self.config, knobs, "+".join(names), ",".join(combo))
            return

        for axis in self.axes:
            for value in axis.values:
                knobs = {**base, axis.name: value}
                yield build_run_config(self.config, knobs, axis.name, value)

    def __len__(self) -> int:
        if self.mode == "product":
            total = 1
            for axis in self.axes:
                total *= len(axis.values)
            return total
        return sum(len(axis.values) for axis in self.axes)

    def __repr__(self) -> str:
        axes = ", ".join(f"{a.name}={list(a.values)}" for a in self.axes)
        return f"SweepPlan({self.config.name!r}, mode={self.mode}, {axes})"


def build_run_config(config: SweepConfig, knobs: dict[str, str], axis: str, axis_value: str) -> RunConfig:
    """Resolve one sweep point from the sweep file and its knob values."""
    values = {"name": config.name, **knobs}
    run = config.run

    return RunConfig(
        sweep_name=config.name,
        backend=config.backend_type,
        target=config.backend.describe_target(),
        input_file=config.dataset.input_file,
        format=config.dataset.format,
        table=config.dataset.table,
        memory_limit=knobs["memory_limit"],
        threads=knobs["threads"],
        axis=axis,
        axis_value=axis_value,
        output_path=expand_template(run.output, values),
        temp_dir=expand_template(run.temp_dir, values),
        timeout_seconds=run.timeout_seconds,
    )


def _overlaps(a: Path, b: Path) -> bool:
    return a == b or a in b.parents or b in a.parents


def check_artifact_collisions(plan: SweepPlan) -> None:
    """Reject plans where two points would write the same or nested artifacts.

    Reclaiming one point's artifact would otherwise destroy another's.

    Raises:
        PlanError: On the first colliding pair
    """
    seen: list[tuple[Path, RunConfig]] = []
    for run in plan:
        artifact = plan.config.backend.artifact_path(run)
        if artifact is None:
            continue
        artifact = Path(os.path.abspath(artifact))
        for other_path, other in seen:
            if _overlaps(artifact, other_path):
                raise PlanError(
                    f"Artifact paths collide: '{other.label}' writes {other_path} and "
                    f"'{run.label}' writes {artifact}. Add {{threads}} or {{memory_limit}} to run.output."
                )
        seen.append((artifact, run))


def resolve_plan(config: SweepConfig) -> SweepPlan:
    """Build and validate the sweep plan for a configuration.

    Args:
        config: Validated sweep configuration

    Returns:
        SweepPlan ready to iterate

    Raises:
        PlanError: If an axis is unknown or empty, or artifact paths collide
    """
    if not config.sweep:
        raise PlanError("Sweep must declare at least one axis")

    axes = [SweepAxis(name=name, values=tuple(values)) for name, values in config.sweep.items()]
    plan = SweepPlan(config, axes)
    check_artifact_collisions(plan)
    return plan
