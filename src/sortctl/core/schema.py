# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Typed configuration schema for sweep files.

All configuration objects are frozen marshmallow dataclasses so that a loaded
sweep cannot be mutated once the resolver has validated it.

Example YAML:
    name: duckdb_parallelism
    backend:
      type: duckdb
      db_file: ./duckdb_bench.db
    dataset:
      input_file: testdata/test_gensort.dat
      format: gensort
      table: bench_data
    run:
      memory_limit: 2GB
      threads: 40
      temp_dir: ./duckdb_temp
      output: ./duckdb_sorted/result_{threads}_threads
      timeout_seconds: 7200
    sweep:
      threads: [4, 8, 16, 24, 32, 40, 44]
"""

from dataclasses import field
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Literal, Optional, Type

from marshmallow import Schema, ValidationError, fields
from marshmallow_dataclass import dataclass

DatasetFormat = Literal["gensort", "kvbin"]
SweepMode = Literal["single", "product"]

# Knobs that a sweep axis may vary
SWEEP_AXES = ("threads", "memory_limit")

# Upper bound on the one-off dataset load
DEFAULT_LOAD_TIMEOUT_SECONDS = 6 * 60 * 60


class KnobField(fields.Field):
    """A tunable value accepted as string or number and kept as its string form.

    Magnitudes and units are not checked here; a malformed value reaches the
    backend unchanged and surfaces as a run failure.
    """

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ValidationError("Must be a string or a number.")
        return str(value)

    def _serialize(self, value, attr, obj, **kwargs):
        return None if value is None else str(value)


class BackendField(fields.Field):
    """Backend section, dispatched on its ``type`` key through the backend registry."""

    def _deserialize(self, value, attr, data, **kwargs):
        # Import here to avoid circular imports
        from sortctl.backends import get_backend_class

        if not isinstance(value, dict) or "type" not in value:
            raise ValidationError("Backend section must be a mapping with a 'type' key.")
        try:
            backend_cls = get_backend_class(value["type"])
        except ValueError as e:
            raise ValidationError(str(e)) from e
        return backend_cls.Schema().load(value)

    def _serialize(self, value, attr, obj, **kwargs):
        if value is None:
            return None
        return type(value).Schema().dump(value)


@dataclass(frozen=True)
class DatasetConfig:
    """Dataset to load once per backend before the sweep."""

    input_file: str
    format: DatasetFormat = "gensort"
    table: str = "bench_data"
    load_threads: int = 14
    # None disables the deadline
    load_timeout_seconds: Optional[float] = DEFAULT_LOAD_TIMEOUT_SECONDS

    Schema: ClassVar[Type[Schema]] = Schema


@dataclass(frozen=True)
class RunSettings:
    """Base values for every sweep point; axes override one or more knobs."""

    memory_limit: str = field(default="2GB", metadata={"marshmallow_field": KnobField()})
    threads: str = field(default="4", metadata={"marshmallow_field": KnobField()})
    # Optional artifact path template ({threads}, {memory_limit}, {name})
    output: Optional[str] = None
    temp_dir: Optional[str] = None
    timeout_seconds: Optional[float] = 7200.0
    cooldown_seconds: float = 30.0

    Schema: ClassVar[Type[Schema]] = Schema


@dataclass(frozen=True)
class SweepConfig:
    """Top-level sweep file."""

    name: str
    backend: Any = field(metadata={"marshmallow_field": BackendField(required=True)})
    dataset: DatasetConfig
    sweep: Dict[str, List[str]] = field(
        metadata={
            "marshmallow_field": fields.Dict(
                keys=fields.String(),
                values=fields.List(KnobField()),
                required=True,
            )
        }
    )
    run: RunSettings = field(default_factory=RunSettings)
    sweep_mode: SweepMode = "single"
    log_dir: str = "./logs/{name}_{timestamp}"

    Schema: ClassVar[Type[Schema]] = Schema

    @property
    def backend_type(self) -> str:
        return self.backend.type

    @classmethod
    def from_yaml(cls, path: Path) -> "SweepConfig":
        """Load a sweep file with built-in defaults and no environment overrides."""
        from sortctl.core.config import load_config

        return load_config(path)


@dataclass(frozen=True)
class RunConfig:
    """Fully resolved parameters of one sweep point.

    Immutable and hashable; the ledger keys entries by the whole object.
    """

    sweep_name: str
    backend: str
    target: str
    input_file: str
    format: str
    table: str
    memory_limit: str
    threads: str
    axis: str
    axis_value: str
    output_path: Optional[str] = None
    temp_dir: Optional[str] = None
    timeout_seconds: Optional[float] = None

    Schema: ClassVar[Type[Schema]] = Schema

    @property
    def label(self) -> str:
        """Short human-readable identity, e.g. ``duckdb threads=8 (2GB, 8 threads)``."""
        return f"{self.backend} {self.axis}={self.axis_value} ({self.memory_limit}, {self.threads} threads)"
