# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
DuckDB backend.

Implements BackendProtocol for the embedded, file-backed engine. The dataset
is present when the database file exists.
"""

import logging
from dataclasses import field
from pathlib import Path
from typing import ClassVar, Dict, List, Literal, Type

from marshmallow import Schema
from marshmallow_dataclass import dataclass

from sortctl.backends.base import DEFAULT_COMMAND_PREFIX, CommandBackend, register_backend
from sortctl.core.reclaim import clear_directory
from sortctl.core.schema import RunConfig

logger = logging.getLogger(__name__)


@register_backend("duckdb")
@dataclass(frozen=True)
class DuckDBBackend(CommandBackend):
    """DuckDB backend configuration - implements BackendProtocol.

    Example YAML:
        backend:
          type: duckdb
          db_file: ./duckdb_bench.db
    """

    type: Literal["duckdb"] = "duckdb"
    db_file: str = "./duckdb_bench.db"

    loader_binary: str = "load-duckdb"
    sorter_binary: str = "sort-duckdb"
    command_prefix: List[str] = field(default_factory=lambda: list(DEFAULT_COMMAND_PREFIX))
    env: Dict[str, str] = field(default_factory=dict)

    Schema: ClassVar[Type[Schema]] = Schema

    def describe_target(self) -> str:
        return self.db_file

    def dataset_present(self, config: RunConfig) -> bool:
        return Path(self.db_file).is_file()

    def build_load_args(self, config: RunConfig, threads: int) -> List[str]:
        return [
            "--format",
            config.format,
            "--input",
            config.input_file,
            "--db",
            self.db_file,
            "--table",
            config.table,
            "--threads",
            str(threads),
        ]

    def build_run_args(self, config: RunConfig) -> List[str]:
        args = [
            "--db",
            self.db_file,
            "--table",
            config.table,
            "--memory-limit",
            config.memory_limit,
            "--threads",
            config.threads,
        ]
        if config.temp_dir:
            args += ["--temp-dir", config.temp_dir]
        if config.output_path:
            args += ["--output", config.output_path]
        return args

    def invalidate_cache(self, config: RunConfig) -> None:
        """Empty the spill directory so a run never reuses earlier spill files.

        DuckDB keeps no cache across processes; each run opens the file anew.
        """
        if not config.temp_dir:
            return
        if not clear_directory(config.temp_dir):
            logger.warning("Could not fully clear spill directory %s", config.temp_dir)
