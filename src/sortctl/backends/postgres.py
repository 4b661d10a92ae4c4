# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
PostgreSQL backend.

Implements BackendProtocol for a PostgreSQL server reached through a DSN.
Catalog probes and maintenance statements go through the ``psql`` client;
loading and sorting go through the loader/sorter executables.
"""

import logging
import re
import subprocess
from dataclasses import field
from typing import ClassVar, Dict, List, Literal, Type
from urllib.parse import urlsplit, urlunsplit

from marshmallow import Schema
from marshmallow_dataclass import dataclass

from sortctl.backends.base import DEFAULT_COMMAND_PREFIX, CommandBackend, register_backend
from sortctl.core.schema import RunConfig

logger = logging.getLogger(__name__)

MemoryMode = Literal["total", "per_worker"]

# Smallest work_mem PostgreSQL accepts
MIN_WORK_MEM_KB = 64

_SIZE_UNITS = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
    "t": 1024**4,
    "tb": 1024**4,
}
_SIZE_PATTERN = re.compile(r"^\s*(?P<number>\d+(?:\.\d+)?)\s*(?P<unit>[a-zA-Z]*)\s*$")


def parse_size(value: str) -> int | None:
    """Parse a PostgreSQL-style size (``64kB``, ``2GB``, ``512MB``) into bytes.

    Units are powers of 1024 and case-insensitive. Returns None if the value
    cannot be parsed.
    """
    match = _SIZE_PATTERN.match(value)
    if not match:
        return None
    multiplier = _SIZE_UNITS.get(match.group("unit").lower())
    if multiplier is None:
        return None
    return int(float(match.group("number")) * multiplier)


def split_memory_budget(total: str, workers: str | int) -> str:
    """Divide a total memory budget across parallel sort workers.

    PostgreSQL's work_mem applies per sort operation, so each worker gets an
    equal share, rounded down to whole kilobytes and never below 64kB.
    Values that cannot be parsed are returned unchanged so the server
    reports them.

    Examples:
        split_memory_budget("2GB", 4) -> "524288kB"
        split_memory_budget("100kB", 8) -> "64kB"
    """
    total_bytes = parse_size(total)
    try:
        count = int(workers)
    except (TypeError, ValueError):
        return total
    if total_bytes is None or count < 1:
        return total

    share_kb = total_bytes // count // 1024
    return f"{max(share_kb, MIN_WORK_MEM_KB)}kB"


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


@register_backend("postgres")
@dataclass(frozen=True)
class PostgresBackend(CommandBackend):
    """PostgreSQL backend configuration - implements BackendProtocol.

    Example YAML:
        backend:
          type: postgres
          dsn: postgresql://postgres@localhost:5432/sort_bench
          memory_mode: total
    """

    type: Literal["postgres"] = "postgres"
    dsn: str = "postgresql://postgres@localhost:5432/sort_bench"
    psql: str = "psql"
    # total: pass --total-memory; per_worker: pass --work-mem budget / workers
    memory_mode: MemoryMode = "total"
    probe_timeout_seconds: float = 30.0

    loader_binary: str = "load-postgres"
    sorter_binary: str = "sort-postgres"
    command_prefix: List[str] = field(default_factory=lambda: list(DEFAULT_COMMAND_PREFIX))
    env: Dict[str, str] = field(default_factory=dict)

    Schema: ClassVar[Type[Schema]] = Schema

    def describe_target(self) -> str:
        return self.dsn

    @property
    def database_name(self) -> str | None:
        """Database named in the DSN (URL or key=value form)."""
        if "://" in self.dsn:
            name = urlsplit(self.dsn).path.lstrip("/")
            return name or None
        match = re.search(r"(?:^|\s)dbname=(\S+)", self.dsn)
        return match.group(1) if match else None

    @property
    def maintenance_dsn(self) -> str:
        """The same server, connected to the ``postgres`` maintenance database."""
        if "://" in self.dsn:
            parts = urlsplit(self.dsn)
            return urlunsplit(parts._replace(path="/postgres"))
        if re.search(r"(?:^|\s)dbname=\S+", self.dsn):
            return re.sub(r"((?:^|\s)dbname=)\S+", r"\1postgres", self.dsn)
        return f"{self.dsn} dbname=postgres"

    def _run_psql(self, sql: str, dsn: str | None = None) -> tuple[bool, str]:
        """Run one statement through psql.

        Returns:
            Tuple of (success, output)
        """
        command = [self.psql, dsn or self.dsn, "-v", "ON_ERROR_STOP=1", "-tAc", sql]
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.probe_timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            logger.debug("psql timed out after %.0fs: %s", self.probe_timeout_seconds, sql)
            return False, "Timeout"
        except OSError as e:
            logger.debug("Could not run %s: %s", self.psql, e)
            return False, str(e)

        if result.returncode != 0:
            logger.debug("psql failed (exit %d): %s", result.returncode, (result.stderr or result.stdout).strip())
            return False, result.stderr or result.stdout
        return True, result.stdout.strip()

    def dataset_present(self, config: RunConfig) -> bool:
        ok, out = self._run_psql(
            f"SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = {_sql_literal(config.table)})"
        )
        return ok and out == "t"

    def prepare_load(self, config: RunConfig) -> None:
        """Create the target database if the server does not have it yet."""
        name = self.database_name
        if not name:
            return

        ok, out = self._run_psql(
            f"SELECT EXISTS (SELECT FROM pg_database WHERE datname = {_sql_literal(name)})",
            dsn=self.maintenance_dsn,
        )
        if ok and out == "t":
            return

        logger.info("Creating database '%s'", name)
        quoted = '"' + name.replace('"', '""') + '"'
        ok, out = self._run_psql(f"CREATE DATABASE {quoted}", dsn=self.maintenance_dsn)
        if not ok:
            raise RuntimeError(f"Could not create database '{name}': {out.strip()}")

    def finalize_load(self, config: RunConfig) -> None:
        ok, out = self._run_psql("CHECKPOINT")
        if not ok:
            logger.warning("CHECKPOINT after load failed: %s", out.strip())
        super().finalize_load(config)

    def build_load_args(self, config: RunConfig, threads: int) -> List[str]:
        return [
            "--format",
            config.format,
            "--input",
            config.input_file,
            "--db",
            self.dsn,
            "--table",
            config.table,
            "--threads",
            str(threads),
        ]

    def build_run_args(self, config: RunConfig) -> List[str]:
        args = ["--db", self.dsn, "--table", config.table]
        if self.memory_mode == "per_worker":
            args += ["--work-mem", split_memory_budget(config.memory_limit, config.threads)]
        else:
            args += ["--total-memory", config.memory_limit]
        args += ["--parallel-workers", config.threads]
        if config.output_path:
            args += ["--output", config.output_path]
        return args

    def invalidate_cache(self, config: RunConfig) -> None:
        """Flush dirty buffers so a run does not pay for the previous one's writes."""
        ok, out = self._run_psql("CHECKPOINT")
        if not ok:
            logger.debug("CHECKPOINT before run failed (ignored): %s", out.strip())
