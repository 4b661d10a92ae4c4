# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Backend protocol, registry and shared command-line plumbing."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Literal, Protocol

from sortctl.core.executor import Operation, RunResult
from sortctl.core.reclaim import reclaim_artifact
from sortctl.core.sweep import expand_template

if TYPE_CHECKING:
    from sortctl.core.executor import RunExecutor
    from sortctl.core.schema import RunConfig

logger = logging.getLogger(__name__)

BackendType = Literal["duckdb", "postgres", "clickhouse"]

# Loader and sorter binaries are built and run through cargo by default
DEFAULT_COMMAND_PREFIX = ["cargo", "run", "--release", "--bin", "{binary}", "--"]


class BackendProtocol(Protocol):
    """Protocol that all backend configurations must implement.

    This allows frozen dataclasses to act as backends by implementing these methods.
    Each backend is responsible for:
    1. Reporting whether the benchmark dataset is already loaded
    2. Loading it once
    3. Dropping its caches before each run (best effort)
    4. Running one sort and locating the artifact it wrote
    """

    type: str

    def describe_target(self) -> str:
        """Database file, DSN or URL the backend talks to."""
        ...

    def dataset_present(self, config: RunConfig) -> bool:
        """Check for the loaded dataset without side effects.

        Any probe error means "absent".
        """
        ...

    def load(
        self, config: RunConfig, executor: RunExecutor, threads: int = 1, timeout: float | None = None
    ) -> RunResult:
        """Bulk-ingest the dataset. Failures are returned, not retried."""
        ...

    def invalidate_cache(self, config: RunConfig) -> None:
        """Drop backend caches before a run. Never raises."""
        ...

    def run(self, config: RunConfig, executor: RunExecutor) -> RunResult:
        """Run one sort under ``config.timeout_seconds``."""
        ...

    def artifact_path(self, config: RunConfig) -> Path | None:
        """Path the run writes its output to, or None in count mode."""
        ...

    def build_run_command(self, config: RunConfig) -> list[str]:
        """Command line ``run`` executes, for run logs and dry runs."""
        ...


# Registry of backend config classes
_BACKENDS: dict[str, type] = {}


def register_backend(name: str):
    """Decorator to register a backend config class.

    Usage:
        @register_backend("duckdb")
        @dataclass(frozen=True)
        class DuckDBBackend(CommandBackend):
            ...
    """

    def decorator(cls: type) -> type:
        _BACKENDS[name] = cls
        return cls

    return decorator


def get_backend_class(backend_type: str) -> type:
    """Get the config class for a backend type.

    Raises:
        ValueError: If backend type is not registered
    """
    if backend_type not in _BACKENDS:
        available = ", ".join(sorted(_BACKENDS.keys()))
        raise ValueError(f"Unknown backend type: {backend_type}. Available: {available}")
    return _BACKENDS[backend_type]


def list_backends() -> list[str]:
    """List all registered backend types."""
    return sorted(_BACKENDS.keys())


class CommandBackend:
    """Mixin for backends driven through loader/sorter executables.

    Subclasses are frozen dataclasses providing ``command_prefix``, ``env``,
    ``loader_binary``, ``sorter_binary`` and the two argument builders.
    """

    command_prefix: list[str]
    env: dict[str, str]
    loader_binary: str
    sorter_binary: str

    def render_command(self, binary: str, args: list[str]) -> list[str]:
        return list(expand_template(list(self.command_prefix), {"binary": binary})) + args

    def build_load_args(self, config: RunConfig, threads: int) -> list[str]:
        raise NotImplementedError

    def build_run_args(self, config: RunConfig) -> list[str]:
        raise NotImplementedError

    def build_load_command(self, config: RunConfig, threads: int = 1) -> list[str]:
        return self.render_command(self.loader_binary, self.build_load_args(config, threads))

    def build_run_command(self, config: RunConfig) -> list[str]:
        return self.render_command(self.sorter_binary, self.build_run_args(config))

    def prepare_load(self, config: RunConfig) -> None:
        """Hook run before the loader (e.g. create the database)."""

    def finalize_load(self, config: RunConfig) -> None:
        """Hook run after a successful load; flushes written pages to disk."""
        os.sync()

    def load(
        self, config: RunConfig, executor: RunExecutor, threads: int = 1, timeout: float | None = None
    ) -> RunResult:
        self.prepare_load(config)
        operation = Operation(
            name=f"load-{config.backend}",
            command=self.build_load_command(config, threads),
            env=dict(self.env),
            expects_timing=False,
        )
        result = executor.execute(operation, timeout=timeout)
        if result.succeeded:
            self.finalize_load(config)
        return result

    def run(self, config: RunConfig, executor: RunExecutor) -> RunResult:
        artifact = self.artifact_path(config)
        if artifact is not None:
            if artifact.exists():
                # Left over from an interrupted sweep
                logger.info("Removing stale artifact %s before the run", artifact)
                reclaim_artifact(artifact)
            artifact.parent.mkdir(parents=True, exist_ok=True)
        if config.temp_dir:
            Path(config.temp_dir).mkdir(parents=True, exist_ok=True)

        operation = Operation(
            name=f"sort-{config.backend}",
            command=self.build_run_command(config),
            env=dict(self.env),
        )
        return executor.execute(operation, timeout=config.timeout_seconds)

    def artifact_path(self, config: RunConfig) -> Path | None:
        return Path(config.output_path) if config.output_path else None
