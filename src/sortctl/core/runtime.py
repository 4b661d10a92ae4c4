# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Runtime context for one sweep invocation.

Resolves the values that are fixed for the lifetime of a sweep (timestamp,
log directory, ledger path) once, so every component sees the same ones.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sortctl.core.schema import RunConfig, SweepConfig
from sortctl.core.sweep import expand_template

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
LEDGER_FILENAME = "ledger.jsonl"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._+-]+")


def _safe(value: str) -> str:
    return _UNSAFE_CHARS.sub("-", value).strip("-") or "x"


@dataclass(frozen=True)
class RuntimeContext:
    """Paths and identifiers shared by every stage of a sweep."""

    sweep_name: str
    timestamp: str
    log_dir: Path

    @property
    def ledger_path(self) -> Path:
        return self.log_dir / LEDGER_FILENAME

    @classmethod
    def from_config(
        cls,
        config: SweepConfig,
        timestamp: str | None = None,
        log_dir: Path | None = None,
    ) -> "RuntimeContext":
        """Create the context for a sweep.

        Args:
            config: Validated sweep configuration
            timestamp: Sweep timestamp (defaults to now)
            log_dir: Explicit log directory; overrides config.log_dir
        """
        timestamp = timestamp or datetime.now().strftime(TIMESTAMP_FORMAT)
        if log_dir is None:
            log_dir = Path(expand_template(config.log_dir, {"name": config.name, "timestamp": timestamp}))

        return cls(sweep_name=config.name, timestamp=timestamp, log_dir=Path(log_dir).resolve())

    def ensure_dirs(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Logs for sweep '%s' in %s", self.sweep_name, self.log_dir)

    def run_log_path(self, run: RunConfig, started: datetime) -> Path:
        """Per-run log file: ``{backend}_{memory}_{threads}threads_{timestamp}.log``.

        Two points started within the same second get a numeric suffix.
        """
        stamp = started.strftime(TIMESTAMP_FORMAT)
        stem = f"{_safe(run.backend)}_{_safe(run.memory_limit)}_{_safe(run.threads)}threads_{stamp}"
        path = self.log_dir / f"{stem}.log"
        suffix = 1
        while path.exists():
            path = self.log_dir / f"{stem}_{suffix}.log"
            suffix += 1
        return path
