# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Append-only result ledger.

One JSON object per line, one line per attempted sweep point, in attempt
order. Every append is flushed and fsynced before it returns, so a crash
loses at most the line being written. Replaying the file reconstructs the
full RunConfig of every entry, which is what ``--resume`` keys on.
"""

import json
import logging
import os
import threading
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import ClassVar, Literal, Optional, Type

from marshmallow import Schema, ValidationError
from marshmallow_dataclass import dataclass

from sortctl.core.executor import RunResult
from sortctl.core.schema import RunConfig

logger = logging.getLogger(__name__)

LedgerStatus = Literal["success", "failed", "timed_out"]


@dataclass(frozen=True)
class LedgerEntry:
    """One recorded attempt of a sweep point."""

    sequence: int
    recorded_at: str
    config: RunConfig
    status: LedgerStatus
    wall_clock: float
    duration: Optional[float] = None
    exit_code: Optional[int] = None
    message: str = ""
    log_file: Optional[str] = None

    Schema: ClassVar[Type[Schema]] = Schema

    @property
    def measured(self) -> bool:
        return self.status == "success" and self.duration is not None


class ResultLedger:
    """JSON Lines ledger at a fixed path.

    Args:
        path: Ledger file; created on first append
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._schema = LedgerEntry.Schema()
        entries, line_count = self._read()
        # Unreadable lines still consumed a sequence number
        self._next_sequence = max([line_count, *(entry.sequence for entry in entries)]) + 1

    def append(self, config: RunConfig, result: RunResult, log_file: Path | None = None) -> LedgerEntry:
        """Durably record one attempt.

        Raises:
            OSError: If the line cannot be written or synced. The caller
                decides whether the sweep can continue without a durable record.
        """
        with self._lock:
            entry = LedgerEntry(
                sequence=self._next_sequence,
                recorded_at=datetime.now().isoformat(timespec="seconds"),
                config=config,
                status=result.status.value,
                wall_clock=round(result.wall_clock, 3),
                duration=result.duration,
                exit_code=result.exit_code,
                message=result.message,
                log_file=str(log_file) if log_file is not None else None,
            )
            line = json.dumps(self._schema.dump(entry), sort_keys=True)

            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self._ends_with_newline():
                line = "\n" + line
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())

            self._next_sequence += 1

        logger.debug("Ledger entry %d: %s %s", entry.sequence, config.label, entry.status)
        return entry

    def replay(self) -> list[LedgerEntry]:
        """Read all entries in file order.

        Lines that are not valid entries (typically a final line cut short by
        a crash) are skipped with a warning.
        """
        entries, _ = self._read()
        return entries

    def _read(self) -> tuple[list[LedgerEntry], int]:
        """Parse the file, returning readable entries and the non-blank line count."""
        if not self.path.exists():
            return [], 0

        entries = []
        line_count = 0
        with self.path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                line_count += 1
                try:
                    entries.append(self._schema.load(json.loads(line)))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning("Skipping unreadable ledger line %d in %s: %s", lineno, self.path, e)
        return entries, line_count

    def _ends_with_newline(self) -> bool:
        """False when the last write was cut short mid-line."""
        if not self.path.exists() or self.path.stat().st_size == 0:
            return True
        with self.path.open("rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) == b"\n"

    def index(self) -> dict[RunConfig, list[LedgerEntry]]:
        """Group replayed entries by their RunConfig, preserving order."""
        grouped: dict[RunConfig, list[LedgerEntry]] = defaultdict(list)
        for entry in self.replay():
            grouped[entry.config].append(entry)
        return dict(grouped)

    def entries_for(self, config: RunConfig) -> list[LedgerEntry]:
        return [entry for entry in self.replay() if entry.config == config]

    def measured(self, config: RunConfig) -> bool:
        """True if any recorded attempt of this point produced a duration."""
        return any(entry.measured for entry in self.entries_for(config))
