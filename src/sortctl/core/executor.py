# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Run executor: spawn one operation under a deadline and classify the outcome.

The executor owns the only blocking wait in a sweep. It guarantees that no
operation can hold the sweep for longer than its timeout (plus a short drain
grace period), whatever the operation does.
"""

import enum
import logging
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from sortctl.core.processes import start_process
from sortctl.core.timing import parse_timing

logger = logging.getLogger(__name__)

MISSING_TIMING_MESSAGE = "succeeded without duration: no TIMING line in output"


class RunStatus(str, enum.Enum):
    """Terminal status of one operation."""

    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class Operation:
    """An external unit of work bound to one RunConfig."""

    name: str
    command: Sequence[str]
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: Path | None = None
    # Loaders do not print a TIMING line; only sort runs are measured
    expects_timing: bool = True


@dataclass(frozen=True)
class RunResult:
    """Outcome of one operation.

    ``duration`` is the operation's self-reported time and is only set for a
    successful run that emitted a timing line. ``wall_clock`` is measured by
    the executor and always present, for cross-checking.
    """

    status: RunStatus
    wall_clock: float
    duration: float | None = None
    exit_code: int | None = None
    output: str = ""
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCESS

    @property
    def measured(self) -> bool:
        """True for a success that carries a trustworthy duration."""
        return self.status is RunStatus.SUCCESS and self.duration is not None

    @property
    def timing_missing(self) -> bool:
        return self.status is RunStatus.SUCCESS and self.duration is None


def classify_result(
    exit_code: int | None,
    output: str,
    wall_clock: float,
    timed_out: bool = False,
    cancelled: bool = False,
    expects_timing: bool = True,
) -> RunResult:
    """Turn raw process facts into a RunResult.

    Precedence: timeout, cancellation, non-zero exit, then success. A
    ``TIMING:`` line is only trusted on a zero exit status.
    """
    if timed_out:
        return RunResult(
            status=RunStatus.TIMED_OUT,
            wall_clock=wall_clock,
            exit_code=exit_code,
            output=output,
            message=f"timed out after {wall_clock:.1f}s",
        )
    if cancelled:
        return RunResult(
            status=RunStatus.FAILED,
            wall_clock=wall_clock,
            exit_code=exit_code,
            output=output,
            message="cancelled",
        )
    if exit_code != 0:
        return RunResult(
            status=RunStatus.FAILED,
            wall_clock=wall_clock,
            exit_code=exit_code,
            output=output,
            message=f"exited with status {exit_code}",
        )

    duration = parse_timing(output)
    if duration is None and not expects_timing:
        duration = wall_clock
    return RunResult(
        status=RunStatus.SUCCESS,
        wall_clock=wall_clock,
        duration=duration,
        exit_code=exit_code,
        output=output,
        message="" if duration is not None else MISSING_TIMING_MESSAGE,
    )


class RunExecutor:
    """Spawn-with-deadline primitive.

    Usage:
        executor = RunExecutor(stop_event=stop_event)
        result = executor.execute(operation, timeout=7200)

    Args:
        stop_event: Optional event; when set, the running operation is killed
            and reported as cancelled
        poll_interval: Seconds between liveness checks
        drain_grace: Seconds to wait for the output reader after the process
            ended or was killed (a grandchild may still hold the pipe)
    """

    def __init__(
        self,
        stop_event: threading.Event | None = None,
        poll_interval: float = 0.2,
        drain_grace: float = 2.0,
    ):
        self.stop_event = stop_event
        self.poll_interval = poll_interval
        self.drain_grace = drain_grace

    def execute(self, operation: Operation, timeout: float | None = None) -> RunResult:
        """Run one operation to completion, timeout or cancellation.

        Args:
            operation: Command and environment to run
            timeout: Deadline in seconds, or None for no deadline

        Returns:
            RunResult; never raises for operation-level failures
        """
        start = time.monotonic()
        try:
            proc = start_process(operation.command, name=operation.name, env_to_set=operation.env, cwd=operation.cwd)
        except OSError as e:
            logger.error("Failed to start %s: %s", operation.name, e)
            return RunResult(
                status=RunStatus.FAILED,
                wall_clock=time.monotonic() - start,
                output=f"{e}\n",
                message=f"failed to start: {e}",
            )

        lines: list[str] = []
        reader = threading.Thread(
            target=_drain,
            args=(proc.popen.stdout, lines, operation.name),
            name=f"reader-{operation.name}",
            daemon=True,
        )
        reader.start()

        deadline = start + timeout if timeout is not None else None
        timed_out = False
        cancelled = False

        while proc.is_running:
            if self.stop_event is not None and self.stop_event.is_set():
                logger.warning("Stop requested, killing %s (pid %d)", operation.name, proc.pid)
                proc.kill()
                cancelled = True
                break

            now = time.monotonic()
            if deadline is not None and now >= deadline:
                logger.warning("%s exceeded its %.0fs timeout, killing (pid %d)", operation.name, timeout, proc.pid)
                proc.kill()
                timed_out = True
                break

            wait = self.poll_interval if deadline is None else min(self.poll_interval, deadline - now)
            try:
                proc.popen.wait(timeout=max(wait, 0.0))
            except subprocess.TimeoutExpired:
                continue

        reader.join(timeout=self.drain_grace)
        if reader.is_alive():
            logger.warning("Output of %s still open after exit; continuing with partial output", operation.name)
        elif proc.popen.stdout is not None:
            proc.popen.stdout.close()

        wall_clock = time.monotonic() - start
        result = classify_result(
            exit_code=proc.exit_code,
            output="".join(list(lines)),
            wall_clock=wall_clock,
            timed_out=timed_out,
            cancelled=cancelled,
            expects_timing=operation.expects_timing,
        )

        if result.measured:
            logger.info("%s finished in %.2fs (wall clock %.2fs)", operation.name, result.duration, wall_clock)
        elif result.timing_missing:
            logger.warning("%s %s", operation.name, MISSING_TIMING_MESSAGE)
        else:
            logger.error("%s %s", operation.name, result.message)
        return result


def _drain(stream: IO[str] | None, lines: list[str], name: str) -> None:
    """Collect lines from the merged output pipe until EOF."""
    if stream is None:
        return
    try:
        for line in iter(stream.readline, ""):
            lines.append(line)
            logger.debug("[%s] %s", name, line.rstrip("\n"))
    except (OSError, ValueError) as e:
        # Pipe closed underneath us after a kill
        logger.debug("Output reader for %s stopped: %s", name, e)
