# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Process management for benchmark operations.

This module provides:
- ManagedProcess: a spawned operation running in its own process group
- start_process(): spawn a command with merged stdout/stderr
- setup_signal_handlers(): turn SIGINT/SIGTERM into a stop event
"""

import logging
import os
import shlex
import signal
import subprocess
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class ManagedProcess:
    """A running operation and the process group it leads."""

    name: str
    popen: subprocess.Popen

    @property
    def pid(self) -> int:
        return self.popen.pid

    @property
    def is_running(self) -> bool:
        return self.popen.poll() is None

    @property
    def exit_code(self) -> int | None:
        return self.popen.returncode

    def kill(self) -> None:
        """Forcefully terminate the whole process group.

        SIGKILL is sent straight away: a stuck backend cannot be trusted to
        honour a polite signal, and the caller needs a bounded stop.
        """
        try:
            os.killpg(self.popen.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            # Group leader already reaped and pid reused; fall back to the child
            self.popen.kill()
        try:
            self.popen.wait(timeout=5.0)
        except subprocess.TimeoutExpired:
            logger.error("Process %s (pid %d) did not exit after SIGKILL", self.name, self.pid)


def start_process(
    command: Sequence[str],
    *,
    name: str,
    env_to_set: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> ManagedProcess:
    """Start a command in a new session with stdout and stderr merged.

    Both streams share one pipe so the captured text keeps the chronological
    interleaving the operation produced.

    Args:
        command: Command to run as list of strings
        name: Label used in log messages
        env_to_set: Environment variables added on top of the inherited environment
        cwd: Working directory (optional)

    Returns:
        ManagedProcess wrapping the Popen object
    """
    env = None
    if env_to_set:
        env = dict(os.environ)
        env.update(env_to_set)

    logger.debug("Starting %s: %s", name, shlex.join(command))

    proc = subprocess.Popen(
        list(command),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        text=True,
        errors="replace",
        bufsize=1,
        env=env,
        cwd=str(cwd) if cwd else None,
        start_new_session=True,
    )
    return ManagedProcess(name=name, popen=proc)


def setup_signal_handlers(stop_event: threading.Event) -> None:
    """Install SIGINT/SIGTERM handlers that request a graceful sweep stop.

    The handlers only set the event; the executor kills the running operation
    and the controller records and reclaims the in-flight point before exiting.
    A second signal restores the default behaviour.
    """

    def _handler(signum, _frame):
        name = signal.Signals(signum).name
        if stop_event.is_set():
            logger.warning("Received %s again, exiting immediately", name)
            signal.signal(signum, signal.SIG_DFL)
            os.kill(os.getpid(), signum)
            return
        logger.warning("Received %s, cancelling the running operation", name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
