# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Main orchestration script for benchmark sweeps.

Coordinates one sweep invocation:
1. Setup: make sure the backend has the dataset, loading it at most once
2. For every sweep point: invalidate caches, run the sort under a timeout,
   write the run log, append to the ledger, reclaim the artifact
3. Cool down between points, stopping early on SIGINT/SIGTERM
4. Summary
"""

import argparse
import enum
import functools
import logging
import os
import shlex
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import yaml
from jinja2 import Environment, FileSystemLoader
from marshmallow import ValidationError

from sortctl.cli.report import display_entries, display_plan
from sortctl.core.config import load_config
from sortctl.core.executor import RunExecutor, RunResult, RunStatus
from sortctl.core.ledger import LedgerEntry, ResultLedger
from sortctl.core.processes import setup_signal_handlers
from sortctl.core.reclaim import clear_directory, reclaim_artifact
from sortctl.core.runtime import RuntimeContext
from sortctl.core.schema import RunConfig, SweepConfig
from sortctl.core.sweep import PlanError, SweepPlan, resolve_plan
from sortctl.logging_utils import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130

_STATUS_LABELS = {
    RunStatus.SUCCESS: "SUCCESS",
    RunStatus.FAILED: "FAILED",
    RunStatus.TIMED_OUT: "TIMEOUT",
}


class SetupError(RuntimeError):
    """The dataset could not be made available; no point can run."""


class PointState(str, enum.Enum):
    """Lifecycle of one sweep point."""

    PENDING = "pending"
    INVALIDATING = "invalidating"
    EXECUTING = "executing"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    RECORDING = "recording"
    RECLAIMING = "reclaiming"
    DONE = "done"


@dataclass
class PointOutcome:
    """What happened to one sweep point."""

    run: RunConfig
    result: RunResult
    entry: LedgerEntry
    log_file: Path | None
    reclaimed: bool
    states: list[PointState] = field(default_factory=list)


@dataclass
class SweepOrchestrator:
    """Main orchestrator for benchmark sweeps.

    Usage:
        config = load_config(config_path)  # Returns typed SweepConfig
        runtime = RuntimeContext.from_config(config)
        orchestrator = SweepOrchestrator(config, runtime, resolve_plan(config), RunExecutor())
        exit_code = orchestrator.run()
    """

    config: SweepConfig
    runtime: RuntimeContext
    plan: SweepPlan
    executor: RunExecutor
    stop_event: threading.Event = field(default_factory=threading.Event)
    reclaim: Callable[[Path | None], bool] = reclaim_artifact
    skip_load: bool = False
    resume: bool = False
    retry_failed: bool = False

    @property
    def backend(self):
        """Access the backend config (implements BackendProtocol)."""
        return self.config.backend

    @functools.cached_property
    def ledger(self) -> ResultLedger:
        return ResultLedger(self.runtime.ledger_path)

    @functools.cached_property
    def _templates(self) -> Environment:
        template_dir = Path(__file__).parent.parent / "templates"
        return Environment(loader=FileSystemLoader(str(template_dir)), keep_trailing_newline=True)

    # =========================================================================
    # Setup
    # =========================================================================

    def setup(self) -> None:
        """Make sure the dataset is loaded, loading it at most once.

        Raises:
            SetupError: If the dataset is missing and cannot be loaded
        """
        probe = next(iter(self.plan))
        dataset = self.config.dataset

        if self._dataset_present(probe):
            logger.info("Dataset '%s' already present in %s, skipping load", dataset.table, probe.target)
            return

        if self.skip_load:
            raise SetupError(f"Dataset '{dataset.table}' is not loaded in {probe.target} and --skip-load was given")

        logger.info("Loading %s (%s) into %s", dataset.input_file, dataset.format, probe.target)
        try:
            result = self.backend.load(
                probe,
                self.executor,
                threads=dataset.load_threads,
                timeout=dataset.load_timeout_seconds,
            )
        except Exception as e:
            raise SetupError(f"Dataset load failed: {e}") from e

        if not result.succeeded:
            if result.output:
                logger.error("Loader output:\n%s", result.output.rstrip())
            raise SetupError(f"Dataset load failed: {result.message}")

        if not self._dataset_present(probe):
            raise SetupError(f"Loader succeeded but dataset '{dataset.table}' is still missing")

        logger.info("Dataset loaded in %.1fs", result.wall_clock)

    def _dataset_present(self, probe: RunConfig) -> bool:
        try:
            return bool(self.backend.dataset_present(probe))
        except Exception as e:
            logger.warning("Dataset presence check failed, treating as absent: %s", e)
            return False

    # =========================================================================
    # Sweep points
    # =========================================================================

    def run_point(self, run: RunConfig) -> PointOutcome:
        """Drive one point through invalidate, execute, record and reclaim.

        Run failures are recorded, never raised. The artifact is reclaimed
        exactly once, after the ledger append, even if recording fails.

        Raises:
            OSError: If the ledger entry cannot be written
        """
        states = [PointState.PENDING]
        artifact = self.backend.artifact_path(run)
        result: RunResult | None = None
        entry: LedgerEntry | None = None
        log_file: Path | None = None
        reclaimed = False

        try:
            states.append(PointState.INVALIDATING)
            try:
                self.backend.invalidate_cache(run)
            except Exception as e:
                logger.warning("Cache invalidation failed (ignored): %s", e)

            states.append(PointState.EXECUTING)
            started = datetime.now()
            start = time.monotonic()
            try:
                result = self.backend.run(run, self.executor)
            except Exception as e:
                logger.exception("Backend error while running %s", run.label)
                result = RunResult(
                    status=RunStatus.FAILED,
                    wall_clock=time.monotonic() - start,
                    output=f"{type(e).__name__}: {e}\n",
                    message=f"backend error: {e}",
                )
            finished = datetime.now()

            if result.status is RunStatus.TIMED_OUT:
                states.append(PointState.TIMED_OUT)
            elif result.status is RunStatus.FAILED:
                states.append(PointState.FAILED)

            states.append(PointState.RECORDING)
            log_file = self._write_run_log(run, result, started, finished)
            entry = self.ledger.append(run, result, log_file)
        finally:
            states.append(PointState.RECLAIMING)
            reclaimed = self.reclaim(artifact)
            if run.temp_dir and not clear_directory(run.temp_dir):
                logger.warning("Could not fully clear spill directory %s", run.temp_dir)
            states.append(PointState.DONE)

        return PointOutcome(run=run, result=result, entry=entry, log_file=log_file, reclaimed=reclaimed, states=states)

    def _write_run_log(self, run: RunConfig, result: RunResult, started: datetime, finished: datetime) -> Path | None:
        """Render the per-run log file. A write failure is logged, not raised."""
        try:
            command = shlex.join(self.backend.build_run_command(run))
        except Exception as e:
            command = f"<unavailable: {e}>"

        path = self.runtime.run_log_path(run, started)
        text = self._templates.get_template("run_log.j2").render(
            title=f"{run.backend} sweep '{run.sweep_name}'",
            run=run,
            result=result,
            command=command,
            status_label=_STATUS_LABELS[result.status],
            started=started.strftime("%Y-%m-%d %H:%M:%S"),
            finished=finished.strftime("%Y-%m-%d %H:%M:%S"),
        )
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)
        except OSError as e:
            logger.error("Could not write run log %s: %s", path, e)
            return None

        logger.info("Run log: %s", path)
        return path

    def _should_skip(self, run: RunConfig, recorded: dict[RunConfig, list[LedgerEntry]]) -> bool:
        entries = recorded.get(run)
        if not entries:
            return False
        if self.retry_failed and not any(entry.measured for entry in entries):
            logger.info("Retrying %s (%d earlier attempt(s) without a measurement)", run.label, len(entries))
            return False
        return True

    def _cooldown(self) -> None:
        seconds = self.config.run.cooldown_seconds
        if seconds <= 0:
            return
        logger.info("Cooling down for %.0fs", seconds)
        self.stop_event.wait(seconds)

    # =========================================================================
    # Main loop
    # =========================================================================

    def run(self) -> int:
        """Run the complete sweep.

        Returns:
            0 when orchestration was healthy (individual points may have
            failed), 1 on setup or ledger failure, 130 when interrupted
        """
        logger.info("Sweep Orchestrator")
        logger.info("Sweep: %s", self.config.name)
        logger.info("Backend: %s (%s)", self.config.backend_type, self.backend.describe_target())
        logger.info("Points: %d (%s mode)", len(self.plan), self.plan.mode)
        logger.info("Log directory: %s", self.runtime.log_dir)

        self.runtime.ensure_dirs()

        try:
            self.setup()
        except SetupError as e:
            logger.error("Setup failed: %s", e)
            return EXIT_INTERRUPTED if self.stop_event.is_set() else EXIT_ERROR

        recorded = self.ledger.index() if (self.resume or self.retry_failed) else {}
        total = len(self.plan)
        outcomes: list[PointOutcome] = []

        try:
            for index, run in enumerate(self.plan, 1):
                if self.stop_event.is_set():
                    break
                if self._should_skip(run, recorded):
                    logger.info("[%d/%d] Skipping %s (already recorded)", index, total, run.label)
                    continue

                if outcomes:
                    self._cooldown()
                    if self.stop_event.is_set():
                        break

                logger.info("[%d/%d] Running %s", index, total, run.label)
                outcomes.append(self.run_point(run))
        except OSError as e:
            logger.error("Could not record result in %s: %s", self.ledger.path, e)
            return EXIT_ERROR

        display_entries([o.entry for o in outcomes], title=f"Sweep '{self.config.name}'")

        if self.stop_event.is_set():
            logger.warning("Sweep interrupted after %d of %d point(s)", len(outcomes), total)
            return EXIT_INTERRUPTED

        failed = sum(1 for o in outcomes if not o.result.succeeded)
        logger.info("Sweep complete: %d point(s) run, %d failed or timed out", len(outcomes), failed)
        return EXIT_OK


def main(argv: list[str] | None = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run an external-sort benchmark sweep")
    parser.add_argument("config", type=str, help="Path to sweep YAML file")
    parser.add_argument(
        "--settings", type=str, default=None, help="Site settings file or directory (default: ./sortctl.yaml)"
    )
    parser.add_argument("--log-dir", type=str, default=None, help="Log directory (overrides the config's log_dir)")
    parser.add_argument("--skip-load", action="store_true", help="Never load the dataset; fail if it is missing")
    parser.add_argument("--resume", action="store_true", help="Skip points already recorded in the ledger")
    parser.add_argument(
        "--retry-failed", action="store_true", help="With --resume, re-run points that never produced a measurement"
    )
    parser.add_argument("--dry-run", action="store_true", help="Print the plan and commands without running anything")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging (includes backend output)")
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings_path = Path(args.settings) if args.settings else Path.cwd()
        config = load_config(Path(args.config), environ=os.environ, settings_path=settings_path)
        plan = resolve_plan(config)
    except (FileNotFoundError, PlanError, ValidationError, ValueError, yaml.YAMLError) as e:
        logger.error("Invalid sweep: %s", e)
        sys.exit(EXIT_ERROR)

    if (args.resume or args.retry_failed) and args.log_dir is None and "{timestamp}" in config.log_dir:
        logger.error("--resume needs a fixed log directory: pass --log-dir or set a log_dir without {timestamp}")
        sys.exit(EXIT_ERROR)

    runtime = RuntimeContext.from_config(config, log_dir=Path(args.log_dir) if args.log_dir else None)

    if args.dry_run:
        display_plan(plan, config.backend)
        sys.exit(EXIT_OK)

    stop_event = threading.Event()
    setup_signal_handlers(stop_event)

    try:
        orchestrator = SweepOrchestrator(
            config=config,
            runtime=runtime,
            plan=plan,
            executor=RunExecutor(stop_event=stop_event),
            stop_event=stop_event,
            skip_load=args.skip_load,
            resume=args.resume,
            retry_failed=args.retry_failed,
        )
        exit_code = orchestrator.run()
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        sys.exit(EXIT_ERROR)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
