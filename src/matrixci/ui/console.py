"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import Iterable, Optional

from ..model import JobResult, PipelineResult, Status, StepResult


STATUS_DISPLAY = {
    Status.SUCCEEDED: "SUCCESS",
    Status.FAILED: "FAILED",
    Status.SKIPPED: "SKIPPED",
    Status.TIMED_OUT: "TIMED OUT",
}


class Console:
    """Progress, plan and verdict output for a run. Safe to call from worker threads."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Create a console.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-step progress lines
        """
        self.debug = debug
        self.quiet = quiet
        # instances report from worker threads
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        event: str,
        instance_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Event: {event}",
            f"Job instances: {instance_count}",
            "",
        )

    def print_trigger(self, triggered: bool, reason: str) -> None:
        """Print the trigger decision."""
        verdict = "triggered" if triggered else "not triggered"
        self._emit(f"TRIGGER: {verdict} ({reason})")

    def print_plan_instance(self, label: str, steps: Iterable[str], needs: Iterable[str] = ()) -> None:
        """Print one expanded job instance of the plan."""
        needs = list(needs)
        suffix = f" (needs: {', '.join(needs)})" if needs else ""
        lines = [f"  {label}{suffix}"]
        lines.extend(f"    - {s}" for s in steps)
        self._emit(*lines)

    def print_plan_job_invalid(self, job: str, reason: str) -> None:
        self._emit(f"  {job} (invalid: {reason})")

    def print_job_start(self, label: str) -> None:
        """Print job instance start message."""
        if not self.quiet:
            self._emit(f"\nJOB STARTED: {label}")

    def print_step(self, label: str, name: str) -> None:
        """Print step start message."""
        if not self.quiet:
            self._emit(f"[{label}] STEP: {name}")

    def print_step_result(self, label: str, result: StepResult) -> None:
        if self.quiet:
            return
        lines = [f"[{label}] {result.step}: {STATUS_DISPLAY[result.status]}"]
        if result.exit_code not in (None, 0):
            lines.append(f"[{label}] Exit code: {result.exit_code}")
        if result.message and result.status != Status.SUCCEEDED:
            lines.append(f"[{label}] Error: {result.message.splitlines()[0]}")
        if result.output and (self.debug or result.status == Status.FAILED):
            lines.extend(f"[{label}] | {line}" for line in result.output.splitlines())
        self._emit(*lines)

    def print_job_result(self, result: JobResult) -> None:
        """Print job instance completion message."""
        if self.quiet:
            return
        self._emit(f"JOB FINISHED: {result.label} ({STATUS_DISPLAY[result.status]}, {result.duration:.1f}s)")

    def print_results(self, result: PipelineResult) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        if not result.triggered:
            lines.append("  no jobs triggered")
        for job in result.jobs:
            status_display = STATUS_DISPLAY[job.status]
            if not job.required:
                status_display += " (not required)"
            lines.append(f"  {job.label}: {status_display}")
            failure = job.first_failure
            if failure is not None and not job.ok:
                code = f" (exit={failure.exit_code})" if failure.exit_code is not None else ""
                lines.append(f"    first failing step: {failure.step}{code}")
            if job.error_kind and job.message:
                lines.append(f"    {job.error_kind}: {job.message.splitlines()[0]}")
        lines.append("")
        lines.append(f"VERDICT: {'SUCCESS' if result.succeeded else 'FAILURE'} (exit {result.exit_code})")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print an error block to stderr.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", f"{message}"]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Unexpected exception: one line, or the traceback with --debug."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Process-wide console; the CLI replaces it once options are parsed
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
