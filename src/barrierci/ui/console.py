"""Console output formatting utilities for barrierci."""

from __future__ import annotations

import sys
import threading
from typing import Optional, Sequence


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # steps finish on worker threads; keep multi-line blocks together
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
        branch: str,
        commit: str,
        node_count: int,
        worker_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Branch: {branch}",
            f"Commit: {commit}",
            f"Steps: {node_count}",
            f"Agents: {worker_count}",
            "",
        )

    def print_segment(self, number: int, labels: Sequence[str]) -> None:
        """Print the start of a barrier-delimited segment."""
        self._emit(f"=== Segment {number}: {list(labels)} ===")

    def print_step_start(self, label: str, worker_id: str) -> None:
        self._emit(f"STEP STARTED: {label} (agent {worker_id})")

    def print_step_skipped(self, label: str, reason: str) -> None:
        self._emit(f"STEP SKIPPED: {label} ({reason})")

    def print_step_finished(
        self,
        label: str,
        outcome: str,
        exit_code: Optional[int] = None,
        duration: Optional[float] = None,
        reason: Optional[str] = None,
        output: str = "",
    ) -> None:
        """
        Print a step's terminal outcome.

        Output of failed steps is shown only in debug mode, except for the
        last line which is always printed as a hint.
        """
        lines = [f"STEP {outcome.upper()}: {label}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if duration is not None:
            lines.append(f"Duration: {duration:.1f}s")
        if reason and outcome != "success":
            lines.append(f"Reason: {reason}")
        if output and outcome != "success":
            if self.debug:
                lines.append(output.rstrip())
            else:
                tail = output.rstrip().splitlines()
                if tail:
                    lines.append(f"Last output: {tail[-1]}")
        self._emit(*lines)

    def print_trigger_fired(self, label: str, pipeline: str) -> None:
        self._emit(f"TRIGGER FIRED: {label} -> {pipeline}")

    def print_plan_node(self, label: str, reason: str) -> None:
        """Print a node that will run."""
        self._emit(f"  {label} ({reason})")

    def print_plan_node_skipped(self, label: str, reason: str) -> None:
        """Print a node that will be skipped."""
        self._emit(f"  {label} (skipped: {reason})")

    def print_results(self, rows: Sequence[dict], status: str) -> None:
        """Print final results summary, one row per node in document order."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for row in rows:
            extra = []
            if row.get("exit_code") is not None:
                extra.append(f"exit={row['exit_code']}")
            if row.get("duration") is not None:
                extra.append(f"{row['duration']:.1f}s")
            suffix = f" ({', '.join(extra)})" if extra else ""
            lines.append(f"  {row['label']}: {row['outcome'].upper()}{suffix}")
        lines.append(f"\nPIPELINE: {status.upper()}")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
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


# Global console instance (will be initialized by CLI)
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
