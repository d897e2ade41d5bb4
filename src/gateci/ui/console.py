"""Console output formatting utilities for gateci."""

from __future__ import annotations

import sys
from typing import Iterable, Mapping, Optional, Sequence

from ..model import AggregateStatus, JobInstance, Status


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        job_count: int,
        instance_count: int,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Repository: {repository}")
        print(f"Workflow: {workflow}")
        print(f"Jobs: {job_count}")
        print(f"Instances: {instance_count}")
        print()

    def print_job_start(self, name: str) -> None:
        print(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        print(f"[{job}] STEP: {name}")

    def print_instance_done(self, instance: JobInstance) -> None:
        """Print the terminal status of one instance."""
        line = f"[{instance.id}] STATUS: {instance.status.value}"
        if instance.reason:
            line += f" ({instance.reason})"
        print(line)

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
    ) -> None:
        """
        Print step failure details.

        The first line of `reason` is always shown; the rest only in debug mode.
        """
        print(f"STEP FAILED: {name}")
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            if error_line and error_line != str(reason):
                print(f"Error: {error_line}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        print(f"\nJOB SKIPPED: {name} ({reason})")

    def print_plan(
        self,
        levels: Sequence[Sequence[str]],
        instances: Mapping[str, Sequence[JobInstance]],
        skipped: Iterable[str],
    ) -> None:
        """Print the expanded execution plan, stage by stage."""
        skipped = set(skipped)
        for idx, level in enumerate(levels):
            print(f"=== Stage {idx + 1}: {list(level)} ===")
            for name in level:
                note = " (skipped)" if name in skipped else ""
                items = instances.get(name, ())
                if not items:
                    print(f"  {name}: no instances{note}")
                for inst in items:
                    print(f"  {inst.id}{note}")

    def print_results(self, instances: Iterable[JobInstance]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for inst in instances:
            status_display = inst.status.value.upper()
            if inst.reason and inst.status is not Status.SUCCESS:
                status_display += f" ({inst.reason})"
            print(f"  {inst.id}: {status_display}")

    def print_gate(self, name: str, status: AggregateStatus, failed: Sequence[str] = ()) -> None:
        print(f"\nGATE {name}: {status.value.upper()}")
        if failed:
            print(f"Failed dependencies: {', '.join(failed)}")

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
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


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
