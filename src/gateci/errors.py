# errors.py
from __future__ import annotations

from dataclasses import dataclass


class ConfigError(ValueError):
    """
    Pipeline definition problem, detected before any job runs.

    Carries the offending job name (if any) so the CLI can point at it.
    """

    def __init__(self, message: str, job: str | None = None):
        super().__init__(message)
        self.job = job


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"
