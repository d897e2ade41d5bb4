# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Collection, Dict, Mapping, Optional, Tuple


class Status(str, Enum):
    """Lifecycle of a single job instance: pending -> one terminal state."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self is not Status.PENDING

    @property
    def passed(self) -> bool:
        # a skip is not a failure
        return self in (Status.SUCCESS, Status.SKIPPED)


class AggregateStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"

    @property
    def exit_code(self) -> int:
        return 0 if self is AggregateStatus.SUCCESS else 1


class StatusError(RuntimeError):
    """Raised when something tries to overwrite a terminal status."""


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None


@dataclass(frozen=True)
class RunContext:
    """
    Everything a skip predicate may look at.

    Built once per run by the trigger (CLI, tests) and passed explicitly,
    so predicates never read process-global state.
    """
    commit_message: str = ""
    ref: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)


SkipPredicate = Callable[[RunContext], bool]


@dataclass(frozen=True)
class JobSpec:
    """
    A CI job definition: steps + dependencies + matrix axes.

    `matrix` maps axis name -> ordered values; insertion order of the axes
    is part of the instance identity. `exclude` lists partial combinations
    that are dropped after the cartesian product is built.

    An aggregator has no steps of its own; its single instance resolves to
    the aggregate of everything named in `needs`.
    """
    name: str
    steps: Tuple[Step, ...] = ()
    needs: Tuple[str, ...] = ()
    matrix: Dict[str, Tuple[object, ...]] = field(default_factory=dict)
    exclude: Tuple[Dict[str, object], ...] = ()
    skip_if: Optional[SkipPredicate] = None
    env: Dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    display_name: str | None = None
    aggregator: bool = False
    # non-gating jobs may stay out of every aggregator's needs
    gating: bool = True

    @property
    def title(self) -> str:
        return self.display_name or self.name


@dataclass
class JobInstance:
    """
    One concrete materialization of a JobSpec.

    `params` holds the chosen value of every axis, in axis declaration
    order. Status is write-once: see `resolve`.
    """
    spec: JobSpec
    params: Tuple[Tuple[str, object], ...] = ()
    status: Status = Status.PENDING
    reason: str | None = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def id(self) -> str:
        if not self.params:
            return self.spec.name
        values = ", ".join(str(v) for _, v in self.params)
        return f"{self.spec.name} ({values})"

    @property
    def matrix_values(self) -> Dict[str, object]:
        return dict(self.params)

    def resolve(self, status: Status, reason: str | None = None) -> None:
        if status is Status.PENDING:
            raise StatusError(f"[{self.id}] cannot resolve to pending")
        if self.status.terminal:
            raise StatusError(
                f"[{self.id}] status already set to {self.status.value}, "
                f"refusing to overwrite with {status.value}"
            )
        self.status = status
        self.reason = reason

    def resolve_if_pending(self, status: Status, reason: str | None = None) -> bool:
        if self.status.terminal:
            return False
        self.resolve(status, reason)
        return True


# spec name -> every instance produced for that spec
ResultSet = Mapping[str, Collection[JobInstance]]
