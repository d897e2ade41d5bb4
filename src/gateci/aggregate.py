# aggregate.py
from __future__ import annotations

from typing import Collection, Sequence

from .errors import ConfigError
from .model import AggregateStatus, JobInstance, ResultSet, Status


def dependency_passed(instances: Collection[JobInstance]) -> bool:
    """
    Reduce one dependency's instance set to pass/fail.

    Every instance must be success or skipped. A failure fails the whole
    dependency, and so does an instance still pending: by the time an
    aggregate is computed the run is either complete or past its deadline.
    An empty set passes (absence is not failure).
    """
    return all(i.status.passed for i in instances)


def failed_dependencies(dependency_names: Sequence[str], results_of: ResultSet) -> list[str]:
    failed: list[str] = []
    for name in dependency_names:
        if name not in results_of:
            raise ConfigError(f"Aggregated dependency '{name}' produced no result set", job=name)
        if not dependency_passed(results_of[name]):
            failed.append(name)
    return failed


def aggregate(dependency_names: Sequence[str], results_of: ResultSet) -> AggregateStatus:
    """
    Compute the gate status for an aggregator.

    Pure and deterministic: the same inputs always give the same status.
    No dependencies means success.
    """
    if failed_dependencies(dependency_names, results_of):
        return AggregateStatus.FAILURE
    return AggregateStatus.SUCCESS


def instance_status(status: AggregateStatus) -> Status:
    return Status.SUCCESS if status is AggregateStatus.SUCCESS else Status.FAILURE
