# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

from .errors import ConfigError
from .matrix import check_axes
from .model import JobSpec


class Pipeline:
    """
    Validated, immutable set of job specs.

    Specs live in an arena (`self.specs`) and edges are stored as index
    lists, so lookups never go through ad-hoc string matching once the
    pipeline is built:

      deps[i]        indices of the specs job i needs (declaration order)
      dependents[i]  indices of the specs that need job i

    Construction raises ConfigError for duplicate names, missing or self
    references, cycles, empty matrix axes and malformed aggregators.
    Nothing runs before this succeeds.
    """

    def __init__(self, specs: Iterable[JobSpec]):
        self.specs: Tuple[JobSpec, ...] = tuple(specs)

        names = [s.name for s in self.specs]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ConfigError(f"Duplicate job names found: {dupes}")

        self._index: Dict[str, int] = {s.name: i for i, s in enumerate(self.specs)}
        self.deps: List[List[int]] = [[] for _ in self.specs]
        self.dependents: List[List[int]] = [[] for _ in self.specs]

        for i, spec in enumerate(self.specs):
            _check_spec(spec)
            for need in spec.needs:
                if need == spec.name:
                    raise ConfigError(f"Job '{spec.name}' needs itself", job=spec.name)
                if need not in self._index:
                    raise ConfigError(
                        f"Job '{spec.name}' needs missing job '{need}'. "
                        f"Known jobs: {sorted(self._index)}",
                        job=spec.name,
                    )
                j = self._index[need]
                if j in self.deps[i]:
                    raise ConfigError(f"Job '{spec.name}' lists '{need}' in needs twice", job=spec.name)
                self.deps[i].append(j)
                self.dependents[j].append(i)

        self.levels: List[List[str]] = topo_levels(self)

    def __len__(self) -> int:
        return len(self.specs)

    def __iter__(self):
        return iter(self.specs)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    @property
    def names(self) -> List[str]:
        return [s.name for s in self.specs]

    def index_of(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise ConfigError(f"Unknown job '{name}'. Known jobs: {sorted(self._index)}") from None

    def spec(self, name: str) -> JobSpec:
        return self.specs[self.index_of(name)]

    def dependencies_of(self, name: str) -> List[str]:
        return [self.specs[j].name for j in self.deps[self.index_of(name)]]

    def dependents_of(self, name: str) -> List[str]:
        return [self.specs[j].name for j in self.dependents[self.index_of(name)]]

    @property
    def aggregators(self) -> List[JobSpec]:
        return [s for s in self.specs if s.aggregator]

    def gate(self, name: str | None = None) -> JobSpec:
        """
        Pick the aggregator whose status is the run's exit code.

        With no name the pipeline must define exactly one aggregator.
        """
        if name is not None:
            spec = self.spec(name)
            if not spec.aggregator:
                raise ConfigError(f"Gate '{name}' is not an aggregator job", job=name)
            return spec

        aggs = self.aggregators
        if len(aggs) != 1:
            found = [a.name for a in aggs]
            raise ConfigError(
                f"Expected exactly one aggregator job to use as the gate, found {found}. "
                "Pass the gate name explicitly."
            )
        return aggs[0]


def _check_spec(spec: JobSpec) -> None:
    if not spec.name:
        raise ConfigError("Job name must be a non-empty string")

    check_axes(spec)

    if spec.aggregator:
        if spec.steps:
            raise ConfigError(f"Aggregator '{spec.name}' must not define steps", job=spec.name)
        if spec.matrix:
            raise ConfigError(f"Aggregator '{spec.name}' must not define a matrix", job=spec.name)
        if spec.skip_if is not None:
            raise ConfigError(f"Aggregator '{spec.name}' cannot be skipped", job=spec.name)
    elif not spec.steps:
        raise ConfigError(f"Job '{spec.name}' has no steps", job=spec.name)


def topo_levels(pipeline: Pipeline) -> List[List[str]]:
    """
    Convert the DAG into topological "levels" (stages).
    Each stage can run in parallel.
    """
    indeg = [len(d) for d in pipeline.deps]
    q = deque(sorted((i for i, d in enumerate(indeg) if d == 0), key=lambda i: pipeline.specs[i].name))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(pipeline.specs[node].name)
            processed += 1

            for child in sorted(pipeline.dependents[node], key=lambda i: pipeline.specs[i].name):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted(pipeline.specs[i].name for i, d in enumerate(indeg) if d > 0)
        raise ConfigError(f"DAG has a cycle. Stuck jobs: {remaining}")

    return levels


def ungated_jobs(pipeline: Pipeline) -> List[str]:
    """
    Jobs whose result no aggregator can see.

    A failing job fails everything that needs it, so a job is gated when
    some aggregator reaches it through `needs`, directly or transitively.
    Jobs marked gating=False are allowed to stay out.
    """
    seen: Set[int] = set()
    stack = [pipeline.index_of(a.name) for a in pipeline.aggregators]
    while stack:
        i = stack.pop()
        for j in pipeline.deps[i]:
            if j not in seen:
                seen.add(j)
                stack.append(j)

    return [
        spec.name
        for i, spec in enumerate(pipeline.specs)
        if not spec.aggregator and spec.gating and i not in seen
    ]


