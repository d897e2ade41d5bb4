# src/gateci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .errors import ConfigError
from .model import JobSpec, SkipPredicate, Step


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd)


def _axes(matrix: Optional[Mapping[str, Iterable[Any]]]) -> Dict[str, tuple]:
    # materialize iterables once; axis order is kept
    axes = {}
    for axis, values in (matrix or {}).items():
        if isinstance(values, (str, bytes)):
            raise ConfigError(f"Matrix axis '{axis}' must be a list of values, got {values!r}")
        axes[axis] = tuple(values)
    return axes


# ---------------------------------------------------------------------
# Functional helpers
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[Sequence[str]] = None,
    matrix: Optional[Mapping[str, Iterable[Any]]] = None,
    exclude: Optional[Sequence[Mapping[str, Any]]] = None,
    skip_if: Optional[SkipPredicate] = None,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd for steps missing one
    display_name: str | None = None,
    gating: bool = True,
) -> JobSpec:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return JobSpec(
        name=name,
        steps=tuple(steps_final),
        needs=tuple(needs or ()),
        matrix=_axes(matrix),
        exclude=tuple(dict(e) for e in (exclude or ())),
        skip_if=skip_if,
        # force values to str for env compatibility
        env={k: str(v) for k, v in (env or {}).items()},
        cwd=cwd,
        display_name=display_name,
        gating=gating,
    )


def aggregator(name: str, needs: Sequence[str], *, display_name: str | None = None) -> JobSpec:
    """
    A job with no steps whose result is the aggregate of `needs`.

    Every job that should gate a merge has to be listed here (or be
    needed, directly or not, by something listed here).
    """
    return JobSpec(name=name, needs=tuple(needs), display_name=display_name, aggregator=True)


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._matrix: dict[str, tuple] = {}
        self._exclude: list[dict] = []
        self._skip_if: Optional[SkipPredicate] = None
        self._env: dict[str, str] = {}
        self._cwd: str | None = None
        self._display_name: str | None = None
        self._gating: bool = True

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def with_matrix(self, axis: str, *values: Any):
        self._matrix[axis] = tuple(values)
        return self

    def exclude(self, **combo: Any):
        self._exclude.append(combo)
        return self

    def skip_when(self, predicate: SkipPredicate):
        self._skip_if = predicate
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def in_dir(self, cwd: str):
        self._cwd = cwd
        return self

    def named(self, display_name: str):
        self._display_name = display_name
        return self

    def non_gating(self):
        self._gating = False
        return self

    def build(self) -> JobSpec:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return job(
            self.name,
            steps_list=self._steps,
            needs=self._needs,
            matrix=self._matrix,
            exclude=self._exclude,
            skip_if=self._skip_if,
            env=self._env,
            cwd=self._cwd,
            display_name=self._display_name,
            gating=self._gating,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: JobSpec) -> List[JobSpec]:
    """
    Workflow definition helper.

    Users can write:
        from gateci import wf, job, sh, aggregator

        def workflow():
            return wf(
                aggregator("ci-result", needs=["test"]),
                job("test", sh("Run tests", "pytest -q")),
            )

    Or use JOBS directly:
        JOBS = wf(job(...), job(...))
    """
    return list(jobs)


workflow = wf  # alias; avoid naming your own function workflow if you use it
