# runner.py
from __future__ import annotations

import os
import re
import runpy
import signal
import subprocess
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Protocol, Sequence, Set, Tuple

from .aggregate import aggregate, dependency_passed, failed_dependencies, instance_status
from .dag import Pipeline
from .errors import StepFailure
from .matrix import expand
from .model import AggregateStatus, JobInstance, JobSpec, RunContext, Status, Step
from .skip import describe, should_skip
from .ui.console import get_console

# reasons attached to failure statuses
REASON_STEP_FAILED = "step failed"
REASON_CANCELLED = "cancelled"
REASON_TIMED_OUT = "timed out"


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> List[JobSpec]:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> List[JobSpec]
      - JOBS = [JobSpec, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"gateci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    jobs = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            jobs = globals_dict["workflow"]()
        except TypeError as e:
            if "positional arguments but" in str(e) and "was given" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from gateci import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if not isinstance(jobs, list) or not all(isinstance(j, JobSpec) for j in jobs):
        raise TypeError(
            "Workflow must return/define a List[JobSpec]. "
            "Define workflow() -> List[JobSpec] or JOBS = [JobSpec, ...]."
        )

    return jobs


# ----------------------------------------------------------------------
# Job runner contract + local shell implementation
# ----------------------------------------------------------------------

class JobRunner(Protocol):
    """
    Executes one instance's steps in order, stopping at the first failure.

    Must return Status.SUCCESS or Status.FAILURE, never PENDING. Raising is
    allowed and is recorded as a failure of the instance.

    A runner may also define `cancel()`; the scheduler calls it when the
    run is cancelled or hits its deadline, and it must make in-flight
    `run` calls return promptly.
    """

    def run(self, instance: JobInstance) -> Status:
        ...


def matrix_env(instance: JobInstance) -> Dict[str, str]:
    """Export matrix values as MATRIX_<AXIS> (axis name upper-cased, non-alnum -> _)."""
    return {
        "MATRIX_" + re.sub(r"[^A-Za-z0-9]", "_", axis).upper(): str(value)
        for axis, value in instance.params
    }


def _kill(proc: subprocess.Popen) -> None:
    # steps run in their own session; take the whole process group down
    if proc.poll() is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


class ShellRunner:
    """
    Runs each step with the shell on the local machine.

    Containers are not provisioned; matrix values (container images,
    target triples, ...) only reach the steps through the environment.
    Live step processes are tracked so `cancel()` can kill them.
    """

    def __init__(self, repo_root: str | Path = ".", step_timeout: float | None = None):
        self.repo_root = Path(repo_root).resolve()
        self.step_timeout = step_timeout
        self._procs: Set[subprocess.Popen] = set()
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Kill every running step; steps not yet started never start."""
        self._cancelled.set()
        with self._lock:
            procs = list(self._procs)
        for proc in procs:
            _kill(proc)

    def _env(self, instance: JobInstance) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(instance.spec.env or {})
        env.update(matrix_env(instance))
        return env

    def _run_step(self, instance: JobInstance, step: Step) -> None:
        cwd = (self.repo_root / (step.cwd or instance.spec.cwd or ".")).resolve()
        if not cwd.exists():
            raise FileNotFoundError(f"[{instance.id}] step '{step.name}' cwd not found: {cwd}")

        proc = subprocess.Popen(
            step.run,
            shell=True,
            cwd=str(cwd),
            env=self._env(instance),
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=os.name == "posix",
        )
        with self._lock:
            self._procs.add(proc)
        # cancel() may have run between the check in run() and the add above
        if self._cancelled.is_set():
            _kill(proc)

        try:
            stdout, stderr = proc.communicate(timeout=self.step_timeout)
        except subprocess.TimeoutExpired as e:
            _kill(proc)
            proc.communicate()
            raise StepFailure(
                job=instance.id,
                step=step.name,
                cmd=step.run,
                exit_code=-1,
                stderr=f"timed out after {e.timeout}s",
            ) from e
        finally:
            with self._lock:
                self._procs.discard(proc)

        if self._cancelled.is_set():
            raise StepFailure(
                job=instance.id,
                step=step.name,
                cmd=step.run,
                exit_code=proc.returncode,
                stderr=REASON_CANCELLED,
            )

        get_console().print_debug(f"[{instance.id}] {step.name} stdout:\n{stdout[-4000:]}")

        if proc.returncode != 0:
            raise StepFailure(
                job=instance.id,
                step=step.name,
                cmd=step.run,
                exit_code=proc.returncode,
                stdout=stdout[-4000:],
                stderr=stderr[-4000:],
            )

    def run(self, instance: JobInstance) -> Status:
        console = get_console()
        console.print_job_start(instance.id)
        for step in instance.spec.steps:
            if self._cancelled.is_set():
                return Status.FAILURE
            console.print_step(instance.id, step.name)
            try:
                self._run_step(instance, step)
            except StepFailure as e:
                console.print_failure(step.name, f"{e}\n{e.stderr}", exit_code=e.exit_code)
                return Status.FAILURE
        return Status.SUCCESS


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

@dataclass
class RunResult:
    """Outcome of one pipeline run, as seen through its gate aggregator."""
    gate: str
    status: AggregateStatus
    instances: Dict[str, Tuple[JobInstance, ...]]
    failed: List[str] = field(default_factory=list)
    interrupted: bool = False

    @property
    def exit_code(self) -> int:
        return self.status.exit_code

    def all_instances(self) -> List[JobInstance]:
        return [i for group in self.instances.values() for i in group]


class PipelineRun:
    """
    One execution of a validated pipeline.

    Specs become ready once every spec they need is fully terminal. A
    ready spec is then, in order of precedence:

      - an aggregator: resolved from its needs' instance sets,
      - blocked: some need did not pass, every instance fails,
      - skipped: its skip predicate holds, every instance is skipped,
      - run: each instance is handed to the job runner on the pool.

    Only this scheduler writes instance statuses. Cancellation or the
    run deadline resolves everything still pending to failure, so no
    instance (and no aggregator) is left pending when `execute` returns.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        context: RunContext,
        runner: JobRunner,
        *,
        max_workers: int | None = None,
        timeout: float | None = None,
        poll_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pipeline = pipeline
        self.context = context
        self.runner = runner
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._clock = clock

        if max_workers is None:
            c = os.cpu_count() or 2
            max_workers = max(1, c - 1)
        self.max_workers = max_workers

        self.instances: Dict[str, Tuple[JobInstance, ...]] = {s.name: expand(s) for s in pipeline}
        self.skipped: List[str] = []
        self.interrupted = False
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; safe to call from any thread."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # -- spec resolution ------------------------------------------------

    def _resolve_all(self, spec: JobSpec, status: Status, reason: str | None) -> None:
        console = get_console()
        for inst in self.instances[spec.name]:
            inst.resolve(status, reason)
            console.print_instance_done(inst)

    def _start(self, spec: JobSpec) -> List[JobInstance]:
        """Resolve what can be resolved synchronously; return instances to run."""
        console = get_console()

        if spec.aggregator:
            status = aggregate(spec.needs, self.instances)
            failed = failed_dependencies(spec.needs, self.instances)
            self._resolve_all(
                spec,
                instance_status(status),
                None if not failed else f"needs failed: {', '.join(failed)}",
            )
            return []

        blocked = [n for n in spec.needs if not dependency_passed(self.instances[n])]
        if blocked:
            self._resolve_all(spec, Status.FAILURE, f"needs failed: {', '.join(blocked)}")
            return []

        try:
            skip = should_skip(spec.skip_if, self.context)
        except Exception as e:
            self._resolve_all(spec, Status.FAILURE, f"skip predicate raised: {e}")
            return []

        if skip:
            self.skipped.append(spec.name)
            console.print_job_skipped(spec.title, describe(spec.skip_if))
            self._resolve_all(spec, Status.SKIPPED, describe(spec.skip_if))
            return []

        return list(self.instances[spec.name])

    def _abort(self, reason: str) -> None:
        console = get_console()
        for group in self.instances.values():
            for inst in group:
                if inst.resolve_if_pending(Status.FAILURE, reason):
                    console.print_instance_done(inst)

    def _record(self, fut: Future, inst: JobInstance) -> None:
        try:
            status = fut.result()
            if status is Status.SUCCESS:
                reason = None
            elif status is Status.FAILURE:
                reason = REASON_STEP_FAILED
            else:
                status, reason = Status.FAILURE, f"runner returned {status!r}"
        except Exception as e:
            status, reason = Status.FAILURE, str(e) or type(e).__name__
        inst.resolve(status, reason)
        get_console().print_instance_done(inst)

    def _stop_runner(self) -> None:
        stop = getattr(self.runner, "cancel", None)
        if callable(stop):
            stop()

    # -- main loop ------------------------------------------------------

    def execute(self) -> None:
        p = self.pipeline
        waiting = [len(d) for d in p.deps]
        remaining = [len(self.instances[s.name]) for s in p.specs]
        ready: Deque[int] = deque(i for i, w in enumerate(waiting) if w == 0)
        in_flight: Dict[Future, Tuple[int, JobInstance]] = {}
        deadline = None if self.timeout is None else self._clock() + self.timeout

        def finish(i: int) -> None:
            for d in p.dependents[i]:
                waiting[d] -= 1
                if waiting[d] == 0:
                    ready.append(d)

        pool = ThreadPoolExecutor(max_workers=self.max_workers)
        aborted = False
        try:
            while ready or in_flight:
                if self.cancelled:
                    self._abort(REASON_CANCELLED)
                    aborted = True
                    break
                if deadline is not None and self._clock() >= deadline:
                    self._abort(REASON_TIMED_OUT)
                    aborted = True
                    break

                # schedule all currently ready
                while ready:
                    i = ready.popleft()
                    to_run = self._start(p.specs[i])
                    if not to_run:
                        finish(i)
                        continue
                    for inst in to_run:
                        in_flight[pool.submit(self.runner.run, inst)] = (i, inst)

                if not in_flight:
                    continue

                slice_s = self.poll_interval
                if deadline is not None:
                    slice_s = max(0.0, min(slice_s, deadline - self._clock()))
                done, _ = wait(list(in_flight), timeout=slice_s, return_when=FIRST_COMPLETED)

                for fut in done:
                    i, inst = in_flight.pop(fut)
                    self._record(fut, inst)
                    remaining[i] -= 1
                    if remaining[i] == 0:
                        finish(i)
        except KeyboardInterrupt:
            self.cancel()
            self.interrupted = True
            self._abort(REASON_CANCELLED)
            aborted = True
        finally:
            if aborted:
                self._stop_runner()
            pool.shutdown(wait=not aborted, cancel_futures=True)

    def result(self, gate: str | None = None) -> RunResult:
        spec = self.pipeline.gate(gate)
        (inst,) = self.instances[spec.name]
        status = AggregateStatus.SUCCESS if inst.status is Status.SUCCESS else AggregateStatus.FAILURE
        return RunResult(
            gate=spec.name,
            status=status,
            instances=dict(self.instances),
            failed=failed_dependencies(spec.needs, self.instances),
            interrupted=self.interrupted,
        )


def run_pipeline(
    jobs: Sequence[JobSpec] | Pipeline,
    context: RunContext | None = None,
    runner: Optional[JobRunner] = None,
    *,
    gate: str | None = None,
    max_workers: int | None = None,
    timeout: float | None = None,
) -> RunResult:
    """
    Validate, expand, execute and gate a pipeline in one call.

    Configuration errors are raised before any instance runs.
    """
    pipeline = jobs if isinstance(jobs, Pipeline) else Pipeline(jobs)
    pipeline.gate(gate)

    run = PipelineRun(
        pipeline,
        context or RunContext(),
        runner or ShellRunner(),
        max_workers=max_workers,
        timeout=timeout,
    )
    run.execute()
    return run.result(gate)
