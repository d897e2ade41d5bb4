from .dsl import job, sh, aggregator, wf, workflow, JobBuilder, build
from .dag import Pipeline, ungated_jobs
from .matrix import expand
from .skip import should_skip, commit_message_contains, skip_ci, SKIP_CI_MARKER
from .aggregate import aggregate
from .runner import run_pipeline, load_workflow, PipelineRun, ShellRunner, RunResult
from .model import JobSpec, JobInstance, Step, Status, AggregateStatus, RunContext
from .errors import ConfigError

__all__ = [
    "job", "sh", "aggregator", "wf", "workflow", "JobBuilder", "build",
    "Pipeline", "ungated_jobs", "expand",
    "should_skip", "commit_message_contains", "skip_ci", "SKIP_CI_MARKER",
    "aggregate", "run_pipeline", "load_workflow", "PipelineRun", "ShellRunner", "RunResult",
    "JobSpec", "JobInstance", "Step", "Status", "AggregateStatus", "RunContext", "ConfigError",
]
