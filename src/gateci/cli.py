# cli.py
from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import click

from gateci.dag import Pipeline, ungated_jobs
from gateci.errors import ConfigError
from gateci.matrix import expand
from gateci.git_facts.git import get_current_ref, head_commit_message, repo_root
from gateci.model import RunContext
from gateci.runner import PipelineRun, ShellRunner, load_workflow
from gateci.skip import should_skip
from gateci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "gateci_workflow.py"


def find_workflow_files() -> list[Path]:
    """Find all workflow files in the current directory."""
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  gateci run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py"],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}\n\nOr specify a workflow explicitly:\n  gateci run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  gateci run --workflow {DEFAULT_WORKFLOW}",
        )
        sys.exit(1)

    return workflow_files[0]


def load_pipeline(workflow_path: Path) -> Pipeline:
    """Load and validate; configuration errors exit 1 before anything runs."""
    console = get_console()
    try:
        return Pipeline(load_workflow(workflow_path))
    except ConfigError as e:
        details = [f"job={e.job}"] if e.job else None
        console.print_error("Invalid pipeline", str(e), details=details)
        sys.exit(1)
    except (FileNotFoundError, TypeError, ValueError) as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        sys.exit(1)


def build_context(commit_message: str | None) -> RunContext:
    """
    Collect the run context. The commit message falls back to HEAD's
    message; outside a git checkout it is empty.
    """
    console = get_console()
    if commit_message is None:
        try:
            commit_message = head_commit_message()
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_debug("No git commit message available, using empty message")
            commit_message = ""

    try:
        ref = get_current_ref()
    except (subprocess.CalledProcessError, FileNotFoundError):
        ref = None

    return RunContext(commit_message=commit_message, ref=ref, env=dict(os.environ))


def _repo_name() -> str:
    try:
        return repo_root().name
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(".").resolve().name


workflow_option = click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)",
)
commit_message_option = click.option(
    "--commit-message",
    envvar="GATECI_COMMIT_MESSAGE",
    default=None,
    help="Commit message seen by skip predicates (defaults to HEAD's message)",
)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """gateci: matrix CI runner with a single merge-gate exit code."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@workflow_option
@commit_message_option
@click.option("--gate", default=None, help="Aggregator job whose status is the exit code")
@click.option("--workers", default=None, type=int, help="Number of parallel workers")
@click.option("--timeout", default=None, type=float, help="Run deadline in seconds; pending jobs fail after it")
@click.option("--step-timeout", default=None, type=float, help="Per-step timeout in seconds")
@click.option("--repo-root", default=".", show_default=True, help="Directory steps run relative to")
def run(workflow, commit_message, gate, workers, timeout, step_timeout, repo_root):
    """Run a workflow and exit with its gate status (0 = mergeable)."""
    console = get_console()

    workflow_path = discover_workflow(workflow)
    pipeline = load_pipeline(workflow_path)

    try:
        gate_spec = pipeline.gate(gate)
    except ConfigError as e:
        console.print_error("Invalid gate", str(e))
        sys.exit(1)

    context = build_context(commit_message)
    pipeline_run = PipelineRun(
        pipeline,
        context,
        ShellRunner(repo_root, step_timeout=step_timeout),
        max_workers=workers,
        timeout=timeout,
    )

    console.print_run_started(
        repository=_repo_name(),
        workflow=workflow_path.name,
        job_count=len(pipeline),
        instance_count=sum(len(v) for v in pipeline_run.instances.values()),
    )

    try:
        pipeline_run.execute()
        result = pipeline_run.result(gate_spec.name)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    console.print_results(result.all_instances())
    console.print_gate(result.gate, result.status, result.failed)

    if result.interrupted:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    sys.exit(result.exit_code)


@cli.command()
@workflow_option
@commit_message_option
def plan(workflow, commit_message):
    """Validate a workflow and print the expanded instances without running anything."""
    console = get_console()

    workflow_path = discover_workflow(workflow)
    pipeline = load_pipeline(workflow_path)
    context = build_context(commit_message)

    instances = {s.name: expand(s) for s in pipeline}
    skipped = []
    for spec in pipeline:
        if spec.aggregator:
            continue
        try:
            if should_skip(spec.skip_if, context):
                skipped.append(spec.name)
        except Exception as e:
            console.print_error(
                "Skip predicate failed",
                f"The skip predicate of job '{spec.name}' raised: {e}",
                details=[f"job={spec.name}"],
            )
            sys.exit(1)

    console.print_header(f"Plan for {workflow_path.name}")
    console.print_plan(pipeline.levels, instances, skipped)


@cli.command()
@workflow_option
def check(workflow):
    """Validate a workflow and make sure every job reaches an aggregator."""
    console = get_console()

    workflow_path = discover_workflow(workflow)
    pipeline = load_pipeline(workflow_path)

    if not pipeline.aggregators:
        console.print_error(
            "No aggregator",
            "The workflow defines no aggregator job, so nothing gates a merge.",
            suggestion='Add one:\n  aggregator("ci-result", needs=[...])',
        )
        sys.exit(1)

    missing = ungated_jobs(pipeline)
    if missing:
        console.print_error(
            "Ungated jobs",
            "These jobs are not reachable from any aggregator's needs:",
            details=missing,
            suggestion="Add them to an aggregator's needs, or mark them with gating=False.",
        )
        sys.exit(1)

    console.print_info(f"OK: {len(pipeline)} jobs, gate(s): {', '.join(a.name for a in pipeline.aggregators)}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
