"""Tests for the click command line."""

import os
import subprocess
import sys
import textwrap
import time
from pathlib import Path

import pytest
from click.testing import CliRunner

import gateci
from gateci.cli import cli
from gateci.runner import ShellRunner

SRC = str(Path(gateci.__file__).resolve().parents[1])

WORKFLOW = textwrap.dedent(
    """
    from gateci import aggregator, job, sh, skip_ci, wf

    def workflow():
        return wf(
            aggregator("ci-result", needs=["rstar", "no_std"]),
            job(
                "rstar",
                sh("build", 'test "$MATRIX_CONTAINER_IMAGE" != {bad} && touch "ran-$MATRIX_CONTAINER_IMAGE"'),
                matrix={{"container_image": ["msrv", "stable", "beta"]}},
                skip_if=skip_ci(),
            ),
            job("no_std", sh("build", "touch ran-no_std")),
        )
    """
)


def write_workflow(tmp_path, bad="none", name="gateci_workflow.py"):
    path = tmp_path / name
    path.write_text(WORKFLOW.format(bad=bad))
    return path


def invoke(*args, env=None):
    return CliRunner().invoke(cli, list(args), env=env)


class TestRun:

    def test_all_jobs_pass(self, tmp_path):
        path = write_workflow(tmp_path)
        result = invoke("run", "--workflow", str(path), "--repo-root", str(tmp_path), "--commit-message", "feature")

        assert result.exit_code == 0, result.output
        assert "GATE ci-result: SUCCESS" in result.output
        assert (tmp_path / "ran-stable").exists()
        assert (tmp_path / "ran-no_std").exists()

    def test_one_instance_fails(self, tmp_path):
        path = write_workflow(tmp_path, bad="beta")
        result = invoke("run", "--workflow", str(path), "--repo-root", str(tmp_path), "--commit-message", "feature")

        assert result.exit_code == 1
        assert "GATE ci-result: FAILURE" in result.output
        assert "rstar (beta): FAILURE" in result.output

    def test_skip_marker_from_environment(self, tmp_path):
        path = write_workflow(tmp_path, bad="beta")
        result = invoke(
            "run", "--workflow", str(path), "--repo-root", str(tmp_path),
            env={"GATECI_COMMIT_MESSAGE": "docs only [skip ci]"},
        )

        assert result.exit_code == 0, result.output
        assert not (tmp_path / "ran-msrv").exists()
        assert (tmp_path / "ran-no_std").exists()
        assert "rstar (msrv): SKIPPED" in result.output

    def test_invalid_pipeline_runs_nothing(self, tmp_path):
        path = tmp_path / "gateci_workflow.py"
        path.write_text(textwrap.dedent(
            """
            from gateci import aggregator, job, sh, wf
            JOBS = wf(
                aggregator("ci-result", needs=["rstar", "ghost"]),
                job("rstar", sh("build", "touch ran-rstar")),
            )
            """
        ))
        result = invoke("run", "--workflow", str(path), "--repo-root", str(tmp_path), "--commit-message", "x")

        assert result.exit_code == 1
        assert "ghost" in result.output
        assert not (tmp_path / "ran-rstar").exists()

    @pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell")
    def test_deadline_kills_hung_steps(self, tmp_path):
        path = tmp_path / "gateci_workflow.py"
        path.write_text(textwrap.dedent(
            """
            from gateci import aggregator, job, sh, wf
            JOBS = wf(
                aggregator("ci-result", needs=["hung"]),
                job("hung", sh("wait", "sleep 30")),
            )
            """
        ))
        env = dict(os.environ, PYTHONPATH=os.pathsep.join(filter(None, [SRC, os.environ.get("PYTHONPATH")])))

        started = time.monotonic()
        proc = subprocess.run(
            [
                sys.executable, "-m", "gateci.cli", "run",
                "--workflow", str(path), "--repo-root", str(tmp_path),
                "--commit-message", "x", "--timeout", "1",
            ],
            capture_output=True,
            text=True,
            env=env,
            timeout=60,
        )
        elapsed = time.monotonic() - started

        assert proc.returncode == 1, proc.stdout + proc.stderr
        assert "GATE ci-result: FAILURE" in proc.stdout
        # the process exits at the deadline, not when the step would finish
        assert elapsed < 15

    def test_interrupt_exits_130(self, tmp_path, monkeypatch):
        def interrupted(self, instance):
            raise KeyboardInterrupt

        monkeypatch.setattr(ShellRunner, "run", interrupted)
        path = write_workflow(tmp_path)
        result = invoke("run", "--workflow", str(path), "--repo-root", str(tmp_path), "--commit-message", "feature")

        assert result.exit_code == 130, result.output
        assert "GATE ci-result: FAILURE" in result.output
        assert "rstar (msrv): FAILURE" in result.output
        assert "Interrupted by user" in result.output

    def test_unknown_gate(self, tmp_path):
        path = write_workflow(tmp_path)
        result = invoke("run", "--workflow", str(path), "--gate", "nope", "--commit-message", "x")
        assert result.exit_code == 1

    def test_discovers_default_workflow(self, tmp_path, monkeypatch):
        write_workflow(tmp_path)
        monkeypatch.chdir(tmp_path)
        result = invoke("run", "--commit-message", "feature")
        assert result.exit_code == 0, result.output

    def test_multiple_workflows_need_a_choice(self, tmp_path, monkeypatch):
        write_workflow(tmp_path)
        write_workflow(tmp_path, name="nightly_workflow.py")
        monkeypatch.chdir(tmp_path)
        result = invoke("run", "--commit-message", "feature")
        assert result.exit_code == 1
        assert "Multiple workflow files" in result.output

    def test_missing_workflow(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = invoke("run", "--commit-message", "feature")
        assert result.exit_code == 1
        assert "No workflow file found" in result.output


class TestPlan:

    def test_lists_instances(self, tmp_path):
        path = write_workflow(tmp_path)
        result = invoke("plan", "--workflow", str(path), "--commit-message", "feature")

        assert result.exit_code == 0, result.output
        for image in ("msrv", "stable", "beta"):
            assert f"rstar ({image})" in result.output
        assert "(skipped)" not in result.output
        assert not (tmp_path / "ran-no_std").exists()

    def test_marks_skipped_jobs(self, tmp_path):
        path = write_workflow(tmp_path)
        result = invoke("plan", "--workflow", str(path), "--commit-message", "wip [skip ci]")
        assert "rstar (msrv) (skipped)" in result.output

    def test_raising_skip_predicate(self, tmp_path):
        path = tmp_path / "gateci_workflow.py"
        path.write_text(
            "from gateci import aggregator, job, sh, wf\n"
            "JOBS = wf(aggregator('ci-result', needs=['rstar']), job('rstar', sh('b', 'true'), skip_if=lambda c: 1 / 0))\n"
        )
        result = invoke("plan", "--workflow", str(path), "--commit-message", "feature")

        assert result.exit_code == 1
        assert "Skip predicate failed" in result.output
        assert "rstar" in result.output


class TestCheck:

    def test_fully_gated(self, tmp_path):
        path = write_workflow(tmp_path)
        result = invoke("check", "--workflow", str(path))
        assert result.exit_code == 0, result.output
        assert "OK" in result.output

    @pytest.mark.parametrize("gating, code", [("True", 1), ("False", 0)])
    def test_ungated_job(self, tmp_path, gating, code):
        path = tmp_path / "gateci_workflow.py"
        path.write_text(textwrap.dedent(
            f"""
            from gateci import aggregator, job, sh, wf
            JOBS = wf(
                aggregator("ci-result", needs=["rstar"]),
                job("rstar", sh("build", "true")),
                job("clippy", sh("lint", "cargo clippy"), gating={gating}),
            )
            """
        ))
        result = invoke("check", "--workflow", str(path))
        assert result.exit_code == code
        if code:
            assert "clippy" in result.output

    def test_no_aggregator(self, tmp_path):
        path = tmp_path / "gateci_workflow.py"
        path.write_text("from gateci import job, sh\nJOBS = [job('a', sh('x', 'true'))]\n")
        result = invoke("check", "--workflow", str(path))
        assert result.exit_code == 1
        assert "No aggregator" in result.output
