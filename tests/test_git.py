"""Tests for the git CLI wrapper."""

import shutil
import subprocess

import pytest

from gateci.git_facts.git import get_current_ref, head_commit_message, repo_root

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def repo(tmp_path):
    subprocess.run(["git", "init", "-q"], cwd=tmp_path, check=True)
    subprocess.run(
        [
            "git", "-c", "user.name=ci", "-c", "user.email=ci@example.com",
            "commit", "--allow-empty", "-q", "-m", "Bump version [skip ci]",
        ],
        cwd=tmp_path,
        check=True,
    )
    return tmp_path


def test_head_commit_message(repo):
    assert head_commit_message(cwd=str(repo)) == "Bump version [skip ci]"


def test_repo_root(repo):
    assert repo_root(cwd=str(repo)).resolve() == repo.resolve()


def test_current_ref(repo):
    assert get_current_ref(cwd=str(repo))


def test_outside_a_repository(tmp_path):
    with pytest.raises(subprocess.CalledProcessError):
        head_commit_message(cwd=str(tmp_path))
