# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["log", "-1"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero.
        FileNotFoundError: git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """Absolute path to the root of the current Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_commit_message(cwd: Optional[str] = None) -> str:
    """
    Full message (subject + body) of the HEAD commit.

    This is what skip predicates such as "[skip ci]" are matched against.
    """
    # %B = raw body, subject included
    return _git(["log", "-1", "--format=%B", "HEAD"], cwd=cwd)


def get_current_ref(cwd: Optional[str] = None) -> str:
    """Current branch name, or the HEAD sha when detached."""
    ref = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if ref == "HEAD":
        return _git(["rev-parse", "HEAD"], cwd=cwd)
    return ref
