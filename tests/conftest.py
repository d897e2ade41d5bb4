"""Shared fixtures: a quiet console and a scripted job runner."""

import threading

import pytest

from gateci import aggregator, job, sh, skip_ci
from gateci.model import Status
from gateci.ui.console import Console, set_console

IMAGES = [
    "georust/geo-ci:rust-1.63",
    "georust/geo-ci:rust-1.65",
    "georust/geo-ci:rust-1.66",
]


class StubRunner:
    """Job runner that never touches a shell; fails the instance ids it is told to."""

    def __init__(self, failing=(), raising=None):
        self.failing = set(failing)
        self.raising = raising or {}
        self.calls = []
        self._lock = threading.Lock()

    def run(self, instance):
        with self._lock:
            self.calls.append(instance.id)
        if instance.id in self.raising:
            raise self.raising[instance.id]
        if instance.id in self.failing:
            return Status.FAILURE
        return Status.SUCCESS


def rstar_jobs(needs=("rstar", "no_std")):
    return [
        aggregator("ci-result", needs=list(needs)),
        job(
            "rstar",
            sh("Build", "cargo build-all-features"),
            sh("Test", "cargo test-all-features"),
            matrix={"container_image": IMAGES},
            skip_if=skip_ci(),
        ),
        job(
            "no_std",
            sh("Build", "cargo build --target $NO_STD_TARGET"),
            env={"NO_STD_TARGET": "aarch64-unknown-none"},
        ),
    ]


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))
    yield


@pytest.fixture
def stub_runner():
    return StubRunner


@pytest.fixture
def rstar():
    return rstar_jobs
