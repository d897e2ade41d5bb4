# gateci_workflow.py
# The rstar CI pipeline: a container-image matrix, a cross-compile check for
# a bare-metal target, and `ci-result` as the single status the merge bot reads.
from __future__ import annotations

from gateci import aggregator, job, sh, skip_ci, wf

CONTAINER_IMAGES = [
    # Minimum supported rust version (MSRV)
    "georust/geo-ci:rust-1.63",
    # Two most recent releases
    "georust/geo-ci:rust-1.65",
    "georust/geo-ci:rust-1.66",
]

NO_STD_TARGET = "aarch64-unknown-none"


def workflow():
    return wf(
        # Every job below must be reachable from this job's needs
        # (`gateci check` enforces it).
        aggregator("ci-result", needs=["rstar", "no_std"], display_name="ci result"),

        job(
            "rstar",
            sh("Install cargo-all-features", "cargo install --version 1.6.0 cargo-all-features"),
            sh("Build all features", "cargo build-all-features"),
            sh("Test all features", "cargo test-all-features"),
            sh("Build benches", "cargo build -p rstar-benches"),
            matrix={"container_image": CONTAINER_IMAGES},
            skip_if=skip_ci(),
            cwd="rstar",
        ),

        job(
            "no_std",
            sh("Install target", "rustup target add $NO_STD_TARGET"),
            sh("Build for target", "cargo build --package rstar --target $NO_STD_TARGET"),
            env={"NO_STD_TARGET": NO_STD_TARGET},
            display_name="rstar no_std test",
        ),
    )
