# cirunner_workflow.py
# The Rust build job: check toolchain, formatting, then tests, with the
# cargo registry and target dir cached between runs.
from __future__ import annotations

from cirunner.dsl import job, sh, checkout, restore_cache, save_cache


def workflow():
    return job(
        "build",
        checkout(),
        restore_cache("project-cache"),
        sh("Check version", "cargo --version"),
        sh("Check formatting", "cargo fmt --all -- --check"),
        sh("Run Tests", "cargo test --all"),
        save_cache("project-cache", "~/.cargo", "./target"),
        image="cimg/rust:1.71.0",
    )
