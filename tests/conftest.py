from __future__ import annotations

import pytest

from cirunner.cache import FileCacheStore
from cirunner.engine import PipelineEngine
from cirunner.environments.local import LocalProvisioner
from cirunner.errors import CheckoutError
from cirunner.logsink import MemorySink
from cirunner.ui.console import Console


class FakeCheckout:
    """Stands in for git: drops a manifest file into the workspace."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    def checkout(self, step, env):
        self.calls += 1
        if self.fail:
            raise CheckoutError(message="git clone failed", details={"stderr": "fatal: repository not found"})
        (env.workspace / "Cargo.toml").write_text('[package]\nname = "demo"\n')
        return "fake-repo"


@pytest.fixture
def provisioner(tmp_path):
    return LocalProvisioner(tmp_path / "envs")


@pytest.fixture
def store(tmp_path):
    return FileCacheStore(tmp_path / "cache")


@pytest.fixture
def fake_checkout():
    return FakeCheckout()


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def engine(provisioner, store, fake_checkout, sink):
    return PipelineEngine(provisioner, store, checkout=fake_checkout, sink=sink, console=Console())


@pytest.fixture
def failing_checkout():
    return FakeCheckout(fail=True)
