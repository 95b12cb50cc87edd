from __future__ import annotations

import shutil
import subprocess

import pytest

from cirunner.checkout import GitCheckout
from cirunner.dsl import checkout, job, restore_cache, save_cache, sh
from cirunner.engine import PipelineEngine
from cirunner.errors import CheckoutError
from cirunner.model import Checkout
from cirunner.ui.console import Console

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(*args, cwd):
    subprocess.run(
        ["git", "-c", "user.name=ci", "-c", "user.email=ci@example.com", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


@pytest.fixture
def origin(tmp_path):
    repo = tmp_path / "origin"
    repo.mkdir()
    _git("init", "--quiet", cwd=repo)
    (repo / "README.md").write_text("v1\n")
    _git("add", ".", cwd=repo)
    _git("commit", "--quiet", "-m", "first", cwd=repo)
    _git("tag", "v1", cwd=repo)
    (repo / "README.md").write_text("v2\n")
    _git("commit", "--quiet", "-am", "second", cwd=repo)
    return repo


def test_clone_into_workspace(origin, provisioner):
    with provisioner.provision("alpine") as env:
        what = GitCheckout().checkout(Checkout(repo=str(origin)), env)

        assert what == str(origin)
        assert (env.workspace / "README.md").read_text() == "v2\n"


def test_checkout_ref(origin, provisioner):
    with provisioner.provision("alpine") as env:
        GitCheckout(repo=str(origin)).checkout(Checkout(ref="v1"), env)

        assert (env.workspace / "README.md").read_text() == "v1\n"


def test_default_source_is_the_current_repository(origin, provisioner):
    with provisioner.provision("alpine") as env:
        GitCheckout(cwd=origin).checkout(Checkout(), env)

        assert (env.workspace / "README.md").exists()


def test_unknown_repository(tmp_path, provisioner):
    with provisioner.provision("alpine") as env:
        with pytest.raises(CheckoutError) as exc:
            GitCheckout().checkout(Checkout(repo=str(tmp_path / "missing")), env)
        assert exc.value.details["stderr"]


def test_unknown_ref(origin, provisioner):
    with provisioner.provision("alpine") as env:
        with pytest.raises(CheckoutError):
            GitCheckout().checkout(Checkout(repo=str(origin), ref="no-such-ref"), env)


def test_checkout_into_a_workspace_that_already_has_files(origin, provisioner):
    with provisioner.provision("alpine") as env:
        (env.workspace / "target").mkdir()
        (env.workspace / "target" / "x").write_text("cached")
        (env.workspace / "README.md").write_text("stale\n")

        GitCheckout().checkout(Checkout(repo=str(origin)), env)

        assert (env.workspace / "README.md").read_text() == "v2\n"
        assert (env.workspace / "target" / "x").read_text() == "cached"
        assert not [p for p in env.root.iterdir() if p.name.startswith(".clone-")]


def test_second_checkout_moves_to_the_requested_ref(origin, provisioner):
    with provisioner.provision("alpine") as env:
        checkout = GitCheckout(repo=str(origin))
        checkout.checkout(Checkout(), env)
        checkout.checkout(Checkout(ref="v1"), env)

        assert (env.workspace / "README.md").read_text() == "v1\n"


def test_restore_then_checkout_keeps_the_restored_files(origin, provisioner, store):
    seed = job("seed", sh("Build", "mkdir -p target && echo cached > target/x"), save_cache("k", "./target"), image="alpine")
    build = job(
        "build",
        restore_cache("k"),
        checkout(repo=str(origin)),
        sh("Use cache", "cat target/x && cat README.md"),
        image="alpine",
    )
    engine = PipelineEngine(provisioner, store, checkout=GitCheckout(), console=Console())

    assert engine.run(seed).ok
    result = engine.run(build)

    assert result.ok, result.message
    assert result.records[0].message.startswith("cache hit")
    assert "cached" in result.records[2].output
    assert "v2" in result.records[2].output
