from __future__ import annotations

import subprocess

import pytest

from cirunner.environments.docker import (
    CONTAINER_HOME,
    CONTAINER_WORKSPACE,
    DockerEnvironment,
    DockerProvisioner,
)
from cirunner.errors import EnvironmentProvisionError


def test_resolve_maps_home_and_workspace(provisioner):
    with provisioner.provision("alpine") as env:
        assert env.resolve("~/.cargo") == env.home / ".cargo"
        assert env.resolve("~") == env.home
        assert env.resolve("./target") == env.workspace / "target"
        assert env.resolve("target/debug") == env.workspace / "target" / "debug"


@pytest.mark.parametrize("path", ["/etc/passwd", "../outside", "~/../../etc"])
def test_resolve_rejects_escapes(provisioner, path):
    with provisioner.provision("alpine") as env:
        with pytest.raises(ValueError):
            env.resolve(path)


def test_keep_leaves_the_environment(tmp_path):
    from cirunner.environments.local import LocalProvisioner

    with LocalProvisioner(tmp_path / "envs", keep=True).provision("alpine") as env:
        root = env.root
    assert root.exists()


def test_docker_exec_argv(tmp_path):
    env = DockerEnvironment(tmp_path, "cimg/rust:1.71.0", "abc123")
    (env.workspace / "crates").mkdir()

    argv, cwd, proc_env = env._argv("cargo test", cwd="crates", env={"RUST_LOG": "debug"})

    assert argv == [
        "docker", "exec", "-w", f"{CONTAINER_WORKSPACE}/crates",
        "-e", "RUST_LOG=debug",
        "abc123", "sh", "-c", "cargo test",
    ]
    assert cwd is None and proc_env is None


def test_docker_container_paths(tmp_path):
    env = DockerEnvironment(tmp_path, "alpine", "abc123")

    assert env.container_path(env.workspace) == CONTAINER_WORKSPACE
    assert env.container_path(env.home / ".cargo") == f"{CONTAINER_HOME}/.cargo"


def test_docker_run_argv_mounts_workspace_and_home(tmp_path):
    argv = DockerProvisioner(tmp_path).run_argv("cimg/rust:1.71.0", tmp_path)

    assert argv[:3] == ["docker", "run", "-d"]
    assert f"{tmp_path / 'workspace'}:{CONTAINER_WORKSPACE}" in argv
    assert f"{tmp_path / 'home'}:{CONTAINER_HOME}" in argv
    assert "cimg/rust:1.71.0" in argv


def test_docker_missing_is_a_provisioning_error(tmp_path, monkeypatch):
    def _no_docker(*args, **kwargs):
        raise FileNotFoundError("docker")

    monkeypatch.setattr(subprocess, "run", _no_docker)

    with pytest.raises(EnvironmentProvisionError) as exc:
        DockerProvisioner(tmp_path).provision("alpine")
    assert "hint" in exc.value.details


def test_docker_pull_failure_is_a_provisioning_error(tmp_path, monkeypatch):
    def _fake_run(cmd, **kwargs):
        if cmd[:2] == ["docker", "pull"]:
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="manifest unknown")
        return subprocess.CompletedProcess(cmd, 0, stdout="Docker version 27", stderr="")

    monkeypatch.setattr(subprocess, "run", _fake_run)

    with pytest.raises(EnvironmentProvisionError) as exc:
        DockerProvisioner(tmp_path).provision("no/such:image")
    assert exc.value.details["stderr"] == "manifest unknown"
