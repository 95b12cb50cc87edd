from .base import CommandOutput, Environment, Provisioner, run_process
from .docker import DockerEnvironment, DockerProvisioner
from .local import LocalEnvironment, LocalProvisioner

__all__ = [
    "CommandOutput",
    "Environment",
    "Provisioner",
    "run_process",
    "DockerEnvironment",
    "DockerProvisioner",
    "LocalEnvironment",
    "LocalProvisioner",
]
