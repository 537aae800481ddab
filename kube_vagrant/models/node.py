"""Data models for cluster nodes and their backing virtual machines."""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from kube_vagrant.exceptions import ValidationError

MASTER = "master"
WORKER = "worker"
MACHINE_PREFIX = "k8s-"
MAX_WORKERS = 3

# Host part of the master's private address; worker i gets ADDRESS_OFFSET + i
ADDRESS_OFFSET = 10

NODE_NAMES = (MASTER,) + tuple(f"{WORKER}{i}" for i in range(1, MAX_WORKERS + 1))


def short_name(role: str, ordinal: int = 0) -> str:
    """Operator-facing node name, e.g. ``master`` or ``worker2``."""
    return MASTER if role == MASTER else f"{WORKER}{ordinal}"


def machine_name(role: str, ordinal: int = 0) -> str:
    """Vagrant machine name (also the VM hostname and Kubernetes node name)."""
    return f"{MACHINE_PREFIX}{short_name(role, ordinal)}"


class ResourceProfile(BaseModel):
    """Memory and CPU handed to the provisioner for every VM."""

    model_config = ConfigDict(frozen=True)

    memory_mb: int = 2048
    cpus: int = 2

    @field_validator("memory_mb", "cpus")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject zero or negative sizes; anything else is passed through."""
        if v <= 0:
            raise ValueError(f"must be a positive integer, got {v}")
        return v


class Node(BaseModel):
    """A cluster node: the master or worker ``ordinal``."""

    model_config = ConfigDict(frozen=True)

    role: str  # master or worker
    ordinal: int = 0
    network_prefix: str = "192.168.56"
    resources: ResourceProfile = Field(default_factory=ResourceProfile)

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        """Validate role is either master or worker."""
        allowed_roles = [MASTER, WORKER]
        if v not in allowed_roles:
            raise ValueError(f"role must be one of {allowed_roles}, got '{v}'")
        return v

    @field_validator("network_prefix")
    @classmethod
    def validate_network_prefix(cls, v: str) -> str:
        """Validate the prefix is the first three octets of an IPv4 address."""
        if not re.fullmatch(r"\d{1,3}\.\d{1,3}\.\d{1,3}", v):
            raise ValueError(f"network_prefix '{v}' must look like '192.168.56'")
        if any(int(octet) > 255 for octet in v.split(".")):
            raise ValueError(f"network_prefix '{v}' has an octet above 255")
        return v

    @model_validator(mode="after")
    def validate_ordinal(self) -> "Node":
        """Master has no ordinal; workers are numbered 1..MAX_WORKERS."""
        if self.role == MASTER and self.ordinal != 0:
            raise ValueError("master does not take an ordinal")
        if self.role == WORKER and not 1 <= self.ordinal <= MAX_WORKERS:
            raise ValueError(f"worker ordinal must be between 1 and {MAX_WORKERS}")
        return self

    @property
    def is_master(self) -> bool:
        return self.role == MASTER

    @property
    def name(self) -> str:
        return short_name(self.role, self.ordinal)

    @property
    def machine_name(self) -> str:
        return machine_name(self.role, self.ordinal)

    @property
    def private_ip(self) -> str:
        return f"{self.network_prefix}.{ADDRESS_OFFSET + self.ordinal}"

    def __str__(self) -> str:
        return f"{self.machine_name} ({self.private_ip})"

    @classmethod
    def parse_name(cls, name: str) -> tuple[str, int]:
        """Split ``master``/``workerN`` (optionally ``k8s-`` prefixed) into role and ordinal.

        Raises:
            ValidationError: If the name is not one of the known nodes
        """
        bare = name[len(MACHINE_PREFIX) :] if name.startswith(MACHINE_PREFIX) else name
        if bare not in NODE_NAMES:
            raise ValidationError(
                f"Invalid node name: '{name}'",
                f"Use one of: {', '.join(NODE_NAMES)}",
            )
        if bare == MASTER:
            return MASTER, 0
        return WORKER, int(bare[len(WORKER) :])
