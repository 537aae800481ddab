"""Cluster settings resolved once per command and passed around explicitly.

Values come from, in increasing precedence: built-in defaults, an optional
YAML config file, environment variables, and command-line flags.
"""

import os
from collections.abc import Mapping
from pathlib import Path

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from kube_vagrant.exceptions import ConfigurationError
from kube_vagrant.logging_config import get_logger
from kube_vagrant.models.cluster import ClusterDesiredState, validate_node_count
from kube_vagrant.models.node import MASTER, MAX_WORKERS, WORKER, Node, ResourceProfile

logger = get_logger(__name__)

DEFAULT_NODES = 2
DEFAULT_MEMORY = 2048
DEFAULT_CPUS = 2
DEFAULT_K8S_VERSION = "1.32.2"

# Environment variable -> settings field
ENV_VARS = {
    "NODES": "node_count",
    "NODE_MEMORY": "memory_mb",
    "NODE_CPUS": "cpus",
    "K8S_VERSION": "k8s_version",
}

JOIN_ARTIFACT_FILE = "kubeadm-join.sh"
SHARED_KUBECONFIG = Path(".kube") / "config"
INVENTORY_FILE = Path("ansible") / "inventory" / "hosts.yml"


class ClusterSettings(BaseModel):
    """Immutable configuration for one invocation."""

    model_config = ConfigDict(frozen=True)

    project_dir: Path = Path(".")
    node_count: int = DEFAULT_NODES
    memory_mb: int = DEFAULT_MEMORY
    cpus: int = DEFAULT_CPUS
    k8s_version: str = DEFAULT_K8S_VERSION
    box: str = "bento/ubuntu-22.04"
    network_prefix: str = "192.168.56"
    pod_cidr: str = "10.244.0.0/16"
    pod_network_manifest: str = (
        "https://github.com/flannel-io/flannel/releases/latest/download/kube-flannel.yml"
    )
    command_timeout: int = 1800
    join_poll_attempts: int = 30
    join_poll_interval: float = 2.0
    join_poll_max_interval: float = 30.0

    @field_validator("k8s_version")
    @classmethod
    def validate_k8s_version(cls, v: str) -> str:
        """Strip a leading 'v' so kubeadm and apt see the same version."""
        v = v.strip()
        if not v:
            raise ValueError("k8s_version cannot be empty")
        return v[1:] if v.startswith("v") else v

    @field_validator("memory_mb", "cpus")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @property
    def k8s_minor_version(self) -> str:
        """``1.32`` for ``1.32.2``; selects the package repository."""
        return ".".join(self.k8s_version.split(".")[:2])

    @property
    def resources(self) -> ResourceProfile:
        return ResourceProfile(memory_mb=self.memory_mb, cpus=self.cpus)

    @property
    def join_artifact_path(self) -> Path:
        return self.project_dir / JOIN_ARTIFACT_FILE

    @property
    def shared_kubeconfig_path(self) -> Path:
        return self.project_dir / SHARED_KUBECONFIG

    @property
    def inventory_path(self) -> Path:
        return self.project_dir / INVENTORY_FILE

    @property
    def vagrantfile_path(self) -> Path:
        return self.project_dir / "Vagrantfile"

    @property
    def vagrant_state_dir(self) -> Path:
        return self.project_dir / ".vagrant" / "machines"

    def node(self, role: str, ordinal: int = 0) -> Node:
        return Node(
            role=role,
            ordinal=ordinal,
            network_prefix=self.network_prefix,
            resources=self.resources,
        )

    def master(self) -> Node:
        return self.node(MASTER)

    def worker(self, ordinal: int) -> Node:
        return self.node(WORKER, ordinal)

    def all_nodes(self) -> list[Node]:
        """Every node the cluster can ever have, master first."""
        return [self.master()] + [self.worker(i) for i in range(1, MAX_WORKERS + 1)]

    def desired_state(self, node_count: int | None = None) -> ClusterDesiredState:
        """Desired state for a request, validating the node count."""
        count = validate_node_count(self.node_count if node_count is None else node_count)
        return ClusterDesiredState(
            node_count=count, resources=self.resources, k8s_version=self.k8s_version
        )

    @staticmethod
    def load_file(path: str | Path) -> dict:
        """Load settings overrides from a YAML file.

        Raises:
            ConfigurationError: If the file is missing or not a YAML mapping
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file {path}", str(e))
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        logger.debug(f"Loaded {len(data)} settings from {path}")
        return data

    @classmethod
    def resolve(
        cls,
        overrides: Mapping | None = None,
        env: Mapping | None = None,
        config_file: str | Path | None = None,
        project_dir: str | Path | None = None,
    ) -> "ClusterSettings":
        """Merge defaults, config file, environment and flags into settings.

        Args:
            overrides: Values from command-line flags; ``None`` entries are ignored
            env: Environment mapping (defaults to ``os.environ``)
            config_file: Optional YAML file with settings fields
            project_dir: Directory holding the Vagrantfile and cluster state

        Raises:
            ConfigurationError: If a value has the wrong type or is out of range
        """
        env = os.environ if env is None else env
        values: dict = {}

        if config_file:
            values.update(cls.load_file(config_file))

        for var, field in ENV_VARS.items():
            if env.get(var):
                values[field] = env[var]

        for key, value in (overrides or {}).items():
            if value is not None:
                values[key] = value

        if project_dir is not None:
            values["project_dir"] = Path(project_dir)

        try:
            settings = cls(**values)
        except pydantic.ValidationError as e:
            problems = "\n".join(
                f"  - {'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError("Invalid configuration", problems)

        logger.debug(f"Resolved settings: {settings.model_dump()}")
        return settings
