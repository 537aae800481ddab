"""Data models for desired and observed cluster state."""

from pydantic import BaseModel, Field, field_validator

from kube_vagrant.exceptions import ValidationError
from kube_vagrant.models.node import MAX_WORKERS, Node, ResourceProfile

MIN_NODES = 2
MAX_NODES = MAX_WORKERS + 1


def validate_node_count(value: int | str | None) -> int:
    """Check a requested node count is an integer in [MIN_NODES, MAX_NODES].

    Raises:
        ValidationError: If the value is not an integer or out of range
    """
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Node count must be between {MIN_NODES} and {MAX_NODES}, got '{value}'"
        )
    if isinstance(value, float) or not MIN_NODES <= count <= MAX_NODES:
        raise ValidationError(
            f"Node count must be between {MIN_NODES} and {MAX_NODES}, got {value}",
            "The master counts as one node; at least one worker is required.",
        )
    return count


class ClusterDesiredState(BaseModel):
    """What one operator request asks for. Never persisted."""

    node_count: int
    resources: ResourceProfile = Field(default_factory=ResourceProfile)
    k8s_version: str

    @field_validator("node_count")
    @classmethod
    def validate_count(cls, v: int) -> int:
        if not MIN_NODES <= v <= MAX_NODES:
            raise ValueError(f"node_count must be between {MIN_NODES} and {MAX_NODES}, got {v}")
        return v

    @property
    def worker_count(self) -> int:
        return self.node_count - 1


class ClusterActualState(BaseModel):
    """Observed state derived from the nodes that have a backing VM."""

    present: list[Node] = Field(default_factory=list)

    @property
    def master(self) -> Node | None:
        return next((n for n in self.present if n.is_master), None)

    @property
    def exists(self) -> bool:
        return self.master is not None

    @property
    def workers(self) -> list[Node]:
        """Workers forming the contiguous prefix worker1..workerK."""
        if not self.exists:
            return []
        by_ordinal = {n.ordinal: n for n in self.present if not n.is_master}
        prefix = []
        ordinal = 1
        while ordinal in by_ordinal:
            prefix.append(by_ordinal[ordinal])
            ordinal += 1
        return prefix

    @property
    def stray_workers(self) -> list[Node]:
        """Worker VMs that exist but sit outside the contiguous prefix."""
        counted = {n.ordinal for n in self.workers}
        return sorted(
            (n for n in self.present if not n.is_master and n.ordinal not in counted),
            key=lambda n: n.ordinal,
        )

    @property
    def total(self) -> int:
        if not self.exists:
            return 0
        return 1 + len(self.workers)

    @property
    def node_names(self) -> list[str]:
        if not self.exists:
            return []
        return [self.master.name] + [w.name for w in self.workers]


class NodeStatus(BaseModel):
    """A node as reported by the control plane's node registry."""

    name: str
    role: str
    status: str  # Ready, NotReady, Unknown
    kubelet_version: str
    internal_ip: str

    @classmethod
    def from_node_list(cls, data: dict) -> list["NodeStatus"]:
        """Parse the output of ``kubectl get nodes -o json``."""
        nodes = []
        for item in data.get("items", []):
            metadata = item.get("metadata", {})
            status_data = item.get("status", {})

            status = "Unknown"
            for condition in status_data.get("conditions") or []:
                if condition.get("type") == "Ready":
                    status = "Ready" if condition.get("status") == "True" else "NotReady"

            labels = metadata.get("labels") or {}
            if (
                "node-role.kubernetes.io/control-plane" in labels
                or "node-role.kubernetes.io/master" in labels
            ):
                role = "control-plane"
            else:
                role = "worker"

            internal_ip = next(
                (
                    a.get("address")
                    for a in status_data.get("addresses") or []
                    if a.get("type") == "InternalIP"
                ),
                "N/A",
            )

            nodes.append(
                cls(
                    name=metadata.get("name", "unknown"),
                    role=role,
                    status=status,
                    kubelet_version=status_data.get("nodeInfo", {}).get("kubeletVersion", "N/A"),
                    internal_ip=internal_ip,
                )
            )
        return sorted(nodes, key=lambda n: n.name)


class MachineState(BaseModel):
    """A Vagrant machine and its provider state (running, poweroff, not_created...)."""

    name: str
    state: str
    provider: str = "virtualbox"

    @property
    def running(self) -> bool:
        return self.state == "running"
