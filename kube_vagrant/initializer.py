"""Node image initializer.

Brings a freshly created VM to the point where it can host or join a
control plane by running the bundled ``node_image.yml`` playbook through
ansible-runner. The playbook is idempotent, so re-running it is harmless.
"""

from pathlib import Path

import ansible_runner

from kube_vagrant.config import ClusterSettings
from kube_vagrant.exceptions import InitializerError
from kube_vagrant.inventory import InventoryManager
from kube_vagrant.logging_config import get_logger
from kube_vagrant.models.node import Node
from kube_vagrant.provisioner import VagrantProvisioner

logger = get_logger(__name__)

PLAYBOOK_PATH = Path(__file__).parent / "playbooks" / "node_image.yml"


class AnsibleNodeInitializer:
    """Runs the node image playbook against one node at a time."""

    def __init__(
        self,
        settings: ClusterSettings,
        provisioner: VagrantProvisioner,
        inventory: InventoryManager | None = None,
    ):
        self.settings = settings
        self.provisioner = provisioner
        self.inventory = inventory or InventoryManager(settings.inventory_path)
        self.private_data_dir = Path(settings.project_dir) / ".kube-vagrant" / "ansible"

    def extravars(self, node: Node) -> dict:
        return {
            "k8s_version": self.settings.k8s_version,
            "k8s_minor_version": self.settings.k8s_minor_version,
            "node_ip": node.private_ip,
        }

    def initialize(self, node: Node) -> None:
        """Install the container runtime and kubeadm tooling on a node.

        Raises:
            InitializerError: If the playbook run fails
        """
        self.inventory.upsert_node(node, self.provisioner.private_key_path(node))
        self.private_data_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Initializing node image on {node}")
        runner = ansible_runner.run(
            private_data_dir=str(self.private_data_dir),
            playbook=str(PLAYBOOK_PATH),
            inventory=str(self.inventory.inventory_path.resolve()),
            limit=node.machine_name,
            extravars=self.extravars(node),
            quiet=True,
        )

        logger.debug(f"Playbook finished for {node.machine_name}: {runner.status} (rc={runner.rc})")
        if runner.rc != 0:
            stats = runner.stats or {}
            failed = stats.get("failures", {}).get(node.machine_name, 0)
            unreachable = stats.get("dark", {}).get(node.machine_name, 0)
            raise InitializerError(
                f"Node image initialization failed on {node.machine_name}",
                f"ansible-runner status: {runner.status}, return code: {runner.rc}, "
                f"failed tasks: {failed}, unreachable: {unreachable}\n"
                f"Artifacts are under {self.private_data_dir / 'artifacts'}",
            )

    def forget(self, node: Node) -> None:
        """Drop a destroyed node from the inventory."""
        self.inventory.remove_node(node)

    def reset(self) -> None:
        """Forget every node (cluster torn down)."""
        self.inventory.delete()
