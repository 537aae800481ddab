"""Ansible inventory for the cluster VMs.

The node image playbook reaches the VMs through this inventory. It is kept in
step with the VMs that exist, using ruamel.yaml so hand edits and comments
survive rewrites.
"""

import shutil
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from kube_vagrant.exceptions import InventoryError
from kube_vagrant.logging_config import get_logger
from kube_vagrant.models.node import Node

logger = get_logger(__name__)

GROUPS = ("control_plane", "workers")
SSH_COMMON_ARGS = "-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null"


def group_for(node: Node) -> str:
    return "control_plane" if node.is_master else "workers"


class InventoryManager:
    """Manager for the Ansible inventory of cluster nodes."""

    def __init__(self, inventory_path: str | Path):
        """Initialize inventory manager.

        Args:
            inventory_path: Path to the Ansible inventory file
        """
        self.inventory_path = Path(inventory_path)
        self.yaml = YAML()
        self.yaml.preserve_quotes = True
        self.yaml.default_flow_style = False
        self.yaml.indent(mapping=2, sequence=2, offset=0)

    @staticmethod
    def empty() -> CommentedMap:
        """Skeleton inventory with both groups and no hosts."""
        data = CommentedMap()
        data["all"] = CommentedMap()
        data["all"]["vars"] = CommentedMap(
            {
                "ansible_user": "vagrant",
                "ansible_become": True,
                "ansible_ssh_common_args": SSH_COMMON_ARGS,
            }
        )
        data["all"]["children"] = CommentedMap()
        for group in GROUPS:
            data["all"]["children"][group] = CommentedMap({"hosts": CommentedMap()})
        return data

    def read(self) -> dict:
        """Read the inventory, or an empty skeleton if the file does not exist yet.

        Raises:
            InventoryError: If the file cannot be parsed or has the wrong shape
        """
        if not self.inventory_path.exists():
            logger.debug(f"No inventory at {self.inventory_path}, starting empty")
            return self.empty()

        try:
            with open(self.inventory_path) as f:
                data = self.yaml.load(f)
        except Exception as e:
            logger.error(f"Failed to read inventory file: {e}", exc_info=True)
            raise InventoryError(
                f"Failed to read inventory file: {self.inventory_path}",
                f"{e}\n\nDelete the file to have it regenerated from the running VMs.",
            )

        if data is None:
            return self.empty()
        self.validate(data)
        return data

    def write(self, data: dict) -> None:
        """Write inventory data, keeping a backup of the previous file.

        Raises:
            InventoryError: If file cannot be written
        """
        try:
            self.inventory_path.parent.mkdir(parents=True, exist_ok=True)
            if self.inventory_path.exists():
                backup_path = self.inventory_path.with_suffix(".yml.backup")
                shutil.copy2(self.inventory_path, backup_path)
            with open(self.inventory_path, "w") as f:
                self.yaml.dump(data, f)
        except OSError as e:
            logger.error(f"OS error writing inventory file: {e}")
            raise InventoryError(
                f"Failed to write inventory file: {self.inventory_path}",
                f"{e}\n\nCheck disk space and file system permissions",
            )
        logger.debug(f"Wrote inventory file: {self.inventory_path}")

    def validate(self, data: dict) -> None:
        """Check the inventory has an 'all' group with control_plane and workers children.

        Raises:
            InventoryError: If validation fails
        """
        if not isinstance(data, dict) or not isinstance(data.get("all"), dict):
            raise InventoryError("Inventory must have an 'all' group")
        children = data["all"].get("children")
        if not isinstance(children, dict):
            raise InventoryError("'all' group must have 'children'")
        for group in GROUPS:
            if not isinstance(children.get(group), dict):
                raise InventoryError(f"Missing required group: {group}")

    def hosts(self) -> dict[str, str]:
        """Map of inventory hostname to group."""
        children = self.read()["all"]["children"]
        result = {}
        for group in GROUPS:
            for hostname in children[group].get("hosts") or {}:
                result[hostname] = group
        return result

    def upsert_node(self, node: Node, private_key: Path) -> None:
        """Add a node, or refresh its connection details if already listed."""
        data = self.read()
        group = data["all"]["children"][group_for(node)]
        if group.get("hosts") is None:
            group["hosts"] = CommentedMap()
        group["hosts"][node.machine_name] = CommentedMap(
            {
                "ansible_host": node.private_ip,
                "ansible_ssh_private_key_file": str(private_key),
                "node_ip": node.private_ip,
            }
        )
        self.write(data)
        logger.info(f"Inventory now lists {node.machine_name}")

    def remove_node(self, node: Node) -> bool:
        """Drop a node from the inventory.

        Returns:
            True if the node was listed
        """
        data = self.read()
        hosts = data["all"]["children"][group_for(node)].get("hosts") or {}
        if node.machine_name not in hosts:
            return False
        del hosts[node.machine_name]
        self.write(data)
        logger.info(f"Removed {node.machine_name} from inventory")
        return True

    def delete(self) -> None:
        """Remove the inventory file and its backup."""
        for path in (self.inventory_path, self.inventory_path.with_suffix(".yml.backup")):
            path.unlink(missing_ok=True)
