"""Cluster control client.

Administrative kubeadm/kubectl operations, executed on the master node.
"""

import json
import shlex

from kube_vagrant.config import ClusterSettings
from kube_vagrant.exceptions import ControlPlaneError
from kube_vagrant.logging_config import get_logger
from kube_vagrant.models.cluster import NodeStatus
from kube_vagrant.provisioner import VagrantProvisioner

logger = get_logger(__name__)

# Present on the master once kubeadm init has succeeded
INIT_MARKER = "/etc/kubernetes/admin.conf"
SHARED_KUBECONFIG_GUEST = "/vagrant/.kube/config"
DRAIN_TIMEOUT = "120s"


class KubeadmControl:
    """Runs control-plane operations on the master over ``vagrant ssh``."""

    def __init__(self, settings: ClusterSettings, provisioner: VagrantProvisioner):
        self.settings = settings
        self.provisioner = provisioner
        self.master = settings.master()

    def _run(self, command: str, step: str) -> str:
        """Run a command on the master and return stdout.

        Raises:
            ControlPlaneError: If the command exits non-zero
        """
        result = self.provisioner.run_on(self.master, command)
        if result.returncode != 0:
            raise ControlPlaneError(
                f"{step} failed on {self.master.machine_name}",
                (result.stderr or result.stdout or "").strip() or f"exit code {result.returncode}",
            )
        return result.stdout

    def _succeeds(self, command: str) -> bool:
        return self.provisioner.run_on(self.master, command).returncode == 0

    def is_initialized(self) -> bool:
        """Whether kubeadm init has completed on the master."""
        return self._succeeds(f"test -f {INIT_MARKER}")

    def init(self, master_addr: str, pod_cidr: str, k8s_version: str) -> None:
        """Initialize the control plane, publish the kubeconfig and apply the pod network.

        Raises:
            ControlPlaneError: If any of the steps fail
        """
        logger.info(f"Initializing control plane on {master_addr} (Kubernetes {k8s_version})")
        self._run(
            "sudo kubeadm init"
            f" --apiserver-advertise-address={shlex.quote(master_addr)}"
            f" --apiserver-cert-extra-sans={shlex.quote(master_addr)}"
            f" --pod-network-cidr={shlex.quote(pod_cidr)}"
            f" --kubernetes-version=v{shlex.quote(k8s_version)}"
            f" --node-name={self.master.machine_name}",
            step="kubeadm init",
        )
        self._run(
            "mkdir -p $HOME/.kube"
            f" && sudo cp -f {INIT_MARKER} $HOME/.kube/config"
            " && sudo chown $(id -u):$(id -g) $HOME/.kube/config",
            step="kubeconfig setup",
        )
        self.publish_kubeconfig()
        self._run(
            f"kubectl apply -f {shlex.quote(self.settings.pod_network_manifest)}",
            step="pod network install",
        )

    def publish_kubeconfig(self) -> None:
        """Copy the admin kubeconfig to the folder shared with the host."""
        self._run(
            f"mkdir -p $(dirname {SHARED_KUBECONFIG_GUEST})"
            f" && sudo cp -f {INIT_MARKER} {SHARED_KUBECONFIG_GUEST}"
            f" && sudo chmod 644 {SHARED_KUBECONFIG_GUEST}",
            step="kubeconfig publish",
        )

    def create_join_command(self) -> str:
        """Mint a fresh bootstrap token and return the full join command."""
        output = self._run("sudo kubeadm token create --print-join-command", step="token create")
        lines = (line.strip() for line in output.splitlines())
        command = next((line for line in lines if line.startswith("kubeadm join")), None)
        if command is None:
            raise ControlPlaneError(
                "kubeadm did not print a join command",
                f"Output was: {output.strip() or '<empty>'}",
            )
        return command

    def get_nodes(self) -> list[NodeStatus]:
        """List nodes in the control plane's registry."""
        output = self._run("kubectl get nodes -o json", step="get nodes")
        try:
            return NodeStatus.from_node_list(json.loads(output))
        except json.JSONDecodeError as e:
            raise ControlPlaneError("Could not parse kubectl node list", str(e))

    def node_registered(self, name: str) -> bool:
        return self._succeeds(f"kubectl get node {shlex.quote(name)}")

    def drain(self, name: str) -> None:
        logger.info(f"Draining {name}")
        self._run(
            f"kubectl drain {shlex.quote(name)} --ignore-daemonsets"
            f" --delete-emptydir-data --force --timeout={DRAIN_TIMEOUT}",
            step=f"drain {name}",
        )

    def delete_node(self, name: str) -> None:
        logger.info(f"Deleting node {name} from the cluster")
        self._run(f"kubectl delete node {shlex.quote(name)}", step=f"delete node {name}")

    def cluster_info(self) -> str:
        return self._run("kubectl cluster-info", step="cluster-info").strip()
