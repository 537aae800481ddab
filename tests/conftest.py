"""Pytest configuration and shared fixtures."""

import subprocess
from dataclasses import dataclass

import pytest
from hypothesis import Verbosity, settings

from kube_vagrant.config import ClusterSettings
from kube_vagrant.exceptions import ControlPlaneError, InitializerError, ProvisionerError
from kube_vagrant.join import JoinCoordinator
from kube_vagrant.models.cluster import NodeStatus
from kube_vagrant.reconciler import NodeLifecycleReconciler

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")

JOIN_COMMAND = (
    "kubeadm join 192.168.56.10:6443 --token abcdef.0123456789abcdef "
    "--discovery-token-ca-cert-hash sha256:" + "a" * 64
)


class FakeProvisioner:
    """In-memory stand-in for VagrantProvisioner."""

    def __init__(self, cluster_settings, present=(), fail_create=(), fail_destroy=()):
        self.settings = cluster_settings
        self.present = set(present)
        self.fail_create = set(fail_create)
        self.fail_destroy = set(fail_destroy)
        self.calls = []
        self.commands = []
        self.join_succeeds = True
        self.on_join = None

    def check_tools(self):
        return []

    def present_nodes(self):
        return [n for n in self.settings.all_nodes() if n.machine_name in self.present]

    def exists(self, node):
        return node.machine_name in self.present

    def create(self, node):
        self.calls.append(("create", node.machine_name))
        if node.machine_name in self.fail_create:
            raise ProvisionerError(f"Vagrant failed during create {node.machine_name}")
        self.present.add(node.machine_name)

    def destroy(self, node):
        self.calls.append(("destroy", node.machine_name))
        if node.machine_name in self.fail_destroy:
            raise ProvisionerError(f"Vagrant failed during destroy {node.machine_name}")
        self.present.discard(node.machine_name)

    def destroy_all(self):
        self.calls.append(("destroy_all", None))
        if self.fail_destroy:
            raise ProvisionerError("Vagrant failed during destroy cluster")
        self.present.clear()

    def machine_states(self):
        return []

    def private_key_path(self, node):
        return self.settings.vagrant_state_dir / node.machine_name / "virtualbox" / "private_key"

    def run_on(self, node, command, timeout=None):
        self.commands.append((node.machine_name, command))
        ok = self.join_succeeds or "kubeadm join" not in command
        if ok and "kubeadm join" in command and self.on_join:
            self.on_join(node.machine_name)
        return subprocess.CompletedProcess(
            ["vagrant", "ssh"], 0 if ok else 1, stdout="", stderr="" if ok else "join refused"
        )


class FakeInitializer:
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.initialized = []
        self.forgotten = []
        self.was_reset = False

    def initialize(self, node):
        if node.machine_name in self.fail:
            raise InitializerError(f"Node image initialization failed on {node.machine_name}")
        self.initialized.append(node.machine_name)

    def forget(self, node):
        self.forgotten.append(node.machine_name)

    def reset(self):
        self.was_reset = True


class FakeControl:
    """In-memory control plane: an init flag and a node registry."""

    def __init__(self, initialized=False, registry=(), fail_drain=False, fail_delete=False):
        self.initialized = initialized
        self.registry = set(registry)
        self.fail_drain = fail_drain
        self.fail_delete = fail_delete
        self.fail_init = False
        self.calls = []
        self.tokens_minted = 0

    def is_initialized(self):
        return self.initialized

    def init(self, master_addr, pod_cidr, k8s_version):
        self.calls.append(("init", master_addr))
        if self.fail_init:
            raise ControlPlaneError("kubeadm init failed on k8s-master")
        self.initialized = True
        self.registry.add("k8s-master")

    def create_join_command(self):
        self.tokens_minted += 1
        return JOIN_COMMAND

    def node_registered(self, name):
        return name in self.registry

    def drain(self, name):
        self.calls.append(("drain", name))
        if self.fail_drain:
            raise ControlPlaneError(f"drain {name} failed on k8s-master")

    def delete_node(self, name):
        self.calls.append(("delete", name))
        if self.fail_delete:
            raise ControlPlaneError(f"delete node {name} failed on k8s-master")
        self.registry.discard(name)

    def get_nodes(self):
        return [
            NodeStatus(
                name=name,
                role="control-plane" if name == "k8s-master" else "worker",
                status="Ready",
                kubelet_version="v1.32.2",
                internal_ip="192.168.56.10",
            )
            for name in sorted(self.registry)
        ]

    def cluster_info(self):
        return "Kubernetes control plane is running at https://192.168.56.10:6443"


@dataclass
class FakeCluster:
    settings: ClusterSettings
    provisioner: FakeProvisioner
    initializer: FakeInitializer
    control: FakeControl
    coordinator: JoinCoordinator
    reconciler: NodeLifecycleReconciler


def fast_settings(project_dir, **overrides) -> ClusterSettings:
    values = dict(
        project_dir=project_dir,
        join_poll_attempts=3,
        join_poll_interval=0,
        join_poll_max_interval=0,
    )
    values.update(overrides)
    return ClusterSettings(**values)


@pytest.fixture
def cluster_settings(tmp_path):
    return fast_settings(tmp_path)


@pytest.fixture
def make_cluster(tmp_path_factory):
    """Factory for a reconciler wired to in-memory collaborators.

    ``present`` lists machine names with a VM. A present master means the
    control plane is initialized and every present node is registered.
    """

    def _make(present=(), fail_create=(), fail_destroy=(), fail_init=(), **control_kwargs):
        cluster_settings = fast_settings(tmp_path_factory.mktemp("cluster"))
        provisioner = FakeProvisioner(
            cluster_settings, present=present, fail_create=fail_create, fail_destroy=fail_destroy
        )
        initializer = FakeInitializer(fail=fail_init)
        control_kwargs.setdefault("initialized", "k8s-master" in present)
        control_kwargs.setdefault("registry", present)
        control = FakeControl(**control_kwargs)
        provisioner.on_join = control.registry.add
        coordinator = JoinCoordinator(cluster_settings, control, provisioner)
        reconciler = NodeLifecycleReconciler(
            settings=cluster_settings,
            provisioner=provisioner,
            initializer=initializer,
            control=control,
            coordinator=coordinator,
        )
        return FakeCluster(
            cluster_settings, provisioner, initializer, control, coordinator, reconciler
        )

    return _make


def machines(count: int) -> tuple[str, ...]:
    """Machine names of a healthy cluster with ``count`` nodes."""
    if count == 0:
        return ()
    return ("k8s-master",) + tuple(f"k8s-worker{i}" for i in range(1, count))


@pytest.fixture
def machine_names():
    return machines


@pytest.fixture
def join_command():
    return JOIN_COMMAND
