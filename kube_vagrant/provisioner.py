"""Vagrant-backed node provisioner.

Creates, destroys and inspects the VirtualBox VMs behind cluster nodes and
runs commands on them over ``vagrant ssh``.
"""

import platform
import shutil
import subprocess
from pathlib import Path

from kube_vagrant.config import ClusterSettings
from kube_vagrant.exceptions import ConfigurationError, ProvisionerError
from kube_vagrant.logging_config import get_logger
from kube_vagrant.models.cluster import MachineState
from kube_vagrant.models.node import Node

logger = get_logger(__name__)

PROVIDER = "virtualbox"

VAGRANTFILE_HEADER = """\
# Generated by kube-vagrant. Changes are overwritten on the next up/scale.
Vagrant.configure("2") do |config|
  config.vm.box = "{box}"
  config.vm.synced_folder ".", "/vagrant"
"""

MACHINE_TEMPLATE = """
  config.vm.define "{machine}", autostart: false do |node|
    node.vm.hostname = "{machine}"
    node.vm.network "private_network", ip: "{ip}"
    node.vm.provider "virtualbox" do |vb|
      vb.name = "{machine}"
      vb.memory = {memory}
      vb.cpus = {cpus}
    end
  end
"""


class VagrantProvisioner:
    """Node provisioner driving the ``vagrant`` CLI in the project directory."""

    def __init__(self, settings: ClusterSettings):
        self.settings = settings
        self.project_dir = Path(settings.project_dir)

    def check_tools(self) -> list[str]:
        """Verify Vagrant and VirtualBox are installed.

        Returns:
            Non-fatal warnings (e.g. VirtualBox kernel module not loaded)

        Raises:
            ConfigurationError: If ``vagrant`` or ``VBoxManage`` is missing
        """
        if shutil.which("vagrant") is None:
            raise ConfigurationError(
                "Vagrant is not installed or not in PATH",
                "Install Vagrant from https://developer.hashicorp.com/vagrant/install",
            )
        if shutil.which("VBoxManage") is None:
            raise ConfigurationError(
                "VirtualBox is not installed or not in PATH",
                "Install VirtualBox from https://www.virtualbox.org/wiki/Downloads",
            )

        warnings = []
        if platform.system() == "Linux" and not self._vboxdrv_loaded():
            warnings.append(
                "VirtualBox kernel module vboxdrv is not loaded. "
                "Load it with: sudo modprobe vboxdrv vboxnetflt vboxnetadp"
            )
        return warnings

    @staticmethod
    def _vboxdrv_loaded() -> bool:
        try:
            modules = Path("/proc/modules").read_text()
        except OSError:
            # Can't tell; let vagrant report the real problem
            return True
        return any(line.split(" ", 1)[0] == "vboxdrv" for line in modules.splitlines())

    def render_vagrantfile(self) -> str:
        """Render a Vagrantfile defining every possible node."""
        parts = [VAGRANTFILE_HEADER.format(box=self.settings.box)]
        for node in self.settings.all_nodes():
            parts.append(
                MACHINE_TEMPLATE.format(
                    machine=node.machine_name,
                    ip=node.private_ip,
                    memory=node.resources.memory_mb,
                    cpus=node.resources.cpus,
                )
            )
        parts.append("end\n")
        return "".join(parts)

    def write_vagrantfile(self) -> Path:
        """Write the Vagrantfile if its content changed."""
        path = self.settings.vagrantfile_path
        content = self.render_vagrantfile()
        if path.exists() and path.read_text() == content:
            return path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        logger.info(f"Wrote {path}")
        return path

    def machine_dir(self, node: Node) -> Path:
        return self.settings.vagrant_state_dir / node.machine_name / PROVIDER

    def private_key_path(self, node: Node) -> Path:
        return self.machine_dir(node) / "private_key"

    def exists(self, node: Node) -> bool:
        """Whether a backing VM has been created for the node."""
        return (self.machine_dir(node) / "id").is_file()

    def present_nodes(self) -> list[Node]:
        """Nodes that currently have a backing VM, master first."""
        present = [node for node in self.settings.all_nodes() if self.exists(node)]
        logger.debug(f"Present nodes: {[n.machine_name for n in present]}")
        return present

    def create(self, node: Node) -> None:
        """Create (or start) the VM for a node.

        Raises:
            ProvisionerError: If ``vagrant up`` fails
        """
        self.write_vagrantfile()
        logger.info(f"Bringing up {node}")
        self._vagrant(
            ["up", node.machine_name, "--provider", PROVIDER], step=f"create {node.machine_name}"
        )

    def destroy(self, node: Node) -> None:
        """Destroy the VM for a node.

        Raises:
            ProvisionerError: If ``vagrant destroy`` fails
        """
        logger.info(f"Destroying {node}")
        self._vagrant(["destroy", "-f", node.machine_name], step=f"destroy {node.machine_name}")

    def destroy_all(self) -> None:
        """Destroy every VM defined by the Vagrantfile.

        Raises:
            ProvisionerError: If ``vagrant destroy`` fails
        """
        if not self.settings.vagrantfile_path.exists():
            self.write_vagrantfile()
        logger.info("Destroying all cluster VMs")
        self._vagrant(["destroy", "-f"], step="destroy cluster")

    def machine_states(self) -> list[MachineState]:
        """Parse ``vagrant status --machine-readable``.

        Lines look like ``timestamp,target,type,data``; only ``state`` and
        ``provider-name`` rows are used.
        """
        result = self._vagrant(["status", "--machine-readable"], step="status", capture=True)
        states: dict[str, dict] = {}
        for line in result.stdout.splitlines():
            fields = line.split(",", 3)
            if len(fields) < 4 or not fields[1]:
                continue
            _, target, kind, data = fields
            if kind == "state":
                states.setdefault(target, {})["state"] = data
            elif kind == "provider-name":
                states.setdefault(target, {})["provider"] = data
        return [
            MachineState(
                name=name,
                state=info.get("state", "unknown"),
                provider=info.get("provider", PROVIDER),
            )
            for name, info in states.items()
        ]

    def run_on(
        self, node: Node, command: str, timeout: int | None = None
    ) -> subprocess.CompletedProcess:
        """Run a shell command on a node and capture its output.

        The caller inspects ``returncode``; only failures to run ``vagrant``
        itself raise.

        Raises:
            ProvisionerError: If vagrant is missing or the command timed out
        """
        logger.debug(f"[{node.machine_name}] $ {command}")
        args = ["vagrant", "ssh", node.machine_name, "-c", command]
        try:
            result = subprocess.run(
                args,
                cwd=self.project_dir,
                capture_output=True,
                text=True,
                timeout=timeout or self.settings.command_timeout,
            )
        except subprocess.TimeoutExpired:
            raise ProvisionerError(
                f"Command on {node.machine_name} timed out",
                f"Command: {command}",
            )
        except FileNotFoundError:
            raise ProvisionerError(
                "Vagrant is not installed or not in PATH",
                "Install Vagrant from https://developer.hashicorp.com/vagrant/install",
            )
        if result.returncode != 0:
            logger.debug(f"[{node.machine_name}] exit {result.returncode}: {result.stderr.strip()}")
        return result

    def interactive(self, node: Node, command: str | None = None) -> int:
        """Attach the terminal to a node (shell, or a streaming command).

        Returns:
            The exit code of ``vagrant ssh``
        """
        args = ["vagrant", "ssh", node.machine_name]
        if command:
            args += ["-c", command]
        try:
            return subprocess.run(args, cwd=self.project_dir).returncode
        except FileNotFoundError:
            raise ProvisionerError("Vagrant is not installed or not in PATH")

    def _vagrant(
        self, args: list[str], step: str, capture: bool = False
    ) -> subprocess.CompletedProcess:
        """Run a vagrant subcommand, raising ProvisionerError on failure."""
        try:
            return subprocess.run(
                ["vagrant", *args],
                cwd=self.project_dir,
                capture_output=capture,
                text=True,
                check=True,
                timeout=self.settings.command_timeout,
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"vagrant {' '.join(args)} failed with return code {e.returncode}")
            details = (e.stderr or "").strip()
            raise ProvisionerError(
                f"Vagrant failed during {step}",
                details or f"vagrant {' '.join(args)} exited with code {e.returncode}",
            )
        except subprocess.TimeoutExpired:
            logger.error(f"vagrant {' '.join(args)} timed out")
            raise ProvisionerError(
                f"Vagrant timed out during {step}",
                f"No result after {self.settings.command_timeout} seconds",
            )
        except FileNotFoundError:
            logger.error("Vagrant binary not found in PATH")
            raise ProvisionerError(
                "Vagrant is not installed or not in PATH",
                "Install Vagrant from https://developer.hashicorp.com/vagrant/install",
            )
