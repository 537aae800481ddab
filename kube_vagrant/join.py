"""Join coordination between the master and joining workers.

The master produces a single join artifact (a ``kubeadm join`` command with
an embedded bootstrap token) and stores it in the project directory, which
every VM sees as ``/vagrant``. Workers read it and never delete it; each
mint overwrites it.
"""

import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, field_validator
from tenacity import RetryError, retry, retry_if_result, stop_after_attempt, wait_exponential

from kube_vagrant.config import ClusterSettings
from kube_vagrant.control import KubeadmControl
from kube_vagrant.exceptions import ArtifactUnavailable, ControlPlaneError
from kube_vagrant.logging_config import get_logger
from kube_vagrant.models.node import Node
from kube_vagrant.provisioner import VagrantProvisioner

logger = get_logger(__name__)

ARTIFACT_HEADER = "#!/bin/bash\n# Generated by kube-vagrant on {created_at}\n"


class InitResult(str, Enum):
    OK = "ok"
    ALREADY_INITIALIZED = "already-initialized"


class JoinResult(str, Enum):
    OK = "ok"
    ALREADY_MEMBER = "already-member"


class JoinArtifact(BaseModel):
    """The join command a worker runs to become a cluster member."""

    command: str
    created_at: datetime | None = None

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith("kubeadm join "):
            raise ValueError("join artifact must be a 'kubeadm join' command")
        return v

    @property
    def endpoint(self) -> str:
        return self.command.split()[2]

    @property
    def token(self) -> str | None:
        match = re.search(r"--token\s+(\S+)", self.command)
        return match.group(1) if match else None

    def to_script(self) -> str:
        created_at = (self.created_at or datetime.now()).isoformat(timespec="seconds")
        return ARTIFACT_HEADER.format(created_at=created_at) + self.command + "\n"

    @classmethod
    def from_script(cls, text: str) -> "JoinArtifact | None":
        """Pick the join command out of a stored script; None if there is none."""
        for line in text.splitlines():
            if line.strip().startswith("kubeadm join "):
                return cls(command=line)
        return None


class JoinCoordinator:
    """Owns control-plane initialization and the join artifact lifecycle."""

    def __init__(
        self,
        settings: ClusterSettings,
        control: KubeadmControl,
        provisioner: VagrantProvisioner,
    ):
        self.settings = settings
        self.control = control
        self.provisioner = provisioner
        self.artifact_path = settings.join_artifact_path

    def initialize_control_plane(
        self, master_addr: str, pod_cidr: str, k8s_version: str
    ) -> InitResult:
        """Run kubeadm init unless the master already has a control plane.

        Raises:
            ControlPlaneError: If initialization fails
        """
        if self.control.is_initialized():
            logger.info(f"Control plane on {master_addr} is already initialized")
            return InitResult.ALREADY_INITIALIZED
        self.control.init(master_addr, pod_cidr, k8s_version)
        return InitResult.OK

    def mint_join_artifact(self, master_addr: str) -> JoinArtifact:
        """Mint a fresh token and overwrite the stored artifact.

        Raises:
            ControlPlaneError: If the control plane is not initialized or kubeadm fails
        """
        if not self.control.is_initialized():
            raise ControlPlaneError(
                "Cannot mint a join token before the control plane is initialized",
                f"Master: {master_addr}",
            )
        artifact = JoinArtifact(
            command=self.control.create_join_command(), created_at=datetime.now()
        )
        if master_addr not in artifact.endpoint:
            logger.warning(
                f"Join command targets {artifact.endpoint}, expected the master at {master_addr}"
            )
        self.artifact_path.parent.mkdir(parents=True, exist_ok=True)
        self.artifact_path.write_text(artifact.to_script())
        logger.info(f"Wrote join artifact to {self.artifact_path}")
        return artifact

    def read_join_artifact(self) -> JoinArtifact | None:
        """Current stored artifact, or None if there is none yet."""
        if not self.artifact_path.is_file():
            return None
        return JoinArtifact.from_script(self.artifact_path.read_text())

    def fetch_join_artifact(self) -> JoinArtifact:
        """Wait, with backoff, for the artifact to become available.

        Raises:
            ArtifactUnavailable: If it is still missing after the configured attempts
        """
        attempts = self.settings.join_poll_attempts

        def _log_wait(retry_state) -> None:
            logger.info(
                f"Join artifact not available yet (attempt {retry_state.attempt_number}/{attempts})"
            )

        @retry(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=self.settings.join_poll_interval,
                max=self.settings.join_poll_max_interval,
            ),
            retry=retry_if_result(lambda artifact: artifact is None),
            before_sleep=_log_wait,
        )
        def _attempt() -> JoinArtifact | None:
            return self.read_join_artifact()

        try:
            return _attempt()
        except RetryError:
            raise ArtifactUnavailable(
                f"Join artifact not available after {attempts} attempts",
                f"Expected at {self.artifact_path}. Check that the master initialized "
                "successfully, then re-run the command.",
            )

    def join(self, worker: Node, artifact: JoinArtifact) -> JoinResult:
        """Join a worker to the cluster unless it is already a member.

        Raises:
            ControlPlaneError: If the control plane is not initialized or the join fails
        """
        if not self.control.is_initialized():
            raise ControlPlaneError(
                f"Cannot join {worker.machine_name}: control plane is not initialized"
            )
        if self.control.node_registered(worker.machine_name):
            logger.info(f"{worker.machine_name} is already a cluster member")
            return JoinResult.ALREADY_MEMBER

        logger.info(f"Joining {worker} to the cluster at {artifact.endpoint}")
        result = self.provisioner.run_on(
            worker, f"sudo {artifact.command} --node-name {worker.machine_name}"
        )
        if result.returncode != 0:
            raise ControlPlaneError(
                f"kubeadm join failed on {worker.machine_name}",
                (result.stderr or result.stdout or "").strip() or f"exit code {result.returncode}",
            )
        return JoinResult.OK

    def discard(self) -> None:
        """Remove the stored artifact (cluster torn down)."""
        self.artifact_path.unlink(missing_ok=True)
