"""Node lifecycle reconciler.

One synchronous pass per command: probe the VMs that exist, plan the
create/destroy steps, execute them strictly in order, then probe again and
report what is actually there. Nothing runs in parallel and nothing is
persisted between invocations.
"""

from dataclasses import dataclass, field

from kube_vagrant.config import ClusterSettings
from kube_vagrant.control import KubeadmControl
from kube_vagrant.exceptions import (
    ControlPlaneError,
    KubeVagrantError,
    ProvisionerError,
    ValidationError,
)
from kube_vagrant.initializer import AnsibleNodeInitializer
from kube_vagrant.join import JoinCoordinator
from kube_vagrant.logging_config import get_logger
from kube_vagrant.models.cluster import ClusterActualState, validate_node_count
from kube_vagrant.models.node import Node
from kube_vagrant.planner import Operation, PlanStep, ReconcilePlan, plan
from kube_vagrant.provisioner import VagrantProvisioner

logger = get_logger(__name__)


@dataclass
class StepOutcome:
    """Result of executing one plan step.

    Attributes:
        step: The plan step
        success: False only for fatal failures
        phase: Last phase reached (provision, initialize, control-plane, join,
            drain, delete, destroy)
        warnings: Non-fatal problems (failed drain or registry delete)
        error: The fatal error, if any
    """

    step: PlanStep
    success: bool = True
    phase: str = ""
    warnings: list[str] = field(default_factory=list)
    error: KubeVagrantError | None = None

    def describe_failure(self) -> str:
        return f"{self.step.machine_name}: {self.phase} failed: {self.error.message}"


@dataclass
class ReconcileReport:
    """What a reconciliation did and the state it left behind."""

    plan: ReconcilePlan
    actual: ClusterActualState
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def failure(self) -> StepOutcome | None:
        return next((o for o in self.outcomes if not o.success), None)

    @property
    def failed(self) -> bool:
        return self.failure is not None

    @property
    def warnings(self) -> list[str]:
        return [w for o in self.outcomes for w in o.warnings]

    @property
    def skipped(self) -> list[PlanStep]:
        """Plan steps never attempted because an earlier step failed."""
        attempted = {o.step for o in self.outcomes}
        return [s for s in self.plan.steps if s not in attempted]


class NodeLifecycleReconciler:
    """Converges the set of cluster VMs to a desired node count."""

    def __init__(
        self,
        settings: ClusterSettings,
        provisioner: VagrantProvisioner,
        initializer: AnsibleNodeInitializer,
        control: KubeadmControl,
        coordinator: JoinCoordinator,
    ):
        self.settings = settings
        self.provisioner = provisioner
        self.initializer = initializer
        self.control = control
        self.coordinator = coordinator

    @classmethod
    def from_settings(cls, settings: ClusterSettings) -> "NodeLifecycleReconciler":
        """Wire up the Vagrant, Ansible and kubeadm adapters."""
        provisioner = VagrantProvisioner(settings)
        control = KubeadmControl(settings, provisioner)
        return cls(
            settings=settings,
            provisioner=provisioner,
            initializer=AnsibleNodeInitializer(settings, provisioner),
            control=control,
            coordinator=JoinCoordinator(settings, control, provisioner),
        )

    def probe(self) -> ClusterActualState:
        """Observed state from the VMs that exist."""
        actual = ClusterActualState(present=self.provisioner.present_nodes())
        for stray in actual.stray_workers:
            logger.warning(
                f"{stray.machine_name} exists outside the contiguous worker set "
                "and is not counted; remove it with 'vagrant destroy'"
            )
        return actual

    def up(self, desired: int) -> ReconcileReport:
        return self.reconcile(desired, Operation.CREATE)

    def scale(self, desired: int) -> ReconcileReport:
        return self.reconcile(desired, Operation.SCALE)

    def reconcile(self, desired: int, operation: Operation = Operation.SCALE) -> ReconcileReport:
        """Plan and execute the steps to reach ``desired`` nodes.

        ``up`` never removes workers: asking it for fewer nodes than exist is
        rejected, and shrinking is left to ``scale``.

        Raises:
            ValidationError: If ``desired`` is out of range, or below the current
                count for ``up`` (before any side effect)
            ControlPlaneError: If the cluster already has ``desired`` nodes but
                its control plane was never initialized
        """
        desired = validate_node_count(desired)
        actual = self.probe()
        if operation == Operation.CREATE and actual.total > desired:
            raise ValidationError(
                f"Cluster already has {actual.total} nodes, more than the {desired} requested",
                f"Use 'kube-vagrant scale {desired}' to remove workers",
            )
        the_plan = plan(actual.total, desired, operation)
        logger.info(the_plan.describe())

        if the_plan.is_noop:
            if actual.exists and not self.control.is_initialized():
                raise ControlPlaneError(
                    f"Cluster has {actual.total} nodes but the control plane on "
                    f"{self.settings.master().machine_name} is not initialized",
                    "Run 'kube-vagrant down' and then 'kube-vagrant up' to rebuild the cluster",
                )
            return ReconcileReport(plan=the_plan, actual=actual)

        if the_plan.creates:
            outcomes = self._execute_creates(the_plan)
        else:
            outcomes = self._execute_destroys(the_plan)

        return ReconcileReport(plan=the_plan, actual=self.probe(), outcomes=outcomes)

    def destroy_all(self) -> ClusterActualState:
        """Destroy every VM and discard the join artifact and shared kubeconfig.

        Raises:
            ProvisionerError: If the VMs could not be destroyed
        """
        self.provisioner.destroy_all()
        self.coordinator.discard()
        self.settings.shared_kubeconfig_path.unlink(missing_ok=True)
        self.initializer.reset()
        logger.info("Cluster destroyed")
        return self.probe()

    def _execute_creates(self, the_plan: ReconcilePlan) -> list[StepOutcome]:
        # Growing an existing cluster: make sure the master finished kubeadm init
        # and mint a fresh token before the first new worker is provisioned
        needs_fresh_artifact = not the_plan.creates_master
        outcomes = []
        for step in the_plan.steps:
            outcome = self._create(step, mint_first=needs_fresh_artifact)
            needs_fresh_artifact = False
            outcomes.append(outcome)
            if not outcome.success:
                logger.error(f"Stopping: {outcome.describe_failure()}")
                break
        return outcomes

    def _execute_destroys(self, the_plan: ReconcilePlan) -> list[StepOutcome]:
        outcomes = []
        for step in the_plan.steps:
            outcome = self._destroy(step)
            outcomes.append(outcome)
            if not outcome.success:
                logger.error(f"Stopping: {outcome.describe_failure()}")
                break
        return outcomes

    def _node(self, step: PlanStep) -> Node:
        return self.settings.node(step.role, step.ordinal)

    def _create(self, step: PlanStep, mint_first: bool = False) -> StepOutcome:
        node = self._node(step)
        master = self.settings.master()
        outcome = StepOutcome(step=step)
        try:
            if mint_first and not node.is_master:
                outcome.phase = "control-plane"
                self.coordinator.initialize_control_plane(
                    master.private_ip, self.settings.pod_cidr, self.settings.k8s_version
                )
                self.coordinator.mint_join_artifact(master.private_ip)

            outcome.phase = "provision"
            self.provisioner.create(node)

            outcome.phase = "initialize"
            self.initializer.initialize(node)

            if node.is_master:
                outcome.phase = "control-plane"
                self.coordinator.initialize_control_plane(
                    node.private_ip, self.settings.pod_cidr, self.settings.k8s_version
                )
                self.coordinator.mint_join_artifact(node.private_ip)
            else:
                outcome.phase = "join"
                artifact = self.coordinator.fetch_join_artifact()
                self.coordinator.join(node, artifact)
        except KubeVagrantError as e:
            outcome.success = False
            outcome.error = e
            return outcome

        logger.info(f"{node.machine_name} is ready")
        return outcome

    def _destroy(self, step: PlanStep) -> StepOutcome:
        node = self._node(step)
        outcome = StepOutcome(step=step)

        # Registry cleanup is best effort; the VM goes regardless
        for phase, action in (("drain", self.control.drain), ("delete", self.control.delete_node)):
            outcome.phase = phase
            try:
                action(node.machine_name)
            except KubeVagrantError as e:
                logger.warning(f"{phase} of {node.machine_name} failed: {e.message}")
                outcome.warnings.append(f"{node.machine_name}: {phase} failed: {e.message}")

        outcome.phase = "destroy"
        try:
            self.provisioner.destroy(node)
        except ProvisionerError as e:
            outcome.success = False
            outcome.error = e
            return outcome

        try:
            self.initializer.forget(node)
        except KubeVagrantError as e:
            outcome.warnings.append(f"{node.machine_name}: inventory cleanup failed: {e.message}")

        logger.info(f"{node.machine_name} removed")
        return outcome

