"""Reconciliation planning.

Turns an observed node count and a desired node count into an ordered list of
create/destroy steps. Creates run in ascending ordinal order and destroys in
descending order, so the live workers stay a contiguous prefix
worker1..workerK after every step.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from kube_vagrant.exceptions import ValidationError
from kube_vagrant.models.cluster import MAX_NODES, validate_node_count
from kube_vagrant.models.node import MASTER, WORKER, machine_name


class Operation(str, Enum):
    CREATE = "create"
    SCALE = "scale"


class StepAction(str, Enum):
    CREATE = "create"
    DESTROY = "destroy"


class PlanStep(BaseModel):
    """One node-level action."""

    model_config = ConfigDict(frozen=True)

    action: StepAction
    role: str
    ordinal: int = 0

    @property
    def machine_name(self) -> str:
        return machine_name(self.role, self.ordinal)

    def __str__(self) -> str:
        return f"{self.action.value} {self.machine_name}"


class ReconcilePlan(BaseModel):
    """Ordered steps taking the cluster from ``current`` to ``desired`` nodes."""

    operation: Operation
    current: int
    desired: int
    steps: list[PlanStep] = Field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.steps

    @property
    def creates(self) -> list[PlanStep]:
        return [s for s in self.steps if s.action == StepAction.CREATE]

    @property
    def destroys(self) -> list[PlanStep]:
        return [s for s in self.steps if s.action == StepAction.DESTROY]

    @property
    def creates_master(self) -> bool:
        return any(s.role == MASTER for s in self.creates)

    def describe(self) -> str:
        if self.is_noop:
            return f"Cluster already has {self.current} nodes"
        if self.current == 0:
            return f"Creating cluster with {self.desired} nodes"
        direction = "up" if self.desired > self.current else "down"
        return f"Scaling {direction} from {self.current} to {self.desired} nodes"


def plan(current: int, desired: int, operation: Operation = Operation.SCALE) -> ReconcilePlan:
    """Compute the steps to move from ``current`` to ``desired`` nodes.

    Args:
        current: Observed node count (0 when no master exists)
        desired: Requested node count, master included
        operation: ``create`` or ``scale``; scaling an absent cluster creates it

    Raises:
        ValidationError: If either count is outside the allowed range. The
            minimum of two nodes keeps the master out of every scale-down.
    """
    desired = validate_node_count(desired)
    if not 0 <= current <= MAX_NODES:
        raise ValidationError(f"Observed node count {current} is outside 0..{MAX_NODES}")

    if current == 0:
        operation = Operation.CREATE
        steps = [PlanStep(action=StepAction.CREATE, role=MASTER)]
        steps += [
            PlanStep(action=StepAction.CREATE, role=WORKER, ordinal=i) for i in range(1, desired)
        ]
        return ReconcilePlan(operation=operation, current=0, desired=desired, steps=steps)

    if desired == current:
        return ReconcilePlan(operation=operation, current=current, desired=desired)

    if desired > current:
        steps = [
            PlanStep(action=StepAction.CREATE, role=WORKER, ordinal=i)
            for i in range(current, desired)
        ]
        return ReconcilePlan(operation=operation, current=current, desired=desired, steps=steps)

    steps = [
        PlanStep(action=StepAction.DESTROY, role=WORKER, ordinal=i)
        for i in range(current - 1, desired - 1, -1)
    ]
    return ReconcilePlan(operation=operation, current=current, desired=desired, steps=steps)
