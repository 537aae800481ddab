"""Property-based tests for reconciliation planning.

Feature: node lifecycle reconciliation
"""

import pytest
from hypothesis import assume, given
from hypothesis import strategies as st

from kube_vagrant.exceptions import ValidationError
from kube_vagrant.planner import Operation, StepAction, plan

desired_counts = st.integers(min_value=2, max_value=4)
actual_counts = st.integers(min_value=1, max_value=4)


@given(desired=desired_counts, operation=st.sampled_from(list(Operation)))
def test_fresh_cluster_creates_master_then_workers_ascending(desired, operation):
    """
    For all desired N in [2,4] and actual state 0, the plan creates exactly N
    nodes: the master first, then workers 1..N-1 in ascending order.
    """
    result = plan(0, desired, operation)

    assert result.operation == Operation.CREATE
    assert all(s.action == StepAction.CREATE for s in result.steps)
    assert len(result.steps) == desired
    assert result.steps[0].role == "master"
    assert [s.ordinal for s in result.steps[1:]] == list(range(1, desired))
    assert result.creates_master


@given(actual=actual_counts, desired=desired_counts)
def test_scale_up_creates_missing_workers_ascending(actual, desired):
    """For actual k < desired N, workers k..N-1 are created in order, nothing destroyed."""
    assume(desired > actual)

    result = plan(actual, desired)

    assert result.destroys == []
    assert not result.creates_master
    assert [s.ordinal for s in result.creates] == list(range(actual, desired))


@given(actual=actual_counts, desired=desired_counts)
def test_scale_down_destroys_top_workers_descending(actual, desired):
    """
    For actual k > desired N, workers N..k-1 are destroyed in descending
    order, the master is never touched and 1..N-1 stays gap-free.
    """
    assume(desired < actual)

    result = plan(actual, desired)

    assert result.creates == []
    ordinals = [s.ordinal for s in result.destroys]
    assert ordinals == list(range(actual - 1, desired - 1, -1))
    assert all(s.role == "worker" for s in result.steps)

    remaining = set(range(1, actual)) - set(ordinals)
    assert remaining == set(range(1, desired))


@given(actual=actual_counts, desired=desired_counts)
def test_intermediate_states_keep_workers_contiguous(actual, desired):
    """After every step of any plan the live workers form a prefix 1..k."""
    workers = set(range(1, actual))
    for step in plan(actual, desired).steps:
        if step.action == StepAction.CREATE:
            workers.add(step.ordinal)
        else:
            workers.discard(step.ordinal)
        assert workers == set(range(1, len(workers) + 1))


@given(count=desired_counts)
def test_equal_counts_is_noop(count):
    result = plan(count, count)
    assert result.is_noop
    assert result.steps == []
    assert "already has" in result.describe()


@pytest.mark.parametrize("desired", [0, 1, 5, -3, "two", None])
def test_out_of_range_desired_rejected(desired):
    with pytest.raises(ValidationError):
        plan(2, desired)


@pytest.mark.parametrize("desired", [1, 5])
def test_out_of_range_rejected_for_fresh_cluster(desired):
    with pytest.raises(ValidationError):
        plan(0, desired, Operation.CREATE)


def test_observed_count_out_of_range_rejected():
    with pytest.raises(ValidationError):
        plan(5, 3)


def test_end_to_end_examples():
    down = plan(3, 2)
    assert [str(s) for s in down.steps] == ["destroy k8s-worker2"]

    up = plan(2, 4)
    assert [str(s) for s in up.steps] == ["create k8s-worker2", "create k8s-worker3"]
    assert up.describe() == "Scaling up from 2 to 4 nodes"
