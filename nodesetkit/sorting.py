"""Orderings used to choose which nodeset pods to act on first."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Iterable, Optional

from .models import (
    ANNOTATION_POD_DEADLINE,
    ANNOTATION_POD_DELETION_COST,
    CONDITION_READY,
    CONDITION_TRUE,
    PHASE_PENDING,
    PHASE_RUNNING,
    PHASE_UNKNOWN,
    Pod,
    is_healthy,
    is_pod_cordon,
    is_pod_ready,
    number_from_annotations,
    time_from_annotations,
)
from .utils import get_ordinal

_PHASE_WEIGHT = {PHASE_PENDING: 0, PHASE_UNKNOWN: 1, PHASE_RUNNING: 2}
_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def _deletion_cost(pod: Pod) -> int:
    try:
        return number_from_annotations(pod.metadata.annotations, ANNOTATION_POD_DELETION_COST)
    except ValueError:
        return 0


def _deadline(pod: Pod) -> Optional[datetime]:
    try:
        return time_from_annotations(pod.metadata.annotations, ANNOTATION_POD_DEADLINE)
    except ValueError:
        return None


def _before(t1: Optional[datetime], t2: Optional[datetime]) -> bool:
    """Ordering where a missing time is the earliest time."""
    if t1 is None:
        return t2 is not None
    if t2 is None:
        return False
    return t1 < t2


def _ready_time(pod: Pod) -> Optional[datetime]:
    if is_pod_ready(pod):
        for condition in pod.conditions:
            if condition.type == CONDITION_READY and condition.status == CONDITION_TRUE:
                return condition.last_transition_time
    return None


def after_or_zero(t1: Optional[datetime], t2: Optional[datetime]) -> bool:
    """True when t1 is after t2; a missing (zero) time counts as after any other."""
    if t1 is None or t2 is None:
        return t1 is None
    return t1 > t2


def active_pods_less(pod1: Pod, pod2: Pod) -> bool:
    """True when pod1 should be preferred over pod2 for deletion."""
    node1, node2 = pod1.node_name, pod2.node_name
    if node1 != node2 and (not node1 or not node2):
        return not node1

    weight1 = _PHASE_WEIGHT.get(pod1.phase, 0)
    weight2 = _PHASE_WEIGHT.get(pod2.phase, 0)
    if weight1 != weight2:
        return weight1 < weight2

    ready1, ready2 = is_pod_ready(pod1), is_pod_ready(pod2)
    if ready1 != ready2:
        return not ready1

    cost1, cost2 = _deletion_cost(pod1), _deletion_cost(pod2)
    if cost1 != cost2:
        return cost1 < cost2

    deadline1, deadline2 = _deadline(pod1), _deadline(pod2)
    if deadline1 != deadline2:
        return _before(deadline1, deadline2)

    cordon1, cordon2 = is_pod_cordon(pod1), is_pod_cordon(pod2)
    if cordon1 or cordon2:
        return cordon1

    ordinal1, ordinal2 = get_ordinal(pod1), get_ordinal(pod2)
    if ordinal1 != ordinal2:
        return ordinal1 > ordinal2

    if ready1 and ready2:
        time1, time2 = _ready_time(pod1), _ready_time(pod2)
        if time1 != time2:
            return after_or_zero(time1, time2)

    created1 = pod1.metadata.creation_timestamp
    created2 = pod2.metadata.creation_timestamp
    if created1 != created2:
        return after_or_zero(created1, created2)

    return False


def _compare_active(pod1: Pod, pod2: Pod) -> int:
    if active_pods_less(pod1, pod2):
        return -1
    if active_pods_less(pod2, pod1):
        return 1
    return 0


def sort_active_pods(pods: Iterable[Pod]) -> list[Pod]:
    """Return the pods ordered from most to least preferred for deletion."""
    return sorted(pods, key=cmp_to_key(_compare_active))


def split_active_pods(
    pods: Optional[Iterable[Pod]], partition: int
) -> tuple[list[Pod], list[Pod]]:
    """Sort the pods for deletion and split them at ``partition``."""
    ordered = sort_active_pods(pods or [])
    pivot = max(0, min(partition, len(ordered)))
    return ordered[:pivot], ordered[pivot:]


def sort_pods_by_creation(pods: Iterable[Pod]) -> list[Pod]:
    """Return the pods ordered by creation time, names breaking ties."""

    def key(pod: Pod):
        created = pod.metadata.creation_timestamp
        return (created is not None, created or _EARLIEST, pod.metadata.name)

    return sorted(pods, key=key)


def split_unhealthy_pods(pods: Optional[Iterable[Pod]]) -> tuple[list[Pod], list[Pod]]:
    """Order pods by creation and split off as many as are unhealthy."""
    pod_list = list(pods or [])
    unhealthy = sum(1 for pod in pod_list if not is_healthy(pod))
    ordered = sort_pods_by_creation(pod_list)
    return ordered[:unhealthy], ordered[unhealthy:]