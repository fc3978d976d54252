import random
from datetime import datetime, timedelta, timezone

import pytest

from nodesetkit.models import (
    ANNOTATION_POD_CORDON,
    ANNOTATION_POD_DELETION_COST,
    CONDITION_READY,
    CONDITION_TRUE,
    PHASE_PENDING,
    PHASE_RUNNING,
    PHASE_UNKNOWN,
    ObjectMeta,
    Pod,
    PodCondition,
)
from nodesetkit.sorting import (
    active_pods_less,
    after_or_zero,
    sort_active_pods,
    sort_pods_by_creation,
    split_active_pods,
    split_unhealthy_pods,
)


def _ready(when=None):
    return [PodCondition(CONDITION_READY, CONDITION_TRUE, when)]


def _active_pods():
    now = datetime.now(timezone.utc)
    then = now - timedelta(days=30)
    return [
        Pod(metadata=ObjectMeta(name="unscheduled"), node_name="", phase=PHASE_PENDING),
        Pod(metadata=ObjectMeta(name="scheduledButPending"), node_name="bar", phase=PHASE_PENDING),
        Pod(metadata=ObjectMeta(name="unknownPhase"), node_name="foo", phase=PHASE_UNKNOWN),
        Pod(metadata=ObjectMeta(name="runningButNotReady"), node_name="foo", phase=PHASE_RUNNING),
        Pod(
            metadata=ObjectMeta(name="runningNoLastTransitionTime"),
            node_name="foo",
            phase=PHASE_RUNNING,
            conditions=_ready(),
        ),
        Pod(
            metadata=ObjectMeta(name="runningWithLastTransitionTime"),
            node_name="foo",
            phase=PHASE_RUNNING,
            conditions=_ready(now),
        ),
        Pod(
            metadata=ObjectMeta(name="runningLongerTime"),
            node_name="foo",
            phase=PHASE_RUNNING,
            conditions=_ready(then),
        ),
        Pod(
            metadata=ObjectMeta(name="oldest", creation_timestamp=then),
            node_name="foo",
            phase=PHASE_RUNNING,
            conditions=_ready(then),
        ),
        Pod(
            metadata=ObjectMeta(
                name="runningWithCost1", annotations={ANNOTATION_POD_DELETION_COST: "1"}
            ),
            node_name="foo",
            phase=PHASE_RUNNING,
            conditions=_ready(),
        ),
        Pod(
            metadata=ObjectMeta(
                name="runningWithCost10", annotations={ANNOTATION_POD_DELETION_COST: "10"}
            ),
            node_name="foo",
            phase=PHASE_RUNNING,
            conditions=_ready(),
        ),
        Pod(
            metadata=ObjectMeta(
                name="runningWithCordon", annotations={ANNOTATION_POD_CORDON: "True"}
            ),
            node_name="foo",
            phase=PHASE_RUNNING,
            conditions=_ready(),
        ),
        Pod(
            metadata=ObjectMeta(name="runningWithOrdinal-1"),
            node_name="foo",
            phase=PHASE_RUNNING,
            conditions=_ready(),
        ),
    ]


WANT_ORDER = [
    "unscheduled",
    "scheduledButPending",
    "unknownPhase",
    "runningButNotReady",
    "runningWithCordon",
    "runningWithOrdinal-1",
    "runningNoLastTransitionTime",
    "runningWithLastTransitionTime",
    "runningLongerTime",
    "oldest",
    "runningWithCost1",
    "runningWithCost10",
]


def test_sorting_active_pods():
    pods = _active_pods()
    rng = random.Random(1234)
    for _ in range(20):
        shuffled = list(pods)
        rng.shuffle(shuffled)
        got = [p.metadata.name for p in sort_active_pods(shuffled)]
        assert got == WANT_ORDER


@pytest.mark.parametrize(
    "t1, t2, want",
    [
        (None, None, True),
        (datetime.fromtimestamp(0, timezone.utc), datetime.fromtimestamp(0, timezone.utc), False),
        (datetime.fromtimestamp(10, timezone.utc), datetime.fromtimestamp(0, timezone.utc), True),
        (datetime.fromtimestamp(0, timezone.utc), datetime.fromtimestamp(10, timezone.utc), False),
    ],
)
def test_after_or_zero(t1, t2, want):
    assert after_or_zero(t1, t2) is want


def _two_pods():
    return [Pod(metadata=ObjectMeta(name="foo-0")), Pod(metadata=ObjectMeta(name="foo-1"))]


@pytest.mark.parametrize(
    "pods, partition, want1, want2",
    [
        (None, 0, [], []),
        (_two_pods(), 0, [], ["foo-1", "foo-0"]),
        (_two_pods(), 1, ["foo-1"], ["foo-0"]),
        (_two_pods(), 2, ["foo-1", "foo-0"], []),
    ],
)
def test_split_active_pods(pods, partition, want1, want2):
    got1, got2 = split_active_pods(pods, partition)
    assert [p.metadata.name for p in got1] == want1
    assert [p.metadata.name for p in got2] == want2


def test_split_active_pods_clamps_partition():
    got1, got2 = split_active_pods(_two_pods(), 10)
    assert len(got1) == 2 and got2 == []
    got1, got2 = split_active_pods(_two_pods(), -3)
    assert got1 == [] and len(got2) == 2


def test_split_unhealthy_pods_empty():
    assert split_unhealthy_pods(None) == ([], [])


def test_split_unhealthy_pods_mixed():
    pods = [
        Pod(metadata=ObjectMeta(name="pod1"), phase=PHASE_PENDING),
        Pod(metadata=ObjectMeta(name="pod2"), phase=PHASE_RUNNING, conditions=_ready()),
    ]
    unhealthy, healthy = split_unhealthy_pods(pods)
    assert unhealthy == [Pod(metadata=ObjectMeta(name="pod1"), phase=PHASE_PENDING)]
    assert healthy == [
        Pod(metadata=ObjectMeta(name="pod2"), phase=PHASE_RUNNING, conditions=_ready())
    ]


def test_sort_pods_by_creation():
    now = datetime.now(timezone.utc)
    pods = [
        Pod(metadata=ObjectMeta(name="b", creation_timestamp=now)),
        Pod(metadata=ObjectMeta(name="a", creation_timestamp=now)),
        Pod(metadata=ObjectMeta(name="c", creation_timestamp=now - timedelta(hours=1))),
        Pod(metadata=ObjectMeta(name="z")),
    ]
    assert [p.metadata.name for p in sort_pods_by_creation(pods)] == ["z", "c", "a", "b"]