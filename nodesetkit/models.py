"""Object model for nodesets, pods and persistent volume claims."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Mapping, Optional

NAMESPACE_DEFAULT = "default"

ANNOTATION_POD_CORDON = "slinky.slurm.net/pod-cordon"
ANNOTATION_POD_DELETION_COST = "slinky.slurm.net/pod-deletion-cost"
ANNOTATION_POD_DEADLINE = "slinky.slurm.net/pod-deadline"

LABEL_NODESET_POD_NAME = "nodeset.slinky.slurm.net/pod-name"
LABEL_NODESET_POD_INDEX = "nodeset.slinky.slurm.net/pod-index"
LABEL_REVISION_HASH = "controller-revision-hash"

PHASE_PENDING = "Pending"
PHASE_RUNNING = "Running"
PHASE_SUCCEEDED = "Succeeded"
PHASE_FAILED = "Failed"
PHASE_UNKNOWN = "Unknown"

CONDITION_READY = "Ready"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_NUMBER_RE = re.compile(r"[+-]?[0-9]+")
_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


@dataclass(frozen=True)
class GroupVersionKind:
    """Identifies the type of an API object."""

    group: str
    version: str
    kind: str

    def api_version(self) -> str:
        """Return the apiVersion string, e.g. ``v1`` or ``group/version``."""
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version


POD_GVK = GroupVersionKind("", "v1", "Pod")
NODESET_GVK = GroupVersionKind("slinky.slurm.net", "v1alpha1", "NodeSet")


@dataclass
class OwnerReference:
    """A reference from a dependent object to its owner."""

    api_version: str = ""
    kind: str = ""
    name: str = ""
    uid: str = ""
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = None


@dataclass
class ObjectMeta:
    """Metadata shared by all objects."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)
    finalizers: list[str] = field(default_factory=list)
    creation_timestamp: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None


@dataclass
class Volume:
    """A pod volume; ``claim_name`` is set for claim-backed volumes."""

    name: str
    claim_name: Optional[str] = None
    read_only: bool = False
    host_path: Optional[str] = None


@dataclass
class PersistentVolumeClaim:
    """A persistent volume claim; ``spec`` holds its requirements."""

    KIND: ClassVar[str] = "PersistentVolumeClaim"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: dict = field(default_factory=dict)


@dataclass
class PodCondition:
    """A condition of a pod's status."""

    type: str
    status: str
    last_transition_time: Optional[datetime] = None


@dataclass
class Pod:
    """A pod, with the spec and status fields the controller relies on."""

    KIND: ClassVar[str] = "Pod"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    node_name: str = ""
    hostname: str = ""
    subdomain: str = ""
    containers: list[dict] = field(default_factory=list)
    volumes: list[Volume] = field(default_factory=list)
    tolerations: list[dict] = field(default_factory=list)
    phase: str = ""
    conditions: list[PodCondition] = field(default_factory=list)


class RetentionPolicyType(str, Enum):
    """What to do with claims when a pod is scaled away or the set deleted."""

    RETAIN = "Retain"
    DELETE = "Delete"


@dataclass
class RetentionPolicy:
    """Claim retention policy of a nodeset."""

    when_deleted: RetentionPolicyType = RetentionPolicyType.RETAIN
    when_scaled: RetentionPolicyType = RetentionPolicyType.RETAIN


@dataclass
class NodeSetSpec:
    """Desired state of a nodeset."""

    cluster_name: str = ""
    replicas: Optional[int] = None
    match_labels: dict[str, str] = field(default_factory=dict)
    template: Pod = field(default_factory=Pod)
    volume_claim_templates: list[PersistentVolumeClaim] = field(default_factory=list)
    service_name: str = ""
    update_strategy: str = "RollingUpdate"
    persistent_volume_claim_retention_policy: Optional[RetentionPolicy] = None
    revision_history_limit: Optional[int] = None


@dataclass
class NodeSet:
    """A set of pods, each backing one Slurm node."""

    KIND: ClassVar[str] = "NodeSet"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: NodeSetSpec = field(default_factory=NodeSetSpec)


def new_controller_ref(owner, gvk: GroupVersionKind) -> OwnerReference:
    """Return a controlling owner reference to ``owner``."""
    return OwnerReference(
        api_version=gvk.api_version(),
        kind=gvk.kind,
        name=owner.metadata.name,
        uid=owner.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )


def is_pod_ready(pod: Pod) -> bool:
    """True when the pod has a Ready condition with status True."""
    return any(
        c.type == CONDITION_READY and c.status == CONDITION_TRUE for c in pod.conditions
    )


def is_healthy(pod: Pod) -> bool:
    """True when the pod is running and ready."""
    return pod.phase == PHASE_RUNNING and is_pod_ready(pod)


def number_from_annotations(annotations: Mapping[str, str], key: str) -> int:
    """Read a 32-bit integer annotation; 0 when absent, ValueError when malformed."""
    value = annotations.get(key)
    if value is None:
        return 0
    if not _NUMBER_RE.fullmatch(value):
        raise ValueError(f"annotation {key}: invalid number {value!r}")
    number = int(value)
    if not _INT32_MIN <= number <= _INT32_MAX:
        raise ValueError(f"annotation {key}: number {value!r} out of range")
    return number


def time_from_annotations(annotations: Mapping[str, str], key: str) -> Optional[datetime]:
    """Read an RFC 3339 time annotation; None when absent, ValueError when malformed."""
    value = annotations.get(key)
    if value is None:
        return None
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"annotation {key}: invalid time {value!r}") from exc
    if parsed.tzinfo is None:
        raise ValueError(f"annotation {key}: time {value!r} lacks a zone offset")
    return parsed


def bool_from_annotations(annotations: Mapping[str, str], key: str) -> bool:
    """Read a boolean annotation; False when absent, ValueError when malformed."""
    value = annotations.get(key)
    if value is None:
        return False
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ValueError(f"annotation {key}: invalid boolean {value!r}")


def is_pod_cordon(pod: Pod) -> bool:
    """True when the pod carries a true cordon annotation."""
    try:
        return bool_from_annotations(pod.metadata.annotations, ANNOTATION_POD_CORDON)
    except ValueError:
        return False