"""Identity, naming and storage helpers for nodeset pods."""

from __future__ import annotations

import copy
import re

from .models import (
    LABEL_NODESET_POD_INDEX,
    LABEL_NODESET_POD_NAME,
    LABEL_REVISION_HASH,
    NODESET_GVK,
    NodeSet,
    ObjectMeta,
    PersistentVolumeClaim,
    Pod,
    Volume,
    new_controller_ref,
)

_POD_NAME_RE = re.compile(r"(.*)-([0-9]+)\Z")
_INT32_MAX = 2**31 - 1

_DAEMON_TOLERATIONS = (
    ("node.kubernetes.io/not-ready", "NoExecute"),
    ("node.kubernetes.io/unreachable", "NoExecute"),
    ("node.kubernetes.io/disk-pressure", "NoSchedule"),
    ("node.kubernetes.io/memory-pressure", "NoSchedule"),
    ("node.kubernetes.io/pid-pressure", "NoSchedule"),
    ("node.kubernetes.io/unschedulable", "NoSchedule"),
)


def _toleration_matches(old: dict, new: dict) -> bool:
    return all(old.get(k, "") == new.get(k, "") for k in ("key", "operator", "value", "effect"))


def _add_or_update_toleration(tolerations: list[dict], toleration: dict) -> list[dict]:
    result = []
    replaced = False
    for old in tolerations:
        if _toleration_matches(old, toleration):
            result.append(dict(toleration))
            replaced = True
        else:
            result.append(old)
    if not replaced:
        result.append(dict(toleration))
    return result


def new_nodeset_pod(nodeset: NodeSet, ordinal: int, revision_hash: str = "") -> Pod:
    """Return a new pod built from the nodeset's template with the given ordinal."""
    template = nodeset.spec.template
    pod = copy.deepcopy(template)
    pod.metadata = ObjectMeta(
        labels=dict(template.metadata.labels),
        annotations=dict(template.metadata.annotations),
        finalizers=list(template.metadata.finalizers),
        owner_references=[new_controller_ref(nodeset, NODESET_GVK)],
    )
    pod.phase = ""
    pod.conditions = []
    pod.metadata.name = get_pod_name(nodeset, ordinal)
    _init_identity(nodeset, pod)
    update_storage(nodeset, pod)

    if revision_hash:
        pod.metadata.labels[LABEL_REVISION_HASH] = revision_hash

    # The scheduler must place the pod; a preset node would bypass priority.
    pod.node_name = ""

    for key, effect in _DAEMON_TOLERATIONS:
        pod.tolerations = _add_or_update_toleration(
            pod.tolerations, {"key": key, "operator": "Exists", "effect": effect}
        )
    return pod


def _init_identity(nodeset: NodeSet, pod: Pod) -> None:
    update_identity(nodeset, pod)
    if pod.hostname:
        pod.hostname = f"{pod.hostname}{get_ordinal(pod)}"
    else:
        pod.hostname = pod.metadata.name
    pod.subdomain = nodeset.spec.service_name


def update_identity(nodeset: NodeSet, pod: Pod) -> None:
    """Make the pod's name, namespace and identity labels conform to the nodeset."""
    ordinal = get_ordinal(pod)
    pod.metadata.name = get_pod_name(nodeset, ordinal)
    pod.metadata.namespace = nodeset.metadata.namespace
    pod.metadata.labels[LABEL_NODESET_POD_NAME] = pod.metadata.name
    pod.metadata.labels[LABEL_NODESET_POD_INDEX] = str(ordinal)


def update_storage(nodeset: NodeSet, pod: Pod) -> None:
    """Make the pod's volumes reference the claims of the nodeset's templates."""
    claims = get_persistent_volume_claims(nodeset, pod)
    volumes = [
        Volume(name=name, claim_name=claim.metadata.name, read_only=False)
        for name, claim in claims.items()
    ]
    volumes.extend(v for v in pod.volumes if v.name not in claims)
    pod.volumes = volumes


def is_pod_from_nodeset(nodeset: NodeSet, pod: Pod) -> bool:
    """True when the pod's name starts with the nodeset's name and a dash."""
    try:
        return re.match(f"^{nodeset.metadata.name}-", pod.metadata.name) is not None
    except re.error:
        return False


def get_parent_name(pod: Pod) -> str:
    """Name of the pod's parent nodeset, or an empty string."""
    return get_parent_name_and_ordinal(pod)[0]


def get_ordinal(pod: Pod) -> int:
    """The pod's ordinal, or -1 when it has none."""
    return get_parent_name_and_ordinal(pod)[1]


def get_parent_name_and_ordinal(pod: Pod) -> tuple[str, int]:
    """Parent name and ordinal parsed from the pod's name; ("", -1) when absent."""
    match = _POD_NAME_RE.search(pod.metadata.name)
    if match is None:
        return "", -1
    number = int(match.group(2))
    ordinal = number if number <= _INT32_MAX else -1
    return match.group(1), ordinal


def get_pod_name(nodeset: NodeSet, ordinal: int) -> str:
    """Name of the nodeset's pod with the given ordinal."""
    return f"{nodeset.metadata.name}-{ordinal}"


def get_node_name(pod: Pod) -> str:
    """The Slurm node name of the pod: its hostname, else its name."""
    return pod.hostname or pod.metadata.name


def is_identity_match(nodeset: NodeSet, pod: Pod) -> bool:
    """True when the pod has a valid identity as a member of the nodeset."""
    parent, ordinal = get_parent_name_and_ordinal(pod)
    return (
        ordinal >= 0
        and nodeset.metadata.name == parent
        and pod.metadata.name == get_pod_name(nodeset, ordinal)
        and pod.metadata.namespace == nodeset.metadata.namespace
        and pod.metadata.labels.get(LABEL_NODESET_POD_NAME, "") == pod.metadata.name
    )


def is_storage_match(nodeset: NodeSet, pod: Pod) -> bool:
    """True when the pod's volumes cover every claim of the nodeset."""
    ordinal = get_ordinal(pod)
    if ordinal < 0:
        return False
    volumes = {v.name: v for v in pod.volumes}
    for claim in nodeset.spec.volume_claim_templates:
        volume = volumes.get(claim.metadata.name)
        if (
            volume is None
            or volume.claim_name is None
            or volume.claim_name != get_persistent_volume_claim_name(nodeset, claim, ordinal)
        ):
            return False
    return True


def get_persistent_volume_claims(nodeset: NodeSet, pod: Pod) -> dict[str, PersistentVolumeClaim]:
    """Claims for the pod keyed by template name, in template order."""
    ordinal = get_ordinal(pod)
    claims: dict[str, PersistentVolumeClaim] = {}
    for template in nodeset.spec.volume_claim_templates:
        claim = copy.deepcopy(template)
        claim.metadata.name = get_persistent_volume_claim_name(nodeset, template, ordinal)
        claim.metadata.namespace = nodeset.metadata.namespace
        claim.metadata.labels.update(nodeset.spec.match_labels)
        claims[template.metadata.name] = claim
    return claims


def get_persistent_volume_claim_name(
    nodeset: NodeSet, claim: PersistentVolumeClaim, ordinal: int
) -> str:
    """Name of the claim from ``claim``'s template for the pod with ``ordinal``."""
    return f"{claim.metadata.name}-{nodeset.metadata.name}-{ordinal}"