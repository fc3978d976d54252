"""Pod and claim management for the members of a nodeset."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .kube import (
    EVENT_TYPE_NORMAL,
    EVENT_TYPE_WARNING,
    AggregateError,
    AlreadyExistsError,
    ApiError,
    EventRecorder,
    InMemoryClient,
    NotFoundError,
    retry_on_conflict,
)
from .models import (
    NODESET_GVK,
    POD_GVK,
    GroupVersionKind,
    NodeSet,
    ObjectMeta,
    OwnerReference,
    PersistentVolumeClaim,
    Pod,
    RetentionPolicy,
    RetentionPolicyType,
    is_pod_cordon,
    new_controller_ref,
)
from .utils import (
    get_ordinal,
    get_persistent_volume_claim_name,
    get_persistent_volume_claims,
    is_identity_match,
    is_storage_match,
    update_identity,
    update_storage,
)

logger = logging.getLogger(__name__)

EVENT_CREATE = "Create"
EVENT_DELETE = "Delete"
EVENT_UPDATE = "Update"

_RETAIN = RetentionPolicyType.RETAIN
_DELETE = RetentionPolicyType.DELETE


def _meta(obj: Any) -> ObjectMeta:
    """Metadata of an object, or the object itself when it is metadata."""
    return obj if isinstance(obj, ObjectMeta) else obj.metadata


class PodControl:
    """Creates, deletes and updates nodeset pods and their claims."""

    def __init__(self, client: InMemoryClient, recorder: Optional[EventRecorder] = None):
        self.client = client
        self.recorder = recorder if recorder is not None else EventRecorder()

    def create_nodeset_pod(self, nodeset: NodeSet, pod: Pod) -> None:
        """Create the pod's claims, then the pod, then set claim ownership."""
        try:
            self.create_persistent_volume_claims(nodeset, pod)
        except (ApiError, AggregateError) as err:
            self._record_pod_event(EVENT_CREATE, nodeset, pod, err)
            raise

        create_err: Optional[ApiError] = None
        try:
            self.client.create(pod)
        except AlreadyExistsError:
            raise
        except ApiError as err:
            create_err = err

        try:
            self.update_pod_pvcs_for_retention_policy(nodeset, pod)
        except ApiError as err:
            self._record_pod_event(EVENT_UPDATE, nodeset, pod, err)
            raise

        self._record_pod_event(EVENT_CREATE, nodeset, pod, create_err)
        if create_err is not None:
            raise create_err

    def delete_nodeset_pod(self, nodeset: NodeSet, pod: Pod) -> None:
        """Delete the pod."""
        err: Optional[ApiError] = None
        try:
            self.client.delete(Pod.KIND, pod.metadata.namespace, pod.metadata.name)
        except ApiError as exc:
            err = exc
        self._record_pod_event(EVENT_DELETE, nodeset, pod, err)
        if err is not None:
            raise err

    def update_nodeset_pod(self, nodeset: NodeSet, pod: Pod) -> None:
        """Bring the pod's identity, storage and claim ownership in line with the nodeset."""
        state = {"pod": pod, "attempted": False}

        def attempt() -> None:
            current: Pod = state["pod"]
            consistent = True
            if not is_identity_match(nodeset, current):
                update_identity(nodeset, current)
                consistent = False
            if not is_storage_match(nodeset, current):
                update_storage(nodeset, current)
                consistent = False
                try:
                    self.create_persistent_volume_claims(nodeset, current)
                except (ApiError, AggregateError) as err:
                    self._record_pod_event(EVENT_UPDATE, nodeset, current, err)
                    raise
            try:
                match = self.pod_pvcs_match_retention_policy(nodeset, current)
            except ApiError as err:
                self._record_pod_event(EVENT_UPDATE, nodeset, current, err)
                raise
            if not match:
                try:
                    self.update_pod_pvcs_for_retention_policy(nodeset, current)
                except ApiError as err:
                    self._record_pod_event(EVENT_UPDATE, nodeset, current, err)
                    raise
                consistent = False

            if consistent:
                return

            state["attempted"] = True
            try:
                self.client.update(current)
            except ApiError:
                try:
                    state["pod"] = self.client.get(
                        Pod.KIND, nodeset.metadata.namespace, current.metadata.name
                    )
                except ApiError as get_err:
                    logger.error(
                        "error getting updated Pod %s/%s: %s",
                        nodeset.metadata.namespace,
                        current.metadata.name,
                        get_err,
                    )
                raise

        error: Optional[BaseException] = None
        try:
            retry_on_conflict(attempt)
        except (ApiError, AggregateError) as err:
            error = err
        if state["attempted"]:
            self._record_pod_event(EVENT_UPDATE, nodeset, state["pod"], error)
        if error is not None:
            raise error

    def pod_pvcs_match_retention_policy(self, nodeset: NodeSet, pod: Pod) -> bool:
        """False when the pod's claims are not owned as the retention policy requires."""
        ordinal = get_ordinal(pod)
        for template in nodeset.spec.volume_claim_templates:
            claim_name = get_persistent_volume_claim_name(nodeset, template, ordinal)
            try:
                claim = self.client.get(
                    PersistentVolumeClaim.KIND, nodeset.metadata.namespace, claim_name
                )
            except NotFoundError:
                logger.debug("Expected claim %s missing, continuing", claim_name)
                continue
            except ApiError as err:
                raise ApiError(
                    f"could not retrieve claim {claim_name} for {pod.metadata.name} "
                    "when checking PVC deletion policy"
                ) from err
            if not is_claim_owner_up_to_date(claim, nodeset, pod):
                return False
        return True

    def update_pod_pvcs_for_retention_policy(self, nodeset: NodeSet, pod: Pod) -> None:
        """Set the owner references of the pod's claims according to the retention policy."""
        ordinal = get_ordinal(pod)
        for template in nodeset.spec.volume_claim_templates:
            claim_name = get_persistent_volume_claim_name(nodeset, template, ordinal)
            try:
                claim = self.client.get(
                    PersistentVolumeClaim.KIND, nodeset.metadata.namespace, claim_name
                )
            except NotFoundError:
                logger.debug("Expected claim %s missing, continuing", claim_name)
                continue
            except ApiError as err:
                raise ApiError(
                    f"could not retrieve claim {claim_name} not found for "
                    f"{pod.metadata.name} when checking PVC deletion policy: {err}"
                ) from err
            if has_unexpected_controller(claim, nodeset, pod):
                self.recorder.event(
                    nodeset,
                    EVENT_TYPE_WARNING,
                    "ConflictingController",
                    f"PersistentVolumeClaim {claim_name} has a conflicting OwnerReference "
                    "that acts as a managing controller, the retention policy is ignored "
                    "for this claim",
                )
            if not is_claim_owner_up_to_date(claim, nodeset, pod):
                update_claim_owner_ref_for_set_and_pod(claim, nodeset, pod)
                try:
                    self.client.update(claim)
                except ApiError as err:
                    raise ApiError(
                        f"could not update claim {claim_name} for delete policy "
                        f"ownerRefs: {err}"
                    ) from err

    def is_pod_pvcs_stale(self, nodeset: NodeSet, pod: Pod) -> bool:
        """True when a claim of the pod refers to an older pod of the same name."""
        policy = get_persistent_volume_claim_retention_policy(nodeset)
        if policy.when_scaled == _RETAIN:
            return False
        for claim in get_persistent_volume_claims(nodeset, pod).values():
            try:
                pvc = self.client.get(
                    PersistentVolumeClaim.KIND,
                    claim.metadata.namespace,
                    claim.metadata.name,
                )
            except NotFoundError:
                continue
            if has_stale_owner_ref(pvc, pod, POD_GVK):
                return True
        return False

    def create_persistent_volume_claims(self, nodeset: NodeSet, pod: Pod) -> None:
        """Create every missing claim of the pod; raise AggregateError on any failure."""
        errors: list[BaseException] = []
        for claim in get_persistent_volume_claims(nodeset, pod).values():
            name = claim.metadata.name
            try:
                existing = self.client.get(
                    PersistentVolumeClaim.KIND, nodeset.metadata.namespace, name
                )
            except NotFoundError:
                create_err: Optional[ApiError] = None
                try:
                    self.client.create(claim)
                except ApiError as err:
                    create_err = err
                    errors.append(ApiError(f"failed to create PVC {name}: {err}"))
                if not isinstance(create_err, AlreadyExistsError):
                    self._record_claim_event(EVENT_CREATE, nodeset, pod, claim, create_err)
                continue
            except ApiError as err:
                errors.append(ApiError(f"failed to retrieve PVC {name}: {err}"))
                self._record_claim_event(EVENT_CREATE, nodeset, pod, claim, err)
                continue
            if existing.metadata.deletion_timestamp is not None:
                errors.append(ApiError(f"pvc {name} is being deleted"))
        AggregateError.raise_if_any(errors)

    def _record_pod_event(
        self, verb: str, nodeset: NodeSet, pod: Pod, err: Optional[BaseException]
    ) -> None:
        if err is None:
            self.recorder.event(
                nodeset,
                EVENT_TYPE_NORMAL,
                f"Successful{verb.title()}",
                f"{verb.lower()} Pod {pod.metadata.name} in NodeSet "
                f"{nodeset.metadata.name} successful",
            )
        else:
            self.recorder.event(
                nodeset,
                EVENT_TYPE_WARNING,
                f"Failed{verb.title()}",
                f"{verb.lower()} Pod {pod.metadata.name} in NodeSet "
                f"{nodeset.metadata.name} failed error: {err}",
            )

    def _record_claim_event(
        self,
        verb: str,
        nodeset: NodeSet,
        pod: Pod,
        claim: PersistentVolumeClaim,
        err: Optional[BaseException],
    ) -> None:
        if err is None:
            self.recorder.event(
                nodeset,
                EVENT_TYPE_NORMAL,
                f"Successful{verb.title()}",
                f"{verb.lower()} Claim {claim.metadata.name} Pod {pod.metadata.name} "
                f"in NodeSet {nodeset.metadata.name} successful",
            )
        else:
            self.recorder.event(
                nodeset,
                EVENT_TYPE_WARNING,
                f"Failed{verb.title()}",
                f"{verb.lower()} Claim {claim.metadata.name} for Pod {pod.metadata.name} "
                f"in NodeSet {nodeset.metadata.name} failed error: {err}",
            )


def is_claim_owner_up_to_date(
    claim: PersistentVolumeClaim, nodeset: NodeSet, pod: Pod
) -> bool:
    """False when the claim's owner references disagree with the retention policy.

    Claims with stale references or foreign controllers are reported as up to
    date so that they are left alone.
    """
    if has_stale_owner_ref(claim, nodeset, NODESET_GVK) or has_stale_owner_ref(
        claim, pod, POD_GVK
    ):
        return True

    if has_unexpected_controller(claim, nodeset, pod):
        return not (has_owner_ref(claim, nodeset) or has_owner_ref(claim, pod))

    if has_non_controller_owner(claim, nodeset, pod):
        return False

    policy = get_persistent_volume_claim_retention_policy(nodeset)
    deleted, scaled = policy.when_deleted, policy.when_scaled
    if deleted == _DELETE and scaled == _RETAIN:
        return has_owner_ref(claim, nodeset) and not has_owner_ref(claim, pod)
    if deleted == _RETAIN and scaled == _DELETE:
        if has_owner_ref(claim, nodeset):
            return False
        return is_pod_cordon(pod) == has_owner_ref(claim, pod)
    if deleted == _DELETE and scaled == _DELETE:
        scaled_down = is_pod_cordon(pod)
        if scaled_down == has_owner_ref(claim, nodeset):
            return False
        return scaled_down == has_owner_ref(claim, pod)
    if not (deleted == _RETAIN and scaled == _RETAIN):
        logger.error("Unknown policy %r, treating as Retain", policy)
    return not (has_owner_ref(claim, nodeset) or has_owner_ref(claim, pod))


def has_unexpected_controller(
    claim: PersistentVolumeClaim, nodeset: NodeSet, pod: Pod
) -> bool:
    """True when a controller other than the nodeset or pod manages the claim."""
    policy = get_persistent_volume_claim_retention_policy(nodeset)
    if policy.when_scaled == _RETAIN and policy.when_deleted == _RETAIN:
        return False
    for ref in claim.metadata.owner_references:
        if matches_ref(ref, nodeset, NODESET_GVK):
            if ref.uid != nodeset.metadata.uid:
                return True
            continue
        if matches_ref(ref, pod, POD_GVK):
            if ref.uid != pod.metadata.uid:
                return True
            continue
        if ref.controller:
            return True
    return False


def has_non_controller_owner(
    claim: PersistentVolumeClaim, nodeset: NodeSet, pod: Pod
) -> bool:
    """True when the nodeset or pod owns the claim without controlling it."""
    owners = {nodeset.metadata.uid, pod.metadata.uid}
    return any(
        ref.uid in owners and not ref.controller for ref in claim.metadata.owner_references
    )


def _remove_refs(
    refs: list[OwnerReference], predicate: Callable[[OwnerReference], bool]
) -> list[OwnerReference]:
    return [ref for ref in refs if not predicate(ref)]


def update_claim_owner_ref_for_set_and_pod(
    claim: PersistentVolumeClaim, nodeset: NodeSet, pod: Pod
) -> None:
    """Rewrite the claim's references to the nodeset and pod per the retention policy."""
    unexpected = has_unexpected_controller(claim, nodeset, pod)
    refs = _remove_refs(
        claim.metadata.owner_references,
        lambda ref: matches_ref(ref, nodeset, NODESET_GVK) or matches_ref(ref, pod, POD_GVK),
    )
    if unexpected:
        claim.metadata.owner_references = refs
        return

    policy = get_persistent_volume_claim_retention_policy(nodeset)
    scaled, deleted = policy.when_scaled, policy.when_deleted
    if scaled == _RETAIN and deleted == _DELETE:
        refs = add_controller_ref(refs, nodeset, NODESET_GVK)
    elif scaled == _DELETE and deleted == _RETAIN:
        if is_pod_cordon(pod):
            refs = add_controller_ref(refs, pod, POD_GVK)
    elif scaled == _DELETE and deleted == _DELETE:
        if is_pod_cordon(pod):
            refs = add_controller_ref(refs, pod, POD_GVK)
        else:
            refs = add_controller_ref(refs, nodeset, NODESET_GVK)
    elif not (scaled == _RETAIN and deleted == _RETAIN):
        logger.error("Unknown policy %r, treating as Retain", policy)
    claim.metadata.owner_references = refs


def get_persistent_volume_claim_retention_policy(nodeset: NodeSet) -> RetentionPolicy:
    """The nodeset's retention policy, retaining on both counts when unset."""
    policy = nodeset.spec.persistent_volume_claim_retention_policy
    if policy is None:
        return RetentionPolicy(when_deleted=_RETAIN, when_scaled=_RETAIN)
    return RetentionPolicy(when_deleted=policy.when_deleted, when_scaled=policy.when_scaled)


def has_owner_ref(target: Any, owner: Any) -> bool:
    """True when ``target`` has an owner reference with ``owner``'s UID."""
    uid = _meta(owner).uid
    return any(ref.uid == uid for ref in _meta(target).owner_references)


def has_stale_owner_ref(target: Any, obj: Any, gvk: GroupVersionKind) -> bool:
    """True when ``target`` refers to ``obj`` by name and kind but with another UID."""
    for ref in _meta(target).owner_references:
        if matches_ref(ref, obj, gvk):
            return ref.uid != _meta(obj).uid
    return False


def matches_ref(ref: OwnerReference, obj: Any, gvk: GroupVersionKind) -> bool:
    """True when the reference names ``obj`` with the given kind, whatever its UID."""
    return (
        gvk.api_version() == ref.api_version
        and gvk.kind == ref.kind
        and ref.name == _meta(obj).name
    )


def add_controller_ref(
    refs: list[OwnerReference], owner: Any, gvk: GroupVersionKind
) -> list[OwnerReference]:
    """Return ``refs`` with a controller reference to ``owner`` added if missing."""
    uid = _meta(owner).uid
    if any(ref.uid == uid for ref in refs):
        return refs
    return [*refs, new_controller_ref(owner, gvk)]