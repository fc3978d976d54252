# nodesetkit

`nodesetkit` holds the logic that keeps the pods of a *NodeSet* in line with
their specification. A NodeSet is a group of Slurm compute nodes, and each node
runs as a pod. The package uses only the standard library.

## Modules

- `nodesetkit.models` contains the dataclasses the other modules work on:
  `NodeSet`, `NodeSetSpec`, `Pod`, `PersistentVolumeClaim`, `ObjectMeta`,
  `OwnerReference`, `Volume`, `PodCondition`, `RetentionPolicy`,
  `RetentionPolicyType` and `GroupVersionKind`. It also has these helpers:
  - `new_controller_ref`
  - `is_pod_ready`, `is_healthy`, `is_pod_cordon`
  - `number_from_annotations`, `time_from_annotations`, `bool_from_annotations`
- `nodesetkit.utils` handles pod identity and storage.
  - `new_nodeset_pod` builds a pod from the NodeSet's template.
  - Pods are named `<nodeset>-<ordinal>` (`get_pod_name`). The name is read back
    by `get_parent_name_and_ordinal`, `get_parent_name` and `get_ordinal`.
  - Each volume claim template gives one claim per pod, named
    `<template>-<nodeset>-<ordinal>` (`get_persistent_volume_claim_name`,
    `get_persistent_volume_claims`).
  - `update_identity` and `update_storage` bring a pod back in line with its
    NodeSet. `is_identity_match` and `is_storage_match` check whether it is.
  - `get_node_name` returns the Slurm node name of a pod: its hostname, or its
    name if it has no hostname.
- `nodesetkit.sorting` orders pods for deletion. `active_pods_less`,
  `sort_active_pods` and `split_active_pods` put these pods first:
  - unscheduled pods
  - Pending, then Unknown, then Running pods
  - not-ready pods
  - pods with a lower deletion cost
  - pods with an earlier deadline
  - cordoned pods
  - pods with a higher ordinal
  - pods that became ready more recently
  - newer pods

  `sort_pods_by_creation` and `split_unhealthy_pods` order pods by creation time,
  using the name to break ties.
- `nodesetkit.kube` provides:
  - an in-memory object store, `InMemoryClient`, with `get`, `list`, `create`,
    `update` and `delete`. It accepts optional hooks, which can be used to inject
    failures.
  - an `EventRecorder`
  - `retry_on_conflict`
  - the errors `ApiError`, `NotFoundError`, `AlreadyExistsError`, `ConflictError`
    and `AggregateError`
- `nodesetkit.podcontrol` provides `PodControl`, which:
  - creates, updates and deletes NodeSet pods and their claims;
  - keeps the owner references of the claims consistent with the NodeSet's
    retention policy (retain or delete, when scaled and when the set is deleted);
  - finds claims whose owner references have gone stale.

  The module-level helpers (`is_claim_owner_up_to_date`,
  `update_claim_owner_ref_for_set_and_pod`, `has_unexpected_controller`, and the
  others) implement the rules for owner references.
- `nodesetkit.slurm` provides `SlurmNode`, `NodeState`, `SlurmError`, and
  `InMemorySlurmClient`, an in-memory Slurm client with `get_node`, `list_nodes`
  and `update_node`.
- `nodesetkit.slurmcontrol` provides `SlurmControl`, which:
  - drains and undrains the Slurm node behind a pod;
  - reports whether a node is draining or drained;
  - lists the node names of a set of pods;
  - counts node states into a `SlurmNodeStatus`.

  `tolerate_error` treats "Not Found" and "No Content" as harmless.

## Example

```python
from nodesetkit.models import NodeSet, NodeSetSpec, ObjectMeta, PersistentVolumeClaim
from nodesetkit.utils import new_nodeset_pod, get_node_name
from nodesetkit.kube import InMemoryClient, EventRecorder
from nodesetkit.podcontrol import PodControl

nodeset = NodeSet(
    metadata=ObjectMeta(name="compute", namespace="default", uid="nodeset-uid"),
    spec=NodeSetSpec(
        cluster_name="slurm",
        volume_claim_templates=[PersistentVolumeClaim(metadata=ObjectMeta(name="datadir"))],
    ),
)
pod = new_nodeset_pod(nodeset, 0, "")
print(pod.metadata.name, get_node_name(pod))   # compute-0 compute-0

client = InMemoryClient()
control = PodControl(client, EventRecorder())
control.create_nodeset_pod(nodeset, pod)        # also creates claim datadir-compute-0
```

Draining the Slurm node behind the pod:

```python
from nodesetkit.slurm import InMemorySlurmClient, NodeState, SlurmNode
from nodesetkit.slurmcontrol import SlurmControl

slurm = InMemorySlurmClient(SlurmNode("compute-0", {NodeState.IDLE}))
control = SlurmControl({("default", "slurm"): slurm})
control.make_node_drain(nodeset, pod, "maintenance")
print(control.is_node_drained(nodeset, pod))    # True (IDLE+DRAIN)
print(control.calculate_node_status(nodeset, [pod]))
```

`SlurmControl` finds the client for a NodeSet using the key
(namespace, cluster name). If there is no client for that key:

- drain and undrain do nothing;
- `is_node_drain` and `is_node_drained` return `True`;
- `get_node_names` returns an empty list;
- `calculate_node_status` returns all-zero counts.

## Errors

- The object store raises `ApiError` subclasses.
- When several claims fail at once, `PodControl.create_persistent_volume_claims`
  collects the failures into an `AggregateError`.
- The Slurm client raises `SlurmError`, and its text is the HTTP status text.

## What the package does not do

The package contains the decision logic only. It does not:

- connect to a Kubernetes API server or to the Slurm REST API;
- run a reconcile loop, watch objects, or provide a command-line program;
- read Slurm jobs, so it does not work out node deadlines from running jobs.

Both stores keep their data in memory. To use real services, supply objects
that provide the same methods as `InMemoryClient` and `InMemorySlurmClient`.

## Running the tests

```
pip install -e ".[test]"
pytest
```