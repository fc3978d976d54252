"""Slurm-side control of the nodes that back nodeset pods."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from .models import NodeSet, Pod
from .slurm import (
    STATUS_NO_CONTENT,
    STATUS_NOT_FOUND,
    InMemorySlurmClient,
    NodeState,
    SlurmError,
    SlurmNode,
)
from .utils import get_node_name

logger = logging.getLogger(__name__)

NODE_REASON_PREFIX = "slurm-operator:"

_BASE_STATES = (
    ("allocated", NodeState.ALLOCATED),
    ("down", NodeState.DOWN),
    ("error", NodeState.ERROR),
    ("future", NodeState.FUTURE),
    ("idle", NodeState.IDLE),
    ("mixed", NodeState.MIXED),
    ("unknown", NodeState.UNKNOWN),
)

_FLAG_STATES = (
    ("completing", NodeState.COMPLETING),
    ("drain", NodeState.DRAIN),
    ("fail", NodeState.FAIL),
    ("invalid", NodeState.INVALID),
    ("invalid_reg", NodeState.INVALID_REG),
    ("maintenance", NodeState.MAINTENANCE),
    ("not_responding", NodeState.NOT_RESPONDING),
    ("undrain", NodeState.UNDRAIN),
)


@dataclass
class SlurmNodeStatus:
    """Counts of the nodeset's Slurm nodes by base and flag state."""

    total: int = 0

    allocated: int = 0
    down: int = 0
    error: int = 0
    future: int = 0
    idle: int = 0
    mixed: int = 0
    unknown: int = 0

    completing: int = 0
    drain: int = 0
    fail: int = 0
    invalid: int = 0
    invalid_reg: int = 0
    maintenance: int = 0
    not_responding: int = 0
    undrain: int = 0


def tolerate_error(err: Optional[BaseException]) -> bool:
    """True for no error and for errors meaning the object is absent."""
    if err is None:
        return True
    return str(err) in (STATUS_NOT_FOUND, STATUS_NO_CONTENT)


def _pod_node_names(pods: Iterable[Pod]) -> set[str]:
    return {get_node_name(pod) for pod in pods}


class SlurmControl:
    """Drains, undrains and inspects the Slurm nodes of nodesets.

    ``clusters`` maps (namespace, cluster name) to a Slurm client.
    """

    def __init__(self, clusters: Mapping[tuple[str, str], InMemorySlurmClient]):
        self.clusters = clusters

    def _lookup_client(self, nodeset: NodeSet) -> Optional[InMemorySlurmClient]:
        return self.clusters.get((nodeset.metadata.namespace, nodeset.spec.cluster_name))

    def _get_node(self, client: InMemorySlurmClient, pod: Pod) -> Optional[SlurmNode]:
        """The pod's Slurm node, or None when the lookup error is tolerated."""
        try:
            return client.get_node(get_node_name(pod))
        except SlurmError as err:
            if tolerate_error(err):
                return None
            raise

    def _update(self, client: InMemorySlurmClient, name: str, **changes) -> None:
        try:
            client.update_node(name, **changes)
        except SlurmError as err:
            if not tolerate_error(err):
                raise

    def get_node_names(self, nodeset: NodeSet, pods: Iterable[Pod]) -> list[str]:
        """Names of the registered Slurm nodes that belong to the given pods."""
        client = self._lookup_client(nodeset)
        if client is None:
            logger.debug("no client for nodeset %s, cannot get node names", nodeset.metadata.name)
            return []
        nodes = client.list_nodes()
        wanted = _pod_node_names(pods)
        return [node.name for node in nodes if node.name in wanted]

    def make_node_drain(self, nodeset: NodeSet, pod: Pod, reason: str) -> None:
        """Add the DRAIN flag to the pod's Slurm node."""
        client = self._lookup_client(nodeset)
        if client is None:
            logger.debug("no client for nodeset %s, cannot drain", nodeset.metadata.name)
            return
        node = self._get_node(client, pod)
        if node is None:
            return
        logger.info("make slurm node %s drain", node.name)
        self._update(
            client,
            node.name,
            states=[NodeState.DRAIN],
            reason=f"{NODE_REASON_PREFIX} {reason}",
        )

    def make_node_undrain(self, nodeset: NodeSet, pod: Pod, reason: str) -> None:
        """Remove the DRAIN flag from the pod's Slurm node if this operator set it."""
        client = self._lookup_client(nodeset)
        if client is None:
            logger.debug("no client for nodeset %s, cannot undrain", nodeset.metadata.name)
            return
        node = self._get_node(client, pod)
        if node is None:
            return
        node_reason = node.reason or ""
        if NodeState.DRAIN not in node.states or NodeState.UNDRAIN in node.states:
            logger.info("Node %s is already undrained, skipping undrain request", node.name)
            return
        if node_reason and NODE_REASON_PREFIX not in node_reason:
            logger.info(
                "Node %s was drained but not by slurm-operator, skipping undrain request: %s",
                node.name,
                node_reason,
            )
            return
        logger.info("make slurm node %s undrain", node.name)
        self._update(
            client,
            node.name,
            states=[NodeState.UNDRAIN],
            reason=f"{NODE_REASON_PREFIX} {reason}",
        )

    def is_node_drain(self, nodeset: NodeSet, pod: Pod) -> bool:
        """True when the pod's Slurm node has the DRAIN flag, or cannot be found."""
        client = self._lookup_client(nodeset)
        if client is None:
            return True
        node = self._get_node(client, pod)
        if node is None:
            return True
        return NodeState.DRAIN in node.states

    def is_node_drained(self, nodeset: NodeSet, pod: Pod) -> bool:
        """True when the node is IDLE+DRAIN or DOWN+DRAIN, or cannot be found."""
        client = self._lookup_client(nodeset)
        if client is None:
            return True
        node = self._get_node(client, pod)
        if node is None:
            return True
        base = NodeState.IDLE in node.states or NodeState.DOWN in node.states
        return base and NodeState.DRAIN in node.states

    def calculate_node_status(self, nodeset: NodeSet, pods: Iterable[Pod]) -> SlurmNodeStatus:
        """Count the pods' registered Slurm nodes by state."""
        status = SlurmNodeStatus()
        client = self._lookup_client(nodeset)
        if client is None:
            return status
        try:
            nodes = client.list_nodes()
        except SlurmError as err:
            if tolerate_error(err):
                return status
            raise
        wanted = _pod_node_names(pods)
        for node in nodes:
            if node.name not in wanted:
                continue
            status.total += 1
            for attr, state in _BASE_STATES:
                if state in node.states:
                    setattr(status, attr, getattr(status, attr) + 1)
                    break
            for attr, state in _FLAG_STATES:
                if state in node.states:
                    setattr(status, attr, getattr(status, attr) + 1)
        return status