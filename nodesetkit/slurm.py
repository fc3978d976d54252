"""Slurm node model and an in-memory Slurm client."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

STATUS_NOT_FOUND = "Not Found"
STATUS_NO_CONTENT = "No Content"


class NodeState(str, Enum):
    """Base and flag states a Slurm node can report."""

    INVALID = "INVALID"
    UNKNOWN = "UNKNOWN"
    DOWN = "DOWN"
    IDLE = "IDLE"
    ALLOCATED = "ALLOCATED"
    ERROR = "ERROR"
    MIXED = "MIXED"
    FUTURE = "FUTURE"
    RESERVED = "RESERVED"
    UNDRAIN = "UNDRAIN"
    CLOUD = "CLOUD"
    RESUME = "RESUME"
    DRAIN = "DRAIN"
    COMPLETING = "COMPLETING"
    NOT_RESPONDING = "NOT_RESPONDING"
    POWERED_DOWN = "POWERED_DOWN"
    FAIL = "FAIL"
    POWERING_UP = "POWERING_UP"
    MAINTENANCE = "MAINTENANCE"
    REBOOT_REQUESTED = "REBOOT_REQUESTED"
    REBOOT_CANCELED = "REBOOT_CANCELED"
    POWERING_DOWN = "POWERING_DOWN"
    DYNAMIC_FUTURE = "DYNAMIC_FUTURE"
    REBOOT_ISSUED = "REBOOT_ISSUED"
    PLANNED = "PLANNED"
    INVALID_REG = "INVALID_REG"
    POWER_DOWN = "POWER_DOWN"
    POWER_UP = "POWER_UP"
    POWER_DRAIN = "POWER_DRAIN"
    DYNAMIC_NORM = "DYNAMIC_NORM"


@dataclass
class SlurmNode:
    """A Slurm node as reported by the controller."""

    name: str
    states: set[NodeState] = field(default_factory=set)
    reason: Optional[str] = None
    comment: Optional[str] = None


class SlurmError(Exception):
    """An error reported by the Slurm API; its text is the HTTP status text."""


Hook = Callable[..., None]


class InMemorySlurmClient:
    """Holds Slurm nodes in memory and applies node updates to them.

    Objects are copied on the way in and out. Each optional hook is called
    with the same arguments as its operation before it runs; raising from it
    aborts the call.
    """

    def __init__(
        self,
        *nodes: SlurmNode,
        get_hook: Optional[Hook] = None,
        list_hook: Optional[Hook] = None,
        update_hook: Optional[Hook] = None,
    ):
        self._nodes: dict[str, SlurmNode] = {}
        self._get_hook = get_hook
        self._list_hook = list_hook
        self._update_hook = update_hook
        for node in nodes:
            if node.name in self._nodes:
                raise ValueError(f"duplicate node {node.name!r}")
            self._nodes[node.name] = copy.deepcopy(node)

    def get_node(self, name: str) -> SlurmNode:
        """Return a copy of the named node; SlurmError when it does not exist."""
        if self._get_hook is not None:
            self._get_hook(name)
        try:
            return copy.deepcopy(self._nodes[name])
        except KeyError:
            raise SlurmError(STATUS_NOT_FOUND) from None

    def list_nodes(self) -> list[SlurmNode]:
        """Return copies of all nodes."""
        if self._list_hook is not None:
            self._list_hook()
        return [copy.deepcopy(node) for node in self._nodes.values()]

    def update_node(
        self,
        name: str,
        states: Optional[Iterable[NodeState]] = None,
        reason: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> None:
        """Apply state changes, reason and comment to the named node.

        UNDRAIN clears the DRAIN flag; any other state is added. A reason or
        comment of None leaves the current value as it is.
        """
        if self._update_hook is not None:
            self._update_hook(name, states, reason, comment)
        node = self._nodes.get(name)
        if node is None:
            raise SlurmError(STATUS_NOT_FOUND)
        for state in states or ():
            if state == NodeState.UNDRAIN:
                node.states.discard(NodeState.DRAIN)
            else:
                node.states.add(NodeState(state))
        if reason is not None:
            node.reason = reason
        if comment is not None:
            node.comment = comment