import pytest

from nodesetkit.slurm import (
    STATUS_NOT_FOUND,
    InMemorySlurmClient,
    NodeState,
    SlurmError,
    SlurmNode,
)


def _client():
    return InMemorySlurmClient(
        SlurmNode(name="foo-0", states={NodeState.IDLE}),
        SlurmNode(name="foo-1", states={NodeState.MIXED}),
    )


def test_get_node_returns_stored_node():
    node = _client().get_node("foo-0")
    assert node.name == "foo-0"
    assert node.states == {NodeState.IDLE}
    assert node.reason is None


def test_get_node_returns_copy():
    client = _client()
    node = client.get_node("foo-0")
    node.states.add(NodeState.DRAIN)
    assert client.get_node("foo-0").states == {NodeState.IDLE}


def test_get_missing_node_raises_not_found():
    with pytest.raises(SlurmError) as info:
        _client().get_node("missing")
    assert str(info.value) == STATUS_NOT_FOUND


def test_list_nodes_returns_all():
    names = sorted(node.name for node in _client().list_nodes())
    assert names == ["foo-0", "foo-1"]


def test_update_drain_keeps_base_state():
    client = _client()
    client.update_node("foo-0", [NodeState.DRAIN], reason="why")
    node = client.get_node("foo-0")
    assert node.states == {NodeState.IDLE, NodeState.DRAIN}
    assert node.reason == "why"


def test_undrain_clears_drain():
    client = InMemorySlurmClient(
        SlurmNode(name="n", states={NodeState.IDLE, NodeState.DRAIN})
    )
    client.update_node("n", [NodeState.UNDRAIN])
    assert client.get_node("n").states == {NodeState.IDLE}


def test_comment_set_and_kept_when_none():
    client = _client()
    client.update_node("foo-1", comment="note")
    client.update_node("foo-1", states=[NodeState.COMPLETING])
    node = client.get_node("foo-1")
    assert node.comment == "note"
    assert NodeState.COMPLETING in node.states


def test_update_missing_node_raises():
    with pytest.raises(SlurmError):
        _client().update_node("missing", [NodeState.DRAIN])


def test_duplicate_nodes_rejected():
    with pytest.raises(ValueError):
        InMemorySlurmClient(SlurmNode(name="a"), SlurmNode(name="a"))


def test_get_hook_error_propagates():
    def fail(name):
        raise SlurmError("Forbidden")

    client = InMemorySlurmClient(SlurmNode(name="a"), get_hook=fail)
    with pytest.raises(SlurmError, match="Forbidden"):
        client.get_node("a")


def test_list_hook_error_propagates():
    def fail():
        raise SlurmError("Forbidden")

    client = InMemorySlurmClient(SlurmNode(name="a"), list_hook=fail)
    with pytest.raises(SlurmError):
        client.list_nodes()


def test_node_state_from_value():
    assert NodeState("DRAIN") is NodeState.DRAIN