import logging
from dataclasses import dataclass

from chainboard.iterator import ChainIterator, ordered


@dataclass
class Node:
    id: int
    prev: int
    next: int
    scope: int = 1


def walk(nodes, **kwargs):
    return ChainIterator(nodes, "prev", "next", **kwargs)


def test_orders_shuffled_rows():
    nodes = [Node(3, 2, 0), Node(1, 0, 2), Node(2, 1, 3)]
    assert [n.id for n in ordered(nodes, "prev", "next")] == [1, 2, 3]


def test_empty_input():
    it = walk([])
    assert list(it) == []
    assert it.error is None


def test_single_pass():
    it = walk([Node(1, 0, 2), Node(2, 1, 0)])
    assert len(list(it)) == 2
    assert list(it) == []


def test_len_counts_scope_rows():
    it = walk([Node(1, 0, 2), Node(2, 1, 0), Node(5, 0, 0, scope=2)], predicate=lambda n: n.scope == 1)
    assert len(it) == 2
    assert [n.id for n in it] == [1, 2]


def test_cycle_terminates_with_error(caplog):
    nodes = [Node(1, 0, 2), Node(2, 1, 3), Node(3, 2, 2)]
    it = walk(nodes, scope="list 7")
    with caplog.at_level(logging.ERROR, logger="chainboard"):
        result = [n.id for n in it]
    assert result == [1, 2, 3]
    assert it.error is not None
    assert it.error.node_id == 2
    assert "cycle" in caplog.text


def test_dangling_pointer_stops_walk():
    it = walk([Node(1, 0, 2), Node(2, 1, 9)])
    assert [n.id for n in it] == [1, 2]
    assert it.error is not None
    assert it.error.node_id == 9
    assert "dangling" in str(it.error)


def test_no_head_yields_nothing():
    it = walk([Node(1, 2, 2), Node(2, 1, 1)])
    assert list(it) == []
    assert "no head" in str(it.error)


def test_orphans_are_reported(caplog):
    nodes = [Node(1, 0, 0), Node(2, 7, 0)]
    with caplog.at_level(logging.WARNING, logger="chainboard"):
        result = ordered(nodes, "prev", "next")
    assert [n.id for n in result] == [1]
    assert "not reachable" in caplog.text
