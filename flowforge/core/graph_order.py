"""Execution ordering and reachability over workflow graphs.

The order is a best-effort linearization, not a topological sort: start
nodes (no incoming connection) are walked depth first in input order, each
node placed the first time any path reaches it. When every node has an
incoming connection the input order is used verbatim.
"""

from typing import Dict, Iterable, List, Sequence, Set

from ..models.core import Connection, Node


def _valid(nodes: Sequence[Node], connections: Iterable[Connection]) -> List[Connection]:
    node_ids = {node.id for node in nodes}
    return [c for c in connections if c.source in node_ids and c.target in node_ids]


def _successors(connections: Iterable[Connection]) -> Dict[str, List[str]]:
    adjacency: Dict[str, List[str]] = {}
    for conn in connections:
        adjacency.setdefault(conn.source, []).append(conn.target)
    return adjacency


def order(nodes: Sequence[Node], connections: Sequence[Connection]) -> List[str]:
    """
    Compute the execution order of ``nodes``.

    Connections naming unknown nodes are ignored.

    Returns:
        Every node id exactly once
    """
    connections = _valid(nodes, connections)
    targets = {conn.target for conn in connections}
    start_nodes = [node.id for node in nodes if node.id not in targets]

    if not start_nodes:
        return [node.id for node in nodes]

    adjacency = _successors(connections)
    visited: Set[str] = set()
    result: List[str] = []

    for start in start_nodes:
        # Explicit stack, successors pushed reversed to keep connection order
        stack = [start]
        while stack:
            node_id = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            result.append(node_id)
            for successor in reversed(adjacency.get(node_id, [])):
                if successor not in visited:
                    stack.append(successor)

    for node in nodes:
        if node.id not in visited:
            visited.add(node.id)
            result.append(node.id)

    return result


def downstream(node_id: str, connections: Iterable[Connection]) -> Set[str]:
    """All nodes reachable from ``node_id`` via outgoing connections, excluding itself."""
    adjacency = _successors(connections)
    reached: Set[str] = set()
    stack = list(adjacency.get(node_id, []))

    while stack:
        current = stack.pop()
        if current in reached or current == node_id:
            continue
        reached.add(current)
        stack.extend(adjacency.get(current, []))

    return reached


def predecessors(node_id: str, connections: Iterable[Connection]) -> List[str]:
    """Sources of connections targeting ``node_id``, in connection order."""
    return [conn.source for conn in connections if conn.target == node_id]


def find_cycle_nodes(nodes: Sequence[Node], connections: Sequence[Connection]) -> Set[str]:
    """Nodes that take part in at least one cycle."""
    connections = _valid(nodes, connections)
    return {
        node.id for node in nodes
        if node.id in _reachable_including_cycles(node.id, connections)
    }


def _reachable_including_cycles(node_id: str, connections: Iterable[Connection]) -> Set[str]:
    adjacency = _successors(connections)
    reached: Set[str] = set()
    stack = list(adjacency.get(node_id, []))
    while stack:
        current = stack.pop()
        if current in reached:
            continue
        reached.add(current)
        stack.extend(adjacency.get(current, []))
    return reached
