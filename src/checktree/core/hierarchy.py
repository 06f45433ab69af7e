# src/checktree/core/hierarchy.py
"""Point-in-time snapshot of a store's hierarchy as a NetworkX graph.

The engine itself never caches edges. This module is for whole-tree
diagnostics (cycle detection, CLI rendering): it walks the store once and
returns a graph that is stale the moment the store changes.
"""

from __future__ import annotations

from collections import deque

import networkx as nx

from checktree.contracts import HierarchyCycleError, ItemQuery, ItemStoreProtocol, NodeID


async def snapshot_hierarchy(
    store: ItemStoreProtocol,
    *,
    root_id: NodeID,
    query: ItemQuery | None = None,
) -> nx.DiGraph[NodeID]:
    """Walk the store breadth-first from the root and record every edge.

    Edges point parent -> child. Each node carries a ``label`` attribute; the
    root is labelled with its identity. Nodes are expanded once, so the walk
    terminates even when the store's relation is cyclic.

    Args:
        store: Backing store to walk
        root_id: Identity of the fabricated root node
        query: Top-level query selecting the root's children

    Returns:
        Directed graph of the hierarchy reachable from the root
    """
    graph: nx.DiGraph[NodeID] = nx.DiGraph()
    graph.add_node(root_id, label=root_id)

    top_level = await store.query_top_level(query)
    pending: deque[NodeID] = deque()
    for item in top_level:
        graph.add_edge(root_id, item)
        pending.append(item)

    expanded: set[NodeID] = set()
    while pending:
        item = pending.popleft()
        if item in expanded:
            continue
        expanded.add(item)
        graph.nodes[item]["label"] = await store.read_attribute(item, store.label_attribute)
        if not await store.may_have_children(item):
            continue
        for child in await store.fetch_children(item):
            graph.add_edge(item, child)
            if child not in expanded:
                pending.append(child)
    return graph


def find_cycle(graph: nx.DiGraph[NodeID]) -> list[NodeID] | None:
    """Return one cycle as a node path (first node repeated last), or None."""
    try:
        edges = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        return None
    path = [edge[0] for edge in edges]
    path.append(edges[0][0])
    return path


def ensure_acyclic(graph: nx.DiGraph[NodeID]) -> None:
    """Raise HierarchyCycleError if the snapshot contains a cycle."""
    cycle = find_cycle(graph)
    if cycle is not None:
        raise HierarchyCycleError(list(cycle))
