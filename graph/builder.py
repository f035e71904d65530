from __future__ import annotations

from typing import Any, Dict

import networkx as nx

from .index import ScenarioIndex
from .schema import BranchKind, Scenario


def build_nx_graph(scenario: Scenario, index: ScenarioIndex = None) -> nx.DiGraph:
    """Directed graph of a scenario; edge attribute ``via`` tells how it is wired.

    ``via`` is one of next, connection, tree, branch or jump. A jump never
    replaces an edge that already exists between the same two nodes.
    """
    index = index or ScenarioIndex.build(scenario)
    g: nx.DiGraph = nx.DiGraph()

    # add nodes
    for node_id, node in index.nodes.items():
        attrs: Dict[str, Any] = {
            "kind": node.kind.value,
            "label": node.label or node.name or node_id,
            "node_name": node.name,
        }
        g.add_node(node_id, **attrs)

    # add edges
    for node_id, node in index.nodes.items():
        for edge in index.outgoing(node_id):
            g.add_edge(node_id, edge.target_id, via=edge.via, context=edge.handle or "")
        jumps = []
        for branch in node.branches:
            if branch.kind == BranchKind.JUMP:
                jumps.append(branch)
                continue
            target = index.resolve_branch(node_id, branch.id)
            if target:
                g.add_edge(node_id, target, via="branch", context=branch.label)
        for branch in jumps:
            for target in index.resolve_name(branch.target_node_name or ""):
                if not g.has_edge(node_id, target):
                    g.add_edge(node_id, target, via="jump", context=branch.label)

    return g
