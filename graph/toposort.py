from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

import networkx as nx

from .schema import CycleDetectionResult


def kahn_toposort(g: nx.DiGraph, skip_via: Iterable[str] = ()) -> CycleDetectionResult:
    """Kahn ordering over the edges whose ``via`` attribute is not skipped.

    With ``skip_via=("jump",)`` this orders the anonymous part of a scenario;
    a failure means the scenario loops without a named jump.
    """
    skipped = set(skip_via)
    kept: List[Tuple[str, str]] = [(u, v) for u, v, via in g.edges(data="via") if via not in skipped]

    successors: Dict[str, List[str]] = {n: [] for n in g.nodes}
    in_deg: Dict[str, int] = {n: 0 for n in g.nodes}
    for u, v in kept:
        successors[u].append(v)
        in_deg[v] += 1

    starts = [n for n in g.nodes if in_deg[n] == 0 and successors[n]]
    ends = [n for n in g.nodes if not successors[n]]

    q = deque(n for n in g.nodes if in_deg[n] == 0)
    order: List[str] = []
    while q:
        cur = q.popleft()
        order.append(cur)
        for nb in successors[cur]:
            in_deg[nb] -= 1
            if in_deg[nb] == 0:
                q.append(nb)

    success = len(order) == g.number_of_nodes()
    cyclic_nodes: List[str] = []
    if not success:
        # leftovers are on a cycle or downstream of one; keep only the cycle members
        blocked: Set[str] = {n for n, d in in_deg.items() if d > 0}
        sub = nx.DiGraph()
        sub.add_nodes_from(blocked)
        sub.add_edges_from((u, v) for u, v in kept if u in blocked and v in blocked)
        for component in nx.strongly_connected_components(sub):
            member = next(iter(component))
            if len(component) > 1 or sub.has_edge(member, member):
                cyclic_nodes.extend(component)

    return CycleDetectionResult(
        success=success,
        order=order,
        cyclic_nodes=cyclic_nodes,
        start_nodes=starts,
        end_nodes=ends,
    )
