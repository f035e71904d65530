from __future__ import annotations

import logging
from typing import Dict, List, Tuple

import networkx as nx

logger = logging.getLogger(__name__)

KIND_ORDER: List[str] = ["start", "message", "question", "condition", "action", "end"]

KIND_COLORS: Dict[str, str] = {
    "start": "#90EE90",
    "message": "#87CEEB",
    "question": "#DDA0DD",
    "condition": "#F0E68C",
    "action": "#FFB6C1",
    "end": "#FFA07A",
}


def _try_graphviz_layout(g: nx.DiGraph) -> Dict[str, Tuple[float, float]]:
    try:
        from networkx.drawing.nx_agraph import graphviz_layout  # type: ignore
        return graphviz_layout(g, prog="dot")
    except Exception:
        try:
            from networkx.drawing.nx_pydot import graphviz_layout  # type: ignore
            return graphviz_layout(g, prog="dot")
        except Exception:
            return {}


def _depth_layered_layout(g: nx.DiGraph, root: str = None) -> Dict[str, Tuple[float, float]]:
    # columns by BFS depth from the root over non-jump edges; the rest go last
    anonymous = nx.DiGraph()
    anonymous.add_edges_from([(u, v) for u, v, a in g.edges(data=True) if a.get("via") != "jump"])
    anonymous.add_nodes_from(g.nodes())
    depth: Dict[str, int] = {}
    if root is not None and root in anonymous:
        depth = dict(nx.single_source_shortest_path_length(anonymous, root))
    last = max(depth.values(), default=-1) + 1

    grouped: Dict[int, List[str]] = {}
    for n in g.nodes():
        grouped.setdefault(depth.get(n, last), []).append(n)
    for col in grouped:
        grouped[col].sort()

    pos: Dict[str, Tuple[float, float]] = {}
    col_gap = 3.0
    row_gap = 1.5
    for col, nodes in sorted(grouped.items()):
        x = col * col_gap
        offset = (len(nodes) - 1) * row_gap / 2.0
        for i, n in enumerate(nodes):
            pos[n] = (x, -offset + i * row_gap)
    return pos


def draw_with_legend(g: nx.DiGraph, save_path: str, root: str = None) -> bool:
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
        from matplotlib.patches import Patch
    except Exception:
        logger.warning("matplotlib is not installed; skipping visualization")
        return False

    pos = _try_graphviz_layout(g)
    if not pos:
        pos = _depth_layered_layout(g, root)

    nodes = list(g.nodes())
    colors = [KIND_COLORS.get(g.nodes[n].get("kind", ""), "#D3D3D3") for n in nodes]
    labels = {n: g.nodes[n].get("label") or n for n in nodes}

    plt.figure(figsize=(16, 10))
    nx.draw_networkx_nodes(
        g, pos, nodelist=nodes, node_color=colors, node_size=2000,
        edgecolors="#444444", linewidths=2,
    )

    solid = [(u, v) for u, v, a in g.edges(data=True) if a.get("via") != "jump"]
    jumps = [(u, v) for u, v, a in g.edges(data=True) if a.get("via") == "jump"]
    if solid:
        nx.draw_networkx_edges(
            g, pos, edgelist=solid, arrows=True, arrowstyle="-|>", arrowsize=22,
            width=2.6, edge_color="#555555", connectionstyle="arc3,rad=0.06",
        )
    if jumps:
        # jumps are the only legal loops, drawn faded
        nx.draw_networkx_edges(
            g, pos, edgelist=jumps, arrows=True, arrowstyle="-|>", arrowsize=18,
            width=2.0, edge_color="#AAAAAA", style="dashed", connectionstyle="arc3,rad=0.2",
        )

    nx.draw_networkx_labels(g, pos, labels=labels, font_size=10, font_color="#111111")

    edge_labels = {(u, v): a.get("context", "") for u, v, a in g.edges(data=True) if a.get("context")}
    if edge_labels:
        nx.draw_networkx_edge_labels(
            g, pos, edge_labels=edge_labels, font_size=8.5, label_pos=0.55,
            bbox=dict(boxstyle="round,pad=0.3", facecolor="white", edgecolor="gray", alpha=0.8),
        )

    handles = [Patch(facecolor=KIND_COLORS[k], edgecolor="#444444", label=k) for k in KIND_ORDER]
    plt.legend(handles=handles, title="Node kind", loc="lower left",
               bbox_to_anchor=(1.02, 0), borderaxespad=0.0)

    plt.axis("off")
    plt.tight_layout()
    plt.savefig(save_path, dpi=200, bbox_inches="tight", facecolor="white", edgecolor="none")
    plt.close()
    logger.info(f"Scenario graph written to {save_path}")
    return True
