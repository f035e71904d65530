from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .schema import BranchKind, FreeInputMode, Node, NodeKind, Scenario

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Edge:
    target_id: str
    handle: Optional[str] = None
    via: str = "next"  # next | connection | tree


@dataclass
class ScenarioIndex:
    """Lookup tables compiled once per saved scenario revision.

    Traversal only ever reads these; nothing here is recomputed per turn.
    The branch resolver merges the three edge representations a scenario
    may use (``Branch.next_node_id``, a ``Connection`` whose handle is the
    branch id, and a tree child matched by label) into one
    ``(node_id, branch_id) -> node_id`` table.
    """
    scenario: Scenario
    nodes: Dict[str, Node] = field(default_factory=dict)
    start_node_id: Optional[str] = None
    name_index: Dict[str, List[str]] = field(default_factory=dict)
    direct_transitions: Dict[str, str] = field(default_factory=dict)
    branch_targets: Dict[Tuple[str, str], str] = field(default_factory=dict)
    next_edges: Dict[str, List[Edge]] = field(default_factory=dict)

    @classmethod
    def build(cls, scenario: Scenario) -> 'ScenarioIndex':
        index = cls(scenario=scenario)
        for node in scenario.nodes:
            # first occurrence wins on duplicate ids; validation reports them
            index.nodes.setdefault(node.id, node)

        index.start_node_id = index._pick_start()

        for node in scenario.nodes:
            if node.name:
                ids = index.name_index.setdefault(node.name, [])
                if node.id not in ids:
                    ids.append(node.id)
            trigger = node.settings.trigger_text
            if trigger is not None and trigger not in index.direct_transitions:
                index.direct_transitions[trigger] = node.id

        children: Dict[str, List[Node]] = {}
        for node in scenario.nodes:
            if node.parent_id:
                children.setdefault(node.parent_id, []).append(node)

        outgoing_conns: Dict[str, list] = {}
        for conn in scenario.connections:
            outgoing_conns.setdefault(conn.source_id, []).append(conn)

        for node_id, node in index.nodes.items():
            index._compile_node(node, children.get(node_id, []), outgoing_conns.get(node_id, []))

        logger.debug(
            f"Indexed scenario {scenario.id}: {len(index.nodes)} nodes, "
            f"{len(index.name_index)} names, {len(index.direct_transitions)} triggers"
        )
        return index

    def _pick_start(self) -> Optional[str]:
        designated = self.scenario.start_node_id
        if designated and designated in self.nodes:
            return designated
        starts = [n.id for n in self.nodes.values() if n.kind == NodeKind.START]
        if len(starts) == 1:
            return starts[0]
        return None

    def _compile_node(self, node: Node, children: List[Node], conns: list) -> None:
        branch_ids: Set[str] = {b.id for b in node.branches}
        claimed_children: Set[str] = set()

        for branch in node.branches:
            if branch.kind in (BranchKind.LINK, BranchKind.JUMP):
                continue
            target = branch.next_node_id
            if not target:
                for conn in conns:
                    if conn.source_handle == branch.id:
                        target = conn.target_id
                        break
            if not target:
                for child in children:
                    if child.id in claimed_children:
                        continue
                    if branch.label and branch.label in (child.label, child.name):
                        target = child.id
                        break
            if target:
                self.branch_targets[(node.id, branch.id)] = target
                claimed_children.add(target)

        edges: List[Edge] = []
        seen: Set[str] = set()

        def add(edge: Edge) -> None:
            if edge.target_id in seen:
                return
            seen.add(edge.target_id)
            edges.append(edge)

        if node.next_node_id:
            add(Edge(node.next_node_id, None, "next"))
        for conn in conns:
            if conn.source_handle and conn.source_handle in branch_ids:
                continue
            add(Edge(conn.target_id, conn.source_handle, "connection"))
        for child in children:
            if child.id in claimed_children:
                continue
            add(Edge(child.id, None, "tree"))
        self.next_edges[node.id] = edges

    # ========================================
    # Lookups
    # ========================================

    def get(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def resolve_branch(self, node_id: str, branch_id: str) -> Optional[str]:
        return self.branch_targets.get((node_id, branch_id))

    def resolve_name(self, name: str) -> List[str]:
        return list(self.name_index.get(name, []))

    def outgoing(self, node_id: str) -> List[Edge]:
        return list(self.next_edges.get(node_id, []))

    def free_input_enabled(self, node: Node) -> bool:
        mode = node.settings.free_input_mode
        if mode == FreeInputMode.INHERIT:
            mode = self.scenario.free_input_mode
        return mode != FreeInputMode.DISABLED

    def memory_view(self, memory: Dict[str, str]) -> Dict[str, str]:
        """Session memory keyed by node id, plus node name where the name is unique"""
        view = dict(memory)
        for name, ids in self.name_index.items():
            if len(ids) == 1 and ids[0] in memory:
                view.setdefault(name, memory[ids[0]])
        return view
