from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, List, Set

import networkx as nx

from .builder import build_nx_graph
from .errors import Diagnostic, DiagnosticCode as Code
from .index import ScenarioIndex
from .schema import BranchAction, BranchKind, NodeKind, Scenario, ValidationReport
from .toposort import kahn_toposort

logger = logging.getLogger(__name__)


def validate(scenario: Scenario, index: ScenarioIndex = None) -> List[Diagnostic]:
    """All findings for a scenario; error-severity findings block a save"""
    return validate_scenario(scenario, index=index).issues


def validate_scenario(scenario: Scenario, index: ScenarioIndex = None) -> ValidationReport:
    index = index or ScenarioIndex.build(scenario)
    issues: List[Diagnostic] = []

    issues.extend(_check_identity(scenario, index))
    issues.extend(_check_start(scenario, index))
    issues.extend(_check_names(index))
    issues.extend(_check_branches(index))
    issues.extend(_check_node_kinds(index))

    full = build_nx_graph(scenario, index=index)

    topo = kahn_toposort(full, skip_via=("jump",))
    cyclic: List[str] = []
    if not topo.success:
        cyclic = topo.cyclic_nodes
        issues.append(Diagnostic.warning(
            Code.ANONYMOUS_CYCLE,
            f"Cycle through non-jump edges: {sorted(cyclic)}; use a jump branch to loop back",
        ))

    unreachable: List[str] = []
    if index.start_node_id:
        reachable = _reachable(full, [index.start_node_id, *index.direct_transitions.values()])
        unreachable = [n for n in index.nodes if n not in reachable]
        for node_id in unreachable:
            issues.append(Diagnostic.warning(
                Code.UNREACHABLE_NODE,
                "Node is not reachable from the start node",
                node_id=node_id,
            ))

    end_nodes = [n for n, node in index.nodes.items() if node.kind == NodeKind.END]
    ok = not any(d.is_error for d in issues)
    if not ok:
        logger.info(f"Scenario {scenario.id} failed validation with "
                    f"{sum(1 for d in issues if d.is_error)} error(s)")
    return ValidationReport(
        ok=ok,
        issues=issues,
        start_node_id=index.start_node_id,
        end_nodes=end_nodes,
        unreachable_nodes=unreachable,
        cyclic_nodes=cyclic,
    )


def _check_identity(scenario: Scenario, index: ScenarioIndex) -> List[Diagnostic]:
    issues: List[Diagnostic] = []
    counts = Counter(n.id for n in scenario.nodes)
    for node_id, count in counts.items():
        if count > 1:
            issues.append(Diagnostic.error(
                Code.DUPLICATE_NODE_ID, f"Node id used {count} times", node_id=node_id))

    def unknown(ref: str, what: str, node_id: str = None, branch_id: str = None) -> None:
        issues.append(Diagnostic.error(
            Code.UNKNOWN_NODE, f"{what} points at unknown node '{ref}'",
            node_id=node_id, branch_id=branch_id))

    if scenario.start_node_id and scenario.start_node_id not in index.nodes:
        unknown(scenario.start_node_id, "Scenario start")
    for node in index.nodes.values():
        if node.next_node_id and node.next_node_id not in index.nodes:
            unknown(node.next_node_id, "Next edge", node.id)
        if node.parent_id and node.parent_id not in index.nodes:
            unknown(node.parent_id, "Parent edge", node.id)
        for branch in node.branches:
            if branch.next_node_id and branch.next_node_id not in index.nodes:
                unknown(branch.next_node_id, f"Branch '{branch.label}'", node.id, branch.id)
    for conn in scenario.connections:
        if conn.source_id not in index.nodes:
            unknown(conn.source_id, f"Connection {conn.id} source")
        if conn.target_id not in index.nodes:
            unknown(conn.target_id, f"Connection {conn.id}", conn.source_id)
    return issues


def _check_start(scenario: Scenario, index: ScenarioIndex) -> List[Diagnostic]:
    if index.start_node_id:
        return []
    starts = [n.id for n in index.nodes.values() if n.kind == NodeKind.START]
    if len(starts) > 1:
        return [Diagnostic.warning(
            Code.AMBIGUOUS_START, f"{len(starts)} start nodes and no designated start")]
    return [Diagnostic.warning(Code.MISSING_START, "Scenario has no start node")]


def _check_names(index: ScenarioIndex) -> List[Diagnostic]:
    issues: List[Diagnostic] = []
    for name, ids in index.name_index.items():
        if len(ids) > 1:
            for node_id in ids:
                issues.append(Diagnostic.warning(
                    Code.DUPLICATE_NODE_NAME, f"Node name '{name}' is used by {len(ids)} nodes",
                    node_id=node_id))

    triggers: Dict[str, List[str]] = {}
    for node in index.nodes.values():
        settings = node.settings
        if not settings.direct_transition:
            continue
        if not settings.direct_transition_text:
            issues.append(Diagnostic.warning(
                Code.AMBIGUOUS_DIRECT_TRANSITION,
                "Direct transition is enabled without a trigger text", node_id=node.id))
            continue
        triggers.setdefault(settings.direct_transition_text, []).append(node.id)
    for text, ids in triggers.items():
        if len(ids) > 1:
            issues.append(Diagnostic.warning(
                Code.AMBIGUOUS_DIRECT_TRANSITION,
                f"Trigger text '{text}' is shared by {len(ids)} nodes; '{ids[0]}' wins",
                node_id=ids[0]))
    return issues


def _check_branches(index: ScenarioIndex) -> List[Diagnostic]:
    issues: List[Diagnostic] = []
    for node in index.nodes.values():
        for branch in node.branches:
            if branch.kind == BranchKind.JUMP:
                name = branch.target_node_name or ""
                matches = index.resolve_name(name)
                if not matches:
                    issues.append(Diagnostic.error(
                        Code.DANGLING_JUMP, f"Jump target '{name}' matches no node",
                        node_id=node.id, branch_id=branch.id))
                elif len(matches) > 1:
                    issues.append(Diagnostic.error(
                        Code.AMBIGUOUS_JUMP, f"Jump target '{name}' matches {len(matches)} nodes",
                        node_id=node.id, branch_id=branch.id))
            elif branch.kind == BranchKind.LINK:
                if not branch.url:
                    issues.append(Diagnostic.warning(
                        Code.UNWIRED_BRANCH, f"Link branch '{branch.label}' has no URL",
                        node_id=node.id, branch_id=branch.id))
            elif branch.action is None and index.resolve_branch(node.id, branch.id) is None:
                issues.append(Diagnostic.warning(
                    Code.UNWIRED_BRANCH, f"Branch '{branch.label}' has no target",
                    node_id=node.id, branch_id=branch.id))
            elif branch.action == BranchAction.RESTART and not index.start_node_id:
                issues.append(Diagnostic.warning(
                    Code.MISSING_START, f"Restart branch '{branch.label}' has no start to return to",
                    node_id=node.id, branch_id=branch.id))
    return issues


def _check_node_kinds(index: ScenarioIndex) -> List[Diagnostic]:
    issues: List[Diagnostic] = []
    for node in index.nodes.values():
        edges = index.outgoing(node.id)
        if node.kind == NodeKind.CONDITION and len(edges) != 2:
            issues.append(Diagnostic.warning(
                Code.AMBIGUOUS_CONDITION,
                f"Condition node has {len(edges)} outgoing edges; exactly two are required",
                node_id=node.id))
        elif node.kind == NodeKind.START and len(edges) != 1:
            code = Code.MISSING_EDGE if not edges else Code.AMBIGUOUS_EDGE
            issues.append(Diagnostic.warning(
                code, f"Start node has {len(edges)} outgoing edges", node_id=node.id))
        elif node.kind == NodeKind.ACTION:
            if node.action is None:
                issues.append(Diagnostic.warning(
                    Code.MISSING_ACTION, "Action node has no action kind", node_id=node.id))
            if len(edges) > 1:
                issues.append(Diagnostic.warning(
                    Code.AMBIGUOUS_EDGE, f"Action node has {len(edges)} outgoing edges",
                    node_id=node.id))
        elif node.kind == NodeKind.MESSAGE and not (
                node.branches or node.form_fields or node.settings.remember_response):
            if len(edges) != 1:
                code = Code.MISSING_EDGE if not edges else Code.AMBIGUOUS_EDGE
                issues.append(Diagnostic.warning(
                    code, f"Message node has {len(edges)} outgoing edges", node_id=node.id))
        if node.kind in (NodeKind.MESSAGE, NodeKind.QUESTION) and not node.responses:
            issues.append(Diagnostic.warning(
                Code.MISSING_RESPONSES, "Node has nothing to display", node_id=node.id))
    return issues


def _reachable(g: nx.DiGraph, roots: List[str]) -> Set[str]:
    visited: Set[str] = set()
    for root in roots:
        if root in g and root not in visited:
            visited.add(root)
            visited.update(nx.descendants(g, root))
    return visited
