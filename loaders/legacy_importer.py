from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from graph.errors import Diagnostic, DiagnosticCode as Code, LegacyImportError
from graph.schema import (
    ActionKind, Branch, BranchAction, BranchKind, Node, NodeKind, NodeSettings,
    Position, Scenario, new_id,
)
from .markup import split_images, strip_markup

logger = logging.getLogger(__name__)

RESTART_PHRASE = "はじめに戻る"
START_MARKER = "START"

LINK_CELL = "devs.Link"
MODEL_CELL = "devs.Model"

START_TYPE = "dialogue.start"
RESPONSE_TYPE = "dialogue.response"
JOINT_TYPE = "dialogue.joint"
SYSTEM_ACTIONS: Dict[str, ActionKind] = {
    "system.rtchat": ActionKind.TRANSFER_HUMAN,
    "system.mail": ActionKind.SEND_EMAIL,
    "system.csv": ActionKind.SAVE_DATA,
}


@dataclass
class ImportResult:
    scenario: Scenario
    warnings: List[Diagnostic] = field(default_factory=list)
    imported: int = 0


def _state(cell: Dict[str, Any]) -> Dict[str, Any]:
    state = cell.get("state")
    return state if isinstance(state, dict) else {}


def _advances(cell: Dict[str, Any]) -> List[Dict[str, Any]]:
    state = _state(cell)
    advances = [a for a in state.get("response_advance") or [] if isinstance(a, dict)]
    if not advances and state.get("response_text"):
        advances = [{"response_text": state["response_text"], "response_type": "web_text"}]
    return advances


def _cell_name(cell: Dict[str, Any]) -> Optional[str]:
    node_name = _state(cell).get("node_name")
    if isinstance(node_name, dict) and node_name.get("name"):
        return str(node_name["name"])
    return None


def _cell_preview(cell: Dict[str, Any]) -> str:
    for adv in _advances(cell):
        text = strip_markup(adv.get("response_text") or "")
        if text:
            return text
    return ""


class LegacyImporter:
    """Rebuilds a Scenario from a flow-chart export (``{"cells": [...]}``).

    Cells are indexed first, then materialised breadth-first from the start
    cell's entry with an explicit work-list. Each reachable response or
    system cell becomes exactly one Node; a cell reached a second time is
    wired to its existing Node, by name (a jump) when it has a unique name.
    Joint cells are indirection only and never become Nodes.

    ``existing`` reuses node and branch ids by external id so that
    importing the same export again updates the scenario in place.
    ``max_depth`` reproduces the legacy importer's truncation and is off by
    default.
    """

    def __init__(self, document: Dict[str, Any], name: str, description: str = "",
                 existing: Optional[Scenario] = None, max_depth: Optional[int] = None,
                 restart_phrase: str = RESTART_PHRASE, start_marker: str = START_MARKER):
        self.document = document
        self.name = name
        self.description = description
        self.existing = existing
        self.max_depth = max_depth
        self.restart_phrase = restart_phrase
        self.start_marker = start_marker

        self.warnings: List[Diagnostic] = []
        self.link_map: Dict[str, List[str]] = {}
        self.start_cell: Optional[Dict[str, Any]] = None
        self.responses_by_id: Dict[str, Dict[str, Any]] = {}
        self.joints_by_id: Dict[str, Dict[str, Any]] = {}
        self.systems_by_id: Dict[str, Dict[str, Any]] = {}
        self.responses_by_name: Dict[str, Dict[str, Any]] = {}
        self.name_counts: Dict[str, int] = {}

        # external id -> node id, filled at discovery time
        self.ids: Dict[str, str] = {}
        self.parents: Dict[str, Optional[str]] = {}
        self.queue: Deque[Tuple[str, int]] = deque()

        self._existing_nodes: Dict[str, Node] = existing.nodes_by_external_id() if existing else {}

    # ========================================
    # Entry point
    # ========================================

    def run(self) -> ImportResult:
        self._index_cells()

        if self.start_cell is None:
            raise LegacyImportError("Export has no dialogue.start cell")
        start_ext = str(self.start_cell["id"])
        entry = self._resolve_pointer(start_ext, _state(self.start_cell).get("next_node"))
        if entry is None:
            raise LegacyImportError("The start cell does not lead to a response or system cell")

        start_node_id = self._node_id(start_ext)
        entry_node_id = self._discover(entry, start_node_id, 0)

        nodes: List[Node] = [Node(
            id=start_node_id,
            external_id=start_ext,
            kind=NodeKind.START,
            label=self.start_marker,
            position=self._position(self.start_cell),
            next_node_id=entry_node_id,
        )]
        while self.queue:
            cell_id, depth = self.queue.popleft()
            nodes.append(self._materialize(cell_id, depth))

        scenario = self._assemble(nodes, start_node_id)
        logger.info(f"Imported legacy scenario '{self.name}': {len(nodes)} nodes, "
                    f"{len(self.warnings)} warning(s)")
        return ImportResult(scenario=scenario, warnings=self.warnings, imported=len(nodes))

    # ========================================
    # Indexing
    # ========================================

    def _index_cells(self):
        if not isinstance(self.document, dict) or not isinstance(self.document.get("cells"), list):
            raise LegacyImportError("Export document has no cells array")

        for cell in self.document["cells"]:
            if not isinstance(cell, dict) or not cell.get("id"):
                self._warn(Code.MALFORMED_CELL, f"Skipping cell without id: {str(cell)[:80]}")
                continue
            cell_id = str(cell["id"])
            cell_type = cell.get("type")

            if cell_type == LINK_CELL:
                source = (cell.get("source") or {}).get("id")
                target = (cell.get("target") or {}).get("id")
                if source and target:
                    self.link_map.setdefault(str(source), []).append(str(target))
                else:
                    self._warn(Code.MALFORMED_CELL, f"Link {cell_id} is missing an endpoint")
                continue

            node_type = cell.get("nodeType")
            if node_type == START_TYPE:
                if self.start_cell is None:
                    self.start_cell = cell
                else:
                    self._warn(Code.MALFORMED_CELL, f"Ignoring extra start cell {cell_id}")
            elif node_type == RESPONSE_TYPE:
                self.responses_by_id[cell_id] = cell
                name = _cell_name(cell)
                if name:
                    self.name_counts[name] = self.name_counts.get(name, 0) + 1
                    self.responses_by_name.setdefault(name, cell)
            elif node_type == JOINT_TYPE:
                self.joints_by_id[cell_id] = cell
            elif node_type in SYSTEM_ACTIONS:
                self.systems_by_id[cell_id] = cell
            else:
                self._warn(Code.UNKNOWN_CELL, f"Skipping cell {cell_id} of type {node_type or cell_type}")

        logger.debug(
            f"Indexed export: {len(self.responses_by_id)} response, {len(self.joints_by_id)} joint, "
            f"{len(self.systems_by_id)} system cells, {len(self.link_map)} link sources"
        )

    def _is_materializable(self, cell_id: Optional[str]) -> bool:
        return cell_id is not None and (cell_id in self.responses_by_id or cell_id in self.systems_by_id)

    def _resolve_pointer(self, source_id: str, pointer: Optional[str]) -> Optional[str]:
        """Follow a next-pointer (or the source's first link) through joints to a real cell"""
        candidates = [pointer] if pointer else list(self.link_map.get(source_id, []))
        seen = {source_id}
        while candidates:
            cell_id = str(candidates.pop(0))
            if cell_id in seen:
                continue
            seen.add(cell_id)
            if self._is_materializable(cell_id):
                return cell_id
            joint = self.joints_by_id.get(cell_id)
            if joint is not None:
                nxt = _state(joint).get("next_node")
                candidates = [nxt] if nxt else list(self.link_map.get(cell_id, []))
        return None

    # ========================================
    # Materialisation
    # ========================================

    def _node_id(self, external_id: str) -> str:
        existing = self._existing_nodes.get(external_id)
        return existing.id if existing is not None else new_id()

    def _discover(self, cell_id: str, parent_id: Optional[str], depth: int) -> Optional[str]:
        if cell_id in self.ids:
            return self.ids[cell_id]
        if self.max_depth is not None and depth > self.max_depth:
            return None
        node_id = self._node_id(cell_id)
        self.ids[cell_id] = node_id
        self.parents[cell_id] = parent_id
        self.queue.append((cell_id, depth))
        return node_id

    def _materialize(self, cell_id: str, depth: int) -> Node:
        if cell_id in self.systems_by_id:
            return self._system_node(cell_id, depth)
        return self._response_node(cell_id, depth)

    def _response_node(self, cell_id: str, depth: int) -> Node:
        cell = self.responses_by_id[cell_id]
        state = _state(cell)
        node_id = self.ids[cell_id]
        advances = _advances(cell)

        responses = []
        replies: List[Dict[str, Any]] = []
        is_form = False
        form_names: List[str] = []
        for adv in advances:
            responses.extend(split_images(adv.get("response_text") or ""))
            replies.extend(r for r in adv.get("replies") or [] if isinstance(r, dict))
            if adv.get("response_type") == "web_form":
                is_form = True
                if adv.get("form_name"):
                    form_names.append(str(adv["form_name"]))

        memory = state.get("memory") if isinstance(state.get("memory"), dict) else {}
        form_fields = [str(f) for f in memory.get("forms") or []] if is_form else []
        if is_form and not form_fields:
            form_fields = form_names

        settings = NodeSettings(
            node_name=_cell_name(cell),
            remember_response=bool(memory.get("checked")) or is_form,
            is_conversion_point=self._flag(state.get("cv_point")),
            **self._direct_transition(state.get("direct_transition")),
        )

        existing = self._existing_nodes.get(cell_id)
        branches = [
            self._branch(cell_id, node_id, i, reply, depth, existing)
            for i, reply in enumerate(replies)
        ]

        next_node_id = None
        if not replies:
            nxt = self._resolve_pointer(cell_id, state.get("next_node"))
            if nxt is not None:
                next_node_id = self._discover(nxt, node_id, depth + 1)

        if replies:
            kind = NodeKind.QUESTION
        elif next_node_id or is_form:
            kind = NodeKind.MESSAGE
        else:
            kind = NodeKind.END

        return Node(
            id=node_id,
            external_id=cell_id,
            kind=kind,
            label=settings.node_name or _cell_preview(cell)[:40],
            position=self._position(cell),
            responses=responses,
            branches=branches,
            settings=settings,
            parent_id=self.parents.get(cell_id),
            next_node_id=next_node_id,
            form_fields=form_fields,
        )

    def _branch(self, cell_id: str, node_id: str, i: int, reply: Dict[str, Any], depth: int,
                existing: Optional[Node]) -> Branch:
        value = str(reply.get("reply_value") or "")
        link = str(reply.get("reply_link") or "")
        reply_type = reply.get("reply_type") or "go_to"
        joint_id = str(reply.get("id") or "")
        joint = self.joints_by_id.get(joint_id)
        joint_state = _state(joint) if joint is not None else {}
        condition_link = str(joint_state.get("condition_link") or link)

        external_id = f"{cell_id}:{joint_id or i}"
        branch = Branch(
            id=self._branch_id(existing, external_id),
            external_id=external_id,
            label=value or link,
        )

        if reply_type == "button":
            # hand-off still moves on to whatever the joint points at
            branch.action = BranchAction.HANDOVER
        elif reply_type == "link" and link:
            branch.kind = BranchKind.LINK
            branch.url = link
            return branch
        elif value == self.restart_phrase or self.start_marker in (link, condition_link):
            branch.action = BranchAction.RESTART
            return branch

        target = self._reply_target(cell_id, joint_id, joint_state, condition_link)
        if target is None:
            if branch.action is None or condition_link:
                self._warn(
                    Code.UNRESOLVED_CONDITION_LINK,
                    f"Reply '{branch.label}' of {cell_id} does not resolve (condition_link={condition_link!r})",
                    node_id=node_id, branch_id=branch.id,
                )
            return branch

        target_cell = self.responses_by_id.get(target) or self.systems_by_id.get(target)
        branch.preview = _cell_preview(target_cell)
        if target in self.ids:
            name = _cell_name(target_cell) if target in self.responses_by_id else None
            if branch.action is None and name and self.name_counts.get(name) == 1:
                branch.kind = BranchKind.JUMP
                branch.target_node_name = name
            else:
                branch.next_node_id = self.ids[target]
            return branch

        branch.next_node_id = self._discover(target, node_id, depth + 1)
        return branch

    def _reply_target(self, cell_id: str, joint_id: str, joint_state: Dict[str, Any],
                      condition_link: str) -> Optional[str]:
        if condition_link:
            cell = self.responses_by_name.get(condition_link)
            return str(cell["id"]) if cell is not None else None
        if joint_id in self.joints_by_id:
            return self._resolve_pointer(joint_id, joint_state.get("next_node"))
        return None

    def _system_node(self, cell_id: str, depth: int) -> Node:
        cell = self.systems_by_id[cell_id]
        state = _state(cell)
        node_id = self.ids[cell_id]
        action = SYSTEM_ACTIONS[cell["nodeType"]]

        if action == ActionKind.TRANSFER_HUMAN:
            pointer = state.get("next_node_in")
            config = {"next_node_in": state.get("next_node_in"), "next_node_out": state.get("next_node_out")}
        elif action == ActionKind.SEND_EMAIL:
            pointer = state.get("next_node")
            config = {k: state.get(k) for k in ("to", "cc", "bcc", "title")}
            config["content"] = strip_markup(state.get("content") or "")
        else:
            pointer = state.get("next_node")
            config = {"file_name": state.get("file_name"), "items": state.get("csv_items") or []}

        next_node_id = None
        nxt = self._resolve_pointer(cell_id, pointer)
        if nxt is not None:
            next_node_id = self._discover(nxt, node_id, depth + 1)

        name = _cell_name(cell)
        return Node(
            id=node_id,
            external_id=cell_id,
            kind=NodeKind.ACTION,
            label=name or cell["nodeType"],
            position=self._position(cell),
            settings=NodeSettings(node_name=name),
            parent_id=self.parents.get(cell_id),
            next_node_id=next_node_id,
            action=action,
            action_config=config,
        )

    # ========================================
    # Helpers
    # ========================================

    def _branch_id(self, existing: Optional[Node], external_id: str) -> str:
        if existing is not None:
            for branch in existing.branches:
                if branch.external_id == external_id:
                    return branch.id
        return new_id()

    def _direct_transition(self, raw: Any) -> Dict[str, Any]:
        if not isinstance(raw, dict) or not raw.get("checked"):
            return {}
        texts = [str(t) for t in raw.get("action_texts") or [] if t]
        if not texts:
            return {"direct_transition": True}
        return {"direct_transition": True, "direct_transition_text": texts[0]}

    def _flag(self, raw: Any) -> bool:
        if isinstance(raw, dict):
            return bool(raw.get("checked", bool(raw)))
        return bool(raw)

    def _position(self, cell: Dict[str, Any]) -> Position:
        pos = cell.get("position")
        if isinstance(pos, dict):
            try:
                return Position(x=float(pos.get("x") or 0), y=float(pos.get("y") or 0))
            except (TypeError, ValueError):
                pass
        return Position()

    def _warn(self, code: Code, message: str, node_id: str = None, branch_id: str = None):
        diagnostic = Diagnostic.warning(code, message, node_id=node_id, branch_id=branch_id)
        logger.warning(str(diagnostic))
        self.warnings.append(diagnostic)

    def _assemble(self, nodes: List[Node], start_node_id: str) -> Scenario:
        if self.existing is not None:
            return self.existing.model_copy(update={
                "name": self.name or self.existing.name,
                "description": self.description or self.existing.description,
                "source_type": "legacy",
                "start_node_id": start_node_id,
                "nodes": nodes,
                "connections": [],
            }, deep=True)
        return Scenario(
            name=self.name,
            description=self.description,
            source_type="legacy",
            start_node_id=start_node_id,
            nodes=nodes,
        )


def import_legacy_scenario(name: str, description: str, export_document: Dict[str, Any],
                           existing: Optional[Scenario] = None, max_depth: Optional[int] = None,
                           restart_phrase: str = RESTART_PHRASE,
                           start_marker: str = START_MARKER) -> Scenario:
    """Translate a legacy flow-chart export into a Scenario"""
    importer = LegacyImporter(
        export_document, name=name, description=description, existing=existing,
        max_depth=max_depth, restart_phrase=restart_phrase, start_marker=start_marker,
    )
    return importer.run().scenario
