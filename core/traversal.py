from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Union

from graph.errors import Category, Diagnostic, DiagnosticCode as Code, TraversalError
from graph.index import Edge, ScenarioIndex
from graph.schema import ActionKind, Branch, BranchAction, BranchKind, Node, Response, ResponseKind
from .condition_eval import ConditionEvaluator, ConditionPolicy
from .executors.factory import ExecutorFactory, executor_factory
from .session import (
    FreeTextEvent, ScenarioSession, SelectBranchEvent, SideEffect, SideEffectKind,
    StartEvent, TraversalResult,
)

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

Event = Union[StartEvent, SelectBranchEvent, FreeTextEvent]


class TraversalContext:
    """Per-call scratch state shared with the node executors"""

    def __init__(self, engine: 'TraversalEngine', session: ScenarioSession):
        self.engine = engine
        self.index = engine.index
        self.session = session
        self.side_effects: List[SideEffect] = []
        self.responses: List[Response] = []

    def outgoing(self, node: Node) -> List[Edge]:
        return self.index.outgoing(node.id)

    def emit(self, kind: SideEffectKind, node: Optional[Node] = None,
             payload: Optional[Dict[str, Any]] = None, action: Optional[ActionKind] = None):
        self.side_effects.append(SideEffect(
            kind=kind,
            action=action,
            node_id=node.id if node is not None else None,
            payload=payload or {},
        ))

    def dispatch(self, action: ActionKind, node: Node, payload: Dict[str, Any]):
        payload = {
            **payload,
            'scenario_id': self.session.scenario_id,
            'session_id': self.session.session_id,
        }
        self.emit(SideEffectKind.DISPATCH_ACTION, node, payload=payload, action=action)

    def evaluate(self, expression: str) -> bool:
        view = self.index.memory_view(self.session.memory)
        try:
            return bool(self.engine.condition_policy(expression, view))
        except Exception as e:
            logger.error(f"Condition policy failed for {expression!r}: {e}")
            return False

    def follow_branch(self, node: Node, branch: Branch) -> Optional[str]:
        return self.engine.resolve_branch(self, node, branch)


class TraversalEngine:
    """Computes the next node for one (session, event) pair.

    The engine never mutates the session it is given and performs no I/O:
    it advances a copy and returns it with the responses to render and the
    side effects for the caller to deliver. Structural problems leave the
    session where it was and come back as ``TraversalResult.error``.
    """

    def __init__(self, index: ScenarioIndex, condition_policy: Optional[ConditionPolicy] = None,
                 executors: Optional[ExecutorFactory] = None):
        self.index = index
        self.condition_policy = condition_policy or ConditionEvaluator()
        self.executors = executors or executor_factory

    def advance(self, session: ScenarioSession, event: Event) -> TraversalResult:
        working = session.model_copy(deep=True)
        ctx = TraversalContext(self, working)
        try:
            target = self._handle(ctx, event)
            if target is not None:
                node = self._walk(ctx, target)
            else:
                node = self._current(ctx)
                ctx.responses.extend(self.render(node, working))
        except TraversalError as exc:
            return self._reject(session, exc.diagnostic, ctx)

        working.increment_turn()
        return TraversalResult(
            session=working,
            node=node,
            responses=ctx.responses,
            branches=list(node.branches) if node is not None else [],
            side_effects=ctx.side_effects,
            free_input_enabled=self.index.free_input_enabled(node) if node is not None else False,
        )

    # ========================================
    # Event handling
    # ========================================

    def _handle(self, ctx: TraversalContext, event: Event) -> Optional[str]:
        if isinstance(event, StartEvent):
            return self._start_target()

        if isinstance(event, FreeTextEvent):
            # global intercept runs before any node-local handling
            hit = self.index.direct_transitions.get(event.text)
            if hit is not None:
                logger.debug(f"Direct transition '{event.text}' -> {hit}")
                return hit

        node = self._current(ctx)
        if node is None:
            if ctx.session.current_node_id is not None:
                # the scenario was saved again without this node
                raise TraversalError.of(
                    Code.UNKNOWN_NODE,
                    f"Session is parked on node '{ctx.session.current_node_id}' which no longer exists",
                    node_id=ctx.session.current_node_id)
            raise TraversalError.of(Code.INPUT_NOT_ACCEPTED, "Session has not been started")

        if isinstance(event, SelectBranchEvent):
            branch = node.get_branch(event.branch_id)
            if branch is None:
                raise TraversalError.of(
                    Code.INPUT_NOT_ACCEPTED, f"Branch '{event.branch_id}' is not offered here",
                    node_id=node.id, branch_id=event.branch_id)
            return self.resolve_branch(ctx, node, branch)

        if isinstance(event, FreeTextEvent):
            if not self.index.free_input_enabled(node):
                raise TraversalError.of(
                    Code.INPUT_NOT_ACCEPTED, "Free text is disabled on this node", node_id=node.id)
            if node.settings.remember_response:
                ctx.session.remember(node.id, event.text)
            return self.executors.get(node.kind).free_text(node, event.text, ctx)

        raise TypeError(f"Unsupported event: {event!r}")

    def resolve_branch(self, ctx: TraversalContext, node: Node, branch: Branch) -> Optional[str]:
        """Single resolver for every branch kind and edge representation"""
        if branch.action == BranchAction.RESTART:
            ctx.emit(SideEffectKind.RESTART, node, payload={'branch_id': branch.id})
            return self._start_target()

        if branch.action == BranchAction.HANDOVER:
            ctx.dispatch(ActionKind.TRANSFER_HUMAN, node, {'branch_id': branch.id, 'label': branch.label})
            return self.index.resolve_branch(node.id, branch.id)

        if branch.kind == BranchKind.LINK:
            ctx.emit(SideEffectKind.OPEN_LINK, node, payload={
                'url': branch.url,
                'new_window': branch.open_in_new_window,
            })
            return None

        if branch.kind == BranchKind.JUMP:
            name = branch.target_node_name or ""
            matches = self.index.resolve_name(name)
            if not matches:
                raise TraversalError.of(
                    Code.DANGLING_JUMP, f"Jump target '{name}' matches no node",
                    node_id=node.id, branch_id=branch.id)
            if len(matches) > 1:
                raise TraversalError.of(
                    Code.AMBIGUOUS_JUMP, f"Jump target '{name}' matches {len(matches)} nodes",
                    node_id=node.id, branch_id=branch.id)
            return matches[0]

        target = self.index.resolve_branch(node.id, branch.id)
        if target is None:
            raise TraversalError.of(
                Code.UNRESOLVED_BRANCH, f"Branch '{branch.label}' has no target",
                node_id=node.id, branch_id=branch.id)
        return target

    # ========================================
    # Fall-through
    # ========================================

    def _walk(self, ctx: TraversalContext, node_id: str) -> Node:
        budget = len(self.index.nodes) + 1
        while True:
            node = self.index.get(node_id)
            if node is None:
                raise TraversalError.of(Code.UNKNOWN_NODE, f"Edge points at unknown node '{node_id}'")
            ctx.session.move_to(node.id)
            ctx.responses.extend(self.render(node, ctx.session))

            next_id = self.executors.get(node.kind).arrive(node, ctx)
            if next_id is None:
                return node
            budget -= 1
            if budget <= 0:
                raise TraversalError.of(
                    Code.FALLTHROUGH_LOOP, "Traversal revisited nodes without waiting for input",
                    node_id=node.id)
            node_id = next_id

    def _start_target(self) -> str:
        if self.index.start_node_id is None:
            raise TraversalError.of(Code.MISSING_START, "Scenario has no start node")
        return self.index.start_node_id

    def _current(self, ctx: TraversalContext) -> Optional[Node]:
        return self.index.get(ctx.session.current_node_id)

    def _reject(self, session: ScenarioSession, diagnostic: Diagnostic,
                ctx: TraversalContext) -> TraversalResult:
        level = logging.INFO if diagnostic.category == Category.INPUT else logging.WARNING
        logger.log(level, f"Scenario {self.index.scenario.id} session {session.session_id}: {diagnostic}")

        effects: List[SideEffect] = []
        if diagnostic.code == Code.DANGLING_JUMP:
            # treated as an end fallback: nothing sensible follows
            effects.append(SideEffect(
                kind=SideEffectKind.CONVERSATION_ELIGIBLE_FOR_CLOSE,
                node_id=diagnostic.node_id,
                payload={'reason': diagnostic.code.value},
            ))

        unchanged = session.model_copy(deep=True)
        node = self.index.get(unchanged.current_node_id)
        return TraversalResult(
            session=unchanged,
            node=node,
            responses=self.render(node, unchanged) if node is not None else [],
            branches=list(node.branches) if node is not None else [],
            side_effects=effects,
            error=diagnostic,
            free_input_enabled=self.index.free_input_enabled(node) if node is not None else False,
        )

    # ========================================
    # Rendering
    # ========================================

    def render(self, node: Node, session: ScenarioSession) -> List[Response]:
        """Node responses with {{key}} placeholders filled from session memory"""
        if node is None:
            return []
        view = self.index.memory_view(session.memory)
        rendered: List[Response] = []
        for response in node.responses:
            if response.kind == ResponseKind.TEXT and "{{" in response.text:
                text = _PLACEHOLDER.sub(lambda m: view.get(m.group(1), m.group(0)), response.text)
                rendered.append(response.model_copy(update={'text': text}))
            else:
                rendered.append(response)
        return rendered


def advance(index: ScenarioIndex, session: ScenarioSession, event: Event) -> TraversalResult:
    return TraversalEngine(index).advance(session, event)
