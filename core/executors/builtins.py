from __future__ import annotations

import logging

from graph.errors import DiagnosticCode, TraversalError
from .base import BaseExecutor
from ..session import SideEffectKind

logger = logging.getLogger(__name__)


class StartExecutor(BaseExecutor):
    """Falls through its single outgoing edge"""

    def arrive(self, node, ctx):
        return self.single_edge(node, ctx, required=True)


class QuestionExecutor(BaseExecutor):
    """Waits for a branch selection or free text"""

    def arrive(self, node, ctx):
        self.announce_form(node, ctx)
        return None

    def free_text(self, node, text, ctx):
        branch = self.match_branch(node, text)
        if branch is not None:
            return ctx.follow_branch(node, branch)
        if node.settings.remember_response:
            # the capture itself is the expected input
            return self.single_edge(node, ctx)
        return self.unrecognized(node, text, ctx)


class MessageExecutor(QuestionExecutor):
    """Displays and moves on, unless it offers choices or collects input"""

    def arrive(self, node, ctx):
        if node.branches or node.form_fields or node.settings.remember_response:
            return super().arrive(node, ctx)
        return self.single_edge(node, ctx, required=True)


class ConditionExecutor(BaseExecutor):
    """Selects the true or the false edge"""

    def arrive(self, node, ctx):
        edges = ctx.outgoing(node)
        if len(edges) != 2:
            raise TraversalError.of(
                DiagnosticCode.AMBIGUOUS_CONDITION,
                f"Condition node has {len(edges)} outgoing edges; exactly two are required",
                node_id=node.id,
            )
        handles = {str(e.handle).lower(): e for e in edges if e.handle}
        if 'true' in handles and 'false' in handles:
            on_true, on_false = handles['true'], handles['false']
        else:
            on_true, on_false = edges
        outcome = ctx.evaluate(node.condition or "")
        self.logger.debug(f"Condition {node.id} evaluated {outcome}")
        return on_true.target_id if outcome else on_false.target_id

    def free_text(self, node, text, ctx):
        return self.arrive(node, ctx)


class ActionExecutor(BaseExecutor):
    """Emits its integration action and continues without stopping"""

    def arrive(self, node, ctx):
        if node.action is None:
            raise TraversalError.of(
                DiagnosticCode.MISSING_ACTION, "Action node has no action kind", node_id=node.id)
        target = self.single_edge(node, ctx)
        ctx.dispatch(node.action, node, dict(node.action_config))
        if target is None:
            # a terminal action ends the scripted part of the conversation
            ctx.emit(SideEffectKind.CONVERSATION_ELIGIBLE_FOR_CLOSE, node)
        return target


class EndExecutor(BaseExecutor):
    """Terminal node"""

    def arrive(self, node, ctx):
        ctx.emit(SideEffectKind.CONVERSATION_ELIGIBLE_FOR_CLOSE, node)
        return None

    def free_text(self, node, text, ctx):
        return self.arrive(node, ctx)
