from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional
import logging

from graph.errors import DiagnosticCode, TraversalError
from graph.schema import Branch, BranchKind, Node
from ..session import SideEffectKind

if TYPE_CHECKING:
    from ..traversal import TraversalContext

logger = logging.getLogger(__name__)


class BaseExecutor(ABC):
    """Per-kind node behaviour.

    ``arrive`` runs when traversal lands on a node and returns the id of the
    node to fall through to, or None to settle and wait for visitor input.
    ``free_text`` handles accepted free text while the node is displayed and
    returns the next node id, or None to stay.
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def arrive(self, node: Node, ctx: 'TraversalContext') -> Optional[str]:
        pass

    def free_text(self, node: Node, text: str, ctx: 'TraversalContext') -> Optional[str]:
        return self.unrecognized(node, text, ctx)

    def unrecognized(self, node: Node, text: str, ctx: 'TraversalContext') -> Optional[str]:
        ctx.emit(SideEffectKind.RE_RENDER, node, payload={
            'reason': DiagnosticCode.UNRECOGNIZED.value,
            'text': text,
        })
        return None

    def single_edge(self, node: Node, ctx: 'TraversalContext', required: bool = False) -> Optional[str]:
        """Target of the node's only outgoing edge"""
        edges = ctx.outgoing(node)
        if len(edges) > 1:
            raise TraversalError.of(
                DiagnosticCode.AMBIGUOUS_EDGE,
                f"{node.kind.value} node has {len(edges)} outgoing edges",
                node_id=node.id,
            )
        if not edges:
            if required:
                raise TraversalError.of(
                    DiagnosticCode.MISSING_EDGE,
                    f"{node.kind.value} node has no outgoing edge",
                    node_id=node.id,
                )
            return None
        return edges[0].target_id

    def match_branch(self, node: Node, text: str) -> Optional[Branch]:
        for branch in node.branches:
            if branch.kind == BranchKind.FREE_TEXT_PROMPT:
                return branch
        for branch in node.branches:
            if branch.label and branch.label == text:
                return branch
        return None

    def announce_form(self, node: Node, ctx: 'TraversalContext'):
        if node.form_fields:
            ctx.emit(SideEffectKind.FORM_CAPTURE, node, payload={'fields': list(node.form_fields)})
