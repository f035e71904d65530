from __future__ import annotations

from typing import List, Optional

from graph.schema import Branch, BranchKind, Node, Response
from .models import APIResponse, APIData, ChoiceItem, MessageItem, NodeState, SessionInfo
from ..session import ScenarioSession, TraversalResult


def _messages(responses: List[Response]) -> List[MessageItem]:
    return [MessageItem(kind=r.kind.value, text=r.text, image_url=r.image_url) for r in responses]


def _choices(branches: List[Branch]) -> List[ChoiceItem]:
    items = []
    for b in branches:
        # free-text prompts are answered through the input box, not offered as buttons
        if b.kind == BranchKind.FREE_TEXT_PROMPT:
            continue
        is_link = b.kind == BranchKind.LINK
        items.append(ChoiceItem(
            id=b.id,
            label=b.label,
            kind=b.kind.value,
            url=b.url if is_link else None,
            new_window=b.open_in_new_window if is_link else None,
        ))
    return items


def _session_info(session: ScenarioSession) -> SessionInfo:
    return SessionInfo(
        id=session.session_id,
        scenario_id=session.scenario_id,
        is_complete=session.is_complete,
        turn_count=session.turn_count,
        started_at=session.started_at,
        last_updated=session.last_updated,
        memory=dict(session.memory),
        diagnostics=list(session.diagnostics),
    )


def _node_state(session: ScenarioSession, node: Optional[Node], start_node: Optional[str]) -> NodeState:
    return NodeState(
        current=session.current_node_id,
        previous=session.previous_node_id,
        kind=node.kind.value if node is not None else None,
        name=node.name if node is not None else None,
        is_conversion_point=node.settings.is_conversion_point if node is not None else False,
        start_node=start_node,
    )


def build_api_response(result: TraversalResult, start_node: Optional[str]) -> APIResponse:
    return APIResponse(
        data=APIData(
            messages=_messages(result.responses),
            choices=_choices(result.branches),
            free_input_enabled=result.free_input_enabled,
            session=_session_info(result.session),
            node=_node_state(result.session, result.node, start_node),
            side_effects=result.side_effects,
            error=result.error,
        )
    )


def build_session_response(session: ScenarioSession, node: Optional[Node], start_node: Optional[str],
                           responses: List[Response], free_input_enabled: bool) -> APIResponse:
    return APIResponse(
        data=APIData(
            messages=_messages(responses),
            choices=_choices(node.branches if node is not None else []),
            free_input_enabled=free_input_enabled,
            session=_session_info(session),
            node=_node_state(session, node, start_node),
        )
    )
