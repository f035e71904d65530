from __future__ import annotations

from .models import APIResponse, APIData, ChoiceItem, MessageItem, NodeState, SessionInfo
from .builders import build_api_response, build_session_response

__all__ = [
    'APIResponse', 'APIData', 'ChoiceItem', 'MessageItem', 'NodeState', 'SessionInfo',
    'build_api_response', 'build_session_response',
]
