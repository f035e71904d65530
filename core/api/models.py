from __future__ import annotations

from typing import Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from graph.errors import Diagnostic
from ..session import SideEffect


class MessageItem(BaseModel):
    kind: str
    text: str = ""
    image_url: Optional[str] = None


class ChoiceItem(BaseModel):
    id: str
    label: str
    kind: str
    url: Optional[str] = None
    new_window: Optional[bool] = None


class NodeState(BaseModel):
    current: Optional[str] = None
    previous: Optional[str] = None
    kind: Optional[str] = None
    name: Optional[str] = None
    is_conversion_point: bool = False
    start_node: Optional[str] = None


class SessionInfo(BaseModel):
    id: str
    scenario_id: str
    is_complete: bool
    turn_count: int
    started_at: datetime
    last_updated: datetime
    memory: Dict[str, str] = Field(default_factory=dict)
    diagnostics: List[Diagnostic] = Field(default_factory=list)


class APIData(BaseModel):
    messages: List[MessageItem]
    choices: List[ChoiceItem]
    free_input_enabled: bool
    session: SessionInfo
    node: NodeState
    side_effects: List[SideEffect] = Field(default_factory=list)
    error: Optional[Diagnostic] = None


class APIResponse(BaseModel):
    data: APIData
