from __future__ import annotations
from datetime import datetime
from typing import Dict, Any, List, Optional, Union, Annotated, Literal
from uuid import uuid4
from enum import Enum

from pydantic import BaseModel, Field, ConfigDict, TypeAdapter

from graph.errors import Diagnostic
from graph.schema import ActionKind, Branch, Node, Response


# ============================================================================
# Base Configuration
# ============================================================================

class BaseConfig(BaseModel):
    """Base configuration with common settings"""
    model_config = ConfigDict(
        extra="ignore",
        validate_assignment=True,
    )


# ============================================================================
# Scenario Session
# ============================================================================

class ScenarioSession(BaseConfig):
    """Runtime cursor of one visitor conversation"""
    session_id: str = Field(default_factory=lambda: str(uuid4()))
    scenario_id: str
    current_node_id: Optional[str] = None
    previous_node_id: Optional[str] = None

    # free-text captures keyed by node id
    memory: Dict[str, str] = Field(default_factory=dict)

    turn_count: Annotated[int, Field(ge=0)] = 0
    diagnostics: List[Diagnostic] = Field(default_factory=list)

    started_at: datetime = Field(default_factory=datetime.now)
    last_updated: datetime = Field(default_factory=datetime.now)

    is_complete: bool = False

    # ========================================
    # Node Management
    # ========================================

    def move_to(self, node_id: str):
        """Set the current node; revisiting is legal"""
        self.previous_node_id = self.current_node_id
        self.current_node_id = node_id

    def remember(self, node_id: str, text: str):
        self.memory[node_id] = text

    # ========================================
    # Session Management
    # ========================================

    def increment_turn(self):
        self.turn_count += 1

    def touch(self):
        self.last_updated = datetime.now()

    def record(self, diagnostic: Diagnostic):
        """Keep a diagnostic on the conversation record for operators"""
        self.diagnostics.append(diagnostic)
        self.touch()

    def set_complete(self, complete: bool = True):
        self.is_complete = complete
        self.touch()

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ============================================================================
# Input Events
# ============================================================================

class StartEvent(BaseConfig):
    type: Literal["start"] = "start"


class SelectBranchEvent(BaseConfig):
    type: Literal["select_branch"] = "select_branch"
    branch_id: str


class FreeTextEvent(BaseConfig):
    type: Literal["free_text"] = "free_text"
    text: str


Event = Annotated[
    Union[StartEvent, SelectBranchEvent, FreeTextEvent],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(Event)


def parse_event(data: Dict[str, Any]) -> Union[StartEvent, SelectBranchEvent, FreeTextEvent]:
    return _event_adapter.validate_python(data)


# ============================================================================
# Side Effects
# ============================================================================

class SideEffectKind(str, Enum):
    OPEN_LINK = "open_link"
    RE_RENDER = "re_render"
    DISPATCH_ACTION = "dispatch_action"
    CONVERSATION_ELIGIBLE_FOR_CLOSE = "conversation_eligible_for_close"
    RESTART = "restart"
    FORM_CAPTURE = "form_capture"


class SideEffect(BaseConfig):
    """Typed record handed to the caller; the engine never delivers it"""
    kind: SideEffectKind
    action: Optional[ActionKind] = None
    node_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Traversal Result
# ============================================================================

class TraversalResult(BaseConfig):
    """Outcome of one advance() call"""
    session: ScenarioSession
    node: Optional[Node] = None
    responses: List[Response] = Field(default_factory=list)
    branches: List[Branch] = Field(default_factory=list)
    side_effects: List[SideEffect] = Field(default_factory=list)
    error: Optional[Diagnostic] = None
    free_input_enabled: bool = True

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def action(self) -> Optional[SideEffect]:
        for effect in self.side_effects:
            if effect.kind == SideEffectKind.DISPATCH_ACTION:
                return effect
        return None

    def effects_of(self, kind: SideEffectKind) -> List[SideEffect]:
        return [e for e in self.side_effects if e.kind == kind]


def create_session(scenario_id: str, session_id: Optional[str] = None) -> ScenarioSession:
    """Create a new session with an optional caller-chosen id"""
    return ScenarioSession(scenario_id=scenario_id, session_id=session_id or str(uuid4()))
