from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .errors import Diagnostic


# ============================================================================
# Base Configuration
# ============================================================================

class BaseConfig(BaseModel):
    """Editor wire format: camelCase on the wire, snake_case in Python"""
    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


def new_id() -> str:
    return uuid4().hex


# ============================================================================
# Enumerations
# ============================================================================

class NodeKind(str, Enum):
    START = "start"
    MESSAGE = "message"
    QUESTION = "question"
    CONDITION = "condition"
    ACTION = "action"
    END = "end"


class BranchKind(str, Enum):
    BUTTON = "button"
    LINK = "link"
    JUMP = "jump"
    FREE_TEXT_PROMPT = "free_text_prompt"

    @classmethod
    def from_string(cls, kind_str: str) -> 'BranchKind':
        """Convert string to BranchKind, accepting editor spellings"""
        try:
            return cls(kind_str)
        except ValueError:
            aliases = {
                "text_input": cls.FREE_TEXT_PROMPT,
                "free_text": cls.FREE_TEXT_PROMPT,
                "go_to": cls.BUTTON,
            }
            if kind_str in aliases:
                return aliases[kind_str]
            raise


class BranchAction(str, Enum):
    RESTART = "restart"
    HANDOVER = "handover"


class ResponseKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class FreeInputMode(str, Enum):
    INHERIT = "inherit"
    ENABLED = "enabled"
    DISABLED = "disabled"

    @classmethod
    def from_string(cls, mode_str: str) -> 'FreeInputMode':
        try:
            return cls(mode_str)
        except ValueError:
            aliases = {"default": cls.INHERIT, "": cls.INHERIT}
            if mode_str in aliases:
                return aliases[mode_str]
            raise


class ActionKind(str, Enum):
    TRANSFER_HUMAN = "transfer_human"
    SEND_EMAIL = "send_email"
    SEND_SLACK = "send_slack"
    SAVE_DATA = "save_data"
    API_CALL = "api_call"


# ============================================================================
# Scenario Entities
# ============================================================================

class Position(BaseConfig):
    x: float = 0.0
    y: float = 0.0


class Response(BaseConfig):
    """One displayable unit of a node: a text body or an image URL"""
    id: str = Field(default_factory=new_id)
    kind: ResponseKind = ResponseKind.TEXT
    text: str = ""
    image_url: Optional[str] = None

    @classmethod
    def text_body(cls, text: str) -> 'Response':
        return cls(kind=ResponseKind.TEXT, text=text)

    @classmethod
    def image(cls, url: str) -> 'Response':
        return cls(kind=ResponseKind.IMAGE, image_url=url)


class Branch(BaseConfig):
    """Labelled outgoing choice of a node"""
    id: str = Field(default_factory=new_id)
    label: str = ""
    kind: BranchKind = BranchKind.BUTTON

    # button / free_text_prompt
    next_node_id: Optional[str] = None
    # link
    url: Optional[str] = None
    open_in_new_window: bool = True
    # jump
    target_node_name: Optional[str] = None

    action: Optional[BranchAction] = None
    external_id: Optional[str] = None
    # first text response of the target, used as a fallback summary
    preview: str = ""

    @field_validator('kind', mode='before')
    @classmethod
    def validate_kind(cls, v):
        if isinstance(v, str):
            return BranchKind.from_string(v)
        return v


class NodeSettings(BaseConfig):
    node_name: Optional[str] = None
    remember_response: bool = False
    is_conversion_point: bool = False
    direct_transition: bool = False
    direct_transition_text: Optional[str] = None
    free_input_mode: FreeInputMode = FreeInputMode.INHERIT

    @field_validator('free_input_mode', mode='before')
    @classmethod
    def validate_free_input_mode(cls, v):
        if v is None:
            return FreeInputMode.INHERIT
        if isinstance(v, str):
            return FreeInputMode.from_string(v)
        return v

    @field_validator('node_name', 'direct_transition_text', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and v == "":
            return None
        return v

    @property
    def trigger_text(self) -> Optional[str]:
        if self.direct_transition and self.direct_transition_text:
            return self.direct_transition_text
        return None


class Node(BaseConfig):
    """A single dialogue step"""
    id: str = Field(default_factory=new_id)
    external_id: Optional[str] = None
    kind: NodeKind = NodeKind.MESSAGE
    label: str = ""
    position: Position = Field(default_factory=Position)

    responses: List[Response] = Field(default_factory=list)
    branches: List[Branch] = Field(default_factory=list)
    settings: NodeSettings = Field(default_factory=NodeSettings)

    # hierarchical (tree) edge and designated "next" edge
    parent_id: Optional[str] = None
    next_node_id: Optional[str] = None

    condition: Optional[str] = None
    action: Optional[ActionKind] = None
    action_config: Dict[str, Any] = Field(default_factory=dict)
    form_fields: List[str] = Field(default_factory=list)

    @property
    def name(self) -> Optional[str]:
        return self.settings.node_name

    @property
    def first_text(self) -> str:
        for response in self.responses:
            if response.kind == ResponseKind.TEXT and response.text:
                return response.text
        return ""

    def get_branch(self, branch_id: str) -> Optional[Branch]:
        for branch in self.branches:
            if branch.id == branch_id:
                return branch
        return None

    def replace_branch(self, branch: Branch) -> 'Node':
        """Return a copy of this node with the branch of the same id replaced"""
        branches = [branch if b.id == branch.id else b for b in self.branches]
        if not any(b.id == branch.id for b in self.branches):
            branches.append(branch)
        return self.model_copy(update={'branches': branches}, deep=True)


class Connection(BaseConfig):
    """Free-form editor edge; source_handle names the branch (or true/false) it wires"""
    id: str = Field(default_factory=new_id)
    source_id: str
    target_id: str
    source_handle: Optional[str] = None


class Scenario(BaseConfig):
    """A named, versioned conversation flow owning its nodes"""
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    version: int = 0
    source_type: str = "editor"
    start_node_id: Optional[str] = None
    free_input_mode: FreeInputMode = FreeInputMode.ENABLED

    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator('free_input_mode', mode='before')
    @classmethod
    def validate_free_input_mode(cls, v):
        # a scenario-wide default cannot itself inherit
        if v is None or v in ("inherit", "default", FreeInputMode.INHERIT):
            return FreeInputMode.ENABLED
        return v

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def nodes_by_external_id(self) -> Dict[str, Node]:
        return {n.external_id: n for n in self.nodes if n.external_id}

    def replace_node(self, node: Node) -> 'Scenario':
        """Return a copy of this scenario with the node of the same id replaced"""
        nodes = [node if n.id == node.id else n for n in self.nodes]
        if not any(n.id == node.id for n in self.nodes):
            nodes.append(node)
        return self.model_copy(update={'nodes': nodes}, deep=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ============================================================================
# Graph analysis results
# ============================================================================

@dataclass
class CycleDetectionResult:
    success: bool
    order: List[str]
    cyclic_nodes: List[str]
    start_nodes: List[str] = field(default_factory=list)
    end_nodes: List[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    ok: bool
    issues: List[Diagnostic] = field(default_factory=list)
    start_node_id: Optional[str] = None
    end_nodes: List[str] = field(default_factory=list)
    unreachable_nodes: List[str] = field(default_factory=list)
    cyclic_nodes: List[str] = field(default_factory=list)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.issues if d.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.issues if not d.is_error]
