from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class Category(str, Enum):
    STRUCTURAL = "structural"
    INPUT = "input"
    IMPORT = "import"


class DiagnosticCode(str, Enum):
    # structural
    DANGLING_JUMP = "dangling_jump"
    AMBIGUOUS_JUMP = "ambiguous_jump"
    AMBIGUOUS_CONDITION = "ambiguous_condition"
    UNRESOLVED_BRANCH = "unresolved_branch"
    UNWIRED_BRANCH = "unwired_branch"
    MISSING_EDGE = "missing_edge"
    AMBIGUOUS_EDGE = "ambiguous_edge"
    MISSING_START = "missing_start"
    AMBIGUOUS_START = "ambiguous_start"
    MISSING_ACTION = "missing_action"
    MISSING_RESPONSES = "missing_responses"
    UNKNOWN_NODE = "unknown_node"
    DUPLICATE_NODE_ID = "duplicate_node_id"
    DUPLICATE_NODE_NAME = "duplicate_node_name"
    AMBIGUOUS_DIRECT_TRANSITION = "ambiguous_direct_transition"
    ANONYMOUS_CYCLE = "anonymous_cycle"
    UNREACHABLE_NODE = "unreachable_node"
    FALLTHROUGH_LOOP = "fallthrough_loop"
    # input
    INPUT_NOT_ACCEPTED = "input_not_accepted"
    UNRECOGNIZED = "unrecognized"
    # import
    UNRESOLVED_CONDITION_LINK = "unresolved_condition_link"
    UNKNOWN_CELL = "unknown_cell"
    MALFORMED_CELL = "malformed_cell"


_INPUT_CODES = {DiagnosticCode.INPUT_NOT_ACCEPTED, DiagnosticCode.UNRECOGNIZED}
_IMPORT_CODES = {
    DiagnosticCode.UNRESOLVED_CONDITION_LINK,
    DiagnosticCode.UNKNOWN_CELL,
    DiagnosticCode.MALFORMED_CELL,
}


def category_of(code: DiagnosticCode) -> Category:
    if code in _INPUT_CODES:
        return Category.INPUT
    if code in _IMPORT_CODES:
        return Category.IMPORT
    return Category.STRUCTURAL


class Diagnostic(BaseModel):
    """A validation, traversal or import finding surfaced to the operator"""
    code: DiagnosticCode
    severity: Severity = Severity.ERROR
    category: Category = Category.STRUCTURAL
    message: str
    node_id: Optional[str] = None
    branch_id: Optional[str] = None

    @classmethod
    def error(cls, code: DiagnosticCode, message: str,
              node_id: Optional[str] = None, branch_id: Optional[str] = None) -> 'Diagnostic':
        return cls(code=code, severity=Severity.ERROR, category=category_of(code),
                   message=message, node_id=node_id, branch_id=branch_id)

    @classmethod
    def warning(cls, code: DiagnosticCode, message: str,
                node_id: Optional[str] = None, branch_id: Optional[str] = None) -> 'Diagnostic':
        return cls(code=code, severity=Severity.WARNING, category=category_of(code),
                   message=message, node_id=node_id, branch_id=branch_id)

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def __str__(self) -> str:
        where = f" (node={self.node_id})" if self.node_id else ""
        return f"[{self.code.value}] {self.message}{where}"


class TraversalError(Exception):
    """Raised inside the engine; converted to a result at the advance() boundary"""

    def __init__(self, diagnostic: Diagnostic):
        super().__init__(str(diagnostic))
        self.diagnostic = diagnostic

    @classmethod
    def of(cls, code: DiagnosticCode, message: str,
           node_id: Optional[str] = None, branch_id: Optional[str] = None) -> 'TraversalError':
        return cls(Diagnostic.error(code, message, node_id=node_id, branch_id=branch_id))


class LegacyImportError(Exception):
    """The export document cannot be imported at all"""
