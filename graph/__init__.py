"""
Scenario graph model: entities, compiled index, validation and inspection
"""

from .graph_builder import GraphBuilder
from .schema import (
    ActionKind, Branch, BranchAction, BranchKind, Connection, CycleDetectionResult,
    FreeInputMode, Node, NodeKind, NodeSettings, Position, Response, ResponseKind,
    Scenario, ValidationReport,
)
from .errors import Diagnostic, DiagnosticCode, LegacyImportError, Severity, TraversalError
from .index import Edge, ScenarioIndex
from .validator import validate, validate_scenario
from .toposort import kahn_toposort
from .preprocess import load_json, normalize_editor_payload
from .builder import build_nx_graph
from .visualize import draw_with_legend

__all__ = [
    'GraphBuilder',
    'ActionKind', 'Branch', 'BranchAction', 'BranchKind', 'Connection', 'CycleDetectionResult',
    'FreeInputMode', 'Node', 'NodeKind', 'NodeSettings', 'Position', 'Response', 'ResponseKind',
    'Scenario', 'ValidationReport',
    'Diagnostic', 'DiagnosticCode', 'LegacyImportError', 'Severity', 'TraversalError',
    'Edge', 'ScenarioIndex',
    'validate', 'validate_scenario',
    'kahn_toposort',
    'load_json', 'normalize_editor_payload',
    'build_nx_graph',
    'draw_with_legend',
]
