from __future__ import annotations

from dataclasses import dataclass
import networkx as nx

from graph.graph_builder import GraphBuilder
from graph.index import ScenarioIndex
from graph.schema import Scenario, ValidationReport


@dataclass
class GraphInfo:
    scenario: Scenario
    index: ScenarioIndex
    graph: nx.DiGraph
    report: ValidationReport


def load_and_validate(json_path: str) -> GraphInfo:
    """Load an editor scenario file, build its graph, validate, and return the bundle."""
    gb = GraphBuilder()
    if not gb.load_from_json(json_path):
        raise ValueError(f"Invalid JSON or failed to load: {json_path}")
    if not gb.build_graph():
        issues = "; ".join(str(d) for d in gb.report.errors)
        raise ValueError(f"Scenario validation failed: {issues}")

    # Warnings were logged by build_graph(); they never block a load
    return GraphInfo(
        scenario=gb.scenario,
        index=gb.index,
        graph=gb.graph,
        report=gb.report,
    )
