from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import networkx as nx
from pydantic import ValidationError

from .builder import build_nx_graph
from .index import ScenarioIndex
from .preprocess import load_json, normalize_editor_payload
from .schema import Scenario, ValidationReport
from .toposort import kahn_toposort
from .validator import validate_scenario
from .visualize import draw_with_legend

logger = logging.getLogger(__name__)

# jump branches are the sanctioned way to loop
ANONYMOUS_SKIP = ("jump",)


class GraphBuilder:
    """Loads a scenario file and exposes its graph for inspection"""

    def __init__(self) -> None:
        self.graph: nx.DiGraph = nx.DiGraph()
        self.scenario: Optional[Scenario] = None
        self.index: Optional[ScenarioIndex] = None
        self.report: Optional[ValidationReport] = None

    def load_from_json(self, json_path: str) -> bool:
        try:
            raw = load_json(json_path)
            self.scenario = normalize_editor_payload(raw)
            logger.info(f"Loaded scenario '{self.scenario.name}' from {json_path} "
                        f"({len(self.scenario.nodes)} nodes)")
            return True
        except FileNotFoundError:
            logger.error(f"Scenario file not found: {json_path}")
            return False
        except json.JSONDecodeError as e:
            logger.error(f"Scenario file is not valid JSON: {e}")
            return False
        except (ValueError, ValidationError) as e:
            logger.error(f"Scenario file is not a scenario: {e}")
            return False

    def load_scenario(self, scenario: Scenario) -> None:
        self.scenario = scenario

    def build_graph(self) -> bool:
        if self.scenario is None:
            logger.error("No scenario loaded")
            return False

        self.index = ScenarioIndex.build(self.scenario)
        self.graph = build_nx_graph(self.scenario, index=self.index)
        logger.info(f"Graph built: {self.graph.number_of_nodes()} nodes, "
                    f"{self.graph.number_of_edges()} edges")

        self.report = validate_scenario(self.scenario, index=self.index)
        for w in self.report.warnings:
            logger.warning(str(w))
        for e in self.report.errors:
            logger.error(str(e))
        return self.report.ok

    def detect_cycles(self) -> Dict[str, Any]:
        result = kahn_toposort(self.graph, skip_via=ANONYMOUS_SKIP)
        if result.success:
            logger.info("No anonymous cycles; jump branches are the only loops")
        else:
            logger.warning(f"Anonymous cycle involving: {sorted(result.cyclic_nodes)}")
        return {
            "success": result.success,
            "order": result.order,
            "cyclic_nodes": result.cyclic_nodes,
        }

    def get_node_info(self, node_id: str) -> Dict[str, Any]:
        if self.index is None or node_id not in self.index.nodes:
            return {}
        node = self.index.nodes[node_id]
        return {
            **node.model_dump(mode="json"),
            "successors": self.get_successors(node_id),
            "predecessors": self.get_predecessors(node_id),
        }

    def export_graph_info(self) -> Dict[str, Any]:
        nodes_payload = [{"id": n, **dict(self.graph.nodes[n])} for n in self.graph.nodes()]
        edges_payload = [{"from": u, "to": v, **attrs} for u, v, attrs in self.graph.edges(data=True)]

        cycle_result = kahn_toposort(self.graph, skip_via=ANONYMOUS_SKIP)
        graph_stats = {
            "nodes": self.graph.number_of_nodes(),
            "edges": self.graph.number_of_edges(),
            "jumps": sum(1 for _, _, a in self.graph.edges(data=True) if a.get("via") == "jump"),
            "is_dag": cycle_result.success,
        }

        kind_groups: Dict[str, List[str]] = {}
        for node_id, attrs in self.graph.nodes(data=True):
            kind_groups.setdefault(attrs.get("kind", "unknown"), []).append(node_id)

        return {
            "nodes": nodes_payload,
            "edges": edges_payload,
            "graph_stats": graph_stats,
            "kind_groups": kind_groups,
        }

    def visualize_graph(self, save_path: str) -> bool:
        root = self.index.start_node_id if self.index else None
        return draw_with_legend(self.graph, save_path, root=root)

    def get_predecessors(self, node_id: str) -> List[str]:
        if node_id not in self.graph:
            return []
        return list(self.graph.predecessors(node_id))

    def get_successors(self, node_id: str) -> List[str]:
        if node_id not in self.graph:
            return []
        return list(self.graph.successors(node_id))
