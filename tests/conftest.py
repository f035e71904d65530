# tests/conftest.py
import os
import sys

import pytest

# 프로젝트 경로 추가
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

from core.notifier import RecordingNotifier
from core.session import create_session
from core.traversal import TraversalEngine
from graph.index import ScenarioIndex
from graph.preprocess import load_json, normalize_editor_payload
from graph.schema import Branch, BranchKind, Node, NodeKind, NodeSettings, Response, Scenario
from storage.scenario_store import ScenarioStore
from storage.session_store import SessionStore

SAMPLE_SCENARIO = os.path.join(ROOT, 'config', 'sample_scenario.json')
SAMPLE_EXPORT = os.path.join(ROOT, 'config', 'sample_legacy_export.json')


# ========== Fixtures ==========
@pytest.fixture
def sample_payload():
    """Editor payload of the support demo scenario"""
    return load_json(SAMPLE_SCENARIO)


@pytest.fixture
def sample_scenario(sample_payload):
    return normalize_editor_payload(sample_payload)


@pytest.fixture
def sample_index(sample_scenario):
    return ScenarioIndex.build(sample_scenario)


@pytest.fixture
def sample_engine(sample_index):
    return TraversalEngine(sample_index)


@pytest.fixture
def legacy_export():
    """Flow-chart export with a joint, a revisit and a restart reply"""
    return load_json(SAMPLE_EXPORT)


@pytest.fixture
def yes_no_scenario():
    """START -> A (question: Yes -> B, No -> C)"""
    return Scenario(
        id="yes-no",
        name="yes/no",
        start_node_id="start",
        nodes=[
            Node(id="start", kind=NodeKind.START, next_node_id="A"),
            Node(
                id="A",
                kind=NodeKind.QUESTION,
                responses=[Response.text_body("Do you want a receipt?")],
                branches=[
                    Branch(id="yes", label="Yes", next_node_id="B"),
                    Branch(id="no", label="No", next_node_id="C"),
                ],
                settings=NodeSettings(node_name="ask"),
            ),
            Node(id="B", kind=NodeKind.END, responses=[Response.text_body("Receipt sent.")]),
            Node(id="C", kind=NodeKind.END, responses=[Response.text_body("No receipt.")]),
        ],
    )


@pytest.fixture
def yes_no_index(yes_no_scenario):
    return ScenarioIndex.build(yes_no_scenario)


@pytest.fixture
def session_at():
    """Factory: a session already positioned on a node"""
    def _make(scenario_id: str, node_id: str, **memory):
        session = create_session(scenario_id)
        session.current_node_id = node_id
        session.memory.update(memory)
        return session
    return _make


@pytest.fixture
def scenario_store():
    return ScenarioStore(use_redis=False)


@pytest.fixture
def session_store():
    return SessionStore(use_redis=False)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def jump_branch():
    def _make(name: str, label: str = "Go"):
        return Branch(label=label, kind=BranchKind.JUMP, target_node_name=name)
    return _make
