"""
Scenario entities and editor payload normalisation
"""
import pytest
from pydantic import ValidationError

from graph.errors import Diagnostic, DiagnosticCode, Category, Severity
from graph.preprocess import normalize_editor_payload
from graph.schema import (
    Branch, BranchKind, FreeInputMode, Node, NodeKind, NodeSettings, ResponseKind, Scenario,
)


class TestEnums:
    def test_branch_kind_aliases(self):
        assert BranchKind.from_string("go_to") == BranchKind.BUTTON
        assert BranchKind.from_string("text_input") == BranchKind.FREE_TEXT_PROMPT
        assert Branch(kind="free_text").kind == BranchKind.FREE_TEXT_PROMPT

    def test_unknown_branch_kind_rejected(self):
        with pytest.raises(ValidationError):
            Branch(kind="teleport")

    def test_free_input_default_means_inherit(self):
        assert NodeSettings(free_input_mode="default").free_input_mode == FreeInputMode.INHERIT
        assert NodeSettings(free_input_mode=None).free_input_mode == FreeInputMode.INHERIT

    def test_scenario_free_input_never_inherits(self):
        assert Scenario(name="s", free_input_mode="default").free_input_mode == FreeInputMode.ENABLED


class TestNodeSettings:
    def test_trigger_text_requires_flag(self):
        assert NodeSettings(direct_transition_text="operator").trigger_text is None
        assert NodeSettings(direct_transition=True, direct_transition_text="operator").trigger_text == "operator"

    def test_blank_name_is_none(self):
        assert NodeSettings(node_name="").node_name is None


class TestWireFormat:
    def test_camel_case_round_trip(self):
        scenario = Scenario(
            name="wire",
            nodes=[Node(id="n1", kind=NodeKind.END, settings=NodeSettings(node_name="done"))],
        )
        wire = scenario.to_wire()
        assert wire["nodes"][0]["settings"]["nodeName"] == "done"
        assert "startNodeId" in wire
        assert Scenario.model_validate(wire).nodes[0].name == "done"

    def test_replace_node_returns_copy(self):
        scenario = Scenario(name="s", nodes=[Node(id="a", label="old")])
        updated = scenario.replace_node(Node(id="a", label="new"))
        assert updated.get_node("a").label == "new"
        assert scenario.get_node("a").label == "old"


class TestEditorPayload:
    def test_nested_data_is_flattened(self):
        scenario = normalize_editor_payload({
            "name": "canvas",
            "nodes": [
                {
                    "id": "q",
                    "type": "question",
                    "data": {
                        "label": "Pick one",
                        "content": "What do you need?",
                        "options": ["Billing", "Shipping"],
                    },
                    "settings": {"isCvPoint": True},
                },
            ],
            "connections": [{"source": "q", "target": "q", "handle": "x"}],
        })
        node = scenario.nodes[0]
        assert node.kind == NodeKind.QUESTION
        assert node.label == "Pick one"
        assert node.first_text == "What do you need?"
        assert [b.label for b in node.branches] == ["Billing", "Shipping"]
        assert node.settings.is_conversion_point is True
        conn = scenario.connections[0]
        assert (conn.source_id, conn.target_id, conn.source_handle) == ("q", "q", "x")

    def test_response_content_spellings(self):
        scenario = normalize_editor_payload({
            "name": "media",
            "nodes": [{
                "id": "m",
                "responses": [
                    "plain",
                    {"type": "text", "content": "typed"},
                    {"type": "image", "content": "https://example.com/a.png"},
                ],
                "branches": [{"label": "Docs", "type": "link", "url": "https://x", "newWindow": False}],
            }],
        })
        node = scenario.nodes[0]
        assert [r.kind for r in node.responses] == [ResponseKind.TEXT, ResponseKind.TEXT, ResponseKind.IMAGE]
        assert node.responses[1].text == "typed"
        assert node.responses[2].image_url == "https://example.com/a.png"
        assert node.branches[0].open_in_new_window is False

    def test_empty_payload_rejected(self):
        with pytest.raises(ValueError):
            normalize_editor_payload({})

    def test_sample_scenario_loads(self, sample_scenario):
        assert sample_scenario.id == "support-demo"
        assert sample_scenario.get_node("greet").settings.free_input_mode == FreeInputMode.DISABLED
        assert len(sample_scenario.connections) == 2


class TestDiagnostics:
    def test_category_follows_code(self):
        d = Diagnostic.warning(DiagnosticCode.UNRESOLVED_CONDITION_LINK, "x")
        assert d.category == Category.IMPORT
        assert d.severity == Severity.WARNING
        assert not d.is_error
        assert Diagnostic.error(DiagnosticCode.INPUT_NOT_ACCEPTED, "y").category == Category.INPUT

    def test_str_names_code_and_node(self):
        d = Diagnostic.error(DiagnosticCode.DANGLING_JUMP, "gone", node_id="n1")
        assert str(d) == "[dangling_jump] gone (node=n1)"
