"""
Legacy flow-chart import
"""
import pytest

from core.session import SelectBranchEvent, SideEffectKind, StartEvent, create_session
from core.traversal import advance
from graph.errors import DiagnosticCode as Code, LegacyImportError
from graph.index import ScenarioIndex
from graph.schema import ActionKind, BranchAction, BranchKind, NodeKind, ResponseKind
from graph.validator import validate_scenario
from loaders.legacy_importer import LegacyImporter, import_legacy_scenario


# ========== Export builders ==========
def start(next_node):
    return {"id": "s", "type": "devs.Model", "nodeType": "dialogue.start", "state": {"next_node": next_node}}


def response(cell_id, text, name=None, replies=None, next_node=None, **state):
    advance = {"response_type": "web_text", "response_text": text}
    if replies is not None:
        advance["replies"] = replies
    state = dict(state, response_advance=[advance])
    if name:
        state["node_name"] = {"name": name}
    if next_node:
        state["next_node"] = next_node
    return {"id": cell_id, "type": "devs.Model", "nodeType": "dialogue.response", "state": state}


def joint(cell_id, condition_link=None, next_node=None):
    state = {}
    if condition_link is not None:
        state["condition_link"] = condition_link
    if next_node:
        state["next_node"] = next_node
    return {"id": cell_id, "type": "devs.Model", "nodeType": "dialogue.joint", "state": state}


def reply(joint_id, value, reply_type="go_to", link=None):
    out = {"id": joint_id, "reply_value": value, "reply_type": reply_type}
    if link:
        out["reply_link"] = link
    return out


def by_external(scenario):
    return {n.external_id: n for n in scenario.nodes}


@pytest.fixture
def greeting_export():
    """Two-reply menu; one reply resolves to 'Greeting' by condition_link"""
    return {"cells": [
        start("menu"),
        response("menu", "Main menu", replies=[
            reply("j-greet", "Say hello"),
            reply("j-other", "Other"),
        ]),
        joint("j-greet", condition_link="Greeting"),
        joint("j-other", next_node="other"),
        response("greet-cell", "Hello there!", name="Greeting"),
        response("other", "Something else"),
    ]}


class TestGreetingExample:
    def test_condition_link_resolves_by_node_name(self, greeting_export):
        scenario = import_legacy_scenario("greeting", "", greeting_export)
        nodes = by_external(scenario)
        menu = nodes["menu"]
        assert menu.kind == NodeKind.QUESTION
        say_hello = menu.branches[0]
        target = scenario.get_node(say_hello.next_node_id)
        assert target.settings.node_name == "Greeting"
        assert say_hello.preview == "Hello there!"

    def test_joint_without_condition_link_uses_next_pointer(self, greeting_export):
        scenario = import_legacy_scenario("greeting", "", greeting_export)
        other = by_external(scenario)["menu"].branches[1]
        assert scenario.get_node(other.next_node_id).external_id == "other"

    def test_joints_never_become_nodes(self, greeting_export):
        scenario = import_legacy_scenario("greeting", "", greeting_export)
        assert set(by_external(scenario)) == {"s", "menu", "greet-cell", "other"}
        assert scenario.source_type == "legacy"

    def test_imported_scenario_validates(self, greeting_export):
        scenario = import_legacy_scenario("greeting", "", greeting_export)
        assert validate_scenario(scenario).ok

    def test_leaf_responses_become_end_nodes(self, greeting_export):
        nodes = by_external(import_legacy_scenario("greeting", "", greeting_export))
        assert nodes["other"].kind == NodeKind.END
        assert nodes["s"].kind == NodeKind.START


class TestReimport:
    def test_reimport_keeps_ids_and_never_duplicates(self, greeting_export):
        first = import_legacy_scenario("greeting", "", greeting_export)
        second = import_legacy_scenario("greeting", "", greeting_export, existing=first)

        assert second.id == first.id
        externals = [n.external_id for n in second.nodes]
        assert len(externals) == len(set(externals))
        assert {n.external_id: n.id for n in second.nodes} == {n.external_id: n.id for n in first.nodes}
        assert [b.id for b in by_external(second)["menu"].branches] == \
               [b.id for b in by_external(first)["menu"].branches]

    def test_fresh_import_gets_fresh_ids(self, greeting_export):
        first = import_legacy_scenario("greeting", "", greeting_export)
        second = import_legacy_scenario("greeting", "", greeting_export)
        assert first.id != second.id


class TestSampleExport:
    def test_sample_export(self, legacy_export):
        result = LegacyImporter(legacy_export, name="support").run()
        nodes = by_external(result.scenario)
        greeting = nodes["cell-greeting"]

        assert [r.kind for r in greeting.responses] == [ResponseKind.TEXT, ResponseKind.IMAGE, ResponseKind.TEXT]
        assert greeting.responses[1].image_url == "https://example.com/img/logo.png"
        assert greeting.responses[2].text == "Choose a topic below."

        shipping, operator, faq = greeting.branches
        assert result.scenario.get_node(shipping.next_node_id).name == "Shipping info"
        assert operator.action == BranchAction.HANDOVER
        assert faq.kind == BranchKind.LINK
        assert faq.url == "https://example.com/faq"

    def test_revisit_becomes_named_jump(self, legacy_export):
        scenario = import_legacy_scenario("support", "", legacy_export)
        back, restart = by_external(scenario)["cell-shipping"].branches
        assert back.kind == BranchKind.JUMP
        assert back.target_node_name == "Greeting"
        assert restart.action == BranchAction.RESTART

    def test_sample_export_validates_without_cycles(self, legacy_export):
        report = validate_scenario(import_legacy_scenario("support", "", legacy_export))
        assert report.ok
        assert report.cyclic_nodes == []

    def test_markup_is_stripped(self, legacy_export):
        shipping = by_external(import_legacy_scenario("support", "", legacy_export))["cell-shipping"]
        assert shipping.first_text == "Orders ship within 3 business days."


class TestDegradation:
    def test_unresolved_condition_link_keeps_branch(self):
        export = {"cells": [
            start("menu"),
            response("menu", "Menu", replies=[reply("j1", "Lost"), reply("j2", "Fine")]),
            joint("j1", condition_link="Nobody"),
            joint("j2", next_node="done"),
            response("done", "Done"),
        ]}
        result = LegacyImporter(export, name="degraded").run()
        lost, fine = by_external(result.scenario)["menu"].branches
        assert lost.next_node_id is None
        assert lost.preview == ""
        assert fine.next_node_id is not None
        assert [w.code for w in result.warnings] == [Code.UNRESOLVED_CONDITION_LINK]
        assert validate_scenario(result.scenario).ok

    def test_unknown_and_malformed_cells_are_skipped(self):
        export = {"cells": [
            start("a"),
            response("a", "Only node"),
            {"id": "x", "type": "devs.Model", "nodeType": "dialogue.mystery"},
            {"type": "devs.Model"},
            "garbage",
        ]}
        result = LegacyImporter(export, name="noisy").run()
        assert result.imported == 2
        assert {w.code for w in result.warnings} == {Code.UNKNOWN_CELL, Code.MALFORMED_CELL}

    def test_missing_cells_array(self):
        with pytest.raises(LegacyImportError):
            LegacyImporter({"nodes": []}, name="bad").run()

    def test_missing_start_cell(self):
        with pytest.raises(LegacyImportError):
            LegacyImporter({"cells": [response("a", "hi")]}, name="bad").run()


class TestDepth:
    @pytest.fixture
    def chain_export(self):
        cells = [start("c0")]
        for i in range(5):
            cells.append(response(f"c{i}", f"step {i}", next_node=f"c{i + 1}" if i < 4 else None))
        return {"cells": cells}

    def test_unlimited_by_default(self, chain_export):
        scenario = import_legacy_scenario("chain", "", chain_export)
        assert len(scenario.nodes) == 6

    def test_max_depth_truncates(self, chain_export):
        scenario = import_legacy_scenario("chain", "", chain_export, max_depth=2)
        assert sorted(n.external_id for n in scenario.nodes) == ["c0", "c1", "c2", "s"]


class TestSystemCells:
    def test_system_cells_become_actions(self):
        export = {"cells": [
            start("form"),
            response("form", "Leave your email", next_node="mail",
                     memory={"checked": True, "forms": ["email"]}),
            {"id": "mail", "type": "devs.Model", "nodeType": "system.mail",
             "state": {"to": "ops@example.com", "title": "New lead", "content": "<p>Lead</p>",
                       "next_node": "rt"}},
            {"id": "rt", "type": "devs.Model", "nodeType": "system.rtchat",
             "state": {"next_node_in": "bye", "next_node_out": "closed"}},
            response("bye", "An operator will join shortly"),
            response("closed", "We are closed"),
        ]}
        scenario = import_legacy_scenario("leads", "", export)
        nodes = by_external(scenario)

        assert nodes["form"].settings.remember_response is True
        mail = nodes["mail"]
        assert mail.kind == NodeKind.ACTION
        assert mail.action == ActionKind.SEND_EMAIL
        assert mail.action_config["content"] == "Lead"
        rt = nodes["rt"]
        assert rt.action == ActionKind.TRANSFER_HUMAN
        assert scenario.get_node(rt.next_node_id).external_id == "bye"
        assert rt.action_config["next_node_out"] == "closed"
        assert "closed" not in nodes

    def test_web_form_collects_fields(self):
        export = {"cells": [
            start("form"),
            {"id": "form", "type": "devs.Model", "nodeType": "dialogue.response", "state": {
                "response_advance": [{"response_type": "web_form", "response_text": "Contact",
                                      "form_name": "contact"}],
            }},
        ]}
        form = by_external(import_legacy_scenario("forms", "", export))["form"]
        assert form.kind == NodeKind.MESSAGE
        assert form.form_fields == ["contact"]
        assert form.settings.remember_response is True

    def test_direct_transition_and_cv_point(self):
        export = {"cells": [
            start("a"),
            response("a", "Operator desk", name="desk",
                     direct_transition={"checked": True, "action_texts": ["operator"]},
                     cv_point={"checked": True}),
        ]}
        node = by_external(import_legacy_scenario("dt", "", export))["a"]
        assert node.settings.trigger_text == "operator"
        assert node.settings.is_conversion_point is True


class TestReplyTypes:
    def test_handover_reply_still_leads_to_its_target(self):
        export = {"cells": [
            start("menu"),
            response("menu", "Menu", replies=[reply("j-op", "オペレーターに相談", reply_type="button")]),
            joint("j-op", next_node="connecting"),
            response("connecting", "Connecting you to an operator"),
        ]}
        result = LegacyImporter(export, name="handover").run()
        scenario = result.scenario
        nodes = by_external(scenario)
        branch = nodes["menu"].branches[0]

        assert branch.action == BranchAction.HANDOVER
        assert branch.next_node_id == nodes["connecting"].id
        assert branch.preview == "Connecting you to an operator"
        assert result.warnings == []

        index = ScenarioIndex.build(scenario)
        started = advance(index, create_session(scenario.id), StartEvent())
        chosen = advance(index, started.session, SelectBranchEvent(branch_id=branch.id))
        assert chosen.session.current_node_id == nodes["connecting"].id
        assert chosen.action.action == ActionKind.TRANSFER_HUMAN
        assert chosen.effects_of(SideEffectKind.CONVERSATION_ELIGIBLE_FOR_CLOSE)

    def test_handover_reply_without_target_is_not_a_warning(self, legacy_export):
        result = LegacyImporter(legacy_export, name="support").run()
        operator = by_external(result.scenario)["cell-greeting"].branches[1]
        assert operator.action == BranchAction.HANDOVER
        assert operator.next_node_id is None
        assert result.warnings == []

    def test_link_reply_without_url_is_a_plain_branch(self):
        export = {"cells": [
            start("menu"),
            response("menu", "Menu", replies=[reply("j-doc", "Docs", reply_type="link")]),
            joint("j-doc", next_node="docs"),
            response("docs", "Docs are coming soon"),
        ]}
        scenario = import_legacy_scenario("links", "", export)
        nodes = by_external(scenario)
        branch = nodes["menu"].branches[0]
        assert branch.kind == BranchKind.BUTTON
        assert branch.url is None
        assert branch.next_node_id == nodes["docs"].id

    def test_button_wins_over_restart_phrase(self):
        export = {"cells": [
            start("menu"),
            response("menu", "Menu", replies=[reply("j-x", "はじめに戻る", reply_type="button")]),
            joint("j-x"),
        ]}
        branch = by_external(import_legacy_scenario("order", "", export))["menu"].branches[0]
        assert branch.action == BranchAction.HANDOVER


class TestLoops:
    @pytest.mark.parametrize("names", [
        {},
        {"a": "dup", "other": "dup"},
    ])
    def test_revisit_without_unique_name_is_a_button_back(self, names):
        def named(cell_id):
            return {"name": names[cell_id]} if cell_id in names else None

        cells = [
            start("a"),
            response("a", "A", replies=[reply("j-ab", "to B")]),
            joint("j-ab", next_node="b"),
            response("b", "B", replies=[reply("j-ba", "back")]),
            joint("j-ba", next_node="a"),
            response("other", "Unreached"),
        ]
        for cell in cells:
            if named(cell["id"]):
                cell["state"]["node_name"] = named(cell["id"])

        scenario = import_legacy_scenario("loop", "", {"cells": cells})
        nodes = by_external(scenario)
        externals = [n.external_id for n in scenario.nodes]
        assert sorted(externals) == ["a", "b", "s"]

        back = nodes["b"].branches[0]
        assert back.kind == BranchKind.BUTTON
        assert back.next_node_id == nodes["a"].id

        report = validate_scenario(scenario)
        assert report.ok
        cycle = [d for d in report.warnings if d.code == Code.ANONYMOUS_CYCLE]
        assert len(cycle) == 1
        assert sorted(report.cyclic_nodes) == sorted([nodes["a"].id, nodes["b"].id])

    def test_deep_export_is_imported_without_recursion(self):
        depth = 3000
        cells = [start("c0")]
        for i in range(depth):
            cells.append(response(f"c{i}", f"step {i}", next_node=f"c{i + 1}" if i < depth - 1 else None))
        result = LegacyImporter({"cells": cells}, name="deep").run()
        assert result.imported == depth + 1
        assert by_external(result.scenario)[f"c{depth - 1}"].kind == NodeKind.END
