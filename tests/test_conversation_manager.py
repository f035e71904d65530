"""
ConversationManager: traversal wired to the stores and the notifier
"""
import threading

import pytest

from core.conversation_manager import ConversationManager
from core.notifier import Notifier
from core.session import FreeTextEvent, SelectBranchEvent, StartEvent
from graph.schema import ActionKind


@pytest.fixture
def manager(scenario_store, session_store, notifier, sample_scenario):
    scenario_store.save_scenario(sample_scenario)
    return ConversationManager(scenario_store, session_store, notifier=notifier)


def test_start_session(manager, session_store):
    result = manager.start_session("support-demo", session_id="visitor-1")
    assert result["session_id"] == "visitor-1"
    assert result["current_node"] == "greet"
    assert result["turn_count"] == 1
    assert [c["id"] for c in result["data"]["choices"]] == ["b-order", "b-human", "b-help"]
    assert session_store.load_state("visitor-1").current_node_id == "greet"


def test_unknown_scenario(manager):
    result = manager.start_session("nope")
    assert result["error"] is True
    assert result["code"] == "scenario_not_found"


def test_unknown_session(manager):
    result = manager.process_event("ghost", StartEvent())
    assert result["error"] is True
    assert result["code"] == "session_not_found"


def test_order_flow_persists_memory(manager, session_store):
    manager.start_session("support-demo", session_id="v")
    manager.process_event("v", SelectBranchEvent(branch_id="b-order"))
    result = manager.process_event("v", FreeTextEvent(text="123456"))

    assert result["current_node"] == "anything-else"
    messages = [m["text"] for m in result["data"]["messages"] if m["text"]]
    assert messages[0] == "Order 123456 is on its way."
    stored = session_store.load_state("v")
    assert stored.memory == {"ask-order": "123456"}
    assert stored.turn_count == 3


def test_rejected_input_keeps_session(manager, session_store):
    manager.start_session("support-demo", session_id="v")
    result = manager.process_event("v", FreeTextEvent(text="hello"))
    assert result["data"]["error"]["code"] == "input_not_accepted"
    assert result["current_node"] == "greet"
    stored = session_store.load_state("v")
    assert stored.turn_count == 1
    # input errors are not structural and stay off the record
    assert stored.diagnostics == []


def test_end_marks_session_complete(manager, session_store):
    manager.start_session("support-demo", session_id="v")
    manager.process_event("v", SelectBranchEvent(branch_id="b-order"))
    manager.process_event("v", FreeTextEvent(text="123456"))
    result = manager.process_event("v", SelectBranchEvent(branch_id="b-no"))
    assert result["session_complete"] is True
    assert session_store.load_state("v").is_complete is True


def test_handoff_notifies_and_discards_session(manager, notifier, session_store):
    manager.start_session("support-demo", session_id="v")
    result = manager.process_event("v", FreeTextEvent(text="operator"))

    assert result["handed_off"] is True
    assert result["session_complete"] is True
    assert notifier.kinds() == [ActionKind.TRANSFER_HUMAN]
    payload = notifier.emitted[0][1]
    assert payload["session_id"] == "v"
    assert payload["queue"] == "support"
    assert session_store.load_state("v") is None


def test_deferred_delivery(manager, notifier):
    manager.start_session("support-demo", session_id="v")
    result = manager.process_event("v", FreeTextEvent(text="operator"), deliver=False)
    assert notifier.emitted == []
    manager.deliver(result["actions"])
    assert notifier.kinds() == [ActionKind.TRANSFER_HUMAN]


def test_notifier_failure_does_not_break_turn(scenario_store, session_store, sample_scenario):
    class BrokenNotifier(Notifier):
        def emit(self, action_kind, payload):
            raise RuntimeError("smtp down")

    scenario_store.save_scenario(sample_scenario)
    manager = ConversationManager(scenario_store, session_store, notifier=BrokenNotifier())
    manager.start_session("support-demo", session_id="v")
    result = manager.process_event("v", FreeTextEvent(text="operator"))
    assert result["handed_off"] is True


def test_structural_error_is_recorded(scenario_store, session_store, notifier, yes_no_scenario):
    scenario_store.save_scenario(yes_no_scenario)
    manager = ConversationManager(scenario_store, session_store, notifier=notifier)
    manager.start_session("yes-no", session_id="v")

    # the editor removes B's target after the visitor has seen A
    node = yes_no_scenario.get_node("A")
    unwired = node.replace_branch(node.get_branch("yes").model_copy(update={"next_node_id": None}))
    scenario_store.save_scenario(yes_no_scenario.replace_node(unwired))

    result = manager.process_event("v", SelectBranchEvent(branch_id="yes"))
    assert result["data"]["error"]["code"] == "unresolved_branch"
    assert result["current_node"] == "A"
    assert [d.code.value for d in session_store.load_state("v").diagnostics] == ["unresolved_branch"]


def test_get_session_info(manager):
    manager.start_session("support-demo", session_id="v")
    info = manager.get_session_info("v")
    assert info["current_node"] == "greet"
    assert info["data"]["node"]["kind"] == "question"
    assert info["data"]["messages"][0]["text"] == "Hello! How can we help you today?"
    assert manager.get_session_info("ghost")["error"] is True


def test_close_session(manager, session_store):
    manager.start_session("support-demo", session_id="v")
    assert manager.close_session("v") is True
    assert session_store.load_state("v") is None
    assert manager.close_session("v") is False


def test_events_of_one_session_are_serialised(manager, session_store):
    manager.start_session("support-demo", session_id="v")
    manager.process_event("v", SelectBranchEvent(branch_id="b-order"))

    def send():
        manager.process_event("v", FreeTextEvent(text="maybe"))

    threads = [threading.Thread(target=send) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    # each event saw the previous one's result
    assert session_store.load_state("v").turn_count == 2 + 8


def test_session_locks_are_released(manager, session_store):
    for i in range(100):
        manager.start_session("support-demo", session_id=f"v{i}")
        result = manager.process_event(f"v{i}", FreeTextEvent(text="operator"))
        assert result["handed_off"] is True
    assert session_store.list_sessions() == []
    assert len(manager._locks) == 0

    manager.start_session("support-demo", session_id="kept")
    assert session_store.load_state("kept") is not None
    assert len(manager._locks) == 0


def test_lock_is_shared_while_held(manager):
    lock = manager._session_lock("v")
    again = manager._session_lock("v")
    assert again is lock
    del lock, again
    assert "v" not in manager._locks
