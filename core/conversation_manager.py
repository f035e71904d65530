from typing import Dict, Any, List, Optional, Tuple
import logging
import threading
import weakref

from graph.errors import Category
from graph.schema import ActionKind
from storage.scenario_store import ScenarioStore
from storage.session_store import SessionStore
from .api import build_api_response, build_session_response
from .condition_eval import ConditionPolicy
from .notifier import LoggingNotifier, Notifier
from .session import (
    Event, ScenarioSession, SideEffectKind, StartEvent, TraversalResult, create_session,
)
from .traversal import TraversalEngine

logger = logging.getLogger(__name__)

PendingAction = Tuple[ActionKind, Dict[str, Any]]


class ConversationManager:
    """Runs visitor conversations over stored scenarios.

    Events of one session are processed strictly one at a time; different
    sessions proceed independently. The session is saved before any action
    is handed to the notifier.
    """

    def __init__(self, scenario_store: ScenarioStore, session_store: SessionStore,
                 notifier: Optional[Notifier] = None,
                 condition_policy: Optional[ConditionPolicy] = None):
        self.scenario_store = scenario_store
        self.session_store = session_store
        self.notifier = notifier or LoggingNotifier()
        self.condition_policy = condition_policy
        # an entry lives only while some caller holds or waits on it
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _session_lock(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    def _forget_lock(self, session_id: str):
        with self._locks_guard:
            self._locks.pop(session_id, None)

    def _engine(self, scenario_id: str) -> Optional[TraversalEngine]:
        index = self.scenario_store.get_index(scenario_id)
        if index is None:
            return None
        return TraversalEngine(index, condition_policy=self.condition_policy)

    # ========================================
    # Session lifecycle
    # ========================================

    def start_session(self, scenario_id: str, session_id: Optional[str] = None,
                      deliver: bool = True) -> Dict[str, Any]:
        engine = self._engine(scenario_id)
        if engine is None:
            return self._create_error_response("Scenario not found", 'scenario_not_found')
        session = create_session(scenario_id, session_id)
        with self._session_lock(session.session_id):
            result = engine.advance(session, StartEvent())
            return self._finish(engine, result, deliver)

    def process_event(self, session_id: str, event: Event, deliver: bool = True) -> Dict[str, Any]:
        with self._session_lock(session_id):
            session = self.session_store.load_state(session_id)
            if session is None:
                return self._create_error_response("Session not found", 'session_not_found')
            engine = self._engine(session.scenario_id)
            if engine is None:
                return self._create_error_response("Scenario not found", 'scenario_not_found')
            logger.debug(f"Event {event.type} for session {session_id} at node {session.current_node_id}")
            result = engine.advance(session, event)
            return self._finish(engine, result, deliver)

    def get_session_info(self, session_id: str) -> Dict[str, Any]:
        session = self.session_store.load_state(session_id)
        if session is None:
            return self._create_error_response("Session not found", 'session_not_found')
        engine = self._engine(session.scenario_id)
        if engine is None:
            return self._create_error_response("Scenario not found", 'scenario_not_found')
        node = engine.index.get(session.current_node_id)
        api_resp = build_session_response(
            session=session,
            node=node,
            start_node=engine.index.start_node_id,
            responses=engine.render(node, session),
            free_input_enabled=engine.index.free_input_enabled(node) if node is not None else False,
        )
        return {
            'session_id': session_id,
            'current_node': session.current_node_id,
            'session_complete': session.is_complete,
            'data': api_resp.data.model_dump(mode="json"),
        }

    def close_session(self, session_id: str) -> bool:
        with self._session_lock(session_id):
            deleted = self.session_store.delete_state(session_id)
        self._forget_lock(session_id)
        logger.info(f"Session closed: {session_id}")
        return deleted

    def deliver(self, actions: List[PendingAction]):
        """Hand actions to the notifier; failures are the notifier's to handle"""
        for action_kind, payload in actions:
            try:
                self.notifier.emit(action_kind, payload)
            except Exception as e:
                logger.error(f"Notifier failed for {action_kind.value}: {e}")

    # ========================================
    # Internals
    # ========================================

    def _finish(self, engine: TraversalEngine, result: TraversalResult, deliver: bool) -> Dict[str, Any]:
        session: ScenarioSession = result.session.model_copy(deep=True)

        if result.error is not None:
            if result.error.category == Category.STRUCTURAL:
                session.record(result.error)
        else:
            session.touch()
        if result.effects_of(SideEffectKind.CONVERSATION_ELIGIBLE_FOR_CLOSE):
            session.set_complete()

        actions: List[PendingAction] = [
            (e.action, e.payload) for e in result.effects_of(SideEffectKind.DISPATCH_ACTION)
            if e.action is not None
        ]
        handed_off = any(kind == ActionKind.TRANSFER_HUMAN for kind, _ in actions)

        if handed_off:
            # the conversation now belongs to an operator
            session.set_complete()
            self.session_store.delete_state(session.session_id)
            self._forget_lock(session.session_id)
            logger.info(f"Session {session.session_id} handed off to an operator")
        else:
            self.session_store.save_state(session)

        if deliver:
            self.deliver(actions)

        shown = result.model_copy(update={'session': session})
        api_resp = build_api_response(shown, start_node=engine.index.start_node_id)
        return {
            'session_id': session.session_id,
            'current_node': session.current_node_id,
            'turn_count': session.turn_count,
            'session_complete': session.is_complete,
            'handed_off': handed_off,
            'actions': actions,
            'data': api_resp.data.model_dump(mode="json"),
        }

    def _create_error_response(self, message: str, code: str) -> Dict[str, Any]:
        return {
            'response': message,
            'code': code,
            'session_id': None,
            'current_node': None,
            'session_complete': False,
            'actions': [],
            'error': True
        }
