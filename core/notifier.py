from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

from graph.schema import ActionKind

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Write-only integration layer; delivery, retries and failures are its own concern"""

    @abstractmethod
    def emit(self, action_kind: ActionKind, payload: Dict[str, Any]) -> None:
        pass


class LoggingNotifier(Notifier):
    """Default notifier: records every action in the log"""

    def emit(self, action_kind: ActionKind, payload: Dict[str, Any]) -> None:
        logger.info(f"Action {action_kind.value} emitted: {payload}")


class RecordingNotifier(Notifier):
    """Keeps emitted actions in memory"""

    def __init__(self):
        self.emitted: List[Tuple[ActionKind, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def emit(self, action_kind: ActionKind, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.emitted.append((action_kind, dict(payload)))

    def kinds(self) -> List[ActionKind]:
        return [kind for kind, _ in self.emitted]
