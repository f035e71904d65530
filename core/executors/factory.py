from __future__ import annotations

import logging
from typing import Dict, Type, Union

from graph.schema import NodeKind
from .base import BaseExecutor
from .builtins import (
    ActionExecutor, ConditionExecutor, EndExecutor, MessageExecutor,
    QuestionExecutor, StartExecutor,
)

logger = logging.getLogger(__name__)


class ExecutorFactory:
    """Maps node kinds to their executors (stateless, cached)."""

    def __init__(self) -> None:
        self.executors: Dict[str, Type[BaseExecutor]] = {
            NodeKind.START.value: StartExecutor,
            NodeKind.MESSAGE.value: MessageExecutor,
            NodeKind.QUESTION.value: QuestionExecutor,
            NodeKind.CONDITION.value: ConditionExecutor,
            NodeKind.ACTION.value: ActionExecutor,
            NodeKind.END.value: EndExecutor,
        }
        self._cache: Dict[str, BaseExecutor] = {}

    def get(self, kind: Union[str, NodeKind]) -> BaseExecutor:
        key = kind.value if isinstance(kind, NodeKind) else str(kind)
        if key not in self._cache:
            executor_cls = self.executors.get(key, MessageExecutor)
            self._cache[key] = executor_cls()
        return self._cache[key]

    def register(self, kind: Union[str, NodeKind], executor_class: Type[BaseExecutor]):
        key = kind.value if isinstance(kind, NodeKind) else str(kind)
        self.executors[key] = executor_class
        self._cache.pop(key, None)


executor_factory = ExecutorFactory()
