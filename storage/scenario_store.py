from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from graph.errors import Diagnostic
from graph.index import ScenarioIndex
from graph.schema import Scenario
from graph.validator import validate_scenario
from .backend import connect_redis

logger = logging.getLogger(__name__)


class ScenarioStore:
    """Editor-facing scenario persistence.

    A save validates first and writes nothing when an error-severity issue
    exists. Each scenario is written as one document, so readers see either
    the previous revision or the new one. The compiled ScenarioIndex is
    rebuilt on save and cached per revision.
    """

    def __init__(self, use_redis: bool = False, redis_host: str = 'localhost',
                 redis_port: int = 6379, redis_db: int = 0):
        self.redis_client = connect_redis(redis_host, redis_port, redis_db) if use_redis else None
        self.use_redis = self.redis_client is not None
        self.memory_store: Dict[str, str] = {}
        self._indexes: Dict[str, Tuple[int, ScenarioIndex]] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _key(scenario_id: str) -> str:
        return f"scenario:{scenario_id}"

    # ========================================
    # Editor contract
    # ========================================

    def get_scenario(self, scenario_id: str) -> Optional[Scenario]:
        if self.use_redis:
            data = self.redis_client.get(self._key(scenario_id))
        else:
            with self._lock:
                data = self.memory_store.get(scenario_id)
        if not data:
            return None
        return Scenario.model_validate(json.loads(data))

    def save_scenario(self, scenario: Scenario) -> Union[Scenario, List[Diagnostic]]:
        """Validate and persist; returns the stored revision or the blocking issues"""
        index = ScenarioIndex.build(scenario)
        report = validate_scenario(scenario, index=index)
        if not report.ok:
            logger.info(f"Rejected save of scenario {scenario.id}: {len(report.errors)} error(s)")
            return report.errors

        with self._lock:
            previous = self.get_scenario(scenario.id)
            version = (previous.version if previous else scenario.version) + 1
            saved = scenario.model_copy(update={
                'version': version,
                'updated_at': datetime.now(),
                'created_at': previous.created_at if previous else scenario.created_at,
            }, deep=True)

            payload = json.dumps(saved.to_wire(), ensure_ascii=False)
            if self.use_redis:
                self.redis_client.set(self._key(saved.id), payload)
            else:
                self.memory_store[saved.id] = payload
            self._indexes[saved.id] = (saved.version, ScenarioIndex.build(saved))

        logger.info(f"Saved scenario {saved.id} '{saved.name}' v{saved.version} "
                    f"({len(saved.nodes)} nodes, {len(report.warnings)} warning(s))")
        return saved

    def delete_scenario(self, scenario_id: str) -> bool:
        """Delete a scenario together with the nodes it owns"""
        with self._lock:
            self._indexes.pop(scenario_id, None)
            if self.use_redis:
                return bool(self.redis_client.delete(self._key(scenario_id)))
            return self.memory_store.pop(scenario_id, None) is not None

    def list_scenarios(self) -> List[Scenario]:
        if self.use_redis:
            keys = self.redis_client.keys("scenario:*")
            ids = [k.replace("scenario:", "", 1) for k in keys]
        else:
            with self._lock:
                ids = list(self.memory_store)
        scenarios = [self.get_scenario(sid) for sid in ids]
        return [s for s in scenarios if s is not None]

    def find_by_name(self, name: str) -> Optional[Scenario]:
        for scenario in self.list_scenarios():
            if scenario.name == name:
                return scenario
        return None

    # ========================================
    # Runtime access
    # ========================================

    def get_index(self, scenario_id: str) -> Optional[ScenarioIndex]:
        with self._lock:
            cached = self._indexes.get(scenario_id)
            # in-memory writes all go through save_scenario, so the cache is current
            if cached is not None and not self.use_redis:
                return cached[1]
            scenario = self.get_scenario(scenario_id)
            if scenario is None:
                self._indexes.pop(scenario_id, None)
                return None
            if cached is not None and cached[0] == scenario.version:
                return cached[1]
            index = ScenarioIndex.build(scenario)
            self._indexes[scenario_id] = (scenario.version, index)
            return index
