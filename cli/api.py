from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Literal, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ValidationError

from core.api import APIResponse
from core.config import Settings, get_settings
from core.conversation_manager import ConversationManager
from core.notifier import Notifier
from core.session import parse_event
from graph.errors import Diagnostic, DiagnosticCode, LegacyImportError
from graph.preprocess import load_json, normalize_editor_payload
from graph.schema import Scenario
from graph.validator import validate_scenario
from loaders.legacy_importer import LegacyImporter
from storage.scenario_store import ScenarioStore
from storage.session_store import SessionStore

logger = logging.getLogger(__name__)


class ScenarioSummary(BaseModel):
    id: str
    name: str
    description: str
    version: int
    source_type: str
    nodes: int


class ValidationRes(BaseModel):
    ok: bool
    issues: List[Diagnostic]
    start_node_id: Optional[str] = None
    unreachable_nodes: List[str] = []
    cyclic_nodes: List[str] = []


class ImportReq(BaseModel):
    name: str
    description: str = ""
    document: Dict[str, Any]
    max_depth: Optional[int] = None
    # re-import into the scenario with the same name, keeping node ids
    update_existing: bool = True


class ImportRes(BaseModel):
    scenario: Dict[str, Any]
    warnings: List[Diagnostic]
    imported: int


class StartSessionReq(BaseModel):
    scenario_id: str
    session_id: Optional[str] = None


class EventReq(BaseModel):
    type: Literal["start", "select_branch", "free_text"]
    branch_id: Optional[str] = None
    text: Optional[str] = None


def _issues_detail(issues: List[Diagnostic]) -> List[Dict[str, Any]]:
    return [d.model_dump(mode="json") for d in issues]


def _import_document(store: ScenarioStore, settings: Settings, name: str, description: str,
                     document: Dict[str, Any], max_depth: Optional[int] = None,
                     update_existing: bool = True):
    existing = store.find_by_name(name) if update_existing else None
    importer = LegacyImporter(
        document, name=name, description=description, existing=existing, max_depth=max_depth,
        restart_phrase=settings.restart_phrase, start_marker=settings.start_marker,
    )
    result = importer.run()
    return result, store.save_scenario(result.scenario)


def create_app(settings: Optional[Settings] = None,
               scenario_store: Optional[ScenarioStore] = None,
               session_store: Optional[SessionStore] = None,
               notifier: Optional[Notifier] = None) -> FastAPI:
    settings = settings or get_settings()
    scenarios = scenario_store or ScenarioStore(
        use_redis=settings.use_redis, redis_host=settings.redis_host,
        redis_port=settings.redis_port, redis_db=settings.redis_db,
    )
    sessions = session_store or SessionStore(
        use_redis=settings.use_redis, redis_host=settings.redis_host,
        redis_port=settings.redis_port, redis_db=settings.redis_db,
        session_ttl=settings.session_ttl,
    )
    manager = ConversationManager(scenarios, sessions, notifier=notifier)

    if settings.scenario_seed_path:
        try:
            _, saved = _import_document(
                scenarios, settings, settings.scenario_seed_name, "",
                load_json(settings.scenario_seed_path),
            )
            if isinstance(saved, Scenario):
                logger.info(f"Seed scenario loaded: {saved.id}")
            else:
                logger.error(f"Seed scenario rejected: {[str(d) for d in saved]}")
        except (OSError, ValueError, LegacyImportError) as e:
            logger.error(f"Seed import failed for {settings.scenario_seed_path}: {e}")

    app = FastAPI(title="Scenario Graph API")
    app.state.manager = manager
    app.state.scenarios = scenarios

    @app.get("/", include_in_schema=False)
    def root() -> RedirectResponse:
        return RedirectResponse(url="/docs")

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True, "redis": scenarios.use_redis}

    # ========================================
    # Scenarios (editor contract)
    # ========================================

    @app.get("/scenarios", response_model=List[ScenarioSummary])
    def list_scenarios() -> List[ScenarioSummary]:
        return [
            ScenarioSummary(id=s.id, name=s.name, description=s.description, version=s.version,
                            source_type=s.source_type, nodes=len(s.nodes))
            for s in scenarios.list_scenarios()
        ]

    def _save(payload: Dict[str, Any], scenario_id: Optional[str] = None) -> Dict[str, Any]:
        if scenario_id is not None:
            payload = {**payload, "id": scenario_id}
        try:
            scenario = normalize_editor_payload(payload)
        except (ValueError, ValidationError) as e:
            raise HTTPException(status_code=422, detail=str(e))
        saved = scenarios.save_scenario(scenario)
        if not isinstance(saved, Scenario):
            raise HTTPException(status_code=422, detail=_issues_detail(saved))
        return saved.to_wire()

    @app.post("/scenarios")
    def create_scenario(payload: Dict[str, Any]) -> Dict[str, Any]:
        return _save(payload)

    @app.get("/scenarios/{scenario_id}")
    def get_scenario(scenario_id: str) -> Dict[str, Any]:
        scenario = scenarios.get_scenario(scenario_id)
        if scenario is None:
            raise HTTPException(status_code=404, detail="Scenario not found")
        return scenario.to_wire()

    @app.put("/scenarios/{scenario_id}")
    def replace_scenario(scenario_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if scenarios.get_scenario(scenario_id) is None:
            raise HTTPException(status_code=404, detail="Scenario not found")
        return _save(payload, scenario_id)

    @app.delete("/scenarios/{scenario_id}")
    def delete_scenario(scenario_id: str) -> Dict[str, Any]:
        if not scenarios.delete_scenario(scenario_id):
            raise HTTPException(status_code=404, detail="Scenario not found")
        return {"deleted": scenario_id}

    @app.post("/scenarios/{scenario_id}/validate", response_model=ValidationRes)
    def validate_stored(scenario_id: str) -> ValidationRes:
        scenario = scenarios.get_scenario(scenario_id)
        if scenario is None:
            raise HTTPException(status_code=404, detail="Scenario not found")
        report = validate_scenario(scenario)
        return ValidationRes(
            ok=report.ok, issues=report.issues, start_node_id=report.start_node_id,
            unreachable_nodes=report.unreachable_nodes, cyclic_nodes=report.cyclic_nodes,
        )

    @app.post("/scenarios/import", response_model=ImportRes)
    def import_scenario(body: ImportReq) -> ImportRes:
        try:
            result, saved = _import_document(
                scenarios, settings, body.name, body.description, body.document,
                max_depth=body.max_depth, update_existing=body.update_existing,
            )
        except LegacyImportError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if not isinstance(saved, Scenario):
            raise HTTPException(status_code=422, detail=_issues_detail(saved))
        return ImportRes(scenario=saved.to_wire(), warnings=result.warnings, imported=result.imported)

    # ========================================
    # Sessions (visitor runtime)
    # ========================================

    def _respond(result: Dict[str, Any], background: BackgroundTasks) -> Dict[str, Any]:
        if result.get('error'):
            raise HTTPException(status_code=404, detail=result['response'])
        if result.get('actions'):
            background.add_task(manager.deliver, result['actions'])
        data = result['data']
        error = data.get('error')
        if error and error.get('code') == DiagnosticCode.INPUT_NOT_ACCEPTED.value:
            raise HTTPException(status_code=409, detail=error)
        return data

    @app.post("/sessions", response_model=APIResponse)
    def start_session(body: StartSessionReq, background: BackgroundTasks) -> Dict[str, Any]:
        result = manager.start_session(body.scenario_id, session_id=body.session_id, deliver=False)
        return {"data": _respond(result, background)}

    @app.post("/sessions/{session_id}/events", response_model=APIResponse)
    def send_event(session_id: str, body: EventReq, background: BackgroundTasks) -> Dict[str, Any]:
        try:
            event = parse_event(body.model_dump(exclude_none=True))
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        result = manager.process_event(session_id, event, deliver=False)
        return {"data": _respond(result, background)}

    @app.get("/sessions/{session_id}", response_model=APIResponse)
    def get_session(session_id: str) -> Dict[str, Any]:
        result = manager.get_session_info(session_id)
        if result.get('error'):
            raise HTTPException(status_code=404, detail=result['response'])
        return {"data": result['data']}

    @app.delete("/sessions/{session_id}")
    def close_session(session_id: str) -> Dict[str, Any]:
        if not manager.close_session(session_id):
            raise HTTPException(status_code=404, detail="Session not found")
        return {"closed": session_id}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("cli.api:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
