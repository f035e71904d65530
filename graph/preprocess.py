from __future__ import annotations

import json
from typing import Any, Dict

from .schema import Scenario


def load_json(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def normalize_editor_payload(raw: Dict[str, Any]) -> Scenario:
    """Accept either a stored scenario or the editor's canvas payload.

    The editor nests node content under ``data`` (label, responses,
    branches, condition, action) and uses a few legacy spellings
    (``isCvPoint``, ``freeInputMode: default``, ``data.options``).
    """
    if not isinstance(raw, dict) or not raw:
        raise ValueError("Scenario payload is empty or not an object")

    payload = dict(raw)
    payload["nodes"] = [_normalize_node(n) for n in raw.get("nodes") or []]
    payload["connections"] = [_normalize_connection(c) for c in raw.get("connections") or []]
    if "name" not in payload:
        payload["name"] = raw.get("title") or "untitled"
    return Scenario.model_validate(payload)


def _normalize_node(node_cfg: Dict[str, Any]) -> Dict[str, Any]:
    node = {k: v for k, v in node_cfg.items() if k != "data"}
    data = node_cfg.get("data") or {}

    for key in ("label", "condition", "action", "responses", "branches"):
        if key in data and key not in node:
            node[key] = data[key]

    # single-body editor nodes
    content = data.get("content")
    if content and not node.get("responses"):
        node["responses"] = [{"kind": "text", "text": content}]

    # older canvases stored plain string options instead of branches
    options = data.get("options")
    if options and not node.get("branches"):
        node["branches"] = [{"label": str(opt), "kind": "button"} for opt in options]

    node["responses"] = [_normalize_response(r) for r in node.get("responses") or []]
    node["branches"] = [_normalize_branch(b) for b in node.get("branches") or []]

    settings = dict(node.get("settings") or {})
    if "isCvPoint" in settings and "isConversionPoint" not in settings:
        settings["isConversionPoint"] = settings.pop("isCvPoint")
    node["settings"] = settings

    if "type" in node and "kind" not in node:
        node["kind"] = node.pop("type")
    return node


def _normalize_response(resp: Any) -> Dict[str, Any]:
    if isinstance(resp, str):
        return {"kind": "text", "text": resp}
    out = dict(resp)
    if "type" in out and "kind" not in out:
        out["kind"] = out.pop("type")
    if out.get("kind") == "text" and "content" in out and "text" not in out:
        out["text"] = out.pop("content")
    if out.get("kind") == "image" and "imageUrl" not in out and "image_url" not in out:
        out["imageUrl"] = out.pop("content", None)
    return out


def _normalize_branch(branch: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(branch)
    if "type" in out and "kind" not in out:
        out["kind"] = out.pop("type")
    if "openInNewWindow" not in out and "newWindow" in out:
        out["openInNewWindow"] = out.pop("newWindow")
    return out


def _normalize_connection(conn: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(conn)
    for old, new in (("source", "sourceId"), ("target", "targetId"), ("handle", "sourceHandle")):
        if old in out and new not in out:
            out[new] = out.pop(old)
    return out

