"""Load and validate the YAML capture flow. Used by the composition root."""

import os
from pathlib import Path

import yaml

REQUIRED_NODES = ("unsaved", "awaiting_name", "awaiting_confirm", "saved")
VOCABULARY_KEYS = ("affirm", "deny")


def _repo_root() -> Path:
    """Return repo root (parent of src)."""
    return Path(__file__).resolve().parent.parent.parent


def get_flow_path() -> Path:
    """Return path to the capture flow YAML (FLOW_PATH env or flows/capture.yaml)."""
    override = os.environ.get("FLOW_PATH", "").strip()
    if override:
        return Path(override).resolve()
    return _repo_root() / "flows" / "capture.yaml"


def load_flow(path: Path | None = None) -> dict:
    """Read the flow YAML and return it as a dict. Raises ValueError on a malformed flow."""
    source = path if path is not None else get_flow_path()
    flow = yaml.safe_load(source.read_text(encoding="utf-8"))
    validate_flow(flow)
    return flow


def validate_flow(flow: object) -> None:
    if not isinstance(flow, dict):
        raise ValueError("Flow YAML must be a dict")
    nodes = flow.get("nodes")
    if not nodes:
        raise ValueError("Flow must have a non-empty 'nodes' list")
    if "start_node" not in flow:
        raise ValueError("Flow must have 'start_node'")
    messages = flow.setdefault("messages", {})
    if not isinstance(messages, dict):
        raise ValueError("Flow 'messages' must be a dict")

    node_ids = _node_ids(nodes)
    if flow["start_node"] not in node_ids:
        raise ValueError(f"start_node '{flow['start_node']}' must be a node id")
    missing = [n for n in REQUIRED_NODES if n not in node_ids]
    if missing:
        raise ValueError(f"Flow is missing nodes: {', '.join(missing)}")

    for node in nodes:
        _check_edges(node, node_ids, messages)

    vocabulary = flow.get("vocabulary") or {}
    for key in VOCABULARY_KEYS:
        if not vocabulary.get(key):
            raise ValueError(f"Flow vocabulary must list '{key}' words")


def _node_ids(nodes: list) -> set[str]:
    ids = set()
    for node in nodes:
        if not isinstance(node, dict) or not node.get("id"):
            raise ValueError("Every node must have 'id'")
        ids.add(node["id"])
    return ids


def _check_edges(node: dict, node_ids: set[str], messages: dict) -> None:
    nid = node["id"]
    events = set()
    for edge in node.get("edges") or []:
        if not isinstance(edge, dict) or not edge.get("event"):
            raise ValueError(f"Node '{nid}' has an edge without 'event'")
        event = edge["event"]
        if event in events:
            raise ValueError(f"Node '{nid}' has two '{event}' edges")
        events.add(event)
        target = edge.get("next")
        if target not in node_ids:
            raise ValueError(f"Node '{nid}' edge references unknown node '{target}'")
        unknown = [m for m in edge.get("messages") or [] if m not in messages]
        if unknown:
            raise ValueError(f"Node '{nid}' edge references unknown message '{unknown[0]}'")
