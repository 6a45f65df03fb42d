"""Tests for the YAML capture flow loader."""

import pytest
import yaml

from api.flow_loader import get_flow_path, load_flow

VALID = """
start_node: unsaved
nodes:
  - id: unsaved
    edges:
      - {event: NOT_SAVED, next: awaiting_name, messages: [ask]}
  - id: awaiting_name
    edges:
      - {event: NAME_VALID, next: awaiting_confirm, messages: [ask]}
  - id: awaiting_confirm
    edges:
      - {event: AFFIRM, next: saved}
  - id: saved
    final: true
vocabulary:
  affirm: ["yes"]
  deny: ["no"]
messages:
  ask: "Your name?"
"""


def _write(tmp_path, text: str):
    path = tmp_path / "flow.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def _mutated(tmp_path, mutate):
    flow = yaml.safe_load(VALID)
    mutate(flow)
    return _write(tmp_path, yaml.safe_dump(flow))


def test_load_bundled_flow():
    path = get_flow_path()
    assert path.name == "capture.yaml"
    flow = load_flow(path)
    assert flow["start_node"] == "unsaved"
    node_ids = [n["id"] for n in flow["nodes"]]
    assert node_ids == ["unsaved", "awaiting_name", "awaiting_confirm", "saved"]
    assert "yes" in flow["vocabulary"]["affirm"]
    assert "no" in flow["vocabulary"]["deny"]


def test_flow_path_from_env(tmp_path, monkeypatch):
    path = _write(tmp_path, VALID)
    monkeypatch.setenv("FLOW_PATH", str(path))
    assert get_flow_path() == path.resolve()
    assert load_flow()["start_node"] == "unsaved"


def test_minimal_flow_is_valid(tmp_path):
    flow = load_flow(_write(tmp_path, VALID))
    assert flow["messages"]["ask"] == "Your name?"


def test_invalid_start_node(tmp_path):
    path = _mutated(tmp_path, lambda f: f.update(start_node="missing"))
    with pytest.raises(ValueError, match="start_node.*must be a node id"):
        load_flow(path)


def test_missing_required_node(tmp_path):
    path = _mutated(tmp_path, lambda f: f["nodes"].pop())
    with pytest.raises(ValueError):
        load_flow(path)


def test_edge_to_unknown_node(tmp_path):
    def mutate(flow):
        flow["nodes"][2]["edges"][0]["next"] = "nowhere"

    with pytest.raises(ValueError, match="unknown node 'nowhere'"):
        load_flow(_mutated(tmp_path, mutate))


def test_edge_with_unknown_message(tmp_path):
    def mutate(flow):
        flow["nodes"][0]["edges"][0]["messages"] = ["missing"]

    with pytest.raises(ValueError, match="unknown message 'missing'"):
        load_flow(_mutated(tmp_path, mutate))


def test_duplicate_event_on_one_node(tmp_path):
    def mutate(flow):
        flow["nodes"][2]["edges"].append({"event": "AFFIRM", "next": "saved"})

    with pytest.raises(ValueError, match="two 'AFFIRM' edges"):
        load_flow(_mutated(tmp_path, mutate))


def test_vocabulary_is_required(tmp_path):
    path = _mutated(tmp_path, lambda f: f["vocabulary"].update(deny=[]))
    with pytest.raises(ValueError, match="deny"):
        load_flow(path)


def test_not_a_mapping(tmp_path):
    with pytest.raises(ValueError, match="must be a dict"):
        load_flow(_write(tmp_path, "- just\n- a list\n"))
