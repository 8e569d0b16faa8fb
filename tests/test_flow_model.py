"""Tests for the flow graph model and node default configs."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from bizops.domain.flow import (
    DEFAULT_HANDOFF_MESSAGE,
    AskQuestionConfig,
    ConditionConfig,
    Flow,
    FlowEdge,
    FlowNode,
    NodeType,
    SendMessageConfig,
    default_config,
    default_label,
)
from bizops.errors import FlowGraphError


def _node(node_id: str, node_type: str, **config) -> dict:
    return {"id": node_id, "type": node_type, "data": {"label": node_id, "config": config}}


def _edge(source: str, target: str, handle: str | None = None) -> dict:
    edge = {"id": f"{source}-{target}", "source": source, "target": target}
    if handle:
        edge["sourceHandle"] = handle
    return edge


def _flow(nodes: list[dict], edges: list[dict]) -> Flow:
    return Flow.model_validate(
        {"store_id": "store_1", "name": "Test flow", "nodes": nodes, "edges": edges}
    )


# ---------------------------------------------------------------------------
# default_config
# ---------------------------------------------------------------------------


def test_default_config_for_every_node_type():
    """Each of the ten node types has a config tagged with its own type."""
    for node_type in NodeType:
        config = default_config(node_type)
        assert config["type"] == node_type.value


def test_default_config_values():
    assert default_config("send_message") == {"type": "send_message", "text": ""}
    assert default_config("ask_question") == {
        "type": "ask_question",
        "question_text": "",
        "variable_name": "answer",
        "validation": "text",
    }
    assert default_config("button_choice")["buttons"] == [
        {"label": "Сонголт 1", "value": "option_1"},
        {"label": "Сонголт 2", "value": "option_2"},
    ]
    assert default_config("condition") == {
        "type": "condition",
        "conditions": [
            {"variable": "", "operator": "equals", "value": "", "next_node_id": ""}
        ],
        "default_node_id": "",
    }
    assert default_config("api_action") == {
        "type": "api_action",
        "action_type": "create_order",
        "action_config": {},
    }
    assert default_config("show_items") == {
        "type": "show_items",
        "source": "products",
        "max_items": 8,
        "display_format": "list",
    }
    assert default_config("handoff") == {
        "type": "handoff",
        "message": DEFAULT_HANDOFF_MESSAGE,
    }
    assert default_config("delay") == {"type": "delay", "seconds": 2, "typing_indicator": True}
    assert default_config("end") == {"type": "end", "message": ""}
    assert default_config("trigger") == {"type": "trigger"}


def test_default_config_for_unknown_type_is_empty():
    assert default_config("carousel") == {}
    assert default_config("") == {}


def test_default_configs_are_independent_copies():
    first = default_config("button_choice")
    first["buttons"].append({"label": "extra", "value": "extra"})

    assert len(default_config("button_choice")["buttons"]) == 2


def test_default_label():
    assert default_label("end") == "Төгсгөл"
    assert default_label("carousel") == "carousel"


# ---------------------------------------------------------------------------
# Node parsing
# ---------------------------------------------------------------------------


def test_node_config_type_is_taken_from_node_type():
    node = FlowNode.model_validate(_node("n1", "send_message", text="Сайн байна уу"))

    assert isinstance(node.config, SendMessageConfig)
    assert node.config.text == "Сайн байна уу"


def test_node_with_mismatched_config_is_rejected():
    raw = _node("n1", "end")
    raw["data"]["config"] = {"type": "send_message", "text": "hi"}

    with pytest.raises(ValidationError):
        FlowNode.model_validate(raw)


def test_node_with_unknown_type_is_rejected():
    with pytest.raises(ValidationError):
        FlowNode.model_validate(_node("n1", "carousel"))


def test_partial_config_gets_defaults():
    node = FlowNode.model_validate(_node("q", "ask_question", question_text="Нэр?"))

    assert isinstance(node.config, AskQuestionConfig)
    assert node.config.variable_name == "answer"


def test_condition_value_accepts_numbers():
    node = FlowNode.model_validate(
        _node("c", "condition", conditions=[{"variable": "age", "operator": "greater_than", "value": 18}])
    )

    assert isinstance(node.config, ConditionConfig)
    assert node.config.conditions[0].value == "18"


def test_edge_source_handle_alias():
    edge = FlowEdge.model_validate(_edge("a", "b", "button_0"))

    assert edge.source_handle == "button_0"
    assert edge.model_dump(by_alias=True)["sourceHandle"] == "button_0"


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


def test_next_node_prefers_plain_edge():
    flow = _flow(
        [_node("a", "button_choice"), _node("b", "end"), _node("c", "end")],
        [_edge("a", "b", "button_0"), _edge("a", "c")],
    )

    assert flow.next_node_id("a") == "c"
    assert flow.handle_target("a", "button_0") == "b"
    assert flow.handle_target("a", "button_1") is None


def test_next_node_falls_back_to_first_handled_edge():
    flow = _flow(
        [_node("a", "button_choice"), _node("b", "end")],
        [_edge("a", "b", "button_0")],
    )

    assert flow.next_node_id("a") == "b"
    assert flow.next_node_id("b") is None


# ---------------------------------------------------------------------------
# Graph validation
# ---------------------------------------------------------------------------


def test_valid_graph_has_no_problems():
    flow = _flow(
        [_node("t", "trigger"), _node("m", "send_message", text="hi"), _node("e", "end")],
        [_edge("t", "m"), _edge("m", "e")],
    )

    assert flow.validate_graph() == []
    flow.ensure_valid()


def test_graph_without_trigger():
    flow = _flow([_node("e", "end")], [])

    problems = flow.validate_graph()

    assert any("trigger" in p for p in problems)


def test_graph_with_dangling_edge_and_terminal_successor():
    flow = _flow(
        [_node("t", "trigger"), _node("e", "end"), _node("m", "send_message")],
        [_edge("t", "e"), _edge("e", "m"), _edge("m", "ghost")],
    )

    problems = flow.validate_graph()

    assert any("ghost" in p for p in problems)
    assert any("cannot have outgoing edges" in p for p in problems)


def test_trigger_with_incoming_edge():
    flow = _flow(
        [_node("t", "trigger"), _node("m", "send_message")],
        [_edge("t", "m"), _edge("m", "t")],
    )

    assert any("incoming" in p for p in flow.validate_graph())


def test_ensure_valid_raises_with_problems():
    flow = _flow([_node("t", "trigger")], [])

    with pytest.raises(FlowGraphError) as exc_info:
        flow.ensure_valid()

    assert exc_info.value.problems == flow.validate_graph()
