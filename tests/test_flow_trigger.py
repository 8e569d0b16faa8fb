"""Tests for flow trigger matching."""

from __future__ import annotations

from bizops.domain.flow import Flow, TriggerContext
from bizops.services.flow_trigger import find_matching_flow


def _flow(name: str, trigger_type: str, trigger_config: dict, priority: int = 0) -> Flow:
    return Flow(
        store_id="store_1",
        name=name,
        trigger_type=trigger_type,
        trigger_config=trigger_config,
        priority=priority,
    )


def test_keyword_any_matches_inside_words():
    flow = _flow("booking", "keyword", {"keywords": ["цаг", "Booking"], "match_mode": "any"})

    assert find_matching_flow([flow], "Маргааш цаг авмаар байна!", TriggerContext()) is flow
    assert find_matching_flow([flow], "BOOKINGS open?", TriggerContext()) is flow
    assert find_matching_flow([flow], "Сайн байна уу", TriggerContext()) is None


def test_keyword_all_requires_every_keyword():
    flow = _flow("order", "keyword", {"keywords": ["цамц", "захиалга"], "match_mode": "all"})

    assert find_matching_flow([flow], "Цамц захиалга өгөх", TriggerContext()) is flow
    assert find_matching_flow([flow], "Цамц байна уу", TriggerContext()) is None


def test_keyword_without_keywords_never_matches():
    flow = _flow("empty", "keyword", {"keywords": ["", "  "]})

    assert find_matching_flow([flow], "anything", TriggerContext()) is None


def test_new_conversation_yields_to_substantive_intents():
    flow = _flow("welcome", "new_conversation", {})

    assert find_matching_flow([flow], "Сайн уу", TriggerContext(is_new_conversation=True)) is flow
    assert find_matching_flow([flow], "Сайн уу", TriggerContext(is_new_conversation=False)) is None
    assert (
        find_matching_flow(
            [flow],
            "Захиалга хаана явна?",
            TriggerContext(is_new_conversation=True, classified_intent="order_status"),
        )
        is None
    )


def test_button_click_matches_payload():
    flow = _flow("menu", "button_click", {"payload": "SHOW_MENU"})

    assert find_matching_flow([flow], "", TriggerContext(quick_reply_payload="SHOW_MENU")) is flow
    assert find_matching_flow([flow], "", TriggerContext(quick_reply_payload="OTHER")) is None


def test_intent_match():
    flow = _flow("reserve", "intent_match", {"intents": ["table_reservation"]})

    assert (
        find_matching_flow([flow], "ширээ", TriggerContext(classified_intent="table_reservation"))
        is flow
    )
    assert find_matching_flow([flow], "ширээ", TriggerContext()) is None


def test_lowest_priority_value_wins():
    general = _flow("general", "keyword", {"keywords": ["цаг"]}, priority=5)
    specific = _flow("specific", "keyword", {"keywords": ["цаг"]}, priority=1)

    assert find_matching_flow([general, specific], "цаг", TriggerContext()) is specific
