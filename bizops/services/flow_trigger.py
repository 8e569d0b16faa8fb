"""Flow trigger matching.

Checks whether an incoming message starts one of a store's active flows.
The first matching flow in priority order wins.
"""

from __future__ import annotations

from bizops.domain.flow import Flow, TriggerContext, TriggerType
from bizops.services.flow_text import normalize_text

# Intents with clear, substantive purpose: a welcome flow should not intercept
# these, the regular chat pipeline answers them instead.
SUBSTANTIVE_INTENTS = frozenset(
    {
        "product_search",
        "order_status",
        "size_info",
        "payment",
        "shipping",
        "complaint",
        "return_exchange",
        "table_reservation",
        "allergen_info",
        "menu_availability",
    }
)


def _matches_keywords(trigger_config: dict, normalized_message: str) -> bool:
    keywords = [normalize_text(str(k)) for k in trigger_config.get("keywords") or []]
    keywords = [k for k in keywords if k]
    if not keywords:
        return False

    if trigger_config.get("match_mode") == "all":
        return all(k in normalized_message for k in keywords)
    return any(k in normalized_message for k in keywords)


def matches_trigger(flow: Flow, normalized_message: str, context: TriggerContext) -> bool:
    """Check if a single flow's trigger matches the (normalized) message and context."""
    trigger_config = flow.trigger_config or {}

    if flow.trigger_type == TriggerType.KEYWORD:
        return _matches_keywords(trigger_config, normalized_message)

    if flow.trigger_type == TriggerType.NEW_CONVERSATION:
        if not context.is_new_conversation:
            return False
        return context.classified_intent not in SUBSTANTIVE_INTENTS

    if flow.trigger_type == TriggerType.BUTTON_CLICK:
        payload = trigger_config.get("payload")
        return bool(payload) and context.quick_reply_payload == payload

    if flow.trigger_type == TriggerType.INTENT_MATCH:
        intents = trigger_config.get("intents") or []
        return bool(context.classified_intent) and context.classified_intent in intents

    return False


def find_matching_flow(
    flows: list[Flow], message: str, context: TriggerContext
) -> Flow | None:
    """Return the first flow (lowest priority value) whose trigger matches."""
    normalized = normalize_text(message)
    for flow in sorted(flows, key=lambda f: f.priority):
        if matches_trigger(flow, normalized, context):
            return flow
    return None
