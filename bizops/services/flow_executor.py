"""Flow executor: walks the node graph and generates responses.

Called by the conversation service while a flow is active.  Nodes are
processed in order, pausing at nodes that need user input (ask_question,
button_choice, show_items with a selection variable) and stopping at
handoff/end nodes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from bizops import config
from bizops.domain.flow import (
    DEFAULT_HANDOFF_MESSAGE,
    ApiActionConfig,
    AskQuestionConfig,
    ButtonChoiceConfig,
    ConditionConfig,
    ConditionOperator,
    DelayConfig,
    EndConfig,
    Flow,
    FlowMessage,
    FlowNode,
    FlowState,
    FlowStepResult,
    HandoffConfig,
    QuickReply,
    SendMessageConfig,
    ShowItemsConfig,
    TriggerConfig,
)
from bizops.services.flow_actions import ActionRunner, render_items
from bizops.services.flow_text import (
    default_validation_error,
    interpolate_variables,
    validate_input,
)

logger = logging.getLogger(__name__)

LAST_SHOWN_ITEMS = "_last_shown_items"
SELECT_FROM_LIST_ERROR = "Жагсаалтаас дугаар эсвэл нэрээр сонгоно уу."
FLOW_ERROR_PREFIX = "Уучлаарай, алдаа гарлаа."


@dataclass
class InputOutcome:
    variables: dict[str, Any] = field(default_factory=dict)
    selected_index: int | None = None
    error: str | None = None


def _text(text: str) -> FlowMessage:
    return FlowMessage(type="text", text=text)


def _to_number(raw: str) -> float | None:
    try:
        return float(raw)
    except ValueError:
        return None


def _parse_choice_number(message: str) -> int | None:
    try:
        return int(message)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------


def match_button(buttons_config: ButtonChoiceConfig, message: str) -> int | None:
    """Index of the button the user picked, or None.

    Tries, in order: exact label/value, the quick-reply payload, a 1-based
    number, then a partial label match.
    """
    msg = message.strip().lower()
    buttons = buttons_config.buttons

    for i, button in enumerate(buttons):
        if msg in (button.label.lower(), button.value.lower()):
            return i

    for i, button in enumerate(buttons):
        if msg == f"flow_btn_{i}_{button.value}".lower():
            return i

    number = _parse_choice_number(msg)
    if number is not None and 0 < number <= len(buttons):
        return number - 1

    if msg:
        for i, button in enumerate(buttons):
            label = button.label.lower()
            if msg in label or label in msg:
                return i
    return None


def process_input(node: FlowNode, message: str, variables: dict[str, Any]) -> InputOutcome:
    msg = message.strip()
    node_config = node.config

    if isinstance(node_config, AskQuestionConfig):
        if not validate_input(msg, node_config.validation):
            return InputOutcome(
                error=node_config.error_message
                or default_validation_error(node_config.validation)
            )
        return InputOutcome(variables={node_config.variable_name: msg})

    if isinstance(node_config, ButtonChoiceConfig):
        index = match_button(node_config, msg)
        if index is None:
            options = "\n".join(
                f"{i}. {b.label}" for i, b in enumerate(node_config.buttons, start=1)
            )
            return InputOutcome(error=f"Дараах сонголтуудаас сонгоно уу:\n{options}")
        chosen = node_config.buttons[index]
        return InputOutcome(
            variables={node_config.variable_name: chosen.value}, selected_index=index
        )

    if isinstance(node_config, ShowItemsConfig) and node_config.selection_variable:
        items = variables.get(LAST_SHOWN_ITEMS) or []
        number = _parse_choice_number(msg)
        if number is not None and 0 < number <= len(items):
            return InputOutcome(
                variables={node_config.selection_variable: items[number - 1].get("name")}
            )
        if msg:
            for item in items:
                name = str(item.get("name", ""))
                if msg.lower() in name.lower():
                    return InputOutcome(variables={node_config.selection_variable: name})
        return InputOutcome(error=SELECT_FROM_LIST_ERROR)

    return InputOutcome()


# ---------------------------------------------------------------------------
# Branching
# ---------------------------------------------------------------------------


def condition_matches(
    operator: ConditionOperator, value: Any, expected: str
) -> bool:
    """Evaluate one condition; an absent variable never matches."""
    if value is None or str(value) == "":
        return False
    actual = str(value)

    if operator == ConditionOperator.EXISTS:
        return True
    if operator == ConditionOperator.EQUALS:
        return actual.lower() == expected.lower()
    if operator == ConditionOperator.CONTAINS:
        return expected.lower() in actual.lower()
    if operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left, right = _to_number(actual), _to_number(expected)
        if left is None or right is None:
            return False
        if operator == ConditionOperator.GREATER_THAN:
            return left > right
        return left < right
    return False


def evaluate_condition(
    condition_config: ConditionConfig,
    variables: dict[str, Any],
    flow: Flow,
    node_id: str,
) -> str | None:
    """Target node of the first matching condition, else of the default branch."""
    for index, cond in enumerate(condition_config.conditions):
        if not condition_matches(cond.operator, variables.get(cond.variable), cond.value):
            continue
        target = cond.next_node_id or flow.handle_target(node_id, f"condition_{index}")
        if target:
            return target

    return condition_config.default_node_id or flow.handle_target(node_id, "default")


def resolve_button_edge(flow: Flow, node: FlowNode, index: int | None) -> str | None:
    if index is not None:
        target = flow.handle_target(node.id, f"button_{index}")
        if target:
            return target
    return flow.next_node_id(node.id)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


def cancel_flow(state: FlowState) -> FlowStepResult:
    """Abort a running flow; nothing beyond what was already sent happens."""
    logger.info("Flow %s cancelled at node %s", state.flow_id, state.current_node_id)
    return FlowStepResult(
        messages=[],
        new_state=None,
        completed=True,
        exit_node_id=state.current_node_id,
        variables=dict(state.variables),
    )


def flow_error(state: FlowState, reason: str) -> FlowStepResult:
    logger.error("Flow %s failed at node %s: %s", state.flow_id, state.current_node_id, reason)
    return FlowStepResult(
        messages=[_text(f"{FLOW_ERROR_PREFIX} {reason}")],
        new_state=None,
        completed=True,
        exit_node_id=state.current_node_id,
        variables=dict(state.variables),
    )


class FlowExecutor:
    """Advances flow states one user message at a time."""

    def __init__(self, actions: ActionRunner, max_nodes: int | None = None) -> None:
        self.actions = actions
        self.max_nodes = max_nodes or config.FLOW_MAX_NODES

    async def start(
        self, flow: Flow, store_id: str, log_id: str | None = None
    ) -> FlowStepResult:
        """Begin a flow at its trigger node and run until input is needed."""
        trigger = flow.trigger_node()
        if trigger is None:
            logger.warning("Flow %s has no trigger node", flow.id)
            return FlowStepResult(messages=[], new_state=None, completed=True)

        state = FlowState(flow_id=flow.id, current_node_id=trigger.id, log_id=log_id)
        return await self._walk(
            flow, state, flow.next_node_id(trigger.id), dict(state.variables), store_id
        )

    async def step(
        self, state: FlowState, message: str, flow: Flow, store_id: str
    ) -> FlowStepResult:
        """Process the user's message, then advance through non-input nodes."""
        variables = dict(state.variables)
        current_id: str | None = state.current_node_id

        if state.waiting_for_input:
            node = flow.node(state.current_node_id)
            if node is None:
                return flow_error(state, "Node not found")

            outcome = process_input(node, message, variables)
            if outcome.error:
                # Validation failed: re-ask without advancing
                return FlowStepResult(
                    messages=[_text(outcome.error)],
                    new_state=state.model_copy(update={"variables": variables}),
                    completed=False,
                )

            variables.update(outcome.variables)
            if isinstance(node.config, ButtonChoiceConfig):
                current_id = resolve_button_edge(flow, node, outcome.selected_index)
            else:
                current_id = flow.next_node_id(node.id)

        return await self._walk(flow, state, current_id, variables, store_id)

    def _suspend(
        self,
        state: FlowState,
        node_id: str,
        variables: dict[str, Any],
        messages: list[FlowMessage],
        visited: int,
    ) -> FlowStepResult:
        return FlowStepResult(
            messages=messages,
            new_state=state.model_copy(
                update={
                    "current_node_id": node_id,
                    "variables": variables,
                    "waiting_for_input": True,
                    "visited_count": state.visited_count + visited,
                }
            ),
            completed=False,
        )

    async def _walk(
        self,
        flow: Flow,
        state: FlowState,
        current_id: str | None,
        variables: dict[str, Any],
        store_id: str,
    ) -> FlowStepResult:
        messages: list[FlowMessage] = []
        visited = 0
        last_id = state.current_node_id

        while current_id and visited < self.max_nodes:
            node = flow.node(current_id)
            if node is None:
                logger.warning("Flow %s points to missing node %s", flow.id, current_id)
                break
            visited += 1
            last_id = node.id
            node_config = node.config

            if isinstance(node_config, TriggerConfig):
                current_id = flow.next_node_id(node.id)

            elif isinstance(node_config, SendMessageConfig):
                messages.append(_text(interpolate_variables(node_config.text, variables)))
                current_id = flow.next_node_id(node.id)

            elif isinstance(node_config, AskQuestionConfig):
                messages.append(
                    _text(interpolate_variables(node_config.question_text, variables))
                )
                return self._suspend(state, node.id, variables, messages, visited)

            elif isinstance(node_config, ButtonChoiceConfig):
                messages.append(
                    FlowMessage(
                        type="quick_replies",
                        text=interpolate_variables(node_config.question_text, variables),
                        quick_replies=[
                            QuickReply(title=b.label, payload=f"flow_btn_{i}_{b.value}")
                            for i, b in enumerate(node_config.buttons)
                        ],
                    )
                )
                return self._suspend(state, node.id, variables, messages, visited)

            elif isinstance(node_config, ConditionConfig):
                current_id = evaluate_condition(node_config, variables, flow, node.id)

            elif isinstance(node_config, ApiActionConfig):
                variables.update(await self.actions.run(node_config, variables, store_id))
                current_id = flow.next_node_id(node.id)

            elif isinstance(node_config, ShowItemsConfig):
                items = self.actions.load_items(node_config, variables, store_id)
                if items:
                    variables[LAST_SHOWN_ITEMS] = items
                messages.extend(render_items(node_config, items))
                if node_config.selection_variable and items:
                    return self._suspend(state, node.id, variables, messages, visited)
                current_id = flow.next_node_id(node.id)

            elif isinstance(node_config, DelayConfig):
                # The pause itself (and any typing indicator) is the channel's job
                current_id = flow.next_node_id(node.id)

            elif isinstance(node_config, HandoffConfig):
                text = node_config.message or DEFAULT_HANDOFF_MESSAGE
                messages.append(_text(interpolate_variables(text, variables)))
                return FlowStepResult(
                    messages=messages,
                    new_state=None,
                    completed=True,
                    escalated=True,
                    exit_node_id=node.id,
                    variables=variables,
                )

            elif isinstance(node_config, EndConfig):
                if node_config.message:
                    messages.append(_text(interpolate_variables(node_config.message, variables)))
                return FlowStepResult(
                    messages=messages,
                    new_state=None,
                    completed=True,
                    exit_node_id=node.id,
                    variables=variables,
                )

            else:
                raise TypeError(f"Unhandled node config {type(node_config).__name__}")

        if not current_id or flow.node(current_id) is None:
            # Ran off the graph without reaching an end node
            return FlowStepResult(
                messages=messages,
                new_state=None,
                completed=True,
                exit_node_id=last_id,
                variables=variables,
            )

        logger.warning(
            "Flow %s hit the %d-node limit at node %s", flow.id, self.max_nodes, current_id
        )
        return FlowStepResult(
            messages=messages,
            new_state=state.model_copy(
                update={
                    "current_node_id": current_id,
                    "variables": variables,
                    "waiting_for_input": False,
                    "visited_count": state.visited_count + visited,
                }
            ),
            completed=False,
        )
