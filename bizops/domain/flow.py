"""Flow graph model for the conversational automation builder.

Flows are stored as JSON node/edge graphs (the shape the visual editor
produces).  Each node carries a type-specific ``config``; the ten config
variants form a closed union discriminated on ``type``.  At runtime the flow
executor walks the graph, sending messages and collecting variables from the
customer.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bizops.errors import FlowGraphError

DEFAULT_HANDOFF_MESSAGE = "Та түр хүлээнэ үү, оператор тантай холбогдоно."


class NodeType(StrEnum):
    TRIGGER = "trigger"
    SEND_MESSAGE = "send_message"
    ASK_QUESTION = "ask_question"
    BUTTON_CHOICE = "button_choice"
    CONDITION = "condition"
    API_ACTION = "api_action"
    SHOW_ITEMS = "show_items"
    HANDOFF = "handoff"
    DELAY = "delay"
    END = "end"


TERMINAL_NODE_TYPES = frozenset({NodeType.HANDOFF, NodeType.END})


class ValidationRule(StrEnum):
    TEXT = "text"
    PHONE = "phone"
    EMAIL = "email"
    NUMBER = "number"
    DATE = "date"


class ConditionOperator(StrEnum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EXISTS = "exists"


class ApiActionType(StrEnum):
    CREATE_ORDER = "create_order"
    CREATE_APPOINTMENT = "create_appointment"
    SEARCH_PRODUCTS = "search_products"
    SEARCH_SERVICES = "search_services"
    LOOKUP_CUSTOMER = "lookup_customer"
    WEBHOOK = "webhook"


class ItemSource(StrEnum):
    PRODUCTS = "products"
    SERVICES = "services"
    VARIABLE = "variable"


class DisplayFormat(StrEnum):
    LIST = "list"
    CARDS = "cards"


class TriggerType(StrEnum):
    KEYWORD = "keyword"
    NEW_CONVERSATION = "new_conversation"
    BUTTON_CLICK = "button_click"
    INTENT_MATCH = "intent_match"


class FlowStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Per-node config
# ---------------------------------------------------------------------------


class TriggerConfig(BaseModel):
    type: Literal["trigger"] = "trigger"


class SendMessageConfig(BaseModel):
    type: Literal["send_message"] = "send_message"
    text: str = ""  # supports {{variable}} interpolation
    delay_ms: int | None = None


class AskQuestionConfig(BaseModel):
    type: Literal["ask_question"] = "ask_question"
    question_text: str = ""
    variable_name: str = "answer"
    validation: ValidationRule | None = ValidationRule.TEXT
    error_message: str | None = None


class ButtonOption(BaseModel):
    label: str
    value: str


def _default_buttons() -> list[ButtonOption]:
    return [
        ButtonOption(label="Сонголт 1", value="option_1"),
        ButtonOption(label="Сонголт 2", value="option_2"),
    ]


class ButtonChoiceConfig(BaseModel):
    type: Literal["button_choice"] = "button_choice"
    question_text: str = ""
    variable_name: str = "choice"
    buttons: list[ButtonOption] = Field(default_factory=_default_buttons)


class ConditionRule(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    variable: str = ""
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: str = ""
    next_node_id: str = ""


class ConditionConfig(BaseModel):
    type: Literal["condition"] = "condition"
    conditions: list[ConditionRule] = Field(default_factory=lambda: [ConditionRule()])
    default_node_id: str = ""


class ApiActionConfig(BaseModel):
    type: Literal["api_action"] = "api_action"
    action_type: ApiActionType = ApiActionType.CREATE_ORDER
    action_config: dict[str, Any] = Field(default_factory=dict)


class ShowItemsConfig(BaseModel):
    type: Literal["show_items"] = "show_items"
    source: ItemSource = ItemSource.PRODUCTS
    variable_name: str | None = None
    filter_category: str | None = None  # supports {{variable}}
    max_items: int = 8
    display_format: DisplayFormat = DisplayFormat.LIST
    selection_variable: str | None = None  # if set, waits for a selection


class HandoffConfig(BaseModel):
    type: Literal["handoff"] = "handoff"
    message: str | None = DEFAULT_HANDOFF_MESSAGE


class DelayConfig(BaseModel):
    type: Literal["delay"] = "delay"
    seconds: int = 2
    typing_indicator: bool = True


class EndConfig(BaseModel):
    type: Literal["end"] = "end"
    message: str | None = ""


NodeConfig = Annotated[
    Union[
        TriggerConfig,
        SendMessageConfig,
        AskQuestionConfig,
        ButtonChoiceConfig,
        ConditionConfig,
        ApiActionConfig,
        ShowItemsConfig,
        HandoffConfig,
        DelayConfig,
        EndConfig,
    ],
    Field(discriminator="type"),
]

_CONFIG_MODELS: dict[str, type[BaseModel]] = {
    NodeType.TRIGGER: TriggerConfig,
    NodeType.SEND_MESSAGE: SendMessageConfig,
    NodeType.ASK_QUESTION: AskQuestionConfig,
    NodeType.BUTTON_CHOICE: ButtonChoiceConfig,
    NodeType.CONDITION: ConditionConfig,
    NodeType.API_ACTION: ApiActionConfig,
    NodeType.SHOW_ITEMS: ShowItemsConfig,
    NodeType.HANDOFF: HandoffConfig,
    NodeType.DELAY: DelayConfig,
    NodeType.END: EndConfig,
}

_NODE_LABELS = {
    NodeType.TRIGGER: "Эхлэл",
    NodeType.SEND_MESSAGE: "Мессеж",
    NodeType.ASK_QUESTION: "Асуулт",
    NodeType.BUTTON_CHOICE: "Товч",
    NodeType.CONDITION: "Нөхцөл",
    NodeType.API_ACTION: "Үйлдэл",
    NodeType.SHOW_ITEMS: "Жагсаалт",
    NodeType.HANDOFF: "Шилжих",
    NodeType.DELAY: "Хүлээх",
    NodeType.END: "Төгсгөл",
}


def default_config(node_type: str) -> dict[str, Any]:
    """Return the minimal valid config for a newly created node.

    Unknown node types get an empty dict so the editor can add new node
    types before the backend knows about them.
    """
    model = _CONFIG_MODELS.get(node_type)
    if model is None:
        return {}
    return model().model_dump(mode="json", exclude_none=True)


def default_label(node_type: str) -> str:
    return _NODE_LABELS.get(node_type, node_type)


# ---------------------------------------------------------------------------
# Graph types
# ---------------------------------------------------------------------------


class Position(BaseModel):
    x: float = 0
    y: float = 0


class Viewport(BaseModel):
    x: float = 0
    y: float = 0
    zoom: float = 1


class NodeData(BaseModel):
    label: str = ""
    config: NodeConfig


class FlowNode(BaseModel):
    id: str
    type: NodeType
    position: Position = Field(default_factory=Position)
    data: NodeData

    @model_validator(mode="before")
    @classmethod
    def _config_type_from_node(cls, values: Any) -> Any:
        # The editor does not always repeat the node type inside its config
        if isinstance(values, dict):
            data = values.get("data")
            if isinstance(data, dict):
                config = data.get("config")
                if isinstance(config, dict) and "type" not in config:
                    values = {
                        **values,
                        "data": {**data, "config": {**config, "type": values.get("type")}},
                    }
        return values

    @model_validator(mode="after")
    def _config_matches_type(self) -> FlowNode:
        if self.data.config.type != self.type:
            raise ValueError(
                f"node {self.id} has type {self.type} but a {self.data.config.type} config"
            )
        return self

    @property
    def config(self) -> NodeConfig:
        return self.data.config


class FlowEdge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    source: str
    target: str
    source_handle: str | None = Field(default=None, alias="sourceHandle")
    label: str | None = None


class Flow(BaseModel):
    id: str = Field(default_factory=_new_id)
    store_id: str
    name: str
    description: str | None = None
    status: FlowStatus = FlowStatus.DRAFT
    is_template: bool = False
    business_type: str | None = None
    trigger_type: TriggerType = TriggerType.KEYWORD
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    nodes: list[FlowNode] = Field(default_factory=list)
    edges: list[FlowEdge] = Field(default_factory=list)
    viewport: Viewport = Field(default_factory=Viewport)
    priority: int = 0
    times_triggered: int = 0
    times_completed: int = 0
    last_triggered_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def node(self, node_id: str) -> FlowNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def trigger_node(self) -> FlowNode | None:
        for node in self.nodes:
            if node.type == NodeType.TRIGGER:
                return node
        return None

    def outgoing(self, node_id: str) -> list[FlowEdge]:
        return [e for e in self.edges if e.source == node_id]

    def next_node_id(self, node_id: str) -> str | None:
        """Follow the node's plain edge, or its first edge if every edge has a handle."""
        edges = self.outgoing(node_id)
        for edge in edges:
            if not edge.source_handle:
                return edge.target
        return edges[0].target if edges else None

    def handle_target(self, node_id: str, handle: str) -> str | None:
        for edge in self.outgoing(node_id):
            if edge.source_handle == handle:
                return edge.target
        return None

    def validate_graph(self) -> list[str]:
        """Return a list of structural problems; empty when the graph is sound."""
        problems: list[str] = []
        node_ids = {n.id for n in self.nodes}

        triggers = [n for n in self.nodes if n.type == NodeType.TRIGGER]
        if len(triggers) != 1:
            problems.append(f"expected exactly one trigger node, found {len(triggers)}")

        for edge in self.edges:
            if edge.source not in node_ids:
                problems.append(f"edge {edge.id} starts at unknown node {edge.source}")
            if edge.target not in node_ids:
                problems.append(f"edge {edge.id} points to unknown node {edge.target}")

        for trigger in triggers:
            if any(e.target == trigger.id for e in self.edges):
                problems.append(f"trigger node {trigger.id} has incoming edges")
            if len(self.outgoing(trigger.id)) != 1:
                problems.append(f"trigger node {trigger.id} must have exactly one outgoing edge")

        for node in self.nodes:
            if node.type in TERMINAL_NODE_TYPES and self.outgoing(node.id):
                problems.append(f"{node.type} node {node.id} cannot have outgoing edges")

        return problems

    def ensure_valid(self) -> None:
        problems = self.validate_graph()
        if problems:
            raise FlowGraphError(problems)


# ---------------------------------------------------------------------------
# Runtime state (stored on the conversation while a flow is running)
# ---------------------------------------------------------------------------


class FlowState(BaseModel):
    flow_id: str
    current_node_id: str
    variables: dict[str, Any] = Field(default_factory=dict)
    waiting_for_input: bool = False
    visited_count: int = 0
    started_at: datetime = Field(default_factory=_utcnow)
    log_id: str | None = None


class QuickReply(BaseModel):
    title: str
    payload: str


class ProductCard(BaseModel):
    id: str
    name: str
    price: float
    description: str | None = None
    image_url: str | None = None


class FlowMessage(BaseModel):
    type: Literal["text", "quick_replies", "product_cards"] = "text"
    text: str | None = None
    quick_replies: list[QuickReply] | None = None
    products: list[ProductCard] | None = None


class FlowStepResult(BaseModel):
    messages: list[FlowMessage] = Field(default_factory=list)
    new_state: FlowState | None = None  # None once the flow has completed
    completed: bool = False
    escalated: bool = False
    exit_node_id: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)  # final values on completion


class TriggerContext(BaseModel):
    is_new_conversation: bool = False
    quick_reply_payload: str | None = None
    classified_intent: str | None = None


class FlowExecutionLog(BaseModel):
    id: str = Field(default_factory=_new_id)
    store_id: str
    flow_id: str
    conversation_id: str
    status: Literal["running", "completed", "cancelled"] = "running"
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None
    variables_collected: dict[str, Any] = Field(default_factory=dict)
    exit_node_id: str | None = None


class Conversation(BaseModel):
    id: str = Field(default_factory=_new_id)
    store_id: str
    status: Literal["active", "escalated", "closed"] = "active"
    escalated_at: datetime | None = None
    flow_state: FlowState | None = None
    message_count: int = 0


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class ChatMessageRequest(BaseModel):
    store_id: str
    text: str = ""
    quick_reply_payload: str | None = None
    classified_intent: str | None = None


class ChatMessageResponse(BaseModel):
    handled: bool
    messages: list[FlowMessage] = Field(default_factory=list)
    completed: bool = False
    waiting_for_input: bool = False
