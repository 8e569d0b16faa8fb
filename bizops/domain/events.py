"""Domain events emitted by booking checks and flow runs."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from bizops.domain.models import ConflictEntry


class FlowTriggered(BaseModel):
    """Fired when an incoming message starts a flow."""

    flow_id: str
    conversation_id: str
    store_id: str
    log_id: str


class FlowCompleted(BaseModel):
    """Fired when a flow reaches a terminal node, runs off its graph or is cancelled."""

    flow_id: str
    conversation_id: str
    log_id: str | None = None
    exit_node_id: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    cancelled: bool = False


class ConversationEscalated(BaseModel):
    """Fired when a flow hands the conversation over to a human operator."""

    conversation_id: str
    flow_id: str


class BookingConflictDetected(BaseModel):
    """Fired when a booking mutation is rejected because the slot is taken."""

    store_id: str
    conflicts: list[ConflictEntry]
