"""Handlers that keep flow stats, execution logs and the conflict audit current."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from bizops.domain.bus import EventBus
from bizops.domain.events import (
    BookingConflictDetected,
    ConversationEscalated,
    FlowCompleted,
    FlowTriggered,
)
from bizops.repos.memory import (
    ConflictAuditRepository,
    ConversationRepository,
    FlowExecutionLogRepository,
    FlowRepository,
)

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Wires domain-event handlers to the bus with access to the repositories."""

    def __init__(
        self,
        bus: EventBus,
        flow_repo: FlowRepository,
        log_repo: FlowExecutionLogRepository,
        conversation_repo: ConversationRepository,
        audit_repo: ConflictAuditRepository,
    ) -> None:
        self.bus = bus
        self.flow_repo = flow_repo
        self.log_repo = log_repo
        self.conversation_repo = conversation_repo
        self.audit_repo = audit_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(FlowTriggered, self.on_flow_triggered)
        self.bus.subscribe(FlowCompleted, self.on_flow_completed)
        self.bus.subscribe(ConversationEscalated, self.on_conversation_escalated)
        self.bus.subscribe(BookingConflictDetected, self.on_booking_conflict)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_flow_triggered(self, event: FlowTriggered) -> None:
        flow = self.flow_repo.get(event.flow_id)
        if flow is None:
            return

        flow.times_triggered += 1
        flow.last_triggered_at = datetime.now(timezone.utc)
        logger.info("Flow %s triggered in conversation %s", flow.id, event.conversation_id)

    def on_flow_completed(self, event: FlowCompleted) -> None:
        # 1. Close the execution log
        log = self.log_repo.get(event.log_id) if event.log_id else None
        if log is not None:
            log.status = "cancelled" if event.cancelled else "completed"
            log.completed_at = datetime.now(timezone.utc)
            log.variables_collected = {
                k: v for k, v in event.variables.items() if not k.startswith("_")
            }
            log.exit_node_id = event.exit_node_id

        # 2. Only runs that finished on their own count as completions
        if event.cancelled:
            return
        flow = self.flow_repo.get(event.flow_id)
        if flow is not None:
            flow.times_completed += 1

    def on_conversation_escalated(self, event: ConversationEscalated) -> None:
        conversation = self.conversation_repo.get(event.conversation_id)
        if conversation is None:
            return

        conversation.status = "escalated"
        conversation.escalated_at = datetime.now(timezone.utc)
        logger.info(
            "Conversation %s escalated to an operator by flow %s",
            event.conversation_id,
            event.flow_id,
        )

    def on_booking_conflict(self, event: BookingConflictDetected) -> None:
        self.audit_repo.add(event.store_id, event.conflicts)
        logger.warning(
            "Rejected booking in store %s: %s",
            event.store_id,
            "; ".join(c.describe() for c in event.conflicts),
        )
