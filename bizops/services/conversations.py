"""Routes incoming chat messages into flows and keeps per-conversation state."""

from __future__ import annotations

import logging

from bizops.domain.bus import EventBus
from bizops.domain.events import ConversationEscalated, FlowCompleted, FlowTriggered
from bizops.domain.flow import (
    Conversation,
    FlowExecutionLog,
    FlowStepResult,
    TriggerContext,
)
from bizops.repos.memory import (
    ConversationRepository,
    FlowExecutionLogRepository,
    FlowRepository,
)
from bizops.services.flow_executor import FlowExecutor, cancel_flow
from bizops.services.flow_trigger import find_matching_flow

logger = logging.getLogger(__name__)


class ConversationService:
    """One flow step per incoming message; conversations never share state."""

    def __init__(
        self,
        bus: EventBus,
        flow_repo: FlowRepository,
        conversation_repo: ConversationRepository,
        log_repo: FlowExecutionLogRepository,
        executor: FlowExecutor,
    ) -> None:
        self.bus = bus
        self.flow_repo = flow_repo
        self.conversation_repo = conversation_repo
        self.log_repo = log_repo
        self.executor = executor

    def _get_or_create(self, conversation_id: str, store_id: str) -> Conversation:
        conversation = self.conversation_repo.get(conversation_id)
        if conversation is None:
            conversation = Conversation(id=conversation_id, store_id=store_id)
            self.conversation_repo.add(conversation)
        return conversation

    async def handle_message(
        self,
        conversation_id: str,
        store_id: str,
        message: str,
        context: TriggerContext | None = None,
    ) -> FlowStepResult | None:
        """Advance the active flow, or start one whose trigger matches.

        Returns None when no flow handles the message.
        """
        conversation = self._get_or_create(conversation_id, store_id)
        if context is None:
            context = TriggerContext(is_new_conversation=conversation.message_count == 0)
        conversation.message_count += 1

        state = conversation.flow_state
        if state is not None:
            flow = self.flow_repo.get(state.flow_id)
            if flow is None:
                logger.warning(
                    "Conversation %s references missing flow %s, dropping state",
                    conversation_id,
                    state.flow_id,
                )
                conversation.flow_state = None
                return None
            log_id = state.log_id
            result = await self.executor.step(state, message, flow, store_id)
        else:
            flow = find_matching_flow(
                self.flow_repo.list_active(store_id), message, context
            )
            if flow is None:
                return None
            log = FlowExecutionLog(
                store_id=store_id, flow_id=flow.id, conversation_id=conversation_id
            )
            self.log_repo.add(log)
            self.bus.publish(
                FlowTriggered(
                    flow_id=flow.id,
                    conversation_id=conversation_id,
                    store_id=store_id,
                    log_id=log.id,
                )
            )
            log_id = log.id
            result = await self.executor.start(flow, store_id, log_id=log_id)

        if not result.completed:
            conversation.flow_state = result.new_state
            return result

        conversation.flow_state = None
        self.bus.publish(
            FlowCompleted(
                flow_id=flow.id,
                conversation_id=conversation_id,
                log_id=log_id,
                exit_node_id=result.exit_node_id,
                variables=result.variables,
            )
        )
        if result.escalated:
            self.bus.publish(
                ConversationEscalated(conversation_id=conversation_id, flow_id=flow.id)
            )
        return result

    def cancel(self, conversation_id: str) -> FlowStepResult | None:
        """Abort the conversation's running flow, if any."""
        conversation = self.conversation_repo.get(conversation_id)
        if conversation is None or conversation.flow_state is None:
            return None

        state = conversation.flow_state
        result = cancel_flow(state)
        conversation.flow_state = None
        self.bus.publish(
            FlowCompleted(
                flow_id=state.flow_id,
                conversation_id=conversation_id,
                log_id=state.log_id,
                exit_node_id=result.exit_node_id,
                variables=result.variables,
                cancelled=True,
            )
        )
        return result
