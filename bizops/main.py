"""FastAPI application: booking, conflict-check and chat flow endpoints."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException

from bizops import config
from bizops.domain.bus import EventBus
from bizops.domain.events import BookingConflictDetected
from bizops.domain.flow import (
    ChatMessageRequest,
    ChatMessageResponse,
    Flow,
    TriggerContext,
    default_config,
    default_label,
)
from bizops.domain.handlers import HandlerRegistry
from bizops.domain.models import (
    INACTIVE_APPOINTMENT_STATUSES,
    Appointment,
    AppointmentCreate,
    AppointmentUpdate,
    Block,
    BlockCreate,
    BookingItem,
    BookingItemCreate,
    ConflictCheckRequest,
    ConflictResult,
)
from bizops.errors import ConflictCheckUnavailable, FlowGraphError
from bizops.repos.memory import (
    AppointmentRepository,
    BlockRepository,
    BookingItemRepository,
    CatalogRepository,
    ConflictAuditRepository,
    ConversationRepository,
    CustomerRepository,
    FlowExecutionLogRepository,
    FlowRepository,
    MemoryIntervalStore,
    OrderRepository,
)
from bizops.services.conflicts import check_conflicts, derive_commitment_end
from bizops.services.conversations import ConversationService
from bizops.services.flow_actions import ActionRunner
from bizops.services.flow_executor import FlowExecutor

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(title="Bizops Scheduling & Flow Service")

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
appointment_repo = AppointmentRepository()
block_repo = BlockRepository()
booking_item_repo = BookingItemRepository()
catalog_repo = CatalogRepository()
customer_repo = CustomerRepository()
order_repo = OrderRepository()
flow_repo = FlowRepository()
conversation_repo = ConversationRepository()
flow_log_repo = FlowExecutionLogRepository()
conflict_audit_repo = ConflictAuditRepository()

interval_store = MemoryIntervalStore(appointment_repo, block_repo, booking_item_repo)
action_runner = ActionRunner(appointment_repo, order_repo, catalog_repo, customer_repo)
flow_executor = FlowExecutor(action_runner)
conversation_service = ConversationService(
    bus=event_bus,
    flow_repo=flow_repo,
    conversation_repo=conversation_repo,
    log_repo=flow_log_repo,
    executor=flow_executor,
)

handler_registry = HandlerRegistry(
    bus=event_bus,
    flow_repo=flow_repo,
    log_repo=flow_log_repo,
    conversation_repo=conversation_repo,
    audit_repo=conflict_audit_repo,
)


async def _run_check(request: ConflictCheckRequest) -> ConflictResult:
    try:
        return await check_conflicts(interval_store, request)
    except ConflictCheckUnavailable as exc:
        logger.error("Availability check failed for store %s: %s", request.store_id, exc)
        raise HTTPException(
            status_code=503,
            detail=f"Could not verify availability: {exc.source}",
        ) from exc


async def _ensure_available(request: ConflictCheckRequest) -> None:
    """Reject the mutation with 409 when the window is already taken."""
    result = await _run_check(request)
    if result.has_conflict:
        event_bus.publish(
            BookingConflictDetected(store_id=request.store_id, conflicts=result.conflicts)
        )
        payload = result.to_payload()
        raise HTTPException(
            status_code=409,
            detail={
                "error": "Scheduling conflict detected",
                "conflicts": payload["conflicts"],
            },
        )


# ── Routes: scheduling ────────────────────────────────────────────────


@app.post(
    "/conflicts/check",
    response_model=ConflictResult,
    response_model_exclude_none=True,
)
async def check_availability(payload: ConflictCheckRequest) -> ConflictResult:
    """Report every appointment, block and booking item overlapping the window."""
    return await _run_check(payload)


@app.post("/appointments", response_model=Appointment, status_code=201)
async def create_appointment(body: AppointmentCreate) -> Appointment:
    appointment = Appointment(**body.model_dump())
    await _ensure_available(
        ConflictCheckRequest(
            store_id=appointment.store_id,
            staff_id=appointment.staff_id,
            resource_id=appointment.resource_id,
            start_at=appointment.scheduled_at,
            end_at=derive_commitment_end(
                appointment.scheduled_at, appointment.duration_minutes
            ),
        )
    )
    appointment_repo.add(appointment)
    return appointment


@app.get("/appointments/{appointment_id}", response_model=Appointment)
def get_appointment(appointment_id: str) -> Appointment:
    appointment = appointment_repo.get(appointment_id)
    if appointment is None:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


@app.patch("/appointments/{appointment_id}", response_model=Appointment)
async def update_appointment(appointment_id: str, body: AppointmentUpdate) -> Appointment:
    """Update an appointment; it never conflicts with itself or its own items."""
    appointment = appointment_repo.get(appointment_id)
    if appointment is None:
        raise HTTPException(status_code=404, detail="Appointment not found")

    updated = appointment.model_copy(update=body.model_dump(exclude_unset=True))
    if updated.status not in INACTIVE_APPOINTMENT_STATUSES:
        await _ensure_available(
            ConflictCheckRequest(
                store_id=updated.store_id,
                staff_id=updated.staff_id,
                resource_id=updated.resource_id,
                start_at=updated.scheduled_at,
                end_at=derive_commitment_end(updated.scheduled_at, updated.duration_minutes),
                exclude_appointment_id=appointment_id,
            )
        )
    appointment_repo.add(updated)
    return updated


@app.post("/booking-items", response_model=BookingItem, status_code=201)
async def create_booking_item(body: BookingItemCreate) -> BookingItem:
    """Create a booking item; it never conflicts with its own appointment."""
    appointment = appointment_repo.get(body.appointment_id)
    if appointment is None or appointment.store_id != body.store_id:
        raise HTTPException(status_code=404, detail="Appointment not found")

    await _ensure_available(
        ConflictCheckRequest(
            store_id=body.store_id,
            staff_id=body.staff_id,
            resource_id=body.resource_id,
            start_at=body.start_at,
            end_at=body.end_at,
            exclude_appointment_id=body.appointment_id,
        )
    )
    item = BookingItem(**body.model_dump())
    booking_item_repo.add(item)
    return item


@app.post("/blocks", response_model=Block, status_code=201)
def create_block(body: BlockCreate) -> Block:
    """Create a staff or resource unavailability window."""
    block = Block(**body.model_dump())
    block_repo.add(block)
    return block


@app.delete("/blocks/{block_id}", status_code=200)
def delete_block(block_id: str) -> dict:
    if block_repo.get(block_id) is None:
        raise HTTPException(status_code=404, detail="Block not found")
    block_repo.delete(block_id)
    return {"status": "deleted"}


# ── Routes: flows ─────────────────────────────────────────────────────


@app.post("/flows", response_model=Flow, status_code=201)
def create_flow(flow: Flow) -> Flow:
    """Store a flow graph after checking its structure."""
    try:
        flow.ensure_valid()
    except FlowGraphError as exc:
        raise HTTPException(status_code=400, detail=exc.problems) from exc
    flow_repo.add(flow)
    return flow


@app.get("/flows/{flow_id}", response_model=Flow)
def get_flow(flow_id: str) -> Flow:
    flow = flow_repo.get(flow_id)
    if flow is None:
        raise HTTPException(status_code=404, detail="Flow not found")
    return flow


@app.get("/node-types/{node_type}/default-config")
def get_default_config(node_type: str) -> dict:
    """Default label and config for a node newly dropped on the canvas."""
    return {
        "type": node_type,
        "label": default_label(node_type),
        "config": default_config(node_type),
    }


@app.post("/conversations/{conversation_id}/messages", response_model=ChatMessageResponse)
async def post_message(conversation_id: str, body: ChatMessageRequest) -> ChatMessageResponse:
    """Feed one customer message into the conversation's flow."""
    context = None
    if body.quick_reply_payload or body.classified_intent:
        existing = conversation_repo.get(conversation_id)
        context = TriggerContext(
            is_new_conversation=existing is None or existing.message_count == 0,
            quick_reply_payload=body.quick_reply_payload,
            classified_intent=body.classified_intent,
        )
    text = body.text or body.quick_reply_payload or ""
    result = await conversation_service.handle_message(
        conversation_id, body.store_id, text, context
    )
    if result is None:
        return ChatMessageResponse(handled=False)
    return ChatMessageResponse(
        handled=True,
        messages=result.messages,
        completed=result.completed,
        waiting_for_input=bool(result.new_state and result.new_state.waiting_for_input),
    )


@app.post("/conversations/{conversation_id}/cancel")
def cancel_conversation_flow(conversation_id: str) -> dict:
    """Abort the running flow without sending anything further."""
    result = conversation_service.cancel(conversation_id)
    return {"cancelled": result is not None}
