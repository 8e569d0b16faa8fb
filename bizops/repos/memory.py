"""In-memory repositories for schedules, catalog, flows and conversations."""

from __future__ import annotations

from datetime import datetime

from bizops.domain.flow import Conversation, Flow, FlowExecutionLog, FlowStatus
from bizops.domain.models import (
    INACTIVE_APPOINTMENT_STATUSES,
    INACTIVE_BOOKING_ITEM_STATUSES,
    Appointment,
    Block,
    BookingItem,
    CatalogItem,
    ConflictEntry,
    Customer,
    Order,
    SubjectFilter,
    SubjectKind,
)


def _subject_matches(record: Appointment | Block | BookingItem, subject: SubjectFilter) -> bool:
    if record.store_id != subject.store_id:
        return False
    if subject.kind == SubjectKind.STAFF:
        return record.staff_id == subject.subject_id
    return record.resource_id == subject.subject_id


class AppointmentRepository:
    """Dict-backed store for Appointment instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Appointment] = {}

    def add(self, appointment: Appointment) -> None:
        self._store[appointment.id] = appointment

    def get(self, appointment_id: str) -> Appointment | None:
        return self._store.get(appointment_id)

    def list_for_store(self, store_id: str) -> list[Appointment]:
        return [a for a in self._store.values() if a.store_id == store_id]

    def list_for_subject(
        self, subject: SubjectFilter, end: datetime, exclude_id: str | None = None
    ) -> list[Appointment]:
        return [
            a
            for a in self._store.values()
            if _subject_matches(a, subject)
            and a.status not in INACTIVE_APPOINTMENT_STATUSES
            and a.scheduled_at < end
            and (exclude_id is None or a.id != exclude_id)
        ]


class BlockRepository:
    """Dict-backed store for Block instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Block] = {}

    def add(self, block: Block) -> None:
        self._store[block.id] = block

    def get(self, block_id: str) -> Block | None:
        return self._store.get(block_id)

    def delete(self, block_id: str) -> None:
        self._store.pop(block_id, None)

    def list_for_subject(
        self, subject: SubjectFilter, start: datetime, end: datetime
    ) -> list[Block]:
        return [
            b
            for b in self._store.values()
            if _subject_matches(b, subject) and b.start_at < end and b.end_at > start
        ]


class BookingItemRepository:
    """Dict-backed store for BookingItem instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, BookingItem] = {}

    def add(self, item: BookingItem) -> None:
        self._store[item.id] = item

    def get(self, item_id: str) -> BookingItem | None:
        return self._store.get(item_id)

    def list_for_subject(
        self,
        subject: SubjectFilter,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> list[BookingItem]:
        return [
            i
            for i in self._store.values()
            if _subject_matches(i, subject)
            and i.status not in INACTIVE_BOOKING_ITEM_STATUSES
            and i.start_at < end
            and i.end_at > start
            and (exclude_appointment_id is None or i.appointment_id != exclude_appointment_id)
        ]


class MemoryIntervalStore:
    """IntervalStore backed by the in-memory schedule repositories."""

    def __init__(
        self,
        appointments: AppointmentRepository,
        blocks: BlockRepository,
        booking_items: BookingItemRepository,
    ) -> None:
        self.appointments = appointments
        self.blocks = blocks
        self.booking_items = booking_items

    async def appointments_before(
        self, subject: SubjectFilter, end: datetime, exclude_id: str | None = None
    ) -> list[Appointment]:
        return self.appointments.list_for_subject(subject, end, exclude_id)

    async def blocks_overlapping(
        self, subject: SubjectFilter, start: datetime, end: datetime
    ) -> list[Block]:
        return self.blocks.list_for_subject(subject, start, end)

    async def booking_items_overlapping(
        self,
        subject: SubjectFilter,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> list[BookingItem]:
        return self.booking_items.list_for_subject(
            subject, start, end, exclude_appointment_id
        )


class CatalogRepository:
    """Dict-backed store for products and services."""

    def __init__(self) -> None:
        self._store: dict[str, CatalogItem] = {}

    def add(self, item: CatalogItem) -> None:
        self._store[item.id] = item

    def search(
        self,
        store_id: str,
        kind: str,
        category: str | None = None,
        limit: int = 10,
    ) -> list[CatalogItem]:
        """Active items of *kind*, optionally filtered by a category substring."""
        needle = category.lower() if category else None
        found = [
            i
            for i in self._store.values()
            if i.store_id == store_id
            and i.kind == kind
            and i.status == "active"
            and (needle is None or needle in (i.category or "").lower())
        ]
        return found[:limit]


class CustomerRepository:
    """Dict-backed store for Customer instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Customer] = {}

    def add(self, customer: Customer) -> None:
        self._store[customer.id] = customer

    def find_by_phone(self, store_id: str, phone: str) -> Customer | None:
        for customer in self._store.values():
            if customer.store_id == store_id and customer.phone == phone:
                return customer
        return None


class OrderRepository:
    """Dict-backed store for Order instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Order] = {}

    def add(self, order: Order) -> None:
        self._store[order.id] = order

    def get(self, order_id: str) -> Order | None:
        return self._store.get(order_id)


class FlowRepository:
    """Dict-backed store for Flow graphs, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Flow] = {}

    def add(self, flow: Flow) -> None:
        self._store[flow.id] = flow

    def get(self, flow_id: str) -> Flow | None:
        return self._store.get(flow_id)

    def list_active(self, store_id: str) -> list[Flow]:
        """Active flows for a store, lowest priority value first."""
        return sorted(
            (
                f
                for f in self._store.values()
                if f.store_id == store_id and f.status == FlowStatus.ACTIVE
            ),
            key=lambda f: f.priority,
        )


class ConversationRepository:
    """Dict-backed store for Conversation instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Conversation] = {}

    def add(self, conversation: Conversation) -> None:
        self._store[conversation.id] = conversation

    def get(self, conversation_id: str) -> Conversation | None:
        return self._store.get(conversation_id)


class FlowExecutionLogRepository:
    """Dict-backed store for FlowExecutionLog instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, FlowExecutionLog] = {}

    def add(self, log: FlowExecutionLog) -> None:
        self._store[log.id] = log

    def get(self, log_id: str) -> FlowExecutionLog | None:
        return self._store.get(log_id)

    def list_for_flow(self, flow_id: str) -> list[FlowExecutionLog]:
        return [log for log in self._store.values() if log.flow_id == flow_id]


class ConflictAuditRepository:
    """List-backed record of booking attempts rejected for conflicts."""

    def __init__(self) -> None:
        self._entries: list[tuple[str, list[ConflictEntry]]] = []

    def add(self, store_id: str, conflicts: list[ConflictEntry]) -> None:
        self._entries.append((store_id, conflicts))

    def list_for_store(self, store_id: str) -> list[list[ConflictEntry]]:
        return [c for sid, c in self._entries if sid == store_id]
