"""Domain models for scheduling, catalog and orders."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class AppointmentStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class BookingItemStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BlockType(StrEnum):
    MANUAL = "manual"
    BREAK = "break"
    HOLIDAY = "holiday"
    MAINTENANCE = "maintenance"


class SubjectKind(StrEnum):
    STAFF = "staff"
    RESOURCE = "resource"


class ConflictType(StrEnum):
    APPOINTMENT = "appointment"
    BLOCK = "block"
    BOOKING_ITEM = "booking_item"


# Statuses that no longer occupy time on a schedule
INACTIVE_APPOINTMENT_STATUSES = frozenset(
    {AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)
INACTIVE_BOOKING_ITEM_STATUSES = frozenset({BookingItemStatus.CANCELLED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC so every comparison is between aware values
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Schedule records
# ---------------------------------------------------------------------------


class Appointment(BaseModel):
    id: str = Field(default_factory=_new_id)
    store_id: str
    staff_id: str | None = None
    resource_id: str | None = None
    scheduled_at: UtcDatetime
    duration_minutes: int | None = None
    status: AppointmentStatus = AppointmentStatus.PENDING
    customer_name: str | None = None
    customer_phone: str | None = None
    notes: str | None = None
    source: str = "dashboard"
    created_at: UtcDatetime = Field(default_factory=_utcnow)


class Block(BaseModel):
    id: str = Field(default_factory=_new_id)
    store_id: str
    staff_id: str | None = None
    resource_id: str | None = None
    start_at: UtcDatetime
    end_at: UtcDatetime
    reason: str | None = None
    block_type: BlockType = BlockType.MANUAL
    created_at: UtcDatetime = Field(default_factory=_utcnow)


class BookingItem(BaseModel):
    id: str = Field(default_factory=_new_id)
    store_id: str
    appointment_id: str
    staff_id: str | None = None
    resource_id: str | None = None
    start_at: UtcDatetime
    end_at: UtcDatetime
    status: BookingItemStatus = BookingItemStatus.PENDING
    price: float = 0
    notes: str | None = None
    created_at: UtcDatetime = Field(default_factory=_utcnow)


class SubjectFilter(BaseModel):
    """Scopes a store query to one staff member or one bookable resource."""

    model_config = ConfigDict(frozen=True)

    store_id: str
    kind: SubjectKind
    subject_id: str


# ---------------------------------------------------------------------------
# Conflict detection contract
# ---------------------------------------------------------------------------


class ConflictCheckRequest(_CamelModel):
    store_id: str = Field(alias="storeId")
    staff_id: str | None = Field(default=None, alias="staffId")
    resource_id: str | None = Field(default=None, alias="resourceId")
    start_at: UtcDatetime = Field(alias="startAt")
    end_at: UtcDatetime = Field(alias="endAt")
    exclude_appointment_id: str | None = Field(
        default=None, alias="excludeAppointmentId"
    )


class ConflictEntry(_CamelModel):
    type: ConflictType
    id: str
    start_at: UtcDatetime = Field(alias="startAt")
    end_at: UtcDatetime = Field(alias="endAt")
    reason: str | None = None

    def describe(self) -> str:
        """Human-readable line explaining why the slot is unavailable."""
        span = f"{self.start_at.isoformat()} - {self.end_at.isoformat()}"
        if self.reason:
            return f"{self.type} {self.id} ({span}): {self.reason}"
        return f"{self.type} {self.id} ({span})"


class ConflictResult(_CamelModel):
    has_conflict: bool = Field(alias="hasConflict")
    conflicts: list[ConflictEntry] = Field(default_factory=list)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Catalog, customers and orders (used by flow actions)
# ---------------------------------------------------------------------------


class CatalogItem(BaseModel):
    id: str = Field(default_factory=_new_id)
    store_id: str
    kind: str = "product"  # product | service
    name: str
    base_price: float = 0
    description: str | None = None
    category: str | None = None
    status: str = "active"
    duration_minutes: int | None = None


class Customer(BaseModel):
    id: str = Field(default_factory=_new_id)
    store_id: str
    name: str
    phone: str | None = None
    email: str | None = None


class Order(BaseModel):
    id: str = Field(default_factory=_new_id)
    store_id: str
    order_number: str
    status: str = "pending"
    payment_status: str = "pending"
    total_amount: float = 0
    shipping_address: str | None = None
    customer_phone: str | None = None
    notes: str | None = None
    created_at: UtcDatetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class AppointmentCreate(BaseModel):
    store_id: str
    staff_id: str | None = None
    resource_id: str | None = None
    scheduled_at: UtcDatetime
    duration_minutes: int | None = Field(default=None, gt=0)
    status: AppointmentStatus = AppointmentStatus.PENDING
    customer_name: str | None = None
    customer_phone: str | None = None
    notes: str | None = None


class AppointmentUpdate(BaseModel):
    staff_id: str | None = None
    resource_id: str | None = None
    scheduled_at: UtcDatetime | None = None
    duration_minutes: int | None = Field(default=None, gt=0)
    status: AppointmentStatus | None = None
    notes: str | None = None

    @field_validator("scheduled_at", "status")
    @classmethod
    def _not_cleared(cls, value):
        # Omit the field to keep it; null cannot clear it
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class BookingItemCreate(BaseModel):
    store_id: str
    appointment_id: str
    staff_id: str | None = None
    resource_id: str | None = None
    start_at: UtcDatetime
    end_at: UtcDatetime
    price: float = 0
    status: BookingItemStatus = BookingItemStatus.PENDING
    notes: str | None = None

    @model_validator(mode="after")
    def _end_after_start(self) -> BookingItemCreate:
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class BlockCreate(BaseModel):
    store_id: str
    staff_id: str | None = None
    resource_id: str | None = None
    start_at: UtcDatetime
    end_at: UtcDatetime
    reason: str | None = None
    block_type: BlockType = BlockType.MANUAL

    @model_validator(mode="after")
    def _end_after_start(self) -> BlockCreate:
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        if not self.staff_id and not self.resource_id:
            raise ValueError("a block needs a staff_id or a resource_id")
        return self
