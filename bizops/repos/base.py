"""Read contract the conflict detector needs from a schedule store."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from bizops.domain.models import Appointment, Block, BookingItem, SubjectFilter


class IntervalStore(Protocol):
    """Query surface over appointments, blocks and booking items.

    Every method returns a (possibly empty) list and raises
    ``bizops.errors.StoreError`` only on a genuine I/O failure.
    """

    async def appointments_before(
        self,
        subject: SubjectFilter,
        end: datetime,
        exclude_id: str | None = None,
    ) -> list[Appointment]:
        """Active appointments for *subject* starting before *end*.

        Only the upper bound can be pushed to the store because an
        appointment's end is derived from its duration.
        """
        ...

    async def blocks_overlapping(
        self,
        subject: SubjectFilter,
        start: datetime,
        end: datetime,
    ) -> list[Block]:
        ...

    async def booking_items_overlapping(
        self,
        subject: SubjectFilter,
        start: datetime,
        end: datetime,
        exclude_appointment_id: str | None = None,
    ) -> list[BookingItem]:
        ...
