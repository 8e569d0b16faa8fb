"""Service for detecting scheduling conflicts for staff and resources.

A candidate window conflicts with appointments, blocks and booking items of
the same store that are assigned to the same staff member or resource.
Intervals are half-open: ``[start, end)``, so touching boundaries are not a
conflict.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from datetime import datetime, timedelta
from enum import StrEnum
from typing import TypeVar

from bizops import config
from bizops.domain.models import (
    ConflictCheckRequest,
    ConflictEntry,
    ConflictResult,
    ConflictType,
    SubjectFilter,
    SubjectKind,
)
from bizops.errors import ConflictCheckUnavailable, StoreError
from bizops.repos.base import IntervalStore

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60

T = TypeVar("T")


class FetchPolicy(StrEnum):
    STRICT = "strict"  # a failed query aborts the check
    LENIENT = "lenient"  # a failed query contributes no conflicts


def overlaps(
    start: datetime, end: datetime, window_start: datetime, window_end: datetime
) -> bool:
    """Half-open overlap test: conflict iff start < window_end AND end > window_start."""
    return start < window_end and end > window_start


def derive_commitment_end(start: datetime, duration_minutes: int | None) -> datetime:
    """End of an appointment; a missing duration counts as one hour."""
    return start + timedelta(minutes=duration_minutes or DEFAULT_DURATION_MINUTES)


def subjects_for(request: ConflictCheckRequest) -> list[SubjectFilter]:
    subjects: list[SubjectFilter] = []
    if request.staff_id:
        subjects.append(
            SubjectFilter(
                store_id=request.store_id,
                kind=SubjectKind.STAFF,
                subject_id=request.staff_id,
            )
        )
    if request.resource_id:
        subjects.append(
            SubjectFilter(
                store_id=request.store_id,
                kind=SubjectKind.RESOURCE,
                subject_id=request.resource_id,
            )
        )
    return subjects


async def _fetch(source: str, query: Awaitable[list[T]], policy: FetchPolicy) -> list[T]:
    try:
        return await query
    except StoreError as exc:
        if policy == FetchPolicy.STRICT:
            logger.error("Conflict query failed for %s: %s", source, exc)
            raise ConflictCheckUnavailable(source, exc) from exc
        logger.warning("Conflict query failed for %s, treating as empty: %s", source, exc)
        return []


async def find_overlaps(
    store: IntervalStore,
    subject: SubjectFilter,
    start: datetime,
    end: datetime,
    exclude_appointment_id: str | None = None,
    policy: FetchPolicy = FetchPolicy.STRICT,
) -> list[ConflictEntry]:
    """Return every appointment, block and booking item of *subject* overlapping the window.

    The three queries are independent and run concurrently.  The overlap
    test and the exclusion are re-applied here rather than trusted to the
    store.
    """
    label = f"{subject.kind}:{subject.subject_id}"
    appointments, blocks, items = await asyncio.gather(
        _fetch(
            f"appointments/{label}",
            store.appointments_before(subject, end, exclude_appointment_id),
            policy,
        ),
        _fetch(f"blocks/{label}", store.blocks_overlapping(subject, start, end), policy),
        _fetch(
            f"booking_items/{label}",
            store.booking_items_overlapping(subject, start, end, exclude_appointment_id),
            policy,
        ),
    )

    entries: list[ConflictEntry] = []

    for apt in appointments:
        if exclude_appointment_id and apt.id == exclude_appointment_id:
            continue
        apt_end = derive_commitment_end(apt.scheduled_at, apt.duration_minutes)
        if overlaps(apt.scheduled_at, apt_end, start, end):
            entries.append(
                ConflictEntry(
                    type=ConflictType.APPOINTMENT,
                    id=apt.id,
                    start_at=apt.scheduled_at,
                    end_at=apt_end,
                )
            )

    for block in blocks:
        if overlaps(block.start_at, block.end_at, start, end):
            entries.append(
                ConflictEntry(
                    type=ConflictType.BLOCK,
                    id=block.id,
                    start_at=block.start_at,
                    end_at=block.end_at,
                    reason=block.reason or None,
                )
            )

    for item in items:
        if exclude_appointment_id and item.appointment_id == exclude_appointment_id:
            continue
        if overlaps(item.start_at, item.end_at, start, end):
            entries.append(
                ConflictEntry(
                    type=ConflictType.BOOKING_ITEM,
                    id=item.id,
                    start_at=item.start_at,
                    end_at=item.end_at,
                )
            )

    return entries


async def check_conflicts(
    store: IntervalStore,
    request: ConflictCheckRequest,
    policy: FetchPolicy | None = None,
) -> ConflictResult:
    """Check whether a staff member and/or resource is busy during the window.

    With neither subject given this is a no-op and the store is not queried.
    When both are given, each is checked independently and every conflict is
    reported.  The result is advisory as of read time: nothing is reserved.
    """
    subjects = subjects_for(request)
    if not subjects:
        return ConflictResult(has_conflict=False, conflicts=[])

    policy = policy or FetchPolicy(config.CONFLICT_FETCH_POLICY)
    per_subject = await asyncio.gather(
        *(
            find_overlaps(
                store,
                subject,
                request.start_at,
                request.end_at,
                request.exclude_appointment_id,
                policy,
            )
            for subject in subjects
        )
    )
    conflicts = [entry for entries in per_subject for entry in entries]

    if conflicts:
        logger.info(
            "Found %d conflict(s) in store %s for %s - %s",
            len(conflicts),
            request.store_id,
            request.start_at.isoformat(),
            request.end_at.isoformat(),
        )
    return ConflictResult(has_conflict=bool(conflicts), conflicts=conflicts)
