"""Side effects of ``api_action`` and ``show_items`` flow nodes."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

import httpx

from bizops import config
from bizops.domain.flow import (
    ApiActionConfig,
    ApiActionType,
    DisplayFormat,
    FlowMessage,
    ItemSource,
    ProductCard,
    ShowItemsConfig,
)
from bizops.domain.models import Appointment, AppointmentStatus, Order
from bizops.repos.memory import (
    AppointmentRepository,
    CatalogRepository,
    CustomerRepository,
    OrderRepository,
)
from bizops.services.flow_text import interpolate_variables, parse_date

logger = logging.getLogger(__name__)

FLOW_APPOINTMENT_MINUTES = 30
SEARCH_LIMIT = 10
EMPTY_LIST_TEXT = "Одоогоор жагсаалт хоосон байна."
SELECT_PROMPT_TEXT = "Дугаар эсвэл нэрээр сонгоно уу."

# Runtime bookkeeping variables that never belong in order/appointment notes
_NOTE_SKIP = {
    "search_results",
    "appointment_id",
    "order_id",
    "order_number",
    "webhook_response",
    "webhook_error",
}


def build_notes(variables: dict[str, Any]) -> str:
    return ", ".join(
        f"{key}: {value}"
        for key, value in variables.items()
        if key not in _NOTE_SKIP and not key.startswith("_")
    )


def _first(variables: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = variables.get(key)
        if value:
            return str(value)
    return ""


class ActionRunner:
    """Executes api_action nodes and loads the items shown by show_items nodes."""

    def __init__(
        self,
        appointment_repo: AppointmentRepository,
        order_repo: OrderRepository,
        catalog_repo: CatalogRepository,
        customer_repo: CustomerRepository,
        webhook_timeout: float | None = None,
    ) -> None:
        self.appointment_repo = appointment_repo
        self.order_repo = order_repo
        self.catalog_repo = catalog_repo
        self.customer_repo = customer_repo
        self.webhook_timeout = webhook_timeout or config.WEBHOOK_TIMEOUT_SECONDS

    async def run(
        self, action: ApiActionConfig, variables: dict[str, Any], store_id: str
    ) -> dict[str, Any]:
        """Run an api_action and return the variables it produces."""
        logger.info("Running flow action %s for store %s", action.action_type, store_id)

        if action.action_type == ApiActionType.CREATE_APPOINTMENT:
            return self._create_appointment(variables, store_id)
        if action.action_type == ApiActionType.CREATE_ORDER:
            return self._create_order(variables, store_id)
        if action.action_type == ApiActionType.SEARCH_PRODUCTS:
            return self._search("product", variables, store_id)
        if action.action_type == ApiActionType.SEARCH_SERVICES:
            return self._search("service", variables, store_id)
        if action.action_type == ApiActionType.LOOKUP_CUSTOMER:
            return self._lookup_customer(variables, store_id)
        if action.action_type == ApiActionType.WEBHOOK:
            return await self._webhook(action.action_config, variables, store_id)
        return {}

    def _create_appointment(self, variables: dict[str, Any], store_id: str) -> dict[str, Any]:
        raw_date = _first(variables, "scheduled_at", "date")
        scheduled_at = parse_date(raw_date) if raw_date else None
        appointment = Appointment(
            store_id=store_id,
            customer_name=_first(variables, "customer_name", "name", "patient_name"),
            customer_phone=_first(variables, "phone", "customer_phone"),
            notes=build_notes(variables),
            status=AppointmentStatus.PENDING,
            duration_minutes=FLOW_APPOINTMENT_MINUTES,
            scheduled_at=scheduled_at or datetime.now(timezone.utc),
            source="chat",
        )
        self.appointment_repo.add(appointment)
        return {"appointment_id": appointment.id}

    def _create_order(self, variables: dict[str, Any], store_id: str) -> dict[str, Any]:
        order = Order(
            store_id=store_id,
            order_number=f"ORD-{uuid.uuid4().hex[:8].upper()}",
            shipping_address=_first(variables, "address"),
            customer_phone=_first(variables, "phone"),
            notes=build_notes(variables),
        )
        self.order_repo.add(order)
        return {"order_id": order.id, "order_number": order.order_number}

    def _search(self, kind: str, variables: dict[str, Any], store_id: str) -> dict[str, Any]:
        category = variables.get("filter_category")
        if category:
            category = interpolate_variables(str(category), variables)
        items = self.catalog_repo.search(store_id, kind, category, limit=SEARCH_LIMIT)
        return {"search_results": [item.model_dump(mode="json") for item in items]}

    def _lookup_customer(self, variables: dict[str, Any], store_id: str) -> dict[str, Any]:
        phone = _first(variables, "phone", "customer_phone")
        customer = self.customer_repo.find_by_phone(store_id, phone) if phone else None
        if customer is None:
            return {"customer_found": False}
        return {
            "customer_found": True,
            "customer_id": customer.id,
            "customer_name": customer.name,
        }

    async def _webhook(
        self, action_config: dict[str, Any], variables: dict[str, Any], store_id: str
    ) -> dict[str, Any]:
        url = action_config.get("url")
        if not url:
            return {}
        payload = {
            "store_id": store_id,
            "variables": {k: v for k, v in variables.items() if not k.startswith("_")},
        }
        try:
            async with httpx.AsyncClient(timeout=self.webhook_timeout) as client:
                resp = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Flow webhook %s failed: %s", url, exc)
            return {"webhook_error": True}
        try:
            body = resp.json()
        except ValueError:
            body = {}
        return {"webhook_response": body}

    def load_items(
        self, show: ShowItemsConfig, variables: dict[str, Any], store_id: str
    ) -> list[dict[str, Any]]:
        """Items a show_items node should display, capped at ``max_items``."""
        if show.source == ItemSource.VARIABLE:
            items = variables.get(show.variable_name or "")
            if not isinstance(items, list):
                return []
            # Only item records are listable
            return [item for item in items if isinstance(item, dict)][: show.max_items]

        category = (
            interpolate_variables(show.filter_category, variables)
            if show.filter_category
            else None
        )
        kind = "service" if show.source == ItemSource.SERVICES else "product"
        found = self.catalog_repo.search(store_id, kind, category, limit=show.max_items)
        return [item.model_dump(mode="json") for item in found]


def render_items(show: ShowItemsConfig, items: list[dict[str, Any]]) -> list[FlowMessage]:
    if not items:
        return [FlowMessage(type="text", text=EMPTY_LIST_TEXT)]

    if show.display_format == DisplayFormat.CARDS:
        return [
            FlowMessage(
                type="product_cards",
                products=[
                    ProductCard(
                        id=str(item.get("id", "")),
                        name=str(item.get("name", "")),
                        price=float(item.get("base_price") or 0),
                        description=item.get("description"),
                    )
                    for item in items
                ],
            )
        ]

    lines = [
        f"{i}. {item.get('name', '')} - {float(item.get('base_price') or 0):,.0f}₮"
        for i, item in enumerate(items, start=1)
    ]
    messages = [FlowMessage(type="text", text="\n".join(lines))]
    if show.selection_variable:
        messages.append(FlowMessage(type="text", text=SELECT_PROMPT_TEXT))
    return messages
