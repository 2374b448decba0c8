"""HTTP clients for the services the order service depends on.

Every collaborator answers with the envelope ``{"status": "success"|"error",
"data": ..., "message": ...}``. Transport failures and 5xx answers become
``UpstreamUnavailable``; 404 becomes ``NotFound``; other 4xx answers and
``status: error`` envelopes become ``ValidationError`` carrying the
collaborator's own message. Calls are never retried.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

import httpx

from .errors import NoDriverAvailable, NotFound, UpstreamUnavailable, ValidationError
from .metrics import COLLABORATOR_ERRORS

logger = logging.getLogger("order-service.clients")


@dataclass(frozen=True)
class CallContext:
    correlation_id: str
    authorization: Optional[str] = None

    def headers(self) -> dict:
        h = {"X-Correlation-Id": self.correlation_id}
        if self.authorization:
            h["Authorization"] = self.authorization
        return h


class ServiceClient:
    name = "service"

    def __init__(self, base_url: str, http: httpx.Client):
        self.base_url = base_url.rstrip("/")
        self.http = http

    def _call(self, method: str, path: str, ctx: CallContext, json=None):
        url = f"{self.base_url}{path}"
        try:
            r = self.http.request(method, url, json=json, headers=ctx.headers())
        except httpx.HTTPError as e:
            COLLABORATOR_ERRORS.labels(self.name).inc()
            logger.warning(f"{self.name} call {method} {path} failed: {e}",
                           extra={"correlation_id": ctx.correlation_id})
            raise UpstreamUnavailable(f"{self.name} unavailable: {e}") from e

        try:
            body = r.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") or body.get("details")

        if r.status_code == 404:
            raise NotFound(message or f"{self.name}: resource not found")
        if r.status_code >= 500:
            COLLABORATOR_ERRORS.labels(self.name).inc()
            raise UpstreamUnavailable(message or f"{self.name} returned {r.status_code}")
        if r.status_code >= 400 or body.get("status") != "success":
            raise ValidationError(message or f"{self.name} rejected the request")
        return body.get("data")


class UserClient(ServiceClient):
    name = "user-service"

    def get_user(self, user_id: int, ctx: CallContext) -> dict:
        try:
            return self._call("GET", f"/users/internal/users/{user_id}", ctx) or {}
        except NotFound as e:
            raise NotFound("User not found", user_id=user_id) from e

    def get_addresses(self, ctx: CallContext) -> List[dict]:
        """Addresses of the user owning the bearer credential in ``ctx``."""
        return self._call("GET", "/users/addresses", ctx) or []


class RestaurantClient(ServiceClient):
    name = "restaurant-service"

    def get_menu(self, restaurant_id: int, ctx: CallContext) -> dict:
        try:
            data = self._call("GET", f"/restaurants/{restaurant_id}/menu", ctx) or {}
        except NotFound as e:
            raise NotFound("Restaurant not found", restaurant_id=restaurant_id) from e
        items = []
        for m in data.get("menu_items", data.get("items", [])):
            items.append(
                {
                    "id": int(m["id"]),
                    "name": m["name"],
                    "price": Decimal(str(m["price"])),
                    "stock": int(m.get("stock", 0)),
                    "available": bool(m.get("is_available", m.get("available", True))),
                }
            )
        return {"restaurant_name": data.get("restaurant_name"), "items": items}

    def list_restaurants(self, ctx: CallContext) -> List[dict]:
        return self._call("GET", "/restaurants", ctx) or []

    def check_stock(self, items: List[dict], ctx: CallContext) -> None:
        self._call("POST", "/restaurants/internal/menu-items/check", ctx, json={"items": items})

    def decrease_stock(self, items: List[dict], ctx: CallContext) -> None:
        self._call("POST", "/restaurants/internal/menu-items/decrease-stock", ctx, json={"items": items})


class PaymentClient(ServiceClient):
    name = "payment-service"

    def create_payment(self, order_id: int, user_id: int, amount: Decimal, ctx: CallContext) -> int:
        data = self._call(
            "POST",
            "/internal/payments",
            ctx,
            json={"order_id": order_id, "user_id": user_id, "amount": str(amount)},
        ) or {}
        if data.get("payment_id") is None:
            raise UpstreamUnavailable("payment-service returned no payment_id")
        return int(data["payment_id"])


class DriverClient(ServiceClient):
    name = "driver-service"

    def assign_driver(self, order_id: int, ctx: CallContext) -> int:
        try:
            data = self._call("POST", "/drivers/internal/drivers/assign", ctx, json={"order_id": order_id}) or {}
        except NotFound as e:
            raise NoDriverAvailable(e.message or "No available drivers", order_id=order_id) from e
        if not isinstance(data, dict):
            raise UpstreamUnavailable("driver-service returned a malformed assignment")
        driver_id = data.get("driver_id", data.get("id"))
        if driver_id is None:
            raise UpstreamUnavailable("driver-service returned no driver_id")
        try:
            return int(driver_id)
        except (TypeError, ValueError):
            raise UpstreamUnavailable("driver-service returned an invalid driver_id", driver_id=driver_id)

    def get_driver(self, driver_id: int, ctx: CallContext) -> dict:
        return self._call("GET", f"/drivers/internal/drivers/{driver_id}", ctx) or {}


@dataclass
class Collaborators:
    users: UserClient
    restaurants: RestaurantClient
    payments: PaymentClient
    drivers: DriverClient


def build_collaborators(settings, http: httpx.Client) -> Collaborators:
    return Collaborators(
        users=UserClient(settings.user_service_url, http),
        restaurants=RestaurantClient(settings.restaurant_service_url, http),
        payments=PaymentClient(settings.payment_service_url, http),
        drivers=DriverClient(settings.driver_service_url, http),
    )
