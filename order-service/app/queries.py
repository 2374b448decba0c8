import logging

from .clients import CallContext, Collaborators
from .errors import Forbidden, OrderServiceError
from .store import OrderStore

logger = logging.getLogger("order-service.queries")

UNKNOWN = "Unknown"


class OrderQueries:
    """Read paths. Enrichment from other services is best-effort: a failing
    collaborator degrades the field to "Unknown" (or None) and is logged."""

    def __init__(self, store: OrderStore, collaborators: Collaborators):
        self.store = store
        self.collaborators = collaborators
        self._restaurant_names = {}
        self._addresses = None

    def list_orders(self, user_id: int, ctx: CallContext):
        return [
            {
                "order_id": o.order_id,
                "restaurant_name": self._restaurant_name(o.restaurant_id, ctx),
                "status": o.status,
                "total_price": o.total_price,
                "created_at": o.created_at,
            }
            for o in self.store.list_by_user(user_id)
        ]

    def order_details(self, order_id: int, user_id: int, ctx: CallContext):
        order = self.store.get_or_404(order_id)
        if order.user_id != user_id:
            raise Forbidden("Access denied", order_id=order_id)

        return {
            "order_id": order.order_id,
            "status": order.status,
            "restaurant_details": self._restaurant_details(order.restaurant_id, ctx),
            "delivery_address": self._delivery_address(order.address_id, ctx),
            "driver_details": self._driver_details(order.driver_id, ctx),
            "payment_id": order.payment_id,
            "items": [
                {"name": it.menu_item_name, "quantity": it.quantity, "price": it.price}
                for it in self.store.items_for(order.order_id)
            ],
            "total_price": order.total_price,
            "estimated_delivery": order.estimated_delivery_time,
        }

    def available_orders(self, ctx: CallContext):
        return [self._driver_view(o, ctx) for o in self.store.list_available()]

    def driver_orders(self, driver_id: int, ctx: CallContext):
        return [self._driver_view(o, ctx, with_eta=True) for o in self.store.list_by_driver(driver_id)]

    # ----- Enrichment helpers -----

    def _driver_view(self, order, ctx, with_eta=False):
        view = {
            "order_id": order.order_id,
            "restaurant_name": self._restaurant_name(order.restaurant_id, ctx),
            "customer_name": self._customer_name(order.user_id, ctx),
            "customer_address": self._delivery_address(order.address_id, ctx),
            "status": order.status,
            "total_price": order.total_price,
            "created_at": order.created_at,
            "items": [
                {"menu_item_name": it.menu_item_name, "quantity": it.quantity, "price": it.price}
                for it in self.store.items_for(order.order_id)
            ],
        }
        if with_eta:
            view["estimated_delivery_time"] = order.estimated_delivery_time
        return view

    def _restaurant_name(self, restaurant_id, ctx):
        if restaurant_id not in self._restaurant_names:
            try:
                menu = self.collaborators.restaurants.get_menu(restaurant_id, ctx)
                self._restaurant_names[restaurant_id] = menu.get("restaurant_name") or UNKNOWN
            except OrderServiceError as e:
                self._warn(f"restaurant {restaurant_id} lookup failed: {e.message}", ctx)
                return UNKNOWN
        return self._restaurant_names[restaurant_id]

    def _restaurant_details(self, restaurant_id, ctx):
        try:
            restaurants = self.collaborators.restaurants.list_restaurants(ctx)
        except OrderServiceError as e:
            self._warn(f"restaurant list failed: {e.message}", ctx)
            return {"name": UNKNOWN, "address": UNKNOWN}
        for r in restaurants:
            if r.get("id") == restaurant_id:
                return {"name": r.get("name", UNKNOWN), "address": r.get("address", UNKNOWN)}
        return {"name": UNKNOWN, "address": UNKNOWN}

    def _customer_name(self, user_id, ctx):
        try:
            return self.collaborators.users.get_user(user_id, ctx).get("name") or UNKNOWN
        except OrderServiceError as e:
            self._warn(f"user {user_id} lookup failed: {e.message}", ctx)
            return UNKNOWN

    def _delivery_address(self, address_id, ctx):
        # addresses are fetched with the caller's own credential
        if self._addresses is None:
            try:
                self._addresses = self.collaborators.users.get_addresses(ctx)
            except OrderServiceError as e:
                self._warn(f"address lookup failed: {e.message}", ctx)
                return UNKNOWN
        for a in self._addresses:
            if a.get("id") == address_id:
                return a.get("full_address", UNKNOWN)
        return UNKNOWN

    def _driver_details(self, driver_id, ctx):
        if driver_id is None:
            return None
        try:
            return self.collaborators.drivers.get_driver(driver_id, ctx)
        except OrderServiceError as e:
            self._warn(f"driver {driver_id} lookup failed: {e.message}", ctx)
            return None

    def _warn(self, message, ctx):
        logger.warning(message, extra={"correlation_id": ctx.correlation_id})
