import logging
from collections import OrderedDict
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from . import models
from .clients import CallContext, Collaborators
from .errors import Conflict, Forbidden, InvalidState, OrderServiceError, ValidationError
from .state_machine import PAYMENT_SUCCESS, OrderStatus
from .store import OrderStore

logger = logging.getLogger("order-service.orchestrator")

CENTS = Decimal("0.01")


class OrderOrchestrator:
    """Drives an order through creation, payment, driver assignment and delivery.

    Collaborator calls are synchronous and never retried. A failure after the order
    row exists leaves the order in its last reached state; the completed steps are
    kept in ``saga_steps`` so :meth:`reconcile` can finish the job later.
    """

    def __init__(self, store: OrderStore, collaborators: Collaborators, dispatcher=None,
                 delivery_eta_minutes: int = 30):
        self.store = store
        self.collaborators = collaborators
        self.dispatcher = dispatcher
        self.delivery_eta = timedelta(minutes=delivery_eta_minutes)

    # ----- Create order -----

    def create_order(self, *, user_id: int, restaurant_id: int, address_id: int,
                     items: List[dict], ctx: CallContext) -> models.Order:
        """
        1. Validate user via user-service.
        2. Validate menu items and stock against restaurant-service.
        3. Price every line with the current menu price.
        4. Persist order + items (PENDING_PAYMENT) atomically.
        5./6. Create payment and store its id.
        7. Decrease stock.
        """
        cid = ctx.correlation_id
        if not items:
            raise ValidationError("Order must contain at least one item")

        # 1. Validate user
        self.collaborators.users.get_user(user_id, ctx)

        # 2. Validate restaurant menu + stock
        menu = self.collaborators.restaurants.get_menu(restaurant_id, ctx)
        lines = self._price_lines(menu["items"], items)
        stock_request = [{"menu_item_id": it["menu_item_id"], "quantity": it["quantity"]} for it in items]
        self.collaborators.restaurants.check_stock(stock_request, ctx)

        # 3. Total from authoritative prices
        total = sum((line["price"] * line["quantity"] for line in lines), Decimal("0")).quantize(CENTS)

        # 4. Persist order & items
        order = self.store.create_order(
            user_id=user_id,
            restaurant_id=restaurant_id,
            address_id=address_id,
            total_price=total,
            items=lines,
        )
        logger.info(f"Order {order.order_id} created pending payment, total {total}",
                    extra={"correlation_id": cid})

        # 5. + 6. Payment record
        payment_id = self._run_step(
            order.order_id,
            "create payment",
            lambda: self.collaborators.payments.create_payment(order.order_id, user_id, total, ctx),
            cid,
        )
        order = self.store.set_payment_id(order.order_id, payment_id)

        # 7. Stock is committed before the customer has paid; there is no restock on failure.
        self._run_step(
            order.order_id,
            "decrease stock",
            lambda: self.collaborators.restaurants.decrease_stock(stock_request, ctx),
            cid,
        )
        self.store.record_step(order.order_id, models.SagaStep.STOCK_DECREASED)
        logger.info(f"Order {order.order_id} linked to payment {payment_id}, stock decreased",
                    extra={"correlation_id": cid})
        return order

    @staticmethod
    def _price_lines(menu_items: List[dict], requested: List[dict]) -> List[dict]:
        by_id = {m["id"]: m for m in menu_items}
        wanted = OrderedDict()
        for it in requested:
            if it["quantity"] <= 0:
                raise ValidationError(f"Quantity for menu item {it['menu_item_id']} must be greater than 0")
            wanted[it["menu_item_id"]] = wanted.get(it["menu_item_id"], 0) + it["quantity"]

        for menu_item_id, quantity in wanted.items():
            m = by_id.get(menu_item_id)
            if m is None:
                raise ValidationError(f"Menu item with ID {menu_item_id} not found", menu_item_id=menu_item_id)
            if not m["available"]:
                raise ValidationError(f"Menu item '{m['name']}' is not available", menu_item_id=menu_item_id)
            if m["stock"] < quantity:
                raise ValidationError(
                    f"Insufficient stock for '{m['name']}'. Available: {m['stock']}, Requested: {quantity}",
                    menu_item_id=menu_item_id,
                )

        return [
            {
                "menu_item_id": it["menu_item_id"],
                "menu_item_name": by_id[it["menu_item_id"]]["name"],
                "quantity": it["quantity"],
                "price": Decimal(str(by_id[it["menu_item_id"]]["price"])).quantize(CENTS),
            }
            for it in requested
        ]

    def _run_step(self, order_id, step, call, cid):
        try:
            return call()
        except OrderServiceError as e:
            e.details.setdefault("order_id", order_id)
            logger.error(f"Order {order_id}: {step} failed: {e.message}",
                         extra={"correlation_id": cid})
            raise

    # ----- Payment callback -----

    def handle_payment_callback(self, order_id: int, payment_status: str,
                                ctx: CallContext) -> Tuple[models.Order, bool]:
        """Apply a payment outcome. Returns the order and whether anything changed.

        Only a PENDING_PAYMENT order reacts; a repeated or late callback is a no-op.
        """
        cid = ctx.correlation_id
        order = self.store.get_or_404(order_id)
        if order.status != OrderStatus.PENDING_PAYMENT.value:
            logger.info(f"Payment callback for order {order_id} ignored, status already {order.status}",
                        extra={"correlation_id": cid})
            return order, False

        if payment_status != PAYMENT_SUCCESS:
            moved = self.store.transition(order_id, OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_FAILED)
            if moved:
                logger.info(f"Order {order_id} payment failed ({payment_status})",
                            extra={"correlation_id": cid})
            return self.store.get(order_id), moved

        if not self.store.transition(order_id, OrderStatus.PENDING_PAYMENT, OrderStatus.PAID):
            # another callback got there first
            return self.store.get(order_id), False
        logger.info(f"Order {order_id} paid, requesting driver", extra={"correlation_id": cid})

        driver_id = self._assign_driver(order_id, ctx)
        if driver_id is None:
            if not self.store.transition(order_id, OrderStatus.PAID, OrderStatus.PREPARING):
                logger.warning(f"Order {order_id} left PAID before it could enter PREPARING",
                               extra={"correlation_id": cid})
                return self.store.get(order_id), True
            logger.info(f"Order {order_id} preparing without driver, open for pickup",
                        extra={"correlation_id": cid})
            return self.store.get(order_id), True

        moved = self.store.transition(
            order_id,
            OrderStatus.PAID,
            OrderStatus.PREPARING,
            driver_id=driver_id,
            estimated_delivery_time=models.utcnow() + self.delivery_eta,
        )
        if not moved:
            logger.warning(f"Order {order_id} left PAID before driver {driver_id} could be recorded",
                           extra={"correlation_id": cid})
            return self.store.get(order_id), True
        logger.info(f"Order {order_id} preparing, driver {driver_id} assigned",
                    extra={"correlation_id": cid})
        if self.dispatcher is not None:
            self.dispatcher.schedule(order_id, driver_id, cid)
        return self.store.get(order_id), True

    def _assign_driver(self, order_id: int, ctx: CallContext) -> Optional[int]:
        try:
            return self.collaborators.drivers.assign_driver(order_id, ctx)
        except OrderServiceError as e:
            logger.warning(f"Driver assignment for order {order_id} failed: {e.message}",
                           extra={"correlation_id": ctx.correlation_id})
            return None
        except Exception:
            # the order is already PAID; it must still reach PREPARING
            logger.exception(f"Driver assignment for order {order_id} failed unexpectedly",
                             extra={"correlation_id": ctx.correlation_id})
            return None

    # ----- Driver self-assignment -----

    def accept(self, order_id: int, driver_id: int, ctx: CallContext) -> models.Order:
        self.store.get_or_404(order_id)
        eta = models.utcnow() + self.delivery_eta
        if self.store.claim_for_driver(order_id, driver_id, eta):
            logger.info(f"Order {order_id} accepted by driver {driver_id}",
                        extra={"correlation_id": ctx.correlation_id})
            return self.store.get(order_id)

        order = self.store.get(order_id)
        if order.driver_id == driver_id:
            raise Conflict("Order is already assigned to you", order_id=order_id)
        if order.driver_id is not None:
            raise Conflict("Order already assigned to another driver", order_id=order_id)
        raise InvalidState("Order is not available for pickup", order_id=order_id, current_status=order.status)

    def complete(self, order_id: int, driver_id: int, ctx: CallContext) -> models.Order:
        order = self.store.get_or_404(order_id)
        if order.driver_id != driver_id:
            raise Forbidden("This order is not assigned to you", order_id=order_id)
        if order.status != OrderStatus.ON_THE_WAY.value:
            raise InvalidState("Order is not in ON_THE_WAY status", order_id=order_id, current_status=order.status)

        moved = self.store.transition(
            order_id,
            OrderStatus.ON_THE_WAY,
            OrderStatus.DELIVERED,
            where=(models.Order.driver_id == driver_id,),
        )
        if not moved:
            current = self.store.get(order_id)
            raise InvalidState("Order is not in ON_THE_WAY status", order_id=order_id, current_status=current.status)
        logger.info(f"Order {order_id} delivered by driver {driver_id}",
                    extra={"correlation_id": ctx.correlation_id})
        return self.store.get(order_id)

    # ----- Reconciliation -----

    def reconcile(self, order_id: int, ctx: CallContext) -> Tuple[models.Order, List[str]]:
        """Re-run the creation steps that never completed for ``order_id``."""
        cid = ctx.correlation_id
        order = self.store.get_or_404(order_id)
        done = set(self.store.completed_steps(order_id))
        performed = []

        if models.SagaStep.PAYMENT_CREATED not in done:
            if order.payment_id is not None:
                self.store.record_step(order_id, models.SagaStep.PAYMENT_CREATED, f"payment_id={order.payment_id}")
            elif order.status == OrderStatus.PENDING_PAYMENT.value:
                payment_id = self._run_step(
                    order_id,
                    "create payment",
                    lambda: self.collaborators.payments.create_payment(
                        order_id, order.user_id, Decimal(order.total_price), ctx
                    ),
                    cid,
                )
                order = self.store.set_payment_id(order_id, payment_id)
                performed.append(models.SagaStep.PAYMENT_CREATED)
            else:
                raise InvalidState("Order has no payment and can no longer be paid",
                                   order_id=order_id, current_status=order.status)

        if (models.SagaStep.STOCK_DECREASED not in done
                and order.status != OrderStatus.PAYMENT_FAILED.value):
            stock_request = [
                {"menu_item_id": it.menu_item_id, "quantity": it.quantity}
                for it in self.store.items_for(order_id)
            ]
            self._run_step(
                order_id,
                "decrease stock",
                lambda: self.collaborators.restaurants.decrease_stock(stock_request, ctx),
                cid,
            )
            self.store.record_step(order_id, models.SagaStep.STOCK_DECREASED)
            performed.append(models.SagaStep.STOCK_DECREASED)

        logger.info(f"Order {order_id} reconciled, performed: {performed or 'nothing'}",
                    extra={"correlation_id": cid})
        return self.store.get(order_id), performed
