from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from . import models
from .errors import NotFound
from .metrics import ORDER_TRANSITIONS
from .state_machine import OrderStatus, ensure_transition


class OrderStore:
    """Persistence for orders, their items and saga steps.

    Every status change goes through a conditional ``UPDATE ... WHERE status = :from``
    so that of two racing writers exactly one changes the row.
    """

    def __init__(self, session: Session):
        self.session = session

    # ----- Writes -----

    def create_order(self, *, user_id, restaurant_id, address_id, total_price, items) -> models.Order:
        """Insert the order, its items and the ORDER_PERSISTED step in one transaction."""
        try:
            order = models.Order(
                user_id=user_id,
                restaurant_id=restaurant_id,
                address_id=address_id,
                status=OrderStatus.PENDING_PAYMENT.value,
                total_price=total_price,
            )
            self.session.add(order)
            self.session.flush()  # get order_id

            for it in items:
                self.session.add(
                    models.OrderItem(
                        order_id=order.order_id,
                        menu_item_id=it["menu_item_id"],
                        menu_item_name=it["menu_item_name"],
                        quantity=it["quantity"],
                        price=it["price"],
                    )
                )
            self.session.add(models.SagaStep(order_id=order.order_id, step=models.SagaStep.ORDER_PERSISTED))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(order)
        return order

    def set_payment_id(self, order_id: int, payment_id: int) -> models.Order:
        try:
            self.session.query(models.Order).filter(models.Order.order_id == order_id).update(
                {models.Order.payment_id: payment_id, models.Order.updated_at: models.utcnow()},
                synchronize_session=False,
            )
            self._add_step(order_id, models.SagaStep.PAYMENT_CREATED, f"payment_id={payment_id}")
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return self.get(order_id)

    def record_step(self, order_id: int, step: str, detail: Optional[str] = None) -> None:
        try:
            self._add_step(order_id, step, detail)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def transition(self, order_id: int, src: OrderStatus, dst: OrderStatus, *, where=(), **values) -> bool:
        """Move ``order_id`` from ``src`` to ``dst`` if it is still in ``src``.

        ``where`` adds extra SQL conditions, ``values`` extra columns to write.
        Returns False when no row matched (someone else moved it first).
        """
        ensure_transition(src, dst)
        updates = {getattr(models.Order, k): v for k, v in values.items()}
        updates[models.Order.status] = OrderStatus(dst).value
        updates[models.Order.updated_at] = models.utcnow()
        try:
            changed = (
                self.session.query(models.Order)
                .filter(models.Order.order_id == order_id, models.Order.status == OrderStatus(src).value, *where)
                .update(updates, synchronize_session=False)
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        if changed:
            ORDER_TRANSITIONS.labels(OrderStatus(src).value, OrderStatus(dst).value).inc()
        return changed == 1

    def claim_for_driver(self, order_id: int, driver_id: int, estimated_delivery_time: datetime) -> bool:
        """First-writer-wins accept: only an unclaimed PREPARING order moves."""
        return self.transition(
            order_id,
            OrderStatus.PREPARING,
            OrderStatus.ON_THE_WAY,
            where=(models.Order.driver_id.is_(None),),
            driver_id=driver_id,
            estimated_delivery_time=estimated_delivery_time,
        )

    def _add_step(self, order_id, step, detail=None):
        exists = (
            self.session.query(models.SagaStep)
            .filter(models.SagaStep.order_id == order_id, models.SagaStep.step == step)
            .first()
        )
        if not exists:
            self.session.add(models.SagaStep(order_id=order_id, step=step, detail=detail))

    # ----- Reads -----

    def get(self, order_id: int) -> Optional[models.Order]:
        order = self.session.query(models.Order).filter(models.Order.order_id == order_id).first()
        if order is not None:
            # conditional updates bypass the identity map
            self.session.refresh(order)
        return order

    def get_or_404(self, order_id: int) -> models.Order:
        order = self.get(order_id)
        if order is None:
            raise NotFound("Order not found", order_id=order_id)
        return order

    def items_for(self, order_id: int) -> List[models.OrderItem]:
        return (
            self.session.query(models.OrderItem)
            .filter(models.OrderItem.order_id == order_id)
            .order_by(models.OrderItem.order_item_id)
            .all()
        )

    def completed_steps(self, order_id: int) -> List[str]:
        rows = (
            self.session.query(models.SagaStep.step)
            .filter(models.SagaStep.order_id == order_id)
            .order_by(models.SagaStep.saga_step_id)
            .all()
        )
        return [r[0] for r in rows]

    def list_by_user(self, user_id: int) -> List[models.Order]:
        return (
            self.session.query(models.Order)
            .filter(models.Order.user_id == user_id)
            .order_by(models.Order.created_at.desc(), models.Order.order_id.desc())
            .all()
        )

    def list_available(self) -> List[models.Order]:
        return (
            self.session.query(models.Order)
            .filter(models.Order.status == OrderStatus.PREPARING.value, models.Order.driver_id.is_(None))
            .order_by(models.Order.created_at.asc(), models.Order.order_id.asc())
            .all()
        )

    def list_by_driver(self, driver_id: int, statuses: Iterable[OrderStatus] = (OrderStatus.ON_THE_WAY,)):
        return (
            self.session.query(models.Order)
            .filter(
                models.Order.driver_id == driver_id,
                models.Order.status.in_([OrderStatus(s).value for s in statuses]),
            )
            .order_by(models.Order.created_at.desc(), models.Order.order_id.desc())
            .all()
        )
