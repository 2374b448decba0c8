from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Numeric,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone

from .state_machine import OrderStatus

Base = declarative_base()


def utcnow():
    # stored naive, always UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    restaurant_id = Column(Integer, nullable=False, index=True)
    address_id = Column(Integer, nullable=False)
    status = Column(String(50), nullable=False, default=OrderStatus.PENDING_PAYMENT.value, index=True)
    total_price = Column(Numeric(10, 2), nullable=False)  # fixed at creation
    payment_id = Column(Integer, nullable=True)
    driver_id = Column(Integer, nullable=True, index=True)
    estimated_delivery_time = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderItem.order_item_id",
    )
    saga_steps = relationship("SagaStep", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    order_item_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False, index=True)
    menu_item_id = Column(Integer, nullable=False)
    menu_item_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)  # snapshot of menu price at order time
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("Order", back_populates="items")


class SagaStep(Base):
    """A creation step that completed for an order; read back by reconciliation."""

    __tablename__ = "saga_steps"
    __table_args__ = (UniqueConstraint("order_id", "step", name="uq_saga_steps_order_step"),)

    ORDER_PERSISTED = "ORDER_PERSISTED"
    PAYMENT_CREATED = "PAYMENT_CREATED"
    STOCK_DECREASED = "STOCK_DECREASED"

    saga_step_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False, index=True)
    step = Column(String(50), nullable=False)
    detail = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("Order", back_populates="saga_steps")
