"""pytest fixtures: in-memory database, fake collaborators, API client."""

import os

# must be set before app.main is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_DISPATCH_ENABLED", "false")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from app import db
from app.clients import CallContext
from app.dispatch import AutoDispatcher
from app.orchestrator import OrderOrchestrator
from app.state_machine import OrderStatus
from app.store import OrderStore

from fakes import fake_collaborators


@pytest.fixture
def engine():
    engine = db.make_engine("sqlite://", poolclass=StaticPool)
    db.init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db.make_session_factory(engine)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def store(session):
    return OrderStore(session)


@pytest.fixture
def collaborators():
    return fake_collaborators()


@pytest.fixture
def dispatcher(session_factory):
    d = AutoDispatcher(session_factory, delay_seconds=3600, enabled=True)
    yield d
    d.cancel_all()


@pytest.fixture
def ctx():
    return CallContext(correlation_id="test-cid", authorization="Bearer customer-token")


@pytest.fixture
def orchestrator(store, collaborators, dispatcher):
    return OrderOrchestrator(store, collaborators, dispatcher=dispatcher, delivery_eta_minutes=30)


@pytest.fixture
def make_order(store):
    """Insert an order directly and walk it to ``status`` through valid transitions."""

    path = [OrderStatus.PENDING_PAYMENT, OrderStatus.PAID, OrderStatus.PREPARING,
            OrderStatus.ON_THE_WAY, OrderStatus.DELIVERED]

    def _make(status=OrderStatus.PENDING_PAYMENT, driver_id=None, user_id=1, payment_id=None):
        order = store.create_order(
            user_id=user_id,
            restaurant_id=7,
            address_id=10,
            total_price=Decimal("50000.00"),
            items=[{"menu_item_id": 100, "menu_item_name": "Nasi Goreng", "quantity": 2,
                    "price": Decimal("25000.00")}],
        )
        if payment_id is not None:
            store.set_payment_id(order.order_id, payment_id)
        if status == OrderStatus.PAYMENT_FAILED:
            store.transition(order.order_id, OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_FAILED)
            return store.get(order.order_id)
        for src, dst in zip(path, path[1:path.index(OrderStatus(status)) + 1]):
            extra = {"driver_id": driver_id} if dst == OrderStatus.PREPARING and driver_id is not None else {}
            store.transition(order.order_id, src, dst, **extra)
        return store.get(order.order_id)

    return _make


@pytest.fixture
def client(session_factory, collaborators, dispatcher):
    from app import main

    def override_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    main.app.dependency_overrides[main.get_db] = override_db
    main.app.dependency_overrides[main.get_collaborators] = lambda: collaborators
    main.app.dependency_overrides[main.get_dispatcher] = lambda: dispatcher
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()

