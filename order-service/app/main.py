from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session
from typing import List
import logging
import httpx

from . import db, schemas
from .clients import CallContext, build_collaborators
from .config import load_settings
from .deps import Identity, get_call_context, get_current_user, require_driver
from .dispatch import AutoDispatcher
from .errors import OrderServiceError
from .metrics import MetricsMiddleware, metrics_endpoint, ORDERS_CREATED
from .orchestrator import OrderOrchestrator
from .queries import OrderQueries
from .store import OrderStore

settings = load_settings()


# ----- Logging -----
class CorrelationIdFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] [order-service] [cid=%(correlation_id)s] %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(CorrelationIdFilter())
logger = logging.getLogger("order-service")

# ----- Init -----
db.init_db()
dispatcher = AutoDispatcher(
    db.SessionLocal,
    delay_seconds=settings.auto_dispatch_delay_seconds,
    enabled=settings.auto_dispatch_enabled,
)


@asynccontextmanager
async def lifespan(_app):
    yield
    dispatcher.cancel_all()


app = FastAPI(title="order-service", version="v1", lifespan=lifespan)
app.add_middleware(MetricsMiddleware, service_name="order-service")


# ----- Error envelopes -----
@app.exception_handler(OrderServiceError)
def order_service_error_handler(request: Request, exc: OrderServiceError):
    body = {"status": "error", "code": exc.code, "message": exc.message}
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        body = {"status": "error", **exc.detail}
    else:
        body = {"status": "error", "message": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body), headers=exc.headers)


@app.exception_handler(RequestValidationError)
def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"status": "error", "message": "Invalid request", "details": exc.errors()}),
    )


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}",
                     extra={"correlation_id": request.headers.get("x-correlation-id", "-")})
    return JSONResponse(status_code=500, content={"status": "error", "message": "Internal server error"})


# ----- DB Dependency -----
def get_db():
    s = db.SessionLocal()
    try:
        yield s
    finally:
        s.close()


def get_http_client():
    return httpx.Client(timeout=settings.http_timeout_seconds)


# ----- Collaborators / orchestration -----
def get_collaborators():
    client = get_http_client()
    try:
        yield build_collaborators(settings, client)
    finally:
        client.close()


def get_dispatcher():
    return dispatcher


def get_orchestrator(
    db_sess: Session = Depends(get_db),
    collaborators=Depends(get_collaborators),
    auto_dispatcher=Depends(get_dispatcher),
):
    return OrderOrchestrator(
        OrderStore(db_sess),
        collaborators,
        dispatcher=auto_dispatcher,
        delivery_eta_minutes=settings.delivery_eta_minutes,
    )


def get_queries(db_sess: Session = Depends(get_db), collaborators=Depends(get_collaborators)):
    return OrderQueries(OrderStore(db_sess), collaborators)


# ----- Infra Endpoints -----
@app.get("/health")
def health():
    return {"status": "ok", "service": "order-service"}


@app.get("/metrics")
def metrics():
    return metrics_endpoint()


# ----- API: Create Order (Main Orchestration) -----
@app.post("/orders", response_model=schemas.Envelope[schemas.OrderCreated], status_code=201)
def create_order(
    payload: schemas.CreateOrderRequest,
    user: Identity = Depends(get_current_user),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
):
    try:
        order = orchestrator.create_order(
            user_id=user.user_id,
            restaurant_id=payload.restaurant_id,
            address_id=payload.address_id,
            items=[it.model_dump() for it in payload.items],
            ctx=ctx,
        )
    except OrderServiceError as e:
        ORDERS_CREATED.labels("FAILED").inc()
        detail = {
            "code": e.code,
            "message": "Failed to create order",
            "details": e.message,
            "correlationId": ctx.correlation_id,
        }
        if "order_id" in e.details:
            detail["order_id"] = e.details["order_id"]
        raise HTTPException(400, detail)

    ORDERS_CREATED.labels(order.status).inc()
    return schemas.Envelope(
        message="Order created successfully, awaiting payment.",
        data=schemas.OrderCreated.model_validate(order),
    )


# ----- API: Customer reads -----
@app.get("/orders", response_model=schemas.Envelope[List[schemas.OrderSummary]])
def list_orders(
    user: Identity = Depends(get_current_user),
    queries: OrderQueries = Depends(get_queries),
    ctx: CallContext = Depends(get_call_context),
):
    return schemas.Envelope(data=queries.list_orders(user.user_id, ctx))


# ----- API: Driver endpoints -----
@app.get("/orders/available", response_model=schemas.Envelope[List[schemas.DriverOrderView]])
def available_orders(
    driver: Identity = Depends(require_driver),
    queries: OrderQueries = Depends(get_queries),
    ctx: CallContext = Depends(get_call_context),
):
    return schemas.Envelope(data=queries.available_orders(ctx))


@app.get("/orders/driver/my-orders", response_model=schemas.Envelope[List[schemas.DriverOrderView]])
def driver_orders(
    driver: Identity = Depends(require_driver),
    queries: OrderQueries = Depends(get_queries),
    ctx: CallContext = Depends(get_call_context),
):
    return schemas.Envelope(data=queries.driver_orders(driver.user_id, ctx))


@app.get("/orders/{order_id}", response_model=schemas.Envelope[schemas.OrderDetails])
def get_order(
    order_id: int,
    user: Identity = Depends(get_current_user),
    queries: OrderQueries = Depends(get_queries),
    ctx: CallContext = Depends(get_call_context),
):
    return schemas.Envelope(data=queries.order_details(order_id, user.user_id, ctx))


@app.post("/orders/{order_id}/accept", response_model=schemas.Envelope[schemas.OrderState])
def accept_order(
    order_id: int,
    driver: Identity = Depends(require_driver),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
):
    order = orchestrator.accept(order_id, driver.user_id, ctx)
    return schemas.Envelope(message="Order accepted successfully", data=schemas.OrderState.model_validate(order))


@app.post("/orders/{order_id}/complete", response_model=schemas.Envelope[schemas.OrderState])
def complete_order(
    order_id: int,
    driver: Identity = Depends(require_driver),
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
):
    order = orchestrator.complete(order_id, driver.user_id, ctx)
    return schemas.Envelope(message="Order completed successfully", data=schemas.OrderState.model_validate(order))


# ----- API: Internal -----
@app.post("/orders/internal/callback/payment", response_model=schemas.Envelope[schemas.OrderState])
def payment_callback(
    payload: schemas.PaymentCallbackRequest,
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
):
    order, applied = orchestrator.handle_payment_callback(payload.order_id, payload.payment_status, ctx)
    message = "Payment callback processed" if applied else "Payment callback already processed"
    return schemas.Envelope(message=message, data=schemas.OrderState.model_validate(order))


@app.post("/orders/internal/{order_id}/reconcile", response_model=schemas.Envelope[schemas.ReconcileResult])
def reconcile_order(
    order_id: int,
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
):
    order, performed = orchestrator.reconcile(order_id, ctx)
    return schemas.Envelope(
        message="Order reconciled",
        data=schemas.ReconcileResult(
            order_id=order.order_id,
            status=order.status,
            payment_id=order.payment_id,
            performed_steps=performed,
        ),
    )
