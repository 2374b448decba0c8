import logging
import threading

from . import models
from .state_machine import OrderStatus
from .store import OrderStore

logger = logging.getLogger("order-service.dispatch")


class AutoDispatcher:
    """Moves a driver-assigned order from PREPARING to ON_THE_WAY after a fixed delay.

    This is a simulated preparation timer, not a kitchen signal. When it fires the
    order must still be PREPARING with the same driver; anything else (the order
    moved on, or carries another driver) is a no-op. Each order is scheduled at
    most once while its timer is pending.
    """

    def __init__(self, session_factory, delay_seconds: float = 10.0, enabled: bool = True):
        self.session_factory = session_factory
        self.delay_seconds = delay_seconds
        self.enabled = enabled
        self._lock = threading.Lock()
        self._timers = {}

    def schedule(self, order_id: int, driver_id: int, cid: str = "-") -> bool:
        if not self.enabled:
            return False
        with self._lock:
            if order_id in self._timers:
                logger.info(f"Auto-dispatch for order {order_id} already scheduled",
                            extra={"correlation_id": cid})
                return False
            timer = threading.Timer(self.delay_seconds, self._fire, args=(order_id, driver_id, cid))
            timer.daemon = True
            self._timers[order_id] = timer
        timer.start()
        logger.info(f"Auto-dispatch for order {order_id} in {self.delay_seconds}s",
                    extra={"correlation_id": cid})
        return True

    def _fire(self, order_id: int, driver_id: int, cid: str = "-") -> bool:
        with self._lock:
            self._timers.pop(order_id, None)
        session = self.session_factory()
        try:
            moved = OrderStore(session).transition(
                order_id,
                OrderStatus.PREPARING,
                OrderStatus.ON_THE_WAY,
                where=(models.Order.driver_id == driver_id,),
            )
        except Exception:
            logger.exception(f"Auto-dispatch for order {order_id} failed",
                             extra={"correlation_id": cid})
            return False
        finally:
            session.close()
        if moved:
            logger.info(f"Order {order_id} auto-dispatched with driver {driver_id}",
                        extra={"correlation_id": cid})
        else:
            logger.info(f"Order {order_id} no longer waiting for dispatch, timer skipped",
                        extra={"correlation_id": cid})
        return moved

    def pending(self):
        with self._lock:
            return set(self._timers)

    def cancel_all(self):
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for t in timers:
            t.cancel()
