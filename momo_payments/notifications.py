from concurrent.futures import Executor
from typing import Callable

import structlog

from momo_payments.models import Order

logger = structlog.get_logger(__name__)

Listener = Callable[[Order], None]


def log_confirmation(order: Order) -> None:
    logger.info("order_confirmation_queued", order_id=order.id, user_id=order.user_id)


class CompletionNotifier:
    """Fans a completed payment out to listeners (stock update, confirmation email).

    Listener failures are logged and dropped: the payment transition has
    already been committed.
    """

    def __init__(self, listeners: list[Listener] | None = None, executor: Executor | None = None):
        self._listeners = list(listeners or [])
        self._executor = executor

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def payment_completed(self, order: Order) -> None:
        for listener in self._listeners:
            if self._executor is not None:
                self._executor.submit(self._run, listener, order)
            else:
                self._run(listener, order)

    @staticmethod
    def _run(listener: Listener, order: Order) -> None:
        try:
            listener(order)
        except Exception:
            # Isolated: one listener cannot stop the others
            logger.exception(
                "payment_listener_failed",
                order_id=order.id,
                listener=getattr(listener, "__name__", repr(listener)),
            )
