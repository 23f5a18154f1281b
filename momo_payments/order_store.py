from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update

from momo_payments.database import SessionLocal
from momo_payments.models import Order


class OrderStore:
    """Reads orders and applies conditional (compare-and-swap) updates.

    Orders handed out are detached from their session; callers never hold a
    session or transaction open while waiting on a provider.
    """

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def add(self, order: Order) -> Order:
        with self._session_factory() as db:
            db.add(order)
            db.commit()
            db.refresh(order)
            db.expunge(order)
        return order

    def find_by_id(self, order_id: str) -> Order | None:
        with self._session_factory() as db:
            return db.get(Order, order_id)

    def find_by_transaction_reference(self, reference: str) -> Order | None:
        if not reference:
            return None
        with self._session_factory() as db:
            return db.execute(
                select(Order).where(Order.transaction_id == reference)
            ).scalars().first()

    def save(
        self,
        order_id: str,
        expected_status: str,
        changes: dict[str, Any],
        expected_reference: str | None = None,
    ) -> bool:
        """Apply ``changes`` only if the payment status is still ``expected_status``.

        Returns True when this call performed the write, False when another
        writer changed the row first.
        """
        stmt = update(Order).where(
            Order.id == order_id,
            Order.payment_status == expected_status,
        )
        if expected_reference is not None:
            stmt = stmt.where(Order.transaction_id == expected_reference)
        values = dict(changes)
        values["updated_at"] = datetime.now(timezone.utc)

        with self._session_factory() as db:
            result = db.execute(stmt.values(**values))
            db.commit()
            return result.rowcount == 1
