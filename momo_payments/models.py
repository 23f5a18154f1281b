import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from momo_payments.database import Base
from momo_payments.enums import OrderStatus, PaymentMethod, PaymentStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String, nullable=False, index=True)
    total_price = Column(Integer, nullable=False)        # RWF has no minor unit
    customer_name = Column(String)
    customer_email = Column(String)

    # Payment info: written only through the payment state machine
    payment_method = Column(String, default=PaymentMethod.COD.value)
    payment_provider = Column(String)
    transaction_id = Column(String, index=True)          # provider reference
    payment_phone = Column(String)
    payment_status = Column(String, default=PaymentStatus.PENDING.value, index=True)
    paid_at = Column(DateTime(timezone=True))

    order_status = Column(String, default=OrderStatus.PENDING.value, index=True)
    cancellation_reason = Column(String)
    cancelled_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)

    @property
    def payment_info(self) -> "PaymentInfo":
        return PaymentInfo(
            method=self.payment_method,
            provider=self.payment_provider,
            transaction_id=self.transaction_id,
            phone_number=self.payment_phone,
            status=self.payment_status,
            paid_at=self.paid_at,
        )


@dataclass(frozen=True)
class PaymentInfo:
    method: str | None
    provider: str | None
    transaction_id: str | None
    phone_number: str | None
    status: str
    paid_at: datetime | None
