from enum import Enum


class PaymentMethod(str, Enum):
    MOBILE_MONEY = "mobile_money"
    COD = "cod"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"


class Provider(str, Enum):
    MTN_MOBILE_MONEY = "mtn_mobile_money"
    AIRTEL_MONEY = "airtel_money"
    CASH = "cash"
    BANK = "bank"
    VISA = "visa"
    MASTERCARD = "mastercard"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
