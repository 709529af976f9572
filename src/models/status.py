"""Canonical status vocabularies shared by orders, shipments, payments and returns."""

from enum import Enum


class ShipmentStatus(str, Enum):
    """Canonical shipment status, also used as the order's root status.

    Carriers may report any of these at any time; no transition graph is
    enforced once an event is authenticated.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PACKED = "packed"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURN_REQUESTED = "return_requested"
    RETURNED = "returned"
    REFUND_PROCESSING = "refund_processing"
    REFUNDED = "refunded"
    FAILED = "failed"


# The first status in this list found on any shipment becomes the order status
# when shipments are neither all delivered nor all cancelled.
ORDER_STATUS_PRECEDENCE: tuple[ShipmentStatus, ...] = (
    ShipmentStatus.REFUND_PROCESSING,
    ShipmentStatus.RETURNED,
    ShipmentStatus.RETURN_REQUESTED,
    ShipmentStatus.OUT_FOR_DELIVERY,
    ShipmentStatus.IN_TRANSIT,
    ShipmentStatus.SHIPPED,
    ShipmentStatus.PACKED,
    ShipmentStatus.CONFIRMED,
)

# Orders in these states can no longer be cancelled.
NON_CANCELLABLE_ORDER_STATUSES = frozenset(
    {ShipmentStatus.CANCELLED, ShipmentStatus.DELIVERED, ShipmentStatus.RETURNED}
)

# Orders in these states accept new return requests.
RETURNABLE_ORDER_STATUSES = frozenset(
    {ShipmentStatus.DELIVERED, ShipmentStatus.CONFIRMED, ShipmentStatus.SHIPPED}
)


class PaymentStatus(str, Enum):
    """Payment status values matching database enum."""

    PENDING = "pending"
    VERIFYING = "verifying"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Failure and cancellation events may only move a payment out of these.
OPEN_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.VERIFYING)


class PaymentPurpose(str, Enum):
    """What a payment pays for. Only order payments trigger finalization."""

    ORDER = "order"
    SHOP = "shop"


class ReturnStatus(str, Enum):
    """Return request status values."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


class ReverseShipmentStatus(str, Enum):
    """Outcome of the post-approval reverse shipment call."""

    NONE = "none"
    SUCCESS = "success"
    FAILED = "failed"


class Remedy(str, Enum):
    """What the customer asked for in a return request."""

    REPLACEMENT = "replacement"
    REFUND = "refund"


class ReturnReason(str, Enum):
    """Allowed return reasons."""

    DAMAGED = "damaged"
    DEFECTIVE = "defective"
    BETTER_PRICE = "better_price"
    NOT_PERFECT = "not_perfect"


class Carrier(str, Enum):
    """Supported shipping carriers."""

    FEDEX = "fedex"
    SHIPROCKET = "shiprocket"
    UPS = "ups"


class PaymentGateway(str, Enum):
    """Supported payment gateways."""

    STRIPE = "stripe"
    RAZORPAY = "razorpay"
    PAYPAL = "paypal"
