import enum


class OrderStatus(str, enum.Enum):
    CREATED = "CREATED"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class FailureReason(str, enum.Enum):
    NONE = "NONE"
    CUSTOMER_ABSENT = "CUSTOMER_ABSENT"
    CUSTOMER_REFUSED = "CUSTOMER_REFUSED"
    ADDRESS_INVALID = "ADDRESS_INVALID"
    OTHER = "OTHER"


class EventType(str, enum.Enum):
    PURCHASE_CREATED = "PURCHASE_CREATED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    DELIVERY_ACCEPTED = "DELIVERY_ACCEPTED"
    ORDER_COMPLETED = "ORDER_COMPLETED"
    PRODUCT_RETURNED = "PRODUCT_RETURNED"
    DELIVERY_FAILED_ABSENT = "DELIVERY_FAILED_ABSENT"
    DELIVERY_FAILED_REFUSED = "DELIVERY_FAILED_REFUSED"
    EARLY_PAYMENT = "EARLY_PAYMENT"
    POSITIVE_REVIEW = "POSITIVE_REVIEW"
    REFERRAL = "REFERRAL"
    LOYALTY_PROGRAM = "LOYALTY_PROGRAM"


POSITIVE_BEHAVIORS = (
    EventType.EARLY_PAYMENT,
    EventType.POSITIVE_REVIEW,
    EventType.REFERRAL,
    EventType.LOYALTY_PROGRAM,
)


class AllocationStatus(str, enum.Enum):
    ALLOCATED = "allocated"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"


class AllocationMethod(str, enum.Enum):
    ORACLE_RANKED = "oracle-ranked"
    RANDOM = "random"
    RULE_FALLBACK = "rule-fallback"


class PartnerStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
