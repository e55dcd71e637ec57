from celery import Celery

from reproute.config import settings
from reproute.errors import StoreUnavailable, ValidationError
from reproute.schemas import FeedbackInput
from reproute.services.orders import build_workflow
from reproute.utils.logging import logger

REDIS_URL = settings.REDIS_URL

celery = Celery("reproute", broker=REDIS_URL, backend=REDIS_URL)

celery.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    broker_connection_retry_on_startup=True,
    worker_prefetch_multiplier=1,
)

# Only store outages are retried. Validation and transition errors are final.
RETRY = dict(autoretry_for=(StoreUnavailable,), retry_backoff=True, retry_jitter=True, max_retries=5)

_workflow = None


def workflow():
    global _workflow
    if _workflow is None:
        _workflow = build_workflow()
    return _workflow


@celery.task(name="ping")
def ping():
    logger.info("ping received")
    return "pong"


@celery.task(name="process_order", **RETRY)
def process_order(order: dict):
    order_id = order.get("order_id")
    if not order_id:
        # a retried task must land on the same order, so the caller names it
        raise ValidationError("order_id is required for queued orders")
    logger.info("Worker processing order %s", order_id)
    try:
        return workflow().create_order(
            user_id=order["user_id"],
            order_value=float(order["order_value"]),
            product_category=order["product_category"],
            destination=order["destination"],
            order_id=order_id,
        )
    except StoreUnavailable:
        logger.warning("Store unavailable while processing order %s; retrying", order_id)
        raise
    except Exception:
        logger.exception("Order %s failed", order_id)
        raise


@celery.task(name="record_payment", **RETRY)
def record_payment(order_id: str):
    return workflow().record_payment(order_id)


@celery.task(name="mark_in_transit", **RETRY)
def mark_in_transit(order_id: str):
    return workflow().mark_in_transit(order_id)


@celery.task(name="record_delivery_failure", **RETRY)
def record_delivery_failure(order_id: str, reason: str, attempt_count: int = 1):
    return workflow().record_delivery_failure(order_id, reason, attempt_count)


@celery.task(name="record_return", **RETRY)
def record_return(order_id: str, reason: str | None = None):
    return workflow().record_return(order_id, reason)


@celery.task(name="complete_order", **RETRY)
def complete_order(order_id: str, feedback: dict | None = None):
    fb = FeedbackInput.model_validate(feedback) if feedback else None
    return workflow().complete_order(order_id, fb)


@celery.task(name="record_positive_behavior", **RETRY)
def record_positive_behavior(user_id: str, behavior_type: str, details: dict | None = None):
    return workflow().record_positive_behavior(user_id, behavior_type, details)


@celery.task(name="refresh_partner_performance", **RETRY)
def refresh_partner_performance(partner_id: str, days: int | None = None):
    view = workflow().refresh_partner_performance(partner_id, days)
    return view.model_dump()
