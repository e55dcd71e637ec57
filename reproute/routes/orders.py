# reproute/routes/orders.py

import secrets

from fastapi import APIRouter, Depends, Query

from ..schemas import (CompleteInput, DeliveryFailureInput, OrderInput, PositiveBehaviorInput,
                       ReturnInput, ScoreEventInput)
from ..services.orders import OrderWorkflow
from ..utils.security import require_api_key
from .deps import get_workflow

router = APIRouter(prefix="/v1", tags=["orders"], dependencies=[Depends(require_api_key)])


@router.post("/orders")
def create_order(payload: OrderInput, defer: bool = Query(False),
                 wf: OrderWorkflow = Depends(get_workflow)):
    if defer:
        from ..workers.tasks import process_order
        body = payload.model_dump()
        body["order_id"] = body["order_id"] or secrets.token_hex(16)
        task = process_order.delay(body)
        return {"ok": True, "queued": True, "order_id": body["order_id"], "task_id": task.id}
    return wf.create_order(payload.user_id, payload.order_value, payload.product_category,
                           payload.destination, order_id=payload.order_id)


@router.get("/orders/{order_id}")
def get_order(order_id: str, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.ledger.get_order(order_id)


@router.get("/orders/{order_id}/allocation")
def get_order_allocation(order_id: str, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.lifecycle.get_allocation_for_order(order_id)


@router.get("/orders/{order_id}/evidence")
def order_evidence(order_id: str, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.get_evidence(order_id)


@router.post("/orders/{order_id}/paid")
def payment_completed(order_id: str, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.record_payment(order_id)


@router.post("/orders/{order_id}/in-transit")
def mark_in_transit(order_id: str, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.mark_in_transit(order_id)


@router.post("/orders/{order_id}/delivery-failed")
def delivery_failed(order_id: str, payload: DeliveryFailureInput, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.record_delivery_failure(order_id, payload.reason, payload.attempt_count)


@router.post("/orders/{order_id}/return")
def product_return(order_id: str, payload: ReturnInput, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.record_return(order_id, payload.reason)


@router.post("/orders/{order_id}/complete")
def complete_order(order_id: str, payload: CompleteInput, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.complete_order(order_id, payload.feedback)


@router.post("/behavior/positive")
def positive_behavior(payload: PositiveBehaviorInput, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.record_positive_behavior(payload.user_id, payload.behavior_type, payload.details)


@router.get("/users/{user_id}/reputation")
def user_reputation(user_id: str, wf: OrderWorkflow = Depends(get_workflow)):
    return {"user_id": user_id, "reputation": wf.ledger.get_user_reputation(user_id)}


@router.post("/users/{user_id}/score")
def preview_score(user_id: str, payload: ScoreEventInput, wf: OrderWorkflow = Depends(get_workflow)):
    """Score an event without touching the ledger."""
    return wf.decisions.score_event(user_id, payload.event_type, payload.context)


@router.get("/users/{user_id}/analytics")
def user_analytics(user_id: str, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.user_analytics(user_id)
