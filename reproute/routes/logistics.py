# reproute/routes/logistics.py

from fastapi import APIRouter, Depends, Query

from ..schemas import AllocationStatusInput, PartnerInput, PartnerStatusInput
from ..services.orders import OrderWorkflow
from ..utils.security import require_api_key
from .deps import get_workflow

router = APIRouter(prefix="/v1/logistics", tags=["logistics"], dependencies=[Depends(require_api_key)])


@router.post("/partners")
def add_partner(payload: PartnerInput, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.directory.add_partner(payload)


@router.get("/partners")
def list_partners(area: str | None = Query(None), wf: OrderWorkflow = Depends(get_workflow)):
    if area:
        return wf.directory.list_partners_by_area(area)
    return wf.directory.list_active_partners()


@router.get("/partners/{partner_id}")
def get_partner(partner_id: str, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.directory.get_partner(partner_id)


@router.put("/partners/{partner_id}/status")
def set_partner_status(partner_id: str, payload: PartnerStatusInput, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.directory.set_status(partner_id, payload.operational_status)


@router.get("/partners/{partner_id}/capacity")
def partner_capacity(partner_id: str, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.directory.get_capacity(partner_id)


@router.get("/partners/{partner_id}/performance")
def partner_performance(partner_id: str, days: int | None = Query(None, ge=1),
                        wf: OrderWorkflow = Depends(get_workflow)):
    return wf.partner_report(partner_id, days)


@router.post("/partners/{partner_id}/performance/refresh")
def refresh_performance(partner_id: str, days: int | None = Query(None, ge=1),
                        wf: OrderWorkflow = Depends(get_workflow)):
    return wf.refresh_partner_performance(partner_id, days)


@router.get("/allocations/{allocation_id}")
def get_allocation(allocation_id: str, wf: OrderWorkflow = Depends(get_workflow)):
    return wf.lifecycle.get_allocation(allocation_id)


@router.put("/allocations/{allocation_id}/status")
def update_allocation_status(allocation_id: str, payload: AllocationStatusInput,
                             wf: OrderWorkflow = Depends(get_workflow)):
    return wf.lifecycle.update_status(allocation_id, payload.status, payload.extra)


@router.get("/analytics/system")
def system_analytics(days: int = Query(30, ge=1), wf: OrderWorkflow = Depends(get_workflow)):
    return wf.analytics.system_analytics(days)
