from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from manuflix.api.dependencies import get_store
from manuflix.core.exceptions import StoreError
from manuflix.schemas.plan import PlanSchema
from manuflix.services.subscription_store import SubscriptionStore

router = APIRouter()


@router.get("/", response_model=list[PlanSchema])
async def list_plans(store: SubscriptionStore = Depends(get_store)):
    try:
        return store.list_plans()
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@router.get("/{plan_id}", response_model=PlanSchema)
async def plan_detail(plan_id: str, store: SubscriptionStore = Depends(get_store)):
    try:
        plan = store.get_plan(plan_id)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    return plan
