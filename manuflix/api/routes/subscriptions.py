from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from manuflix.api.dependencies import get_current_user, get_store
from manuflix.core.exceptions import StoreError
from manuflix.schemas.subscription import AccessSchema, SubscriptionSchema, TransactionSchema
from manuflix.services.subscription_store import SubscriptionStore

router = APIRouter()


@router.get("/me", response_model=Optional[SubscriptionSchema])
async def my_subscription(
    user: Dict[str, Any] = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_store),
):
    try:
        return store.get_active_subscription(user["id"])
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@router.get("/me/access", response_model=AccessSchema)
async def my_access(
    user: Dict[str, Any] = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_store),
):
    try:
        has_access = store.check_user_access(user["id"])
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return AccessSchema(user_id=user["id"], has_access=has_access)


@router.get("/me/transactions", response_model=list[TransactionSchema])
async def my_transactions(
    user: Dict[str, Any] = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_store),
):
    try:
        return store.get_user_transactions(user["id"])
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
