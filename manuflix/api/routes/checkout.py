from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Response, status

from manuflix.api.dependencies import get_current_user, get_session_manager, get_store
from manuflix.core.exceptions import CheckoutStateError, StoreError, ValidationError
from manuflix.schemas.checkout import CheckoutCreate, CheckoutSnapshot, Customer
from manuflix.services.checkout import CheckoutSession, CheckoutSessionManager, CheckoutState
from manuflix.services.subscription_store import SubscriptionStore

router = APIRouter()


def _owned_session(
    session_id: str,
    user: Dict[str, Any],
    manager: CheckoutSessionManager,
) -> CheckoutSession:
    session = manager.get(session_id)
    if session is None or session.user_id != user["id"]:
        raise HTTPException(status_code=404, detail="Checkout session not found")
    return session


@router.post("/sessions", response_model=CheckoutSnapshot, status_code=status.HTTP_201_CREATED)
async def open_checkout(
    payload: CheckoutCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_store),
    manager: CheckoutSessionManager = Depends(get_session_manager),
):
    try:
        plan = store.get_plan(payload.plan_id)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    session = manager.create(user["id"], plan)
    return session.snapshot()


@router.get("/sessions/{session_id}", response_model=CheckoutSnapshot)
async def checkout_status(
    session_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    manager: CheckoutSessionManager = Depends(get_session_manager),
):
    return _owned_session(session_id, user, manager).snapshot()


@router.post("/sessions/{session_id}/submit", response_model=CheckoutSnapshot)
async def submit_checkout(
    session_id: str,
    customer: Customer,
    user: Dict[str, Any] = Depends(get_current_user),
    manager: CheckoutSessionManager = Depends(get_session_manager),
):
    session = _owned_session(session_id, user, manager)
    try:
        state = await session.submit(customer)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except CheckoutStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if state is CheckoutState.FAILED:
        raise HTTPException(status_code=502, detail=session.error)
    return session.snapshot()


@router.post("/sessions/{session_id}/retry", response_model=CheckoutSnapshot)
async def retry_checkout(
    session_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    manager: CheckoutSessionManager = Depends(get_session_manager),
):
    session = _owned_session(session_id, user, manager)
    try:
        session.retry()
    except CheckoutStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return session.snapshot()


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_checkout(
    session_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    manager: CheckoutSessionManager = Depends(get_session_manager),
):
    _owned_session(session_id, user, manager)
    await manager.close(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
