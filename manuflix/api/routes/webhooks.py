from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from manuflix.api.dependencies import (
    get_confirmation,
    get_provider,
    get_session_manager,
    get_store,
    verify_webhook_token,
)
from manuflix.core.exceptions import ProviderError, StoreError
from manuflix.schemas.webhook import PixWebhookEvent, PixWebhookResult
from manuflix.services.checkout import CheckoutSessionManager, PaymentProvider
from manuflix.services.payment_confirmation import PaymentConfirmationService, normalize_provider_status
from manuflix.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/pix", response_model=PixWebhookResult, dependencies=[Depends(verify_webhook_token)])
async def pix_payment_notification(
    event: PixWebhookEvent,
    store: SubscriptionStore = Depends(get_store),
    provider: PaymentProvider = Depends(get_provider),
    confirmation: PaymentConfirmationService = Depends(get_confirmation),
    manager: CheckoutSessionManager = Depends(get_session_manager),
):
    """
    Provider notification; goes through the same transition as the poll loop.

    The pushed status is only a hint. The charge status is read back from the
    provider and that answer drives the transition.
    """
    logger.info("PIX webhook payment_id=%s status=%s", event.payment_id, event.status)
    try:
        transaction = store.get_transaction_by_payment_id(event.payment_id)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if transaction is None:
        raise HTTPException(status_code=404, detail=f"Transaction not found for payment_id: {event.payment_id}")

    try:
        provider_status = await provider.get_charge_status(event.payment_id)
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    if normalize_provider_status(provider_status) is not normalize_provider_status(event.status):
        logger.warning(
            "PIX webhook for %s reported %s but the provider says %s",
            event.payment_id,
            event.status,
            provider_status,
        )

    try:
        result = confirmation.apply(transaction, provider_status)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    if result.confirmed or result.failed:
        manager.notify_payment(event.payment_id, result)

    return PixWebhookResult(
        outcome=result.transition.value,
        transaction_id=result.transaction.id,
        transaction_status=result.transaction.status,
        provider_status=provider_status,
        subscription_id=result.subscription.id if result.subscription is not None else None,
    )
