"""
Checkout workflow: charge creation, status polling and confirmation for one
plan-selection modal.

Each CheckoutSession owns two asyncio tasks while it waits for payment, a
status poll and an advisory countdown. Both are cancelled together when the
session reaches a terminal state or is closed.
"""
from __future__ import annotations

import asyncio
import logging
import math
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional, Protocol

from manuflix.config import CheckoutTimings
from manuflix.core.exceptions import CheckoutStateError, ProviderError, StoreError, ValidationError
from manuflix.models import SubscriptionPlan, Transaction, UserSubscription, now_utc
from manuflix.schemas.checkout import Charge, ChargeView, CheckoutSnapshot, Customer
from manuflix.services.payment_confirmation import (
    ConfirmationResult,
    PaymentConfirmationService,
    PaymentOutcome,
    normalize_provider_status,
)
from manuflix.services.subscription_store import SubscriptionStore, as_utc

logger = logging.getLogger(__name__)

MISSING_FIELDS_MESSAGE = "Por favor, preencha todos os campos obrigatórios."
CHARGE_FAILED_MESSAGE = "Erro ao gerar o pagamento. Por favor, tente novamente."
PAYMENT_FAILED_MESSAGE = "O pagamento não foi concluído. Por favor, tente novamente."


class CheckoutState(str, Enum):
    IDLE = "idle"
    AWAITING_CHARGE_CREATION = "awaiting_charge_creation"
    AWAITING_PAYMENT = "awaiting_payment"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PaymentProvider(Protocol):
    async def create_charge(self, amount, description: str, customer: Customer) -> Charge: ...

    async def get_charge_status(self, charge_id: str) -> str: ...


def validate_customer(customer: Customer) -> Customer:
    email = (customer.email or "").strip()
    name = (customer.name or "").strip()
    if not email or not name:
        raise ValidationError(MISSING_FIELDS_MESSAGE)
    cpf = (customer.cpf or "").strip() or None
    return Customer(email=email, name=name, cpf=cpf)


def initial_countdown(expiration_date: Optional[datetime], now: datetime, default_seconds: int) -> int:
    """Seconds until the charge expires, or the default when unknown or already past."""
    expires_at = as_utc(expiration_date)
    if expires_at is None:
        return default_seconds
    seconds = math.floor((expires_at - now).total_seconds())
    return seconds if seconds > 0 else default_seconds


def format_countdown(seconds: Optional[int]) -> str:
    if seconds is None or seconds <= 0:
        return "00:00"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


class CheckoutSession:
    """State machine for a single checkout attempt of one user and one plan."""

    def __init__(
        self,
        *,
        user_id: str,
        plan: SubscriptionPlan,
        provider: PaymentProvider,
        store: SubscriptionStore,
        confirmation: PaymentConfirmationService,
        timings: CheckoutTimings,
        clock: Callable[[], datetime] = now_utc,
        on_complete: Optional[Callable[["CheckoutSession"], None]] = None,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.user_id = user_id
        self.plan = plan
        self.provider = provider
        self.store = store
        self.confirmation = confirmation
        self.timings = timings
        self.clock = clock
        self.on_complete = on_complete

        self.state = CheckoutState.IDLE
        self.customer: Optional[Customer] = None
        self.charge: Optional[Charge] = None
        self.transaction: Optional[Transaction] = None
        self.subscription: Optional[UserSubscription] = None
        self.status_label: Optional[str] = None
        self.error: Optional[str] = None
        self.countdown_seconds: Optional[int] = None
        self.closed = False
        self.touched_at = clock()
        self.payment_deadline: Optional[datetime] = None

        self._charge_requested = False
        self._poll_task: Optional[asyncio.Task] = None
        self._countdown_task: Optional[asyncio.Task] = None

    @property
    def timers_running(self) -> bool:
        return any(task is not None and not task.done() for task in (self._poll_task, self._countdown_task))

    async def submit(self, customer: Optional[Customer] = None) -> CheckoutState:
        """
        Create the PIX charge and start waiting for payment.

        Without ``customer`` the data from the previous attempt is reused as-is,
        which is how a retry after a failure resubmits the form.
        """
        if self.closed:
            raise CheckoutStateError("Checkout session is closed")
        # Charge creation is not idempotent at the provider: one charge per attempt.
        if self._charge_requested or self.state is not CheckoutState.IDLE:
            raise CheckoutStateError("Checkout already submitted")

        if customer is not None:
            customer = validate_customer(customer)
        elif self.customer is not None:
            customer = self.customer
        else:
            raise ValidationError(MISSING_FIELDS_MESSAGE)

        self.customer = customer
        self._charge_requested = True
        self.state = CheckoutState.AWAITING_CHARGE_CREATION
        self.error = None
        self._touch()

        try:
            charge = await self.provider.create_charge(
                self.plan.price, f"Manuflix - {self.plan.name}", customer
            )
        except (ProviderError, ValidationError) as exc:
            return self._fail(CHARGE_FAILED_MESSAGE, exc)

        self.charge = charge
        self.status_label = charge.status
        self.countdown_seconds = initial_countdown(
            charge.expiration_date, self.clock(), self.timings.default_countdown_seconds
        )

        try:
            self.transaction = self.store.create_transaction(
                self.user_id, self.plan.id, self.plan.price, "pix", charge.id
            )
        except StoreError as exc:
            logger.error(
                "PIX charge %s for user %s exists at the provider without a transaction; reconcile it",
                charge.id,
                self.user_id,
            )
            return self._fail(CHARGE_FAILED_MESSAGE, exc)

        self.state = CheckoutState.AWAITING_PAYMENT
        self._touch()
        self.payment_deadline = self.touched_at + timedelta(seconds=self.countdown_seconds)
        if self.closed:
            # Closed while the charge was being created; the webhook can still confirm it.
            return self.state
        self._start_timers()
        logger.info("Checkout %s awaiting payment for charge %s", self.id, charge.id)
        return self.state

    def retry(self) -> CheckoutState:
        if self.state is not CheckoutState.FAILED:
            raise CheckoutStateError("Only a failed checkout can be retried")
        self.state = CheckoutState.IDLE
        self.error = None
        self.charge = None
        self.transaction = None
        self.status_label = None
        self.countdown_seconds = None
        self._charge_requested = False
        self.payment_deadline = None
        self._touch()
        return self.state

    async def close(self) -> None:
        """Tear the session down; no provider or store call happens afterwards."""
        self.closed = True
        tasks = [task for task in (self._poll_task, self._countdown_task) if task is not None]
        self._cancel_timers()
        current = asyncio.current_task()
        pending = [task for task in tasks if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Checkout %s closed in state %s", self.id, self.state.value)

    def notify_external_confirmation(self, result: ConfirmationResult) -> None:
        """Apply a transition already decided elsewhere (the webhook path)."""
        if self.closed or self.state is not CheckoutState.AWAITING_PAYMENT:
            return
        self._finish(result)

    def snapshot(self) -> CheckoutSnapshot:
        charge = None
        if self.charge is not None:
            charge = ChargeView(
                id=self.charge.id,
                qrcode_image=self.charge.qrcode_image,
                copy_paste=self.charge.copy_paste,
                expiration_date=self.charge.expiration_date,
            )
        return CheckoutSnapshot(
            id=self.id,
            plan_id=self.plan.id,
            state=self.state.value,
            status_label=self.status_label,
            error=self.error,
            countdown_seconds=self.countdown_seconds,
            countdown=format_countdown(self.countdown_seconds),
            transaction_id=self.transaction.id if self.transaction is not None else None,
            charge=charge,
        )

    async def poll_once(self) -> None:
        if self.charge is None or self.transaction is None:
            return
        status = await self.provider.get_charge_status(self.charge.id)
        if self.closed or self.state is not CheckoutState.AWAITING_PAYMENT:
            return
        self.status_label = status
        if normalize_provider_status(status) is PaymentOutcome.PENDING:
            return
        result = self.confirmation.apply(self.transaction, status, now=self.clock())
        self._finish(result)

    def _finish(self, result: ConfirmationResult) -> None:
        self.transaction = result.transaction
        if result.confirmed:
            self.subscription = result.subscription
            self.state = CheckoutState.CONFIRMED
            self._touch()
            self._cancel_timers()
            logger.info("Checkout %s confirmed (transaction %s)", self.id, result.transaction.id)
            if self.on_complete is not None:
                self.on_complete(self)
        elif result.failed:
            self._fail(PAYMENT_FAILED_MESSAGE)

    def _fail(self, message: str, exc: Optional[Exception] = None) -> CheckoutState:
        self.state = CheckoutState.FAILED
        self.error = message
        self._touch()
        self._cancel_timers()
        if exc is not None:
            logger.warning("Checkout %s failed: %s", self.id, exc)
        else:
            logger.warning("Checkout %s failed: payment not completed", self.id)
        return self.state

    def is_stale(self, now: datetime) -> bool:
        """
        Whether the session can be dropped from memory.

        A session waiting for payment lives until its charge expires plus the
        retention window; any other settled state lives for the retention window
        after its last change. A charge request in flight is never stale.
        """
        retention = timedelta(seconds=self.timings.session_retention_seconds)
        if self.state is CheckoutState.AWAITING_CHARGE_CREATION:
            return False
        if self.state is CheckoutState.AWAITING_PAYMENT and self.payment_deadline is not None:
            return now >= self.payment_deadline + retention
        return now >= self.touched_at + retention

    def _touch(self) -> None:
        self.touched_at = self.clock()

    def _start_timers(self) -> None:
        self._poll_task = asyncio.create_task(self._poll_loop())
        self._countdown_task = asyncio.create_task(self._countdown_loop())

    def _cancel_timers(self) -> None:
        live = [task for task in (self._poll_task, self._countdown_task) if task is not None and not task.done()]
        if not live:
            return
        current = asyncio.current_task()
        for task in live:
            if task is not current:
                task.cancel()

    async def _poll_loop(self) -> None:
        while not self.closed and self.state is CheckoutState.AWAITING_PAYMENT:
            await asyncio.sleep(self.timings.poll_interval_seconds)
            if self.closed or self.state is not CheckoutState.AWAITING_PAYMENT:
                return
            try:
                await self.poll_once()
            except (ProviderError, StoreError) as exc:
                logger.warning("Status check for checkout %s failed: %s", self.id, exc)
            except Exception as exc:
                logger.exception("Status check for checkout %s crashed: %s", self.id, exc)

    async def _countdown_loop(self) -> None:
        while not self.closed and self.countdown_seconds and self.countdown_seconds > 0:
            await asyncio.sleep(self.timings.countdown_tick_seconds)
            if self.closed:
                return
            self.countdown_seconds = max(0, self.countdown_seconds - 1)


class CheckoutSessionManager:
    """
    Registry of live checkout sessions, one per open plan modal.

    A background sweep drops sessions whose charge expired or that settled
    (confirmed, failed or abandoned) longer ago than the retention window.
    """

    def __init__(
        self,
        provider: PaymentProvider,
        store: SubscriptionStore,
        confirmation: PaymentConfirmationService,
        timings: CheckoutTimings,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.provider = provider
        self.store = store
        self.confirmation = confirmation
        self.timings = timings
        self.clock = clock
        self._sessions: Dict[str, CheckoutSession] = {}
        self._stop_event = asyncio.Event()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, user_id: str, plan: SubscriptionPlan) -> CheckoutSession:
        session = CheckoutSession(
            user_id=user_id,
            plan=plan,
            provider=self.provider,
            store=self.store,
            confirmation=self.confirmation,
            timings=self.timings,
            clock=self.clock,
            on_complete=self._on_complete,
        )
        self._sessions[session.id] = session
        logger.info("Opened checkout %s for user %s plan %s", session.id, user_id, plan.id)
        return session

    def get(self, session_id: str) -> Optional[CheckoutSession]:
        return self._sessions.get(session_id)

    async def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        await self.stop()
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.close()

    async def evict_stale(self, now: Optional[datetime] = None) -> int:
        """Close and forget every stale session. Returns how many were dropped."""
        now = now or self.clock()
        stale = [session for session in self._sessions.values() if session.is_stale(now)]
        evicted = 0
        for session in stale:
            if self._sessions.pop(session.id, None) is None:
                continue
            await session.close()
            evicted += 1
        if evicted:
            logger.info("Evicted %s stale checkout sessions (%s still open)", evicted, len(self._sessions))
        return evicted

    def start(self) -> None:
        """Start the eviction sweep as a background task."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._stop_event.clear()
        self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info("Checkout session sweeper started")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            await self._sweeper
            self._sweeper = None
            logger.info("Checkout session sweeper stopped")

    def notify_payment(self, payment_id: str, result: ConfirmationResult) -> int:
        notified = 0
        for session in list(self._sessions.values()):
            if session.charge is not None and session.charge.id == payment_id:
                session.notify_external_confirmation(result)
                notified += 1
        return notified

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.timings.sweep_interval_seconds)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.evict_stale()
            except Exception as exc:
                logger.exception("Checkout session sweep failed: %s", exc)

    def _on_complete(self, session: CheckoutSession) -> None:
        logger.info("Payment complete for user %s on plan %s", session.user_id, session.plan.id)
