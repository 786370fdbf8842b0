"""Event registration and payment flow.

Drives one user through registering for one event:

    idle -> creating -> waiting_gateway -> verifying -> registering -> completed
                     \\-> cancelled (widget dismissed)
            \\-> failed (order, verification or registration error)

Free events skip straight to ``registering``. ``failed`` and ``cancelled``
are recoverable: ``retry()`` resets to ``idle`` and runs the flow again,
``close()`` just resets. ``completed`` is terminal.

Only one attempt runs at a time per flow. Once verification starts there is
no cancellation; the only user-initiated exit while the widget is open is
dismissing it. A change of identity mid-attempt (logout, account switch)
aborts back to ``idle`` so a payment never completes under the wrong user.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from core.api_client import ApiClient, PaymentConflictError
from core.auth import AuthSession
from core.config import Settings, get_settings
from core.logger import get_logger
from schemas import (
    Event,
    PaymentStage,
    RegistrationAnswer,
    RegistrationDraft,
    UserProfile,
)
from services import events_api
from services.notifications import ConfirmOption, Notifier
from services.payment_gateway import (
    GatewayDismissedError,
    PaymentGateway,
    build_checkout_options,
)

logger = get_logger(__name__)

IN_FLIGHT_STAGES = frozenset(
    {
        PaymentStage.CREATING,
        PaymentStage.WAITING_GATEWAY,
        PaymentStage.VERIFYING,
        PaymentStage.REGISTERING,
    }
)
RECOVERABLE_STAGES = frozenset({PaymentStage.FAILED, PaymentStage.CANCELLED})

CONTINUE_EXISTING = "continue_existing"
START_NEW = "start_new"

REGISTRATION_SUCCESS_MESSAGE = (
    "Registration successful! You will receive a confirmation email shortly."
)
PAYMENTS_UNAVAILABLE_MESSAGE = (
    "Online payments are not available right now. Please try again later."
)

StageListener = Callable[[PaymentStage], None]


class NotAuthenticatedError(Exception):
    """Raised when a registration is submitted without a logged-in user."""


class _FlowAborted(Exception):
    """Internal: the attempt was superseded (identity change) while awaiting."""


class RegistrationFlow:
    """State machine for a single event registration."""

    def __init__(
        self,
        *,
        api: ApiClient,
        gateway: PaymentGateway,
        notifier: Notifier,
        session: AuthSession,
        event_id: str,
        settings: Settings | None = None,
        on_completed: Callable[[], None] | None = None,
    ) -> None:
        self.api = api
        self.gateway = gateway
        self.notifier = notifier
        self.session = session
        self.event_id = event_id
        self.settings = settings or get_settings()
        self.on_completed = on_completed

        self.stage = PaymentStage.IDLE
        self.history: list[PaymentStage] = []
        self.error: str | None = None
        self.event: Event | None = None
        self.draft = RegistrationDraft()

        self._listeners: list[StageListener] = []
        self._generation = 0
        self._attempt_user_id: str | None = None
        self._resolving_conflict = False
        self._conflict_request_id: int | None = None

        if session.user is not None:
            self._prefill(session.user)
        self._unsubscribe = session.subscribe(self.on_auth_changed)

    # Form state

    async def load(self) -> Event:
        """Fetch the event and prepare one blank answer per registration question."""
        event = await events_api.get_event(self.api, self.event_id)
        self.event = event
        if event.registration_questions:
            self.draft = self.draft.model_copy(
                update={
                    "answers": [
                        RegistrationAnswer(
                            question_id=q.id or f"q{index}",
                            question=q.question,
                        )
                        for index, q in enumerate(event.registration_questions)
                    ]
                }
            )
        return event

    def set_field(self, field: str, value: str) -> None:
        if field not in ("name", "email", "phone", "organization"):
            raise ValueError(f"Unknown registration field: {field}")
        self.draft = self.draft.model_copy(update={field: value})

    def set_answer(self, question_id: str, answer: str) -> None:
        self.draft = self.draft.model_copy(
            update={
                "answers": [
                    a.model_copy(update={"answer": answer})
                    if a.question_id == question_id
                    else a
                    for a in self.draft.answers
                ]
            }
        )

    def _prefill(self, user: UserProfile) -> None:
        self.draft = self.draft.model_copy(
            update={"name": user.name or "", "email": user.email or ""}
        )

    # Stage bookkeeping

    @property
    def is_busy(self) -> bool:
        """True while the submit control must stay disabled."""
        return self.stage in IN_FLIGHT_STAGES or self._resolving_conflict

    def subscribe(self, listener: StageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _transition(self, stage: PaymentStage) -> None:
        previous = self.stage
        self.stage = stage
        self.history.append(stage)
        logger.info(
            "registration.stage",
            event_id=self.event_id,
            previous=previous.value,
            stage=stage.value,
        )
        for listener in list(self._listeners):
            listener(stage)

    def _checkpoint(self, generation: int) -> None:
        if generation != self._generation:
            raise _FlowAborted()

    def _fail(self, message: str, exc: BaseException | None = None) -> None:
        self.error = message
        logger.warning(
            "registration.failed",
            event_id=self.event_id,
            stage=self.stage.value,
            error=f"{type(exc).__name__}: {exc}" if exc else None,
        )
        self._transition(PaymentStage.FAILED)
        self.notifier.error(message)

    # Flow

    async def submit(
        self,
        *,
        reuse_existing: bool = False,
        force_cancel_existing: bool = False,
    ) -> PaymentStage:
        """Run one registration attempt and return the stage it ended in.

        Submissions while an attempt is in progress are ignored, and so are
        submissions after the registration completed: the draft goes out once.

        Raises:
            NotAuthenticatedError: If no user is logged in
        """
        if self.is_busy or self.stage == PaymentStage.COMPLETED:
            logger.info("registration.submit_ignored", stage=self.stage.value)
            return self.stage

        user = self.session.user
        if user is None:
            raise NotAuthenticatedError("Log in to register for this event.")

        if self.event is None:
            try:
                await self.load()
            except Exception as exc:
                logger.warning("registration.event_load_failed", error=str(exc))
                self.notifier.error("Failed to load event")
                return self.stage

        event = self.event
        self.error = None
        self._generation += 1
        generation = self._generation
        self._attempt_user_id = user.id

        try:
            if event.is_paid:
                await self._run_paid(
                    event,
                    generation,
                    reuse_existing=reuse_existing,
                    force_cancel_existing=force_cancel_existing,
                )
            else:
                await self._register(
                    generation,
                    lambda: events_api.register_for_event(
                        self.api, event.id, self.draft
                    ),
                )
        except _FlowAborted:
            logger.info("registration.aborted", event_id=self.event_id)

        return self.stage

    async def _run_paid(
        self,
        event: Event,
        generation: int,
        *,
        reuse_existing: bool,
        force_cancel_existing: bool,
    ) -> None:
        if not self.settings.razorpay_key_id:
            # No order is created when the checkout could never open
            self._fail(PAYMENTS_UNAVAILABLE_MESSAGE)
            return

        self._transition(PaymentStage.CREATING)
        try:
            order = await events_api.create_order(
                self.api,
                event.id,
                reuse_existing=reuse_existing,
                force_cancel_existing=force_cancel_existing,
            )
        except PaymentConflictError as exc:
            self._checkpoint(generation)
            if reuse_existing or force_cancel_existing:
                self._fail(exc.message or "Failed to create payment order.", exc)
                return
            self._transition(PaymentStage.IDLE)
            await self._resolve_conflict(generation)
            return
        except Exception as exc:
            self._checkpoint(generation)
            self._fail("Failed to create payment order. Please try again.", exc)
            return
        self._checkpoint(generation)

        options = build_checkout_options(event, order, self.draft, self.settings)
        self._transition(PaymentStage.WAITING_GATEWAY)
        try:
            response = await self.gateway.open(options)
        except GatewayDismissedError:
            self._checkpoint(generation)
            self._transition(PaymentStage.CANCELLED)
            self.notifier.info("Payment cancelled.")
            return
        except Exception as exc:
            self._checkpoint(generation)
            self._fail("Could not open the payment window. Please try again.", exc)
            return
        self._checkpoint(generation)

        self._transition(PaymentStage.VERIFYING)
        if not response.is_complete:
            self._fail("Payment incomplete. Missing verification data.")
            return
        try:
            await events_api.verify_payment(self.api, response)
        except Exception as exc:
            self._checkpoint(generation)
            self._fail("Payment verification failed. Please try again.", exc)
            return
        self._checkpoint(generation)

        order_id = response.razorpay_order_id
        await self._register(
            generation,
            lambda: events_api.register_after_payment(self.api, self.draft, order_id),
        )

    async def _register(
        self, generation: int, call: Callable[[], Awaitable[Any]]
    ) -> None:
        self._transition(PaymentStage.REGISTERING)
        try:
            await call()
        except Exception as exc:
            self._checkpoint(generation)
            self._fail("Registration failed. Please try again.", exc)
            return
        self._checkpoint(generation)

        self._transition(PaymentStage.COMPLETED)
        self.notifier.success(REGISTRATION_SUCCESS_MESSAGE)
        if self.on_completed is not None:
            self.on_completed()

    async def _resolve_conflict(self, generation: int) -> None:
        """Let the user continue the pending order or discard it and start over."""
        self._resolving_conflict = True
        request = self.notifier.ask(
            "You already have a payment in progress for this event.",
            [
                ConfirmOption(CONTINUE_EXISTING, "Continue existing"),
                ConfirmOption(START_NEW, "Cancel & start new"),
            ],
            title="Payment in progress",
        )
        self._conflict_request_id = request.id
        try:
            choice = await self.notifier.wait(request)
        finally:
            self._resolving_conflict = False
            self._conflict_request_id = None
        self._checkpoint(generation)

        if choice == CONTINUE_EXISTING:
            await self.submit(reuse_existing=True)
        elif choice == START_NEW:
            await self.submit(force_cancel_existing=True)
        else:
            logger.info("registration.conflict_dismissed", event_id=self.event_id)

    async def retry(self) -> PaymentStage:
        """Reset a failed or cancelled attempt and run the whole flow again."""
        if self.stage not in RECOVERABLE_STAGES:
            return self.stage
        self._transition(PaymentStage.IDLE)
        return await self.submit()

    def close(self) -> None:
        """Dismiss a failed or cancelled attempt without retrying."""
        if self.stage in RECOVERABLE_STAGES:
            self.error = None
            self._transition(PaymentStage.IDLE)

    # Identity changes

    def on_auth_changed(self, user: UserProfile | None) -> None:
        attempt_active = self.stage in IN_FLIGHT_STAGES or self._resolving_conflict
        identity_changed = user is None or user.id != self._attempt_user_id

        if attempt_active and identity_changed:
            # Invalidate the running attempt; its pending awaits become no-ops
            self._generation += 1
            self._resolving_conflict = False
            if self._conflict_request_id is not None:
                self.notifier.cancel(self._conflict_request_id)
            self._transition(PaymentStage.IDLE)
            self.notifier.warning(
                "You were logged out, so the registration was stopped. "
                "Please log in and try again."
            )

        if user is not None:
            self._prefill(user)

    def dispose(self) -> None:
        """Detach from the auth session."""
        self._unsubscribe()
