"""Payment reconciliation poller.

The payment provider never pushes to the client, so the poller reconciles
local state with the server by polling the payment-type-specific status
endpoint on a widening schedule. It opens the hosted checkout once, offers a
manual "I've paid" check once the checkout has been opened, and a
provider-direct force verify after enough attempts.

Concurrency rules:
- one status request in flight at a time; a second caller waits for its answer
- terminal states are final; late responses never revert them
- ``close()`` bumps the generation so any response arriving afterwards is
  dropped, and cancels the loop and the pending navigation
"""
import asyncio
import inspect
import logging
import webbrowser
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from eventpass.client.api import EventPassClient
from eventpass.client.errors import ErrorCode, EventPassError, PaymentError, ValidationError
from eventpass.client.notifications import NotificationBus
from eventpass.config import settings
from eventpass.models.enums import EventStatus, PaymentStatus, PaymentType
from eventpass.schemas.payment import PaymentStatusResponse

logger = logging.getLogger(__name__)


class PaymentState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    ABANDONED = "abandoned"
    # Still pending on the server, but automatic polling has given up.
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset({PaymentState.SUCCESS, PaymentState.FAILED, PaymentState.ABANDONED})

_STATUS_TO_STATE = {
    PaymentStatus.completed: PaymentState.SUCCESS,
    PaymentStatus.abandoned: PaymentState.ABANDONED,
    PaymentStatus.failed: PaymentState.FAILED,
}

_VERIFICATION_TO_STATE = {
    "success": PaymentState.SUCCESS,
    "abandoned": PaymentState.ABANDONED,
    "failed": PaymentState.FAILED,
}


@dataclass(frozen=True)
class PollSchedule:
    base_interval: float = 5.0
    medium_interval: float = 10.0
    slow_interval: float = 15.0
    medium_after: int = 10
    slow_after: int = 20
    max_attempts: int = 60
    force_verify_after: int = 5
    error_budget: int = 3
    success_delay: float = 1.5
    failure_delay: float = 2.0

    @classmethod
    def from_settings(cls) -> "PollSchedule":
        return cls(
            base_interval=settings.POLL_BASE_INTERVAL_SECONDS,
            medium_interval=settings.POLL_MEDIUM_INTERVAL_SECONDS,
            slow_interval=settings.POLL_SLOW_INTERVAL_SECONDS,
            medium_after=settings.POLL_MEDIUM_AFTER_ATTEMPTS,
            slow_after=settings.POLL_SLOW_AFTER_ATTEMPTS,
            max_attempts=settings.POLL_MAX_ATTEMPTS,
            force_verify_after=settings.FORCE_VERIFY_AFTER_ATTEMPTS,
            error_budget=settings.POLL_ERROR_BUDGET,
            success_delay=settings.SUCCESS_NAVIGATION_DELAY_SECONDS,
            failure_delay=settings.FAILURE_NAVIGATION_DELAY_SECONDS,
        )

    def interval_for(self, attempts: int) -> float:
        """Seconds to wait after ``attempts`` completed polls."""
        if attempts >= self.slow_after:
            return self.slow_interval
        if attempts >= self.medium_after:
            return self.medium_interval
        return self.base_interval


def state_from_status(payment_type: PaymentType, response: PaymentStatusResponse) -> PaymentState:
    if payment_type == PaymentType.event_publishing and response.event is not None:
        if response.event.status == EventStatus.published:
            return PaymentState.SUCCESS
    return _STATUS_TO_STATE.get(response.payment_status, PaymentState.PENDING)


class PaymentPoller:
    def __init__(
        self,
        api: EventPassClient,
        payment_type: PaymentType,
        event_id: str,
        registration_id: Optional[str] = None,
        payment_reference: Optional[str] = None,
        payment_url: Optional[str] = None,
        bus: Optional[NotificationBus] = None,
        opener: Optional[Callable[[str], Any]] = None,
        navigator: Optional[Callable[[PaymentState], Any]] = None,
        schedule: Optional[PollSchedule] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if payment_type == PaymentType.event_registration and not registration_id:
            raise ValidationError("Registration payments need a registration id")
        self.api = api
        self.payment_type = payment_type
        self.event_id = event_id
        self.registration_id = registration_id
        self.payment_reference = payment_reference
        self.payment_url = payment_url
        self.bus = bus or NotificationBus()
        self.schedule = schedule or PollSchedule.from_settings()
        self._opener = opener or webbrowser.open
        self._navigator = navigator
        self._sleep = sleep

        self.state = PaymentState.PENDING
        self.attempts = 0
        self.errors = 0
        self.has_opened_browser = False
        self.has_navigated = False
        self.last_error: Optional[EventPassError] = None
        self._in_flight: Optional[asyncio.Event] = None
        self._closed = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._navigation_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def can_force_verify(self) -> bool:
        return (
            self.attempts >= self.schedule.force_verify_after
            and not self.is_terminal
            and self.payment_reference is not None
            and not self._closed
        )

    @property
    def current_interval(self) -> float:
        return self.schedule.interval_for(self.attempts)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Resolve the checkout URL, open it once and begin polling."""
        if self._closed:
            raise RuntimeError("Poller has been closed")
        if self.payment_url is None:
            await self._fetch_payment_url()
        if self.payment_url and not self.has_opened_browser:
            self.open_payment_page()
        self._start_loop()

    def close(self) -> None:
        """Stop polling; responses still in flight are ignored when they land."""
        self._closed = True
        self._generation += 1
        self._cancel_loop()
        if self._navigation_task is not None and not self._navigation_task.done():
            self._navigation_task.cancel()
        logger.debug("Closed payment poller for %s", self.payment_reference)

    async def wait(self) -> None:
        """Wait for the polling loop and any scheduled navigation to finish."""
        # Navigation is scheduled from inside the loop, so look again after each round.
        while True:
            tasks = [t for t in (self._task, self._navigation_task) if t is not None and not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def retry(self) -> None:
        """Restart polling after a timeout with a fresh attempt budget."""
        if self.state is not PaymentState.TIMED_OUT or self._closed:
            return
        self._generation += 1
        self._cancel_loop()
        self.state = PaymentState.PENDING
        self.attempts = 0
        self.errors = 0
        self.last_error = None
        logger.info("Retrying payment verification for %s", self.payment_reference)
        self._start_loop()

    def open_payment_page(self) -> None:
        """Open (or reopen) the hosted checkout page."""
        if not self.payment_url:
            raise ValidationError("Payment link is not available yet")
        self._opener(self.payment_url)
        self.has_opened_browser = True

    # ------------------------------------------------------------------
    # Manual paths
    # ------------------------------------------------------------------

    async def check_now(self) -> PaymentState:
        """Query the status immediately without consuming an attempt.

        When a timed check is already in flight its answer is awaited and
        reported instead of issuing a second request.
        """
        if not self.has_opened_browser:
            raise ValidationError("Open the payment page first")
        if self._closed:
            return self.state
        await self._poll_once(self._generation, counted=False)
        return self.state

    async def force_verify(self) -> PaymentState:
        """Ask the provider directly, bypassing the polling cadence."""
        if not self.can_force_verify:
            raise ValidationError(
                f"Verification is available after {self.schedule.force_verify_after} checks"
            )
        generation = self._generation
        try:
            response = await self.api.force_verify(self.payment_reference)
        except EventPassError as e:
            if self._is_current(generation):
                self.bus.report("Verification failed", e)
            raise
        if not self._is_current(generation):
            return self.state
        state = _VERIFICATION_TO_STATE.get(response.verification.status)
        if state is None:
            self.bus.info("Payment still pending", response.verification.message or "")
            return self.state
        self._transition(state)
        return self.state

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _start_loop(self) -> None:
        self._task = asyncio.create_task(self._run(self._generation))

    def _cancel_loop(self) -> None:
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    async def _status(self) -> PaymentStatusResponse:
        if self.payment_type == PaymentType.event_registration:
            return await self.api.registration_payment_status(self.event_id, self.registration_id)
        return await self.api.event_payment_status(self.event_id)

    async def _fetch_payment_url(self) -> None:
        try:
            response = await self._status()
        except EventPassError as e:
            logger.warning("Could not fetch payment link for event %s: %s", self.event_id, e)
            return
        self.payment_url = response.payment_url or (response.event.payment_url if response.event else None)
        self.payment_reference = self.payment_reference or response.payment_reference

    async def _run(self, generation: int) -> None:
        while self._is_current(generation) and self.state is PaymentState.PENDING:
            await self._poll_once(generation, counted=True)
            if not self._is_current(generation) or self.state is not PaymentState.PENDING:
                return
            if self.attempts >= self.schedule.max_attempts:
                self._time_out()
                return
            await self._sleep(self.schedule.interval_for(self.attempts))

    async def _poll_once(self, generation: int, counted: bool) -> None:
        if self._in_flight is not None:
            logger.debug("Joining status check already in flight for %s", self.payment_reference)
            await self._in_flight.wait()
            return
        self._in_flight = asyncio.Event()
        if counted:
            self.attempts += 1
        try:
            response = await self._status()
        except EventPassError as e:
            if self._is_current(generation):
                self._record_error(e)
            return
        finally:
            self._in_flight.set()
            self._in_flight = None

        if not self._is_current(generation):
            return
        self.payment_reference = self.payment_reference or response.payment_reference
        self._transition(state_from_status(self.payment_type, response), response.message)

    def _record_error(self, error: EventPassError) -> None:
        self.errors += 1
        self.last_error = error
        logger.warning("Payment status check failed (%d/%d): %s", self.errors, self.schedule.error_budget, error)
        if self.errors == self.schedule.error_budget:
            self.bus.warning(
                "Unable to confirm payment",
                "We couldn't reach the server. Please check your payment status manually.",
                ErrorCode.NETWORK,
            )

    def _time_out(self) -> None:
        self.state = PaymentState.TIMED_OUT
        self.last_error = PaymentError(
            code=ErrorCode.PAYMENT_TIMEOUT,
            message="Payment verification is taking longer than expected",
        )
        logger.warning("Payment %s still pending after %d attempts", self.payment_reference, self.attempts)
        self.bus.warning("Payment not confirmed yet", self.last_error.message, ErrorCode.PAYMENT_TIMEOUT)

    def _transition(self, state: PaymentState, message: Optional[str] = None) -> None:
        if state is PaymentState.PENDING:
            return
        if self.is_terminal:
            if state is not self.state:
                logger.info("Ignoring %s for %s, already %s", state.value, self.payment_reference, self.state.value)
            return

        self.state = state
        self._cancel_loop()
        logger.info("Payment %s reached %s after %d attempts", self.payment_reference, state.value, self.attempts)
        if state is PaymentState.SUCCESS:
            self.bus.success("Payment successful!", message or "")
            delay = self.schedule.success_delay
        else:
            code = ErrorCode.PAYMENT_ABANDONED if state is PaymentState.ABANDONED else ErrorCode.PAYMENT_FAILED
            self.last_error = PaymentError(code=code, message=message or f"Payment {state.value}")
            self.bus.error("Payment was not completed", self.last_error.message, code)
            delay = self.schedule.failure_delay
        self._schedule_navigation(delay)

    def _schedule_navigation(self, delay: float) -> None:
        if self.has_navigated:
            return
        self.has_navigated = True
        self._navigation_task = asyncio.create_task(self._navigate_after(delay, self._generation))

    async def _navigate_after(self, delay: float, generation: int) -> None:
        await self._sleep(delay)
        if not self._is_current(generation) or self._navigator is None:
            return
        result = self._navigator(self.state)
        if inspect.isawaitable(result):
            await result
