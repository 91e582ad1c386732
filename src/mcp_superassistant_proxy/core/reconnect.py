"""
Reconnection Controller
=======================

Bounded exponential-backoff state machine owning one upstream connection's
attempt/retry lifecycle::

    idle → connecting → {connected | backing-off} → connecting → ...

A failed attempt (or a live connection that drops) increments the attempt
count and schedules the next attempt after
``min(base × growth^(attempts − 1), cap)`` milliseconds. Reaching the attempt
ceiling stops scheduling and leaves the controller idle and exhausted until
``restart()`` is called. A successful connection resets the count to zero.
"""

from enum import Enum
from typing import Awaitable, Callable, Optional
import asyncio

from pydantic import BaseModel, Field

from mcp_superassistant_proxy.config.logging import get_logger

from .errors import ConnectTimeoutError

logger = get_logger(__name__)


class ReconnectPhase(str, Enum):
    """Upstream connection phase."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKING_OFF = "backing-off"


class ReconnectionState(BaseModel):
    """Snapshot of the reconnection state machine."""

    phase: ReconnectPhase = Field(default=ReconnectPhase.IDLE, description="Current phase")
    attempt_count: int = Field(default=0, ge=0, description="Consecutive failed attempts")
    next_delay_ms: int = Field(default=0, ge=0, description="Delay before the next attempt")
    exhausted: bool = Field(default=False, description="Attempt ceiling reached")
    last_error: Optional[str] = Field(default=None, description="Last failure reason")


def compute_delay(
    attempt_count: int, base_delay_ms: int, growth_factor: float, cap_delay_ms: int
) -> int:
    """Backoff delay for the given (already incremented) attempt count."""
    exponent = max(attempt_count - 1, 0)
    try:
        delay = base_delay_ms * growth_factor**exponent
    except OverflowError:
        return cap_delay_ms
    return int(min(delay, cap_delay_ms))


StateListener = Callable[[ReconnectionState], None]


class ReconnectionController:
    """
    Drives connect attempts for a single upstream connection.

    ``connect`` must either complete once the connection is usable or raise.
    When the connect timeout elapses first the attempt is cancelled, so the
    callable has to tear down anything half-open when it is cancelled.
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[None]],
        *,
        base_delay_ms: int = 2000,
        growth_factor: float = 1.5,
        cap_delay_ms: int = 60000,
        max_attempts: int = 10,
        connect_timeout_ms: int = 30000,
        on_state_change: Optional[StateListener] = None,
        name: str = "upstream",
    ) -> None:
        self._connect = connect
        self.base_delay_ms = base_delay_ms
        self.growth_factor = growth_factor
        self.cap_delay_ms = cap_delay_ms
        self.max_attempts = max_attempts
        self.connect_timeout_ms = connect_timeout_ms
        self._on_state_change = on_state_change

        self.state = ReconnectionState()
        self.logger = logger.bind(component="reconnect", target=name)

        self._attempt_task: Optional[asyncio.Task[None]] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._connected = asyncio.Event()

    @property
    def phase(self) -> ReconnectPhase:
        return self.state.phase

    @property
    def is_connected(self) -> bool:
        return self.state.phase == ReconnectPhase.CONNECTED

    @property
    def retry_scheduled(self) -> bool:
        return self._retry_handle is not None

    def start(self) -> bool:
        """
        Begin a connect attempt (idle → connecting).

        Returns:
            False if an attempt is already in flight or scheduled, the
            connection is up, or the attempt ceiling has been reached
        """
        if self.state.phase != ReconnectPhase.IDLE or self.state.exhausted:
            return False
        self._begin_attempt()
        return True

    def request_retry(self) -> bool:
        """
        Kick off an attempt unless one is already in flight or scheduled.

        After the attempt ceiling has been reached this starts over from zero.
        """
        if self.state.exhausted:
            self.logger.warning(
                "Retry requested after giving up, starting over",
                attempts=self.state.attempt_count,
            )
            return self.restart()
        return self.start()

    def restart(self) -> bool:
        """Leave any state, including exhaustion, and start from zero attempts."""
        self._cancel_retry()
        self.state.attempt_count = 0
        self.state.next_delay_ms = 0
        self.state.exhausted = False
        if self.state.phase == ReconnectPhase.BACKING_OFF:
            self._set_phase(ReconnectPhase.IDLE)
        return self.start()

    def connection_lost(self, error: Optional[BaseException] = None) -> None:
        """The live connection reported an error or closed (connected → backing-off)."""
        if self.state.phase != ReconnectPhase.CONNECTED:
            return
        self._connected.clear()
        self.logger.error("Remote SSE connection lost", error=str(error) if error else None)
        self._back_off(error)

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait until the connection is up."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def stop(self) -> None:
        """Cancel any in-flight attempt and pending retry."""
        self._cancel_retry()
        task = self._attempt_task
        self._attempt_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._connected.clear()
        self._set_phase(ReconnectPhase.IDLE)

    def _begin_attempt(self) -> None:
        self._retry_handle = None
        self._set_phase(ReconnectPhase.CONNECTING)
        self._attempt_task = asyncio.create_task(self._attempt())

    async def _attempt(self) -> None:
        attempt = self.state.attempt_count + 1
        self.logger.info("Connecting to remote SSE", attempt=attempt)
        try:
            await asyncio.wait_for(self._connect(), timeout=self.connect_timeout_ms / 1000)
        except asyncio.TimeoutError:
            self._back_off(
                ConnectTimeoutError(f"Connection timed out after {self.connect_timeout_ms}ms")
            )
            return
        except Exception as e:
            self._back_off(e)
            return

        self.state.attempt_count = 0
        self.state.next_delay_ms = 0
        self.state.last_error = None
        self._set_phase(ReconnectPhase.CONNECTED)
        self._connected.set()
        self.logger.info("Connected to remote SSE")

    def _back_off(self, error: Optional[BaseException]) -> None:
        self.state.attempt_count += 1
        self.state.last_error = str(error) if error else None
        reason = getattr(error, "reason", None)

        if self.state.attempt_count >= self.max_attempts:
            self.state.exhausted = True
            self.state.next_delay_ms = 0
            self._set_phase(ReconnectPhase.IDLE)
            self.logger.error(
                f"Failed to reconnect after {self.max_attempts} attempts. Giving up.",
                last_error=self.state.last_error,
                reason=reason,
            )
            return

        delay_ms = compute_delay(
            self.state.attempt_count, self.base_delay_ms, self.growth_factor, self.cap_delay_ms
        )
        self.state.next_delay_ms = delay_ms
        self._set_phase(ReconnectPhase.BACKING_OFF)
        self.logger.warning(
            f"Attempting to reconnect in {round(delay_ms / 1000)} seconds...",
            attempt=self.state.attempt_count,
            delay_ms=delay_ms,
            error=self.state.last_error,
            reason=reason,
        )
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay_ms / 1000, self._begin_attempt)

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _set_phase(self, phase: ReconnectPhase) -> None:
        self.state.phase = phase
        if self._on_state_change is not None:
            self._on_state_change(self.state.model_copy())
