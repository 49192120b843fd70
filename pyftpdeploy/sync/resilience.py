"""Retry, reconnect and keep-alive handling for remote operations."""

import logging
import random
import time
from typing import Callable, Optional, TypeVar

from ..exceptions import (
    FaultKind,
    NotFoundFault,
    RetryExhaustedFault,
    TransientConnectionFault,
    TransportError,
    classify_fault,
)
from ..transport import Transport
from ..utils import (
    DEFAULT_KEEPALIVE_INTERVAL,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResiliencePolicy:
    """Owns the active transport session and runs operations against it.

    One policy exists per deploy session. Reconnecting replaces
    ``self.transport`` with a fresh, connected session, so operations must
    always receive the transport as an argument instead of holding on to it.
    """

    def __init__(
        self,
        connect: Callable[[], Transport],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize resilience policy.

        Args:
            connect: Factory returning a new, connected transport
            max_attempts: Attempts per operation before giving up
            retry_delay: Initial delay between attempts in seconds (0 disables)
            keepalive_interval: Idle seconds after which a keep-alive is sent
            clock: Monotonic clock, replaceable in tests
            sleep: Sleep function, replaceable in tests
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._connect = connect
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.keepalive_interval = keepalive_interval
        self._clock = clock
        self._sleep = sleep
        self.transport: Optional[Transport] = None
        self.reconnect_count = 0
        self._last_keepalive = clock()

    def open(self) -> Transport:
        """Establish the first session. Failures propagate unchanged."""
        self.transport = self._connect()
        self._last_keepalive = self._clock()
        return self.transport

    def close(self) -> None:
        if self.transport is None:
            return
        transport, self.transport = self.transport, None
        try:
            transport.close()
        except TransportError as e:
            logger.debug(f"Error while closing transport (ignored): {e}")

    def reconnect(self) -> None:
        """Drop the current session and establish a new one."""
        logger.debug("Reconnecting to FTP server...")
        self.close()
        self.reconnect_count += 1
        self.transport = self._connect()
        self._last_keepalive = self._clock()
        logger.debug("Reconnected successfully")

    def send_keepalive_if_needed(self, force: bool = False) -> None:
        """Probe the control channel if it has been idle too long.

        A failing probe is logged and otherwise ignored; the next real
        operation detects a dead connection anyway.
        """
        now = self._clock()
        if not force and now - self._last_keepalive <= self.keepalive_interval:
            return
        if self.transport is None:
            return
        try:
            self.transport.send_keepalive()
            logger.debug("Keep-alive sent")
        except TransportError as e:
            logger.debug(f"Failed to send keep-alive: {e}")
        self._last_keepalive = now

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with +/- 25% jitter (attempt is 1-based)."""
        if self.retry_delay <= 0:
            return 0.0
        base_delay = self.retry_delay * (2 ** (attempt - 1))
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def call(self, description: str, operation: Callable[[Transport], T]) -> T:
        """Run an operation with retries.

        Args:
            description: Human-readable name of the operation, used in errors
            operation: Callable receiving the current transport

        Returns:
            Whatever the operation returns

        Raises:
            NotFoundFault: The target does not exist (never retried)
            RetryExhaustedFault: Every attempt failed
        """
        self.send_keepalive_if_needed()

        last_error: Optional[TransportError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                if self.transport is None:
                    raise TransientConnectionFault("Client is closed")
                return operation(self.transport)
            except NotFoundFault:
                raise
            except TransportError as e:
                last_error = e
                kind = classify_fault(e)
                logger.debug(
                    f"{description} failed (attempt {attempt}/{self.max_attempts}, "
                    f"{kind.value}): {e}"
                )

            if attempt == self.max_attempts:
                break

            # One reconnect per transient failure: two drops before a success
            # cost two reconnects, a drop followed by a fatal fault costs one
            if kind == FaultKind.TRANSIENT:
                logger.debug(f"Connection issue detected: {last_error}")
                try:
                    self.reconnect()
                except TransportError as e:
                    # Next attempt sees no session and reconnects again
                    logger.debug(f"Reconnect failed: {e}")
                    last_error = e

            delay = self._calculate_retry_delay(attempt)
            if delay > 0:
                logger.debug(f"Retrying {description} in {delay:.2f}s")
                self._sleep(delay)

        raise RetryExhaustedFault(description, self.max_attempts, last_error)
