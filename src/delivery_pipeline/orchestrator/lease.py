"""Exclusive, trigger-ordered access to the shared cluster target."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from delivery_pipeline.core.errors import StageCancelled, StageTimeout
from delivery_pipeline.core.types import Stage

logger = logging.getLogger(__name__)


class DeployLease:
    """FIFO ticket lease over the deploy stage.

    Each execution reserves a ticket when it is triggered. Tickets are served
    strictly in order: an execution may enter its deploy stage only when
    every earlier ticket has either deployed or been forfeited. An execution
    that will never deploy (failed or cancelled build) must forfeit its
    ticket so later ones are not held up.

    Args:
        wait_slice: Upper bound on one condition wait, so cancellation is
            noticed even without a wake-up.
        clock: Injectable monotonic clock for testing.
    """

    def __init__(self, wait_slice: float = 0.5, clock: Callable[[], float] | None = None) -> None:
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0
        self._held = False
        self._forfeited: set[int] = set()
        self._wait_slice = wait_slice
        self._clock = clock or time.monotonic

    @property
    def serving(self) -> int:
        """Ticket currently allowed to deploy."""
        with self._cond:
            return self._serving

    @property
    def held(self) -> bool:
        with self._cond:
            return self._held

    def reserve(self) -> int:
        """Reserve the next ticket in trigger order."""
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            return ticket

    def forfeit(self, ticket: int) -> None:
        """Give up *ticket* without deploying. A no-op for served tickets."""
        with self._cond:
            if ticket >= self._serving:
                self._forfeit_locked(ticket)

    def wake(self) -> None:
        """Wake waiters so they re-check cancellation."""
        with self._cond:
            self._cond.notify_all()

    def _advance(self) -> None:
        self._serving += 1
        while self._serving in self._forfeited:
            self._forfeited.discard(self._serving)
            self._serving += 1

    @contextmanager
    def hold(
        self,
        ticket: int,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[None]:
        """Hold the lease for *ticket* for the duration of the block.

        The lease is released on every exit path. If the wait ends without
        acquiring, the ticket is forfeited.

        Raises:
            StageTimeout: *timeout* elapsed before the ticket was served.
            StageCancelled: *cancel_event* was set while waiting.
        """
        deadline = self._clock() + timeout if timeout is not None else None
        with self._cond:
            while not (self._serving == ticket and not self._held):
                if cancel_event is not None and cancel_event.is_set():
                    self._forfeit_locked(ticket)
                    raise StageCancelled("Cancelled while waiting for the deploy lease", stage=Stage.DEPLOY)
                wait = self._wait_slice
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        self._forfeit_locked(ticket)
                        raise StageTimeout(
                            f"Timed out after {timeout}s waiting for the deploy lease",
                            timeout_seconds=timeout,
                            stage=Stage.DEPLOY,
                        )
                    wait = min(wait, remaining)
                self._cond.wait(wait)
            if cancel_event is not None and cancel_event.is_set():
                self._advance()
                self._cond.notify_all()
                raise StageCancelled("Cancelled before acquiring the deploy lease", stage=Stage.DEPLOY)
            self._held = True
            logger.debug("Deploy lease acquired by ticket %d", ticket)

        try:
            yield
        finally:
            with self._cond:
                self._held = False
                self._advance()
                self._cond.notify_all()
            logger.debug("Deploy lease released by ticket %d", ticket)

    def _forfeit_locked(self, ticket: int) -> None:
        if ticket == self._serving and not self._held:
            self._advance()
        elif ticket > self._serving:
            self._forfeited.add(ticket)
        self._cond.notify_all()
