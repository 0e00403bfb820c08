"""Iterative driver for the session state machine."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Type

from ..telemetry import emit_event
from .context import SessionContext
from .states import STATE_CLASSES, State, StateType

LOGGER = logging.getLogger(__name__)

_FROM_CONFIG: Any = object()


class SessionAbortedError(RuntimeError):
    """Raised when a state keeps retrying past the configured ceiling."""


class SessionController:
    """Run states until the session becomes inactive.

    A state that returns its own type is retried after ``retry_delay``
    seconds. ``max_same_state_retries`` bounds consecutive retries; ``None``
    leaves them unbounded.
    """

    def __init__(
        self,
        context: SessionContext,
        *,
        retry_delay: Optional[float] = None,
        max_same_state_retries: Optional[int] = _FROM_CONFIG,
        states: Optional[Dict[StateType, Type[State]]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        session_config = context.services.config.session
        self.context = context
        self.retry_delay = session_config.retry_delay if retry_delay is None else retry_delay
        self.max_same_state_retries = (
            session_config.max_same_state_retries if max_same_state_retries is _FROM_CONFIG else max_same_state_retries
        )
        self._states = states or STATE_CLASSES
        self._sleep = sleep
        self.current: Optional[State] = None

    def run(self, initial: StateType = StateType.WAITING_FOR_INPUT) -> None:
        ctx = self.context
        next_type = initial
        retries = 0
        try:
            while ctx.active:
                if self.current is not None:
                    self.current.exit(ctx)
                self.current = self._states[next_type]()
                self.current.enter(ctx)
                result = self.current.process(ctx)
                if not ctx.active:
                    break

                if result is next_type:
                    retries += 1
                    emit_event("session.retry", state=result.value, attempt=retries)
                    if self.max_same_state_retries is not None and retries > self.max_same_state_retries:
                        raise SessionAbortedError(
                            f"State {result.value} exceeded {self.max_same_state_retries} consecutive retries"
                        )
                    self._sleep(self.retry_delay)
                else:
                    retries = 0
                    LOGGER.debug("Transition %s -> %s", next_type.value, result.value)
                next_type = result
        finally:
            if self.current is not None:
                self.current.exit(ctx)
                self.current = None


__all__ = ["SessionAbortedError", "SessionController"]
