"""Interactive session: state machine, shared context and controller."""

from .context import SessionContext, SessionServices
from .controller import SessionAbortedError, SessionController
from .states import StateType

__all__ = [
    "SessionAbortedError",
    "SessionContext",
    "SessionController",
    "SessionServices",
    "StateType",
]
