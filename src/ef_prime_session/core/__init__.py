"""
Core pairing session machinery: registry, lifecycle controller, dispatcher, janitor.
"""

from .session import PairingSession, SessionRegistry, SessionState
from .lifecycle import PairingLifecycle, validate_phone_number
from .janitor import SessionJanitor
from .dispatcher import PairingDispatcher

__all__ = [
    "PairingSession",
    "SessionRegistry",
    "SessionState",
    "PairingLifecycle",
    "validate_phone_number",
    "SessionJanitor",
    "PairingDispatcher",
]
