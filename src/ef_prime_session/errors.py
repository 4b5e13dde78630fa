"""
Gateway error taxonomy.

Every failure a pairing session can hit maps to exactly one of these. They
are caught where they occur and turned into a single user-visible error
event; none of them should escape to the event loop.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for pairing gateway failures"""

    # Short machine-readable code sent alongside the message
    code = "gateway_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(GatewayError):
    """Phone number failed validation; no session was created"""
    code = "invalid_input"


class WorkspaceError(GatewayError):
    """Credential workspace could not be created or removed"""
    code = "workspace_error"


class PairingCodeError(GatewayError):
    """Protocol client rejected or failed to produce a pairing code"""
    code = "pairing_code_error"


class ConnectionClosedError(GatewayError):
    """Protocol client closed with a reason other than logout/replacement"""
    code = "connection_closed"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class ExportError(GatewayError):
    """Credential upload failed or returned no usable paste id"""
    code = "export_error"


class DeliveryError(GatewayError):
    """Sending the session id to the user's own account failed"""
    code = "delivery_error"
