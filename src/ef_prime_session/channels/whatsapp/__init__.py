"""
WhatsApp Protocol Client

The lifecycle talks to WhatsApp through the ProtocolClient interface:
- on(event, handler) for "connection.update" and "creds.update"
- request_pairing_code(phone), send_message(jid, {"text": ...}), end()

The default factory builds clients on pyaileys (install the "whatsapp" extra).
"""

from .client import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    ClientFactory,
    ClientOptions,
    ConnectionUpdate,
    DisconnectReason,
    ProtocolClient,
    create_pyaileys_client,
    reason_name,
    user_jid,
)

__all__ = [
    "CONNECTION_UPDATE",
    "CREDS_UPDATE",
    "ClientFactory",
    "ClientOptions",
    "ConnectionUpdate",
    "DisconnectReason",
    "ProtocolClient",
    "create_pyaileys_client",
    "reason_name",
    "user_jid",
]
