"""
EF-PRIME-MD Session Gateway

Pairs a WhatsApp account through a pairing code, exports the resulting
credentials to a paste service, and sends the derived session id back to the
user over WhatsApp.
"""

__version__ = "1.0.0"
