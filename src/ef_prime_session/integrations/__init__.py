"""
External service integrations.
"""

from .paste import PasteClient, paste_id_from_url

__all__ = ["PasteClient", "paste_id_from_url"]
