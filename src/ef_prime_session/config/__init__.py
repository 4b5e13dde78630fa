"""
Session Gateway Configuration Module

Provides centralized configuration management for the pairing gateway.
"""

from .schema import GatewayConfig, ServerConfig, SessionConfig, PasteConfig, LoggingConfig
from .loader import load_config, load_config_from_file

__all__ = [
    "GatewayConfig",
    "ServerConfig",
    "SessionConfig",
    "PasteConfig",
    "LoggingConfig",
    "load_config",
    "load_config_from_file",
]
