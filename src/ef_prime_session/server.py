"""
Gateway Host Server

Wires configuration, the pairing dispatcher, and the web server together and
runs them until interrupted. On the way out every tracked session is force
terminated so no client or credential workspace outlives the process.
"""

import asyncio
import logging
from typing import Optional

from .channels.web_server import PairingWebServer
from .channels.whatsapp.client import ClientFactory
from .config import GatewayConfig, load_config
from .core.dispatcher import PairingDispatcher

logger = logging.getLogger(__name__)


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Log uncaught asyncio errors instead of letting them go unnoticed."""
    exc = context.get("exception")
    message = context.get("message", "Unhandled asyncio error")
    if exc is not None:
        logger.error(f"{message}: {exc!r}", exc_info=exc)
    else:
        logger.error(message)


def configure_file_logging(config: GatewayConfig) -> None:
    """Attach a file handler when a log file is configured."""
    if not config.logging.file:
        return
    log_path = config.working_dir / config.logging.file
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path)
    file_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )
    logging.getLogger().addHandler(file_handler)


async def run_server(
    config: Optional[GatewayConfig] = None,
    debug: bool = False,
    client_factory: Optional[ClientFactory] = None,
):
    """
    Run the gateway.

    Command-line overrides are applied to config by the caller.
    """
    if config is None:
        config = load_config()

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(getattr(logging, config.logging.level, logging.INFO))
    configure_file_logging(config)

    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)

    dispatcher = PairingDispatcher(config, client_factory=client_factory)
    await dispatcher.start()

    web = PairingWebServer(
        dispatcher,
        host=config.server.host,
        port=config.server.port,
        cors_origins=config.server.cors_origins,
    )

    print("=" * 60)
    print(f"  {config.product_tag} Session Generator")
    print("=" * 60)
    print(f"   HTTP:      http://{config.server.host}:{config.server.port}/")
    print(f"   WebSocket: ws://{config.server.host}:{config.server.port}/ws")
    print(f"   Sessions:  {config.sessions_root}")
    print(f"   Press Ctrl+C to stop")

    if not config.paste.api_key:
        logger.warning("No paste API key configured; credential export will fail")

    try:
        await web.start()
    finally:
        logger.info("Shutting down server...")
        await web.stop()
        await dispatcher.shutdown()
