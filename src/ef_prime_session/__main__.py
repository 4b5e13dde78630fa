"""
EF-PRIME-MD Session Gateway - Entry Point

Runs the pairing gateway (HTTP + WebSocket).
"""

import asyncio
import argparse
import logging
import sys

from .config import load_config
from .server import run_server

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="WhatsApp pairing-code session gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with gateway.yaml from the current directory (or defaults)
  python -m ef_prime_session

  # Explicit config and port
  python -m ef_prime_session --config config/gateway.yaml --port 8080

  # Enable debug logging
  python -m ef_prime_session --debug
"""
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to gateway.yaml'
    )

    parser.add_argument(
        '--host',
        help='Bind address (overrides config)'
    )

    parser.add_argument(
        '--port', '-p',
        type=int,
        help='Port to listen on (overrides config)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    return parser


async def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, KeyError) as e:
        logger.error(f"Configuration error: {e}")
        print(f"\n❌ Error: {e}")
        sys.exit(1)

    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    await run_server(config=config, debug=args.debug)


def cli():
    """Console script entry point"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")


if __name__ == "__main__":
    cli()
