"""
Shared fakes and fixtures for gateway tests.

FakeProtocolClient stands in for the WhatsApp protocol client; the paste
service is exercised through the real PasteClient over httpx.MockTransport.
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List
from unittest.mock import AsyncMock

import httpx
import pytest

from ef_prime_session.channels.base import CollectingChannel
from ef_prime_session.channels.whatsapp.client import ClientOptions
from ef_prime_session.config.schema import GatewayConfig, PasteConfig, SessionConfig
from ef_prime_session.core.dispatcher import PairingDispatcher
from ef_prime_session.integrations.paste import PasteClient


PASTE_PREFIX = "https://paste.example/"
SAMPLE_CREDS = {"noiseKey": {"private": "abc", "public": "def"}, "registered": True}


class FakeProtocolClient:
    """In-memory protocol client with the ProtocolClient shape"""

    def __init__(self, options: ClientOptions, registered: bool = False, pairing_code: str = "ABCD1234EFGH"):
        self.options = options
        self.registered = registered
        self.handlers: Dict[str, List[Callable]] = {}
        self.connected = False
        self.ended = 0

        self.request_pairing_code = AsyncMock(return_value=pairing_code)
        self.send_message = AsyncMock(return_value={"status": "sent"})
        self.save_creds = AsyncMock(side_effect=self._write_creds)

    async def _write_creds(self) -> None:
        workspace = Path(self.options.workspace)
        if workspace.exists():
            (workspace / "creds.json").write_text(json.dumps(SAMPLE_CREDS), encoding="utf-8")

    def on(self, event: str, handler: Callable) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def remove_all_listeners(self) -> None:
        self.handlers.clear()

    async def connect(self) -> None:
        self.connected = True

    async def end(self) -> None:
        self.ended += 1

    async def fire(self, event: str, payload: Any) -> None:
        for handler in list(self.handlers.get(event, [])):
            await handler(payload)


class FakeClientFactory:
    """ClientFactory that records every client it builds"""

    def __init__(self, **client_kwargs):
        self.client_kwargs = client_kwargs
        self.clients: List[FakeProtocolClient] = []
        self.options: List[ClientOptions] = []

    async def __call__(self, options: ClientOptions) -> FakeProtocolClient:
        client = FakeProtocolClient(options, **self.client_kwargs)
        self.options.append(options)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeProtocolClient:
        return self.clients[-1]


def make_paste_client(handler: Callable[[httpx.Request], httpx.Response]) -> PasteClient:
    config = PasteConfig(api_key="test-key", url_prefix=PASTE_PREFIX, api_url=f"{PASTE_PREFIX}api")
    return PasteClient(config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def paste_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text=f"{PASTE_PREFIX}abcd123")


@pytest.fixture
def config(tmp_path) -> GatewayConfig:
    return GatewayConfig(
        working_dir=tmp_path,
        sessions=SessionConfig(
            root="sessions",
            pairing_code_delay_seconds=0,
            export_delay_seconds=0,
            completion_grace_seconds=0,
        ),
        paste=PasteConfig(api_key="test-key", url_prefix=PASTE_PREFIX, api_url=f"{PASTE_PREFIX}api"),
    )


@pytest.fixture
def factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def channel() -> CollectingChannel:
    return CollectingChannel()


@pytest.fixture
def dispatcher(config, factory) -> PairingDispatcher:
    return PairingDispatcher(config, client_factory=factory, paste_client=make_paste_client(paste_ok))
