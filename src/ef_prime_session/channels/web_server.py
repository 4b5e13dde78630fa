"""
Pairing Web Server

Single FastAPI server exposing both transport variants:

- GET  /                          - Pairing page
- GET  /health                    - Health check
- POST /pairing-request           - Start pairing, returns the pairing code
- GET  /session-status/{id}       - waiting | paired | not_found
- WS   /ws                        - Streaming variant (get-pairing-code)
"""

import asyncio
import json
import logging
import secrets
from typing import Any, Dict, Optional, Set

from fastapi import FastAPI, APIRouter, WebSocket, WebSocketDisconnect, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
import uvicorn

from ..core.dispatcher import PairingDispatcher
from ..errors import GatewayError, InvalidInput
from ..core.session import SessionState
from .base import ChannelEvent, CollectingChannel, ResponseChannel

logger = logging.getLogger(__name__)


class WebSocketChannel(ResponseChannel):
    """Streams session events to one WebSocket as {"event", "data"} frames."""

    def __init__(self, websocket: WebSocket, connection_id: str):
        super().__init__(f"ws:{connection_id}")
        self.websocket = websocket
        self.connection_id = connection_id
        self.closed = False
        # In-flight get-pairing-code requests
        self.tasks: Set[asyncio.Task] = set()

    async def emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self.closed:
            return
        await self.websocket.send_json({"event": event, "data": payload})


class PairingWebServer:
    """
    HTTP + WebSocket front end for the pairing dispatcher.

    Routes:
    - POST /pairing-request       - {phoneNumber} -> 202 {sessionId, pairingCode}
    - GET  /session-status/{id}   - {status}
    - WS   /ws                    - get-pairing-code -> status/pairing-code/success/error
    """

    GET_PAIRING_CODE = "get-pairing-code"

    def __init__(
        self,
        dispatcher: PairingDispatcher,
        host: str = "0.0.0.0",
        port: int = 3000,
        cors_origins: Optional[list] = None,
    ):
        self.dispatcher = dispatcher
        self.host = host
        self.port = port
        self.product_tag = dispatcher.config.product_tag
        self.is_active = False

        # Open WebSocket channels by connection id
        self.websockets: Dict[str, WebSocketChannel] = {}

        self.app = FastAPI(
            title=f"{self.product_tag} Session Generator",
            description="WhatsApp pairing-code session generator",
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

    def _setup_routes(self):
        """Setup all routes on the server"""

        @self.app.get("/", response_class=HTMLResponse)
        async def landing_page():
            """Pairing page"""
            return self._render_landing_page()

        @self.app.get("/health")
        async def health_check():
            return {
                "status": "healthy",
                "active_sessions": self.dispatcher.active_sessions,
                "websockets": len(self.websockets),
            }

        # =====================================================================
        # HTTP VARIANT
        # =====================================================================

        api_router = APIRouter(tags=["Pairing"])

        @api_router.post("/pairing-request", status_code=202)
        async def pairing_request(request: Request):
            """Start a pairing session and return its pairing code"""
            try:
                body = await request.json()
            except ValueError:
                return JSONResponse(status_code=400, content={"error": "Request body must be JSON"})

            phone_number = body.get("phoneNumber") if isinstance(body, dict) else None
            if not phone_number:
                return JSONResponse(status_code=400, content={"error": "Phone number is required"})

            channel = CollectingChannel(channel_id="http")
            try:
                session = await self.dispatcher.request_pairing(phone_number, channel)
            except InvalidInput as e:
                return JSONResponse(status_code=400, content={"error": e.message})
            except GatewayError as e:
                logger.error(f"Pairing request failed: {e.message}")
                return JSONResponse(status_code=500, content={"error": e.message})

            if session.is_terminal and session.state != SessionState.COMPLETED:
                error = channel.error_message or session.error or "Failed to generate session"
                return JSONResponse(status_code=500, content={"error": error})

            return JSONResponse(
                status_code=202,
                content={"sessionId": session.id, "pairingCode": session.pairing_code},
            )

        @api_router.get("/session-status/{session_id}")
        async def session_status(session_id: str):
            """Report whether a session is still waiting or already paired"""
            return self.dispatcher.get_status(session_id)

        self.app.include_router(api_router)

        # =====================================================================
        # STREAMING VARIANT
        # =====================================================================

        @self.app.websocket("/ws")
        async def pairing_websocket(websocket: WebSocket):
            """WebSocket endpoint for streamed pairing events"""
            await websocket.accept()

            connection_id = secrets.token_hex(4)
            channel = WebSocketChannel(websocket, connection_id)
            self.websockets[connection_id] = channel
            logger.info(f"Pairing WebSocket connected: {connection_id}")

            try:
                while True:
                    raw = await websocket.receive_text()
                    # Keep reading so a disconnect is seen while a request runs
                    task = asyncio.create_task(self._handle_socket_message(channel, raw))
                    channel.tasks.add(task)
                    task.add_done_callback(channel.tasks.discard)

            except WebSocketDisconnect:
                logger.info(f"Pairing WebSocket disconnected: {connection_id}")
            except Exception as e:
                logger.exception(f"Pairing WebSocket error: {e}")
            finally:
                channel.closed = True
                self.websockets.pop(connection_id, None)
                pending = list(channel.tasks)
                for task in pending:
                    task.cancel()
                if pending:
                    await asyncio.wait(pending)
                await self.dispatcher.disconnect(connection_id)

    async def _handle_socket_message(self, channel: WebSocketChannel, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            await channel.error("Messages must be JSON")
            return

        if not isinstance(message, dict) or message.get("event") != self.GET_PAIRING_CODE:
            await channel.error("Unknown event")
            return

        data = message.get("data") or {}
        phone_number = data.get("phoneNumber") if isinstance(data, dict) else None

        try:
            await self.dispatcher.request_pairing(
                phone_number, channel, connection_id=channel.connection_id
            )
        except GatewayError as e:
            await channel.emit(ChannelEvent.ERROR, {"message": e.message})
        except Exception:
            logger.exception(f"Pairing request on {channel.connection_id} failed")
            await channel.error("Failed to generate pairing code")

    # =========================================================================
    # HTML
    # =========================================================================

    def _render_landing_page(self) -> str:
        """Render the pairing page"""
        product = self._escape_html(self.product_tag)
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{product} Session Generator</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               max-width: 480px; margin: 60px auto; padding: 0 20px; color: #222; }}
        input, button {{ width: 100%; padding: 12px; margin: 8px 0; font-size: 16px; box-sizing: border-box; }}
        button {{ background: #25d366; color: #fff; border: none; border-radius: 6px; cursor: pointer; }}
        #code {{ font-size: 28px; letter-spacing: 4px; text-align: center; margin: 20px 0; }}
        #status {{ color: #666; text-align: center; }}
    </style>
</head>
<body>
    <h1>{product} Session Generator</h1>
    <p>Enter your WhatsApp number with country code, digits only.</p>
    <input id="phone" placeholder="15551234567" inputmode="numeric">
    <button id="go">Get Pairing Code</button>
    <div id="code"></div>
    <div id="status"></div>
    <script>
        const statusEl = document.getElementById('status');
        const codeEl = document.getElementById('code');
        document.getElementById('go').onclick = async () => {{
            codeEl.textContent = '';
            statusEl.textContent = 'Requesting pairing code...';
            const res = await fetch('/pairing-request', {{
                method: 'POST',
                headers: {{'Content-Type': 'application/json'}},
                body: JSON.stringify({{phoneNumber: document.getElementById('phone').value.trim()}})
            }});
            const body = await res.json();
            if (!res.ok) {{ statusEl.textContent = body.error; return; }}
            codeEl.textContent = body.pairingCode || '';
            statusEl.textContent = 'WhatsApp > Linked devices > Link with phone number, then enter the code.';
            const timer = setInterval(async () => {{
                const s = await (await fetch('/session-status/' + body.sessionId)).json();
                if (s.status === 'paired') {{
                    clearInterval(timer);
                    statusEl.textContent = 'Paired! Your session ID was sent to your WhatsApp.';
                }} else if (s.status === 'not_found') {{
                    clearInterval(timer);
                }}
            }}, 3000);
        }};
    </script>
</body>
</html>"""

    def _escape_html(self, text: str) -> str:
        """Escape HTML special characters"""
        return (text
            .replace("&", "&amp;")
            .replace("<", "&lt;")
            .replace(">", "&gt;")
            .replace('"', "&quot;")
            .replace("'", "&#x27;"))

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    async def start(self):
        """Serve until uvicorn receives a shutdown signal"""
        self.is_active = True
        logger.info(f"{self.product_tag} Session Generator running on http://{self.host}:{self.port}")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info"
        )
        server = uvicorn.Server(config)
        await server.serve()

    async def stop(self):
        """Close all open WebSockets"""
        self.is_active = False

        for channel in list(self.websockets.values()):
            channel.closed = True
            try:
                await channel.websocket.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket {channel.connection_id}: {e}")

        self.websockets.clear()
        logger.info("Pairing web server stopped")
