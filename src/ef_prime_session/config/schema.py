"""
Session Gateway Configuration Schema

Defines the configuration structure for the pairing gateway.
All configuration can be specified via gateway.yaml or environment variables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from pathlib import Path


DEFAULT_PRODUCT_TAG = "EF-PRIME-MD"


@dataclass
class ServerConfig:
    """Configuration for the HTTP/WebSocket transport"""
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class SessionConfig:
    """
    Configuration for pairing session lifecycle.

    Timing values are in seconds. The pairing code delay and export delay
    are empirically chosen settle times for the protocol client, not part
    of any protocol contract.
    """
    root: str = "./sessions"

    # Janitor
    max_age_seconds: float = 600.0
    sweep_interval_seconds: float = 60.0

    # Lifecycle timing
    pairing_code_delay_seconds: float = 3.0
    export_delay_seconds: float = 0.0
    completion_grace_seconds: float = 5.0

    # Close reasons that end a session without a user-visible error
    suppressed_close_reasons: List[str] = field(
        default_factory=lambda: ["logged_out", "replaced"]
    )
    # Close reasons the client recovers from by itself (it reconnects)
    transient_close_reasons: List[str] = field(
        default_factory=lambda: ["restart_required"]
    )


@dataclass
class PasteConfig:
    """Configuration for the paste service used to export credentials"""
    api_url: str = "https://pastebin.com/api/api_post.php"
    api_key: str = ""
    url_prefix: str = "https://pastebin.com/"
    format: str = "json"
    visibility: str = "unlisted"
    expiration: str = "never"
    timeout_seconds: float = 30.0


@dataclass
class LoggingConfig:
    """Configuration for process logging"""
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class GatewayConfig:
    """
    Central configuration for the session gateway.

    Example gateway.yaml:
    ```yaml
    product_tag: "EF-PRIME-MD"
    browser: ["EF-PRIME-MD", "Chrome", "1.0.0"]

    server:
      port: ${PORT:-3000}

    sessions:
      root: ./sessions
      max_age_seconds: 600

    paste:
      api_key: "${PASTEBIN_API_KEY}"
    ```
    """
    product_tag: str = DEFAULT_PRODUCT_TAG
    browser: List[str] = field(
        default_factory=lambda: [DEFAULT_PRODUCT_TAG, "Chrome", "1.0.0"]
    )
    # Protocol version override; None lets the client pick its latest
    client_version: Optional[List[int]] = None

    server: ServerConfig = field(default_factory=ServerConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    paste: PasteConfig = field(default_factory=PasteConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Working directory (relative session roots resolve against it)
    working_dir: Path = field(default_factory=Path.cwd)

    @property
    def sessions_root(self) -> Path:
        """Absolute directory holding per-session credential workspaces"""
        root = Path(self.sessions.root)
        if not root.is_absolute():
            root = self.working_dir / root
        return root

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GatewayConfig":
        """Create GatewayConfig from dictionary (e.g., parsed YAML)"""
        server_data = data.get("server", {})
        server_config = ServerConfig(
            host=server_data.get("host", "0.0.0.0"),
            port=int(server_data.get("port", 3000)),
            cors_origins=list(server_data.get("cors_origins", ["*"])),
        )

        sessions_data = data.get("sessions", {})
        sessions_config = SessionConfig(
            root=sessions_data.get("root", "./sessions"),
            max_age_seconds=float(sessions_data.get("max_age_seconds", 600)),
            sweep_interval_seconds=float(sessions_data.get("sweep_interval_seconds", 60)),
            pairing_code_delay_seconds=float(sessions_data.get("pairing_code_delay_seconds", 3)),
            export_delay_seconds=float(sessions_data.get("export_delay_seconds", 0)),
            completion_grace_seconds=float(sessions_data.get("completion_grace_seconds", 5)),
            suppressed_close_reasons=list(
                sessions_data.get("suppressed_close_reasons", ["logged_out", "replaced"])
            ),
            transient_close_reasons=list(
                sessions_data.get("transient_close_reasons", ["restart_required"])
            ),
        )

        paste_data = data.get("paste", {})
        paste_config = PasteConfig(
            api_url=paste_data.get("api_url", PasteConfig.api_url),
            api_key=paste_data.get("api_key", "") or "",
            url_prefix=paste_data.get("url_prefix", PasteConfig.url_prefix),
            format=paste_data.get("format", "json"),
            visibility=paste_data.get("visibility", "unlisted"),
            expiration=paste_data.get("expiration", "never"),
            timeout_seconds=float(paste_data.get("timeout_seconds", 30)),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=str(logging_data.get("level", "INFO")).upper(),
            file=logging_data.get("file"),
        )

        product_tag = data.get("product_tag", DEFAULT_PRODUCT_TAG)
        client_version = data.get("client_version")

        return cls(
            product_tag=product_tag,
            browser=list(data.get("browser", [product_tag, "Chrome", "1.0.0"])),
            client_version=[int(v) for v in client_version] if client_version else None,
            server=server_config,
            sessions=sessions_config,
            paste=paste_config,
            logging=logging_config,
            working_dir=Path(data.get("working_dir", ".")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (for serialization)"""
        return {
            "product_tag": self.product_tag,
            "browser": list(self.browser),
            "client_version": self.client_version,
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "cors_origins": list(self.server.cors_origins),
            },
            "sessions": {
                "root": self.sessions.root,
                "max_age_seconds": self.sessions.max_age_seconds,
                "sweep_interval_seconds": self.sessions.sweep_interval_seconds,
                "pairing_code_delay_seconds": self.sessions.pairing_code_delay_seconds,
                "export_delay_seconds": self.sessions.export_delay_seconds,
                "completion_grace_seconds": self.sessions.completion_grace_seconds,
                "suppressed_close_reasons": list(self.sessions.suppressed_close_reasons),
                "transient_close_reasons": list(self.sessions.transient_close_reasons),
            },
            "paste": {
                "api_url": self.paste.api_url,
                "url_prefix": self.paste.url_prefix,
                "format": self.paste.format,
                "visibility": self.paste.visibility,
                "expiration": self.paste.expiration,
                "timeout_seconds": self.paste.timeout_seconds,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
            },
            "working_dir": str(self.working_dir),
        }
