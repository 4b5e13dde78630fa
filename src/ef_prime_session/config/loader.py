"""
Gateway configuration loading.

gateway.yaml may reference the environment as ${VAR} (must be set) or
${VAR:-default}. Without a file the gateway runs on defaults, taking the
listening port from PORT and the paste key from PASTEBIN_API_KEY, the same
variables a hosting platform sets.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Iterator, Optional, Union

import yaml

from .schema import GatewayConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "gateway.yaml"

ENV_REFERENCE = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<default>[^}]*))?\}")


def _lookup(match: "re.Match[str]") -> str:
    name, default = match.group("name"), match.group("default")
    if name in os.environ:
        return os.environ[name]
    if default is None:
        raise KeyError(f"{CONFIG_FILENAME} references ${{{name}}}, which is not set")
    return default


def expand_env(value: Any) -> Any:
    """Substitute environment references in every string of a parsed YAML tree."""
    if isinstance(value, str):
        return ENV_REFERENCE.sub(_lookup, value)
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    return value


def load_config_from_file(config_path: Union[str, Path]) -> GatewayConfig:
    """
    Raises:
        FileNotFoundError: No file at config_path
        KeyError: A ${VAR} without default is not set
        yaml.YAMLError: Malformed YAML
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info(f"Loading configuration from {path}")
    data = expand_env(yaml.safe_load(path.read_text()) or {})

    # Relative session roots resolve against the file's own directory
    data.setdefault("working_dir", str(path.parent.absolute()))
    return GatewayConfig.from_dict(data)


def candidate_paths(working_dir: Optional[Path]) -> Iterator[Path]:
    """gateway.yaml locations in lookup order: working_dir first, then cwd."""
    for base in filter(None, (working_dir, Path.cwd())):
        yield base / CONFIG_FILENAME
        yield base / "config" / CONFIG_FILENAME


def config_from_environment(working_dir: Path) -> GatewayConfig:
    config = GatewayConfig(working_dir=working_dir)
    port = os.environ.get("PORT")
    if port:
        config.server.port = int(port)
    config.paste.api_key = os.environ.get("PASTEBIN_API_KEY", "")
    return config


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    working_dir: Optional[Union[str, Path]] = None,
) -> GatewayConfig:
    """Load an explicit file, else the first gateway.yaml found, else defaults."""
    if config_path:
        return load_config_from_file(config_path)

    base = Path(working_dir) if working_dir else None
    found = next((path for path in candidate_paths(base) if path.is_file()), None)
    if found is not None:
        return load_config_from_file(found)

    logger.info(f"No {CONFIG_FILENAME} found, using defaults and environment")
    return config_from_environment(base or Path.cwd())
