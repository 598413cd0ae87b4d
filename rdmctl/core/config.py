"""User settings from config.yaml and environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from importlib import resources
from pathlib import Path

from jsonschema import ValidationError, validators

from rdmctl.core.errors import ConfigError
from rdmctl.core.pid_store import read_yaml
from rdmctl.transports.udp_json import DEFAULT_PORT, DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class Settings:
    gateway_host: str = "127.0.0.1"
    gateway_port: int = DEFAULT_PORT
    timeout_s: float = DEFAULT_TIMEOUT_S
    universe: int = 1


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "rdmctl/config.yaml"


def _validate(doc: dict, source: Path) -> None:
    schema = json.loads(
        resources.files("rdmctl.schemas").joinpath("config.schema.json").read_text(encoding="utf-8")
    )
    validator = validators.validator_for(schema)(schema)
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigError(f"Invalid configuration in {source}{where}: {exc.message}") from exc


def load_settings(path: Path | None = None) -> Settings:
    settings = Settings()
    source = path or config_path()
    if source.is_file():
        doc = read_yaml(source, load_error=ConfigError, invalid_error=ConfigError)
        _validate(doc, source)
        gateway = doc.get("gateway", {})
        settings = replace(
            settings,
            gateway_host=gateway.get("host", settings.gateway_host),
            gateway_port=int(gateway.get("port", settings.gateway_port)),
            timeout_s=float(gateway.get("timeout_s", settings.timeout_s)),
            universe=int(doc.get("universe", settings.universe)),
        )

    host = os.environ.get("RDMCTL_GATEWAY_HOST")
    if host:
        settings = replace(settings, gateway_host=host)
    port = os.environ.get("RDMCTL_GATEWAY_PORT")
    if port:
        try:
            settings = replace(settings, gateway_port=int(port))
        except ValueError:
            raise ConfigError(f"RDMCTL_GATEWAY_PORT must be an integer, got '{port}'") from None
    return settings
