"""Service settings loaded from YAML with environment overrides.

Settings file layout::

    server:
      host: 0.0.0.0
      port: 8000
      log_level: INFO
    telemetry:
      snapshot_interval: 1.0
      subscriber_buffer: 64
    defaults:            # wire field names, as sent by the web client
      pattern: bell
      duration: 60
      maxBandwidth: 100
      targetIP: 127.0.0.1
      targetPort: 8080
      bellPeakRatio: 0.5
      packetSize: 1400

Environment variables ``TRAFFICSHAPER_HOST``, ``TRAFFICSHAPER_PORT`` and
``TRAFFICSHAPER_LOG_LEVEL`` take precedence over the file.

Usage::

    settings = load_settings(Path("trafficshaper.yml"))
    supervisor = RunSupervisor(UdpEmitter(), configuration=settings.defaults)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..telemetry.aggregator import SNAPSHOT_INTERVAL_SECONDS
from ..telemetry.broadcaster import DEFAULT_SUBSCRIBER_BUFFER
from .config import RunConfiguration
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 8000
ENV_PREFIX = "TRAFFICSHAPER_"
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass
class ServiceSettings:
    """Process-level settings for the control service.

    Attributes:
        listen_host: Interface the HTTP server binds to.
        listen_port: HTTP server port.
        log_level: Root logging level name.
        snapshot_interval_seconds: Telemetry cadence.
        subscriber_buffer: Per-subscriber message bound.
        defaults: Initial "last configuration".

    """

    listen_host: str = DEFAULT_LISTEN_HOST
    listen_port: int = DEFAULT_LISTEN_PORT
    log_level: str = "INFO"
    snapshot_interval_seconds: float = SNAPSHOT_INTERVAL_SECONDS
    subscriber_buffer: int = DEFAULT_SUBSCRIBER_BUFFER
    defaults: RunConfiguration = field(default_factory=RunConfiguration)


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServiceSettings:
    """Load settings from an optional YAML file and the environment.

    Args:
        path: YAML settings file; skipped when ``None``.
        environ: Environment mapping (``os.environ`` if omitted).

    Returns:
        The merged ``ServiceSettings``.

    Raises:
        ConfigurationError: If the file is missing, malformed, or holds
            invalid values.

    """
    raw: dict[str, Any] = _read_yaml(Path(path)) if path is not None else {}
    server = _section(raw, "server")
    telemetry = _section(raw, "telemetry")
    defaults = _section(raw, "defaults")

    settings = ServiceSettings(
        listen_host=str(server.get("host", DEFAULT_LISTEN_HOST)),
        listen_port=_as_int(server.get("port", DEFAULT_LISTEN_PORT), "server.port"),
        log_level=str(server.get("log_level", "INFO")).upper(),
        snapshot_interval_seconds=_as_float(
            telemetry.get("snapshot_interval", SNAPSHOT_INTERVAL_SECONDS),
            "telemetry.snapshot_interval",
        ),
        subscriber_buffer=_as_int(
            telemetry.get("subscriber_buffer", DEFAULT_SUBSCRIBER_BUFFER),
            "telemetry.subscriber_buffer",
        ),
        defaults=RunConfiguration.from_dict(defaults),
    )
    _apply_env(settings, os.environ if environ is None else environ)

    if settings.snapshot_interval_seconds <= 0:
        raise ConfigurationError("Snapshot interval must be positive", field="telemetry.snapshot_interval")
    if settings.subscriber_buffer <= 0:
        raise ConfigurationError("Subscriber buffer must be positive", field="telemetry.subscriber_buffer")
    if not 1 <= settings.listen_port <= 65535:
        raise ConfigurationError(
            "Listen port out of range",
            field="server.port",
            details={"value": settings.listen_port},
        )
    check_log_level(settings.log_level, "server.log_level")
    logger.debug("Settings loaded: %s", settings)
    return settings


def check_log_level(level: str, field_name: str = "log_level") -> str:
    """Return ``level`` upper-cased if it names a standard logging level.

    Raises:
        ConfigurationError: If ``level`` is not one of ``LOG_LEVELS``.

    """
    name = str(level).upper()
    if name not in LOG_LEVELS:
        raise ConfigurationError(
            "Unknown log level",
            field=field_name,
            details={"value": level, "allowed": ", ".join(LOG_LEVELS)},
        )
    return name


def _read_yaml(path: Path) -> dict[str, Any]:
    import yaml

    if not path.exists():
        raise ConfigurationError(f"Settings file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Settings file is not valid YAML: {path}",
            details={"error": str(exc)},
        ) from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Settings file must contain a mapping: {path}")
    return raw


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Section '{name}' must be a mapping", field=name)
    return value


def _apply_env(settings: ServiceSettings, environ: Mapping[str, str]) -> None:
    if host := environ.get(f"{ENV_PREFIX}HOST"):
        settings.listen_host = host
    if port := environ.get(f"{ENV_PREFIX}PORT"):
        settings.listen_port = _as_int(port, f"{ENV_PREFIX}PORT")
    if level := environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        settings.log_level = level.upper()


def _as_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError("Expected an integer", field=field_name, details={"value": value})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            "Expected an integer", field=field_name, details={"value": value}
        ) from None


def _as_float(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError("Expected a number", field=field_name, details={"value": value})
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            "Expected a number", field=field_name, details={"value": value}
        ) from None
