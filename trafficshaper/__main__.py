"""Command-line entry point: serve the traffic shaper control API.

Usage::

    python -m trafficshaper --config trafficshaper.yml --port 8000
"""

from __future__ import annotations

import argparse
import logging
import sys

from aiohttp import web

from .control.api import create_app
from .control.supervisor import RunSupervisor
from .core.exceptions import ConfigurationError
from .core.settings import check_log_level, load_settings
from .emission.udp_emitter import UdpEmitter
from .telemetry.broadcaster import TelemetryBroadcaster

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trafficshaper",
        description="Shaped UDP traffic generator with a live telemetry API",
    )
    parser.add_argument("--config", "-c", help="YAML settings file")
    parser.add_argument("--host", help="Listen address (default: 0.0.0.0)")
    parser.add_argument("--port", "-p", type=int, help="Listen port (default: 8000)")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, build the supervisor, and serve until interrupted."""
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.config)
        if args.log_level:
            settings.log_level = check_log_level(args.log_level, "--log-level")
    except ConfigurationError as exc:
        print(f"trafficshaper: {exc}", file=sys.stderr)
        return 2

    if args.host:
        settings.listen_host = args.host
    if args.port:
        settings.listen_port = args.port

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    supervisor = RunSupervisor(
        UdpEmitter(),
        configuration=settings.defaults,
        broadcaster=TelemetryBroadcaster(settings.subscriber_buffer),
        snapshot_interval=settings.snapshot_interval_seconds,
    )
    logger.info(
        "Starting traffic shaper on %s:%d", settings.listen_host, settings.listen_port
    )
    web.run_app(
        create_app(supervisor),
        host=settings.listen_host,
        port=settings.listen_port,
        print=None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
