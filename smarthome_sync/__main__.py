#!/usr/bin/env python3
"""
SmartHome Sync Bridge CLI

Command-line interface for running the SmartHome sync bridge.
"""

import asyncio
import argparse
import logging
import os
import sys
from pathlib import Path

from .bridge import SmartHomeBridge
from .data_models import BridgeConfig, DEFAULT_NAMESPACE


def setup_logging(log_level: str = "INFO"):
    """Setup logging configuration"""
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {log_level}')

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="SmartHome Sync Bridge - monitor and control ESP32 room controllers over MQTT"
    )

    # MQTT settings
    parser.add_argument(
        "--mqtt-broker",
        default=os.getenv("MQTT_BROKER", "localhost"),
        help="MQTT broker hostname or IP address (default: localhost)"
    )
    parser.add_argument(
        "--mqtt-port",
        type=int,
        default=int(os.getenv("MQTT_PORT", "8883")),
        help="MQTT broker port (default: 8883)"
    )
    parser.add_argument(
        "--mqtt-username",
        default=os.getenv("MQTT_USERNAME"),
        help="MQTT username (falls back to the last used credentials)"
    )
    parser.add_argument(
        "--mqtt-password",
        default=os.getenv("MQTT_PASSWORD"),
        help="MQTT password (falls back to the last used credentials)"
    )
    parser.add_argument(
        "--no-tls",
        action="store_true",
        default=not _env_flag("MQTT_TLS", True),
        help="Connect without TLS"
    )
    parser.add_argument(
        "--namespace",
        default=os.getenv("MQTT_NAMESPACE", DEFAULT_NAMESPACE),
        help=f"Topic namespace (default: {DEFAULT_NAMESPACE})"
    )

    # History store settings
    parser.add_argument(
        "--history-url",
        default=os.getenv("HISTORY_URL"),
        help="Base URL of the history store (e.g. a Firebase Realtime Database URL)"
    )
    parser.add_argument(
        "--history-auth-token",
        default=os.getenv("HISTORY_AUTH_TOKEN"),
        help="Auth token appended to history requests"
    )

    # Local settings
    parser.add_argument(
        "--settings-path",
        default=os.getenv("SETTINGS_PATH", "./data/smarthome.db"),
        help="SQLite settings file path (default: ./data/smarthome.db)"
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    # HTTP API settings
    parser.add_argument(
        "--http-host",
        default=os.getenv("HTTP_HOST", "0.0.0.0"),
        help="HTTP API host to bind to (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--http-port",
        type=int,
        default=int(os.getenv("HTTP_PORT", "8000")),
        help="HTTP API port (default: 8000)"
    )
    parser.add_argument(
        "--disable-http",
        action="store_true",
        help="Do not start the HTTP API"
    )

    return parser.parse_args(argv)


def build_config(args) -> BridgeConfig:
    return BridgeConfig(
        mqtt_broker=args.mqtt_broker,
        mqtt_port=args.mqtt_port,
        mqtt_username=args.mqtt_username,
        mqtt_password=args.mqtt_password,
        mqtt_tls=not args.no_tls,
        namespace=args.namespace,
        history_url=args.history_url,
        history_auth_token=args.history_auth_token,
        settings_path=args.settings_path,
        http_host=args.http_host,
        http_port=args.http_port,
        log_level=args.log_level,
    )


async def main(argv=None) -> int:
    """Main entry point"""
    args = parse_args(argv)

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    settings_path = Path(args.settings_path)
    settings_path.parent.mkdir(parents=True, exist_ok=True)

    config = build_config(args)

    logger.info("Starting SmartHome Sync Bridge...")
    logger.info(f"MQTT Broker: {config.mqtt_broker}:{config.mqtt_port} (TLS {'on' if config.mqtt_tls else 'off'})")
    logger.info(f"Namespace: {config.namespace}")
    logger.info(f"Settings: {config.settings_path}")

    bridge = SmartHomeBridge(config)
    http_server = None

    try:
        if not await bridge.start():
            logger.error(f"Bridge not started: {bridge.error_message}")
            return 1

        if not args.disable_http:
            from .http_server import BridgeHTTPServer
            http_server = BridgeHTTPServer(bridge, host=config.http_host, port=config.http_port)
            await http_server.start()

        logger.info("Bridge running... Press Ctrl+C to stop")
        await asyncio.Event().wait()

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
    finally:
        if http_server:
            await http_server.stop()
        await bridge.stop()
        logger.info("Bridge stopped")

    return 0


def run():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
