import argparse
import logging

import uvicorn

from bleproxy.api.app import create_app
from bleproxy.config.loader import config_warnings, load_config
from bleproxy.core.bridge import Bridge
from bleproxy.routers.mqtt_router import MQTTRouter

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
LOG_LEVELS = ("critical", "error", "warning", "info", "debug")
LOG_LEVEL_ALIASES = {"warn": "warning", "fatal": "critical"}


def normalize_log_level(level) -> str:
    """Lower-case level name understood by both logging and uvicorn; unknown names become info."""
    name = str(level or "").strip().lower()
    name = LOG_LEVEL_ALIASES.get(name, name)
    return name if name in LOG_LEVELS else "info"


def setup_logging(level) -> str:
    name = normalize_log_level(level)
    logging.basicConfig(level=getattr(logging, name.upper()), format=LOG_FORMAT, force=True)
    return name


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("bleproxy")
    p.add_argument("--config", "-c", help="Path to YAML config (env vars apply on top)")
    p.add_argument("--host", help="HTTP listen address")
    p.add_argument("--port", type=int, help="HTTP listen port")
    p.add_argument("--log-level", help="debug, info, warning or error")
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)

    settings = load_config(args.config)
    if args.host:
        settings.server.host = args.host
    if args.port:
        settings.server.port = args.port
    if args.log_level:
        settings.logging.level = args.log_level

    settings.logging.level = setup_logging(settings.logging.level)
    for w in config_warnings(settings):
        logging.warning(f"[config] {w}")

    mqtt_router = MQTTRouter("mqtt", settings.mqtt.model_dump())
    bridge = Bridge(settings, mqtt_router)
    app = create_app(bridge)

    bridge.start()
    logging.info(f"[cli] listening on http://{settings.server.host}:{settings.server.port}/tokendata")
    try:
        uvicorn.run(app, host=settings.server.host, port=settings.server.port, log_level=settings.logging.level)
    finally:
        bridge.stop()


if __name__ == "__main__":
    main()
