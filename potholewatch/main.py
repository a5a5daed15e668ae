"""Command-line entry point: load config, build the service, serve the API."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from potholewatch.config import AppConfig, LoggingConfig, load_config
from potholewatch.pipeline import PotholeService
from potholewatch.web.app import create_app

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(config: LoggingConfig, verbose: bool = False) -> None:
    """Log to stdout and to a file under the configured log directory."""
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if verbose else getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_dir / config.file_name),
        ],
    )
    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="potholewatch",
        description="Pothole detection dashboard: REST API, detection proxies, live camera",
    )
    parser.add_argument("-c", "--config", default=None,
                        help="YAML config file (default: $CONFIG_PATH or config/default.yaml)")
    parser.add_argument("--camera", default=None,
                        help="Camera index, stream URL or video file for live detection")
    parser.add_argument("--host", default=None, help="Bind address for the API server")
    parser.add_argument("--port", type=int, default=None, help="Port for the API server")
    parser.add_argument("--live", action="store_true",
                        help="Start live camera detection as soon as the server is up")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.camera:
        config.capture.source = args.camera
    if args.host:
        config.web.host = args.host
    if args.port:
        config.web.port = args.port
    if args.live:
        config.live.enabled = True
    return config


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    config = apply_overrides(load_config(args.config), args)

    setup_logging(config.logging, args.verbose)
    logger = logging.getLogger(__name__)
    logger.info("Detection backend: %s, live camera: %s",
                config.backends.model_type,
                "on" if config.live.enabled else "off")

    service = PotholeService(config, config_path=args.config)
    app = create_app(service)
    logger.info("Serving dashboard API on http://%s:%d", config.web.host, config.web.port)

    try:
        uvicorn.run(app, host=config.web.host, port=config.web.port, log_level="info")
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        service.close()
        logger.info("Service closed")


if __name__ == "__main__":
    main()
