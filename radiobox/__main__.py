#!/usr/bin/env python3
"""
radiobox main entry point.

Allows radiobox to be run as a module: python3 -m radiobox
"""

import logging
import logging.handlers
import os
import signal
import sys
import threading
from typing import Optional

from radiobox.app.http_server import RadioHTTPServer
from radiobox.app.radio_service import RadioService
from radiobox.config import RadioConfig, load_config
from radiobox.errors import RadioError

logger = logging.getLogger("radiobox")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _add_file_handler(path: str) -> None:
    """Attach a rotation-tolerant file handler whose write failures never crash the process."""
    try:
        handler = logging.handlers.WatchedFileHandler(path, mode="a")
    except OSError as e:
        logger.warning(f"Cannot open log file {path}: {e}")
        return
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    original_emit = handler.emit

    def safe_emit(record):
        try:
            original_emit(record)
        except OSError:
            pass

    handler.emit = safe_emit
    logging.getLogger().addHandler(handler)


def configure_logging(config: Optional[RadioConfig] = None) -> None:
    level_name = (config.log_level if config else os.getenv("RADIO_LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
    # Third-party chatter
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("yt_dlp").setLevel(max(level, logging.WARNING) if level > logging.DEBUG else level)
    if config and config.log_file:
        _add_file_handler(config.log_file)


def main() -> int:
    configure_logging()

    try:
        config = load_config()
    except ValueError:
        # load_config already logged the reason
        return 1
    configure_logging(config)

    service = RadioService(config)
    http_server = RadioHTTPServer(config.host, config.port, service)

    shutdown = threading.Event()

    def signal_handler(sig, frame):
        signal_name = "SIGTERM" if sig == signal.SIGTERM else "SIGINT"
        if shutdown.is_set():
            logger.debug("Shutdown already in progress, ignoring duplicate signal")
            return
        logger.info(f"Received {signal_name} - shutting down")
        shutdown.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        service.start()
        http_server.start()
    except (RadioError, OSError) as e:
        logger.error(f"radiobox failed to start: {e}", exc_info=True)
        http_server.stop()
        service.stop()
        return 1

    logger.info(f"radiobox running on http://{config.host}:{http_server.port} (broadcast to "
                f"{config.broadcast_host}:{config.broadcast_port}/{config.broadcast_mount})")
    try:
        while not shutdown.wait(timeout=0.5):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        http_server.stop()
        service.stop()
        logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
