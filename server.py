"""
Entry point for the admission webhook.

Serves the Flask application over TLS using werkzeug's threaded server and
shuts down gracefully on SIGINT/SIGTERM.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from datetime import UTC, datetime

from werkzeug.serving import make_server

from validate import create_app

LOG = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 30

# logrus level names, as accepted by --log-level
LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
}


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def parse_log_level(name: str) -> int:
    try:
        return LOG_LEVELS[name.lower()]
    except KeyError:
        raise ValueError(f"Invalid log level: {name}")


def setup_logging(level: int) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    for old_handler in root_logger.handlers[:]:
        root_logger.removeHandler(old_handler)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Admission webhook that rejects no-op updates"
    )
    parser.add_argument("--port", type=int, default=8443, help="Webhook server port")
    parser.add_argument(
        "--log-level",
        default="info",
        help="Log level (trace, debug, info, warn, error, fatal, panic)",
    )
    parser.add_argument("--tls-cert", default="/certs/tls.crt")
    parser.add_argument("--tls-key", default="/certs/tls.key")

    return parser.parse_args(argv)


def shutdown(srv, timeout=SHUTDOWN_TIMEOUT) -> bool:
    """Stop accepting connections and wait for in-flight requests.

    Returns False if the server did not stop within timeout seconds.
    """

    def _drain():
        srv.shutdown()
        srv.server_close()

    drainer = threading.Thread(target=_drain, daemon=True)
    drainer.start()
    drainer.join(timeout)

    return not drainer.is_alive()


def main(argv=None):
    args = parse_args(argv)

    try:
        level = parse_log_level(args.log_level)
    except ValueError as err:
        LOG.critical("%s", err)
        sys.exit(1)

    setup_logging(level)

    app = create_app()

    try:
        srv = make_server(
            "0.0.0.0",
            args.port,
            app,
            threaded=True,
            ssl_context=(args.tls_cert, args.tls_key),
        )
    except (OSError, SystemExit) as err:
        LOG.critical("Failed to start webhook server: %s", err)
        sys.exit(1)

    # Wait for in-flight requests when shutting down
    srv.daemon_threads = False
    srv.block_on_close = True

    stop = threading.Event()

    def _handle_signal(signum, frame):
        LOG.info("received signal %s", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    serving = threading.Thread(target=srv.serve_forever, daemon=True)
    serving.start()
    LOG.info("Starting webhook server on :%d...", args.port)

    stop.wait()

    LOG.info("Shutting down server...")
    if not shutdown(srv):
        LOG.critical("Server forced to shutdown after %d seconds", SHUTDOWN_TIMEOUT)
        sys.exit(1)

    LOG.info("Server exiting")


if __name__ == "__main__":
    main()
