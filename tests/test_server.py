import json
import logging
import threading

import pytest

import server


@pytest.mark.parametrize(
    "name,level",
    [
        ("trace", logging.DEBUG),
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        ("warn", logging.WARNING),
        ("error", logging.ERROR),
        ("panic", logging.CRITICAL),
    ],
)
def test_parse_log_level(name, level):
    assert server.parse_log_level(name) == level


def test_parse_invalid_log_level():
    with pytest.raises(ValueError, match="Invalid log level: chatty"):
        server.parse_log_level("chatty")


def test_default_args():
    args = server.parse_args([])
    assert args.port == 8443
    assert args.log_level == "info"
    assert args.tls_cert == "/certs/tls.crt"
    assert args.tls_key == "/certs/tls.key"


def test_invalid_log_level_is_fatal():
    with pytest.raises(SystemExit) as exc:
        server.main(["--log-level", "chatty"])
    assert exc.value.code == 1


def test_missing_certificate_is_fatal(tmp_path, monkeypatch):
    monkeypatch.setattr(server, "setup_logging", lambda level: None)
    with pytest.raises(SystemExit) as exc:
        server.main(
            [
                "--port",
                "0",
                "--tls-cert",
                str(tmp_path / "tls.crt"),
                "--tls-key",
                str(tmp_path / "tls.key"),
            ]
        )
    assert exc.value.code == 1


def test_json_formatter():
    record = logging.LogRecord(
        "decision", logging.DEBUG, __file__, 1, "Key added: %s", ("a",), None
    )
    data = json.loads(server.JSONFormatter().format(record))
    assert data["level"] == "DEBUG"
    assert data["logger"] == "decision"
    assert data["message"] == "Key added: a"
    assert "timestamp" in data


class FakeServer:
    def __init__(self, release):
        self.release = release
        self.closed = False

    def shutdown(self):
        self.release.wait()

    def server_close(self):
        self.closed = True


def test_shutdown_drains():
    release = threading.Event()
    release.set()
    srv = FakeServer(release)
    assert server.shutdown(srv, timeout=1)
    assert srv.closed


def test_shutdown_gives_up_after_timeout():
    release = threading.Event()
    srv = FakeServer(release)
    assert not server.shutdown(srv, timeout=0.01)
    release.set()
