import pytest

from prometheus_client import CollectorRegistry

import validate


class RecordingSink:
    def __init__(self):
        self.calls = []

    def __call__(self, section, diff):
        self.calls.append((section, diff))


@pytest.fixture()
def registry():
    return CollectorRegistry()


@pytest.fixture()
def diff_sink():
    return RecordingSink()


@pytest.fixture()
def app(registry, diff_sink):
    app = validate.create_app(
        TESTING=True,
        WATCHED_KIND="Application",
        METRICS_REGISTRY=registry,
        DIFF_SINK=diff_sink,
    )
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()
