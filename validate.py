import logging
import pydantic

from flask import Flask, Response, request, jsonify, current_app
from werkzeug.exceptions import ClientDisconnected

from models import (
    BaseModel,
    AdmissionReview,
)

from decision import DecisionEngine
from exc import ApplicationError, MissingRequestError, RequestBodyError
from metrics import WebhookMetrics

LOG = logging.getLogger(__name__)


class DEFAULTS:
    WATCHED_KIND = "Application"
    METRICS_REGISTRY = None


def jsonresponse():
    """Transforms the response from a view function into a JSON object."""

    def _outer(func):
        def _inner(*args, **kwargs):
            res = func(*args, **kwargs)
            if isinstance(res, BaseModel):
                return jsonify(res.model_dump(exclude_none=True))
            else:
                return jsonify(res)

        return _inner

    return _outer


@jsonresponse()
def validate_update():
    try:
        payload = request.get_data()
    except (ClientDisconnected, OSError) as err:
        LOG.error("failed to read request body: %s", err)
        raise RequestBodyError("failed to read request body")

    body = AdmissionReview.model_validate_json(payload)
    if body.request is None:
        raise MissingRequestError("admission review does not contain a request")

    return AdmissionReview(response=current_app.engine.decide(body.request))


def expose_metrics():
    data, content_type = current_app.metrics.exposition()
    return Response(data, status=200, content_type=content_type)


def handle_validationerror(err):
    return str(err), 400, {"content-type": "text/plain"}


def handle_applicationerror(err):
    return str(err), 500, {"content-type": "text/plain"}


def health():
    return "OK", 200, {"content-type": "text/plain"}


def create_app(**config) -> Flask:
    """Use an application factory [1] to create the Flask app.

    Each app owns its metrics registry and decision engine, which keeps test
    instances isolated from one another.

    [1]: https://flask.palletsprojects.com/en/3.0.x/patterns/appfactories/
    """

    app = Flask(__name__)
    app.config.from_object(DEFAULTS)
    app.config.from_prefixed_env("WEBHOOK")
    if config:
        app.config.update(config)

    if not app.config.get("WATCHED_KIND"):
        LOG.error("Missing watched kind configuration")
        raise ApplicationError("missing watched kind configuration")

    app.metrics = WebhookMetrics(app.config["METRICS_REGISTRY"])
    app.engine = DecisionEngine(
        app.config["WATCHED_KIND"],
        app.metrics,
        diff_sink=app.config.get("DIFF_SINK"),
    )

    app.errorhandler(pydantic.ValidationError)(handle_validationerror)
    app.errorhandler(MissingRequestError)(handle_validationerror)
    app.errorhandler(ApplicationError)(handle_applicationerror)
    app.add_url_rule("/healthz", view_func=health)
    app.add_url_rule("/metrics", view_func=expose_metrics)
    app.add_url_rule("/validate", view_func=validate_update, methods=["POST"])

    return app
