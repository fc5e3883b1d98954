"""
Prometheus metrics for the admission webhook.

Collectors are bound to the registry passed in, never to the
prometheus_client default registry.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


class WebhookMetrics:
    """Counters and histograms describing admission decisions."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.request_duration = Histogram(
            "argocd_webhook_request_duration",
            "Duration of admission decisions in seconds",
            ["change"],
            registry=self.registry,
        )

        self.processed_total = Counter(
            "argocd_webhook_processed",
            "Total number of Applications processed by the webhook, "
            "differentiated by whether changes were detected",
            ["change"],
            registry=self.registry,
        )

    def record(self, changed: bool, duration: float) -> None:
        """
        Record the outcome of a single decision.

        Args:
            changed: Whether the update carried a significant change
            duration: Time spent deciding, in seconds
        """
        label = "true" if changed else "false"
        self.processed_total.labels(change=label).inc()
        self.request_duration.labels(change=label).observe(duration)

    def exposition(self) -> tuple[bytes, str]:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
