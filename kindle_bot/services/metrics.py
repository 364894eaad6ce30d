# kindle_bot/services/metrics.py

"""Fire-and-forget counters for API attempts and slot outcomes."""

import logging
from typing import Any

import boto3

logger = logging.getLogger("kindle_bot.metrics")


class MetricsSink:
    """Counter sink; the default implementation only logs."""

    def put(self, name: str) -> None:
        """Record one occurrence of *name*."""
        logger.debug("metric %s", name)


class CloudWatchMetrics(MetricsSink):
    """Publishes each counter as a CloudWatch ``Count`` datapoint."""

    def __init__(
        self,
        namespace: str,
        region: str | None = None,
        client: Any = None,
    ) -> None:
        self.namespace = namespace
        self._client = client or boto3.client(
            "cloudwatch", region_name=region
        )

    def put(self, name: str) -> None:
        try:
            self._client.put_metric_data(
                Namespace=self.namespace,
                MetricData=[
                    {"MetricName": name, "Value": 1.0, "Unit": "Count"}
                ],
            )
        except Exception as exc:
            # Metrics never change the outcome of a run
            logger.warning(
                "Failed to put metric %s/%s: %s",
                self.namespace,
                name,
                exc,
            )
