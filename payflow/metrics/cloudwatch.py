"""CloudWatch custom metrics for payment lifecycle events.

All functions are fire-and-forget: failures are logged as warnings and never
reach the caller. boto3 is synchronous, so put_metric_data runs on a small
thread pool instead of the event loop.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from payflow.core.config import get_settings

logger = structlog.get_logger(__name__)

NAMESPACE = "Payflow/Payments"

_cw_client = None
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="cw-metrics")


def _get_client():
    global _cw_client
    if _cw_client is None:
        _cw_client = boto3.client("cloudwatch", region_name=get_settings().aws_region)
    return _cw_client


def _put_payment_event(event_name: str, provider: str | None, value: float) -> None:
    """Synchronous put_metric_data. Runs in the thread pool."""
    dimensions = [{"Name": "Event", "Value": event_name}]
    if provider:
        dimensions.append({"Name": "Provider", "Value": provider})
    try:
        _get_client().put_metric_data(
            Namespace=NAMESPACE,
            MetricData=[{
                "MetricName": "EventCount",
                "Dimensions": dimensions,
                "Value": value,
                "Unit": "Count",
                "Timestamp": datetime.now(UTC),
            }],
        )
    except (BotoCoreError, ClientError) as e:
        logger.warning("payment_event_emit_failed", error=str(e), event=event_name)


def emit_payment_event(event_name: str, provider: str | None = None, value: float = 1.0) -> None:
    """Emit a payment event count (payment_created, payment_paid, reconcile_run, ...).

    No-op unless metrics are enabled. Must be called from within a running loop.
    """
    if not get_settings().metrics_enabled:
        return
    loop = asyncio.get_running_loop()
    loop.run_in_executor(_executor, _put_payment_event, event_name, provider, value)
