"""
Prometheus metrics collectors for the PDF service.

This module defines custom Prometheus metrics that expose ChromiumManager
and application-level metrics for monitoring and observability.

Note: Counters are incremented when events occur (not synced from external state).
      Gauges are updated periodically to reflect current state.
"""

import logging
from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge, Histogram, Info

if TYPE_CHECKING:
    from pdf_service.chromium_manager import ChromiumManager


logger = logging.getLogger(__name__)


# Conversion counters - these are incremented when events occur
# DO NOT set these directly - use the increment functions below
pdf_generations_total = Counter(
    "pdf_generations_total",
    "Total number of successful HTML to PDF conversions",
)

pdf_generation_failures_total = Counter(
    "pdf_generation_failures_total",
    "Total number of failed HTML to PDF conversions",
    ["stage"],
)

chromium_cleanup_failures_total = Counter(
    "chromium_cleanup_failures_total",
    "Total number of browser teardown failures after a conversion",
)

chromium_downloads_total = Counter(
    "chromium_downloads_total",
    "Total number of Chromium binary downloads",
)

# Conversion duration histogram - observations are added when conversions complete
pdf_generation_duration_seconds = Histogram(
    "pdf_generation_duration_seconds",
    "HTML to PDF conversion duration in seconds",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Error rate gauges
pdf_generation_error_rate_percent = Gauge(
    "pdf_generation_error_rate_percent",
    "PDF generation error rate as percentage",
)

avg_pdf_generation_time_seconds = Gauge(
    "avg_pdf_generation_time_seconds",
    "Average HTML to PDF conversion time in seconds",
)

uptime_seconds = Gauge(
    "uptime_seconds",
    "Service uptime in seconds",
)

system_memory_total_bytes = Gauge(
    "system_memory_total_bytes",
    "Total system memory in bytes",
)

system_memory_available_bytes = Gauge(
    "system_memory_available_bytes",
    "Available system memory in bytes",
)

# Queue and concurrency metrics
queue_size = Gauge(
    "queue_size",
    "Current number of requests waiting for a browser slot",
)

active_pdf_generations = Gauge(
    "active_pdf_generations",
    "Current number of running browser sessions",
)

# Browser info
chromium_info = Info(
    "chromium",
    "Chromium browser information",
)


# Helper functions to increment counters (called when events occur)
def increment_pdf_generation_success(duration_seconds: float) -> None:
    """Increment successful PDF generation counter and record duration."""
    pdf_generations_total.inc()
    pdf_generation_duration_seconds.observe(duration_seconds)


def increment_pdf_generation_failure(stage: str) -> None:
    """Increment failed PDF generation counter for the step that failed."""
    pdf_generation_failures_total.labels(stage=stage).inc()


def increment_cleanup_failure() -> None:
    """Increment browser teardown failure counter."""
    chromium_cleanup_failures_total.inc()


def increment_chromium_download() -> None:
    """Increment Chromium download counter."""
    chromium_downloads_total.inc()


def update_gauges_from_chromium_manager(chromium_manager: "ChromiumManager") -> None:
    """
    Update Prometheus gauges from ChromiumManager current state.

    This function should be called before serving metrics to ensure
    gauges reflect the current state. It ONLY updates gauges, not counters.

    Args:
        chromium_manager: ChromiumManager instance to collect metrics from
    """
    try:
        metrics = chromium_manager.get_metrics()

        pdf_generation_error_rate_percent.set(float(metrics["error_rate_percent"]))
        avg_pdf_generation_time_seconds.set(float(metrics["avg_conversion_time_ms"]) / 1000.0)
        uptime_seconds.set(float(metrics["uptime_seconds"]))
        system_memory_total_bytes.set(float(metrics["total_memory_mb"]) * 1024 * 1024)  # Convert MB to bytes
        system_memory_available_bytes.set(float(metrics["available_memory_mb"]) * 1024 * 1024)  # Convert MB to bytes
        queue_size.set(float(metrics["queue_size"]))
        active_pdf_generations.set(float(metrics["active_conversions"]))

        chromium_version = chromium_manager.get_version()
        if chromium_version:
            chromium_info.info({"version": chromium_version})

        logger.debug("Prometheus gauges updated from ChromiumManager")

    except Exception as e:
        logger.error("Failed to update Prometheus gauges: %s", e, exc_info=True)
