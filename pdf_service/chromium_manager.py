"""
Chromium browser session management via Chrome DevTools Protocol (CDP).

This module provides a ChromiumManager that runs one HTML to PDF conversion per
browser session: every conversion launches its own headless Chromium process,
opens a tab, loads the HTML from a data URL, waits for the load event, prints the
page to PDF and tears everything down again, whatever the outcome.
"""

from __future__ import annotations

import asyncio
import base64
import functools
import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

import psutil
from playwright.async_api import async_playwright

from pdf_service.errors import (
    CleanupWarning,
    ConversionError,
    LaunchError,
    NavigationError,
    NavigationTimeoutError,
    PrintError,
    TabError,
)
from pdf_service.prometheus_metrics import (
    increment_cleanup_failure,
    increment_pdf_generation_failure,
    increment_pdf_generation_success,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable
    from pathlib import Path

    from playwright.async_api import Browser, BrowserContext, Page, Playwright

    from pdf_service.pdf_options import EnginePrintOptions


CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--disable-logging",
    "--log-level=3",
    "--ignore-certificate-errors",
]


def build_data_url(html: str) -> str:
    """Embed the HTML document in a base64 ``data:`` URL so the page needs no network fetch to load."""
    payload = base64.b64encode(html.encode("utf-8")).decode("ascii")
    return f"data:text/html;base64,{payload}"


@dataclass
class ChromiumConfig:
    """
    Configuration settings for ChromiumManager.

    Attributes:
        navigation_timeout: Seconds to wait for navigation and the load event (1-300, default 30).
        print_timeout: Seconds to wait for print-to-PDF before giving up (5-600, default 60).
        max_concurrent_conversions: Maximum simultaneous browser sessions (1-100, default 10).
    """

    navigation_timeout: int | None = None
    print_timeout: int | None = None
    max_concurrent_conversions: int | None = None


class SessionState(Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    TAB_OPEN = "tab_open"
    NAVIGATING = "navigating"
    NAVIGATED = "navigated"
    PRINTING = "printing"
    PRINTED = "printed"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass
class ChromiumSession:
    """Browser process and tab owned by exactly one conversion."""

    state: SessionState = SessionState.IDLE
    playwright: Playwright | None = None
    browser: Browser | None = None
    context: BrowserContext | None = None
    page: Page | None = None
    failure: ConversionError | None = None

    def transition(self, state: SessionState) -> None:
        self.state = state

    def fail(self, error: ConversionError) -> None:
        self.failure = error
        self.state = SessionState.FAILED


@dataclass
class ChromiumMetrics:
    """
    Metrics for HTML to PDF conversions.

    Attributes:
        total_conversions: Total number of successful conversions since start.
        failed_conversions: Total number of failed conversions since start.
        failures_by_stage: Failed conversions per failing step (locate, launch, tab, ...).
        cleanup_failures: Browser teardown failures that were logged and ignored.
        avg_conversion_time_ms: Average time from browser launch to finished print.
        total_conversion_time_ms: Total conversion time (for averaging).
        last_conversion: Timestamp of the last finished conversion (successful or not).
        queue_size: Current number of requests waiting for a browser slot.
        max_queue_size: Maximum queue size observed.
        active_conversions: Current number of running browser sessions.
        total_queue_time_ms: Total time requests spent waiting for a slot (for averaging).
        avg_queue_time_ms: Average time requests wait for a slot.
    """

    total_conversions: int = 0
    failed_conversions: int = 0
    failures_by_stage: dict[str, int] = field(default_factory=dict)
    cleanup_failures: int = 0
    avg_conversion_time_ms: float = 0.0
    total_conversion_time_ms: float = 0.0
    last_conversion: float = 0.0
    start_time: float = field(default_factory=time.time)

    queue_size: int = 0
    max_queue_size: int = 0
    active_conversions: int = 0
    total_queue_time_ms: float = 0.0
    avg_queue_time_ms: float = 0.0
    total_queued: int = 0

    def record_success(self, duration_ms: float) -> None:
        """Record a successful conversion."""
        self.total_conversions += 1
        self.total_conversion_time_ms += duration_ms
        self.avg_conversion_time_ms = self.total_conversion_time_ms / self.total_conversions
        self.last_conversion = time.time()

    def record_failure(self, stage: str) -> None:
        """Record a failed conversion."""
        self.failed_conversions += 1
        self.failures_by_stage[stage] = self.failures_by_stage.get(stage, 0) + 1
        self.last_conversion = time.time()

    def record_cleanup_failure(self) -> None:
        self.cleanup_failures += 1

    def get_error_rate(self) -> float:
        """Calculate error rate as percentage."""
        total_attempts = self.total_conversions + self.failed_conversions
        if total_attempts == 0:
            return 0.0
        return (self.failed_conversions / total_attempts) * 100.0

    def get_uptime(self) -> float:
        return time.time() - self.start_time

    def record_queue_entry(self, queue_time_ms: float) -> None:
        """
        Record the time a request waited for a browser slot.

        Args:
            queue_time_ms: Time spent waiting in queue in milliseconds.
        """
        self.total_queued += 1
        self.total_queue_time_ms += queue_time_ms
        self.avg_queue_time_ms = self.total_queue_time_ms / self.total_queued

    def update_queue_metrics(self, queue_size: int, active_conversions: int) -> None:
        """
        Update current queue metrics.

        Args:
            queue_size: Current number of requests waiting in queue.
            active_conversions: Current number of active conversions.
        """
        self.queue_size = queue_size
        self.active_conversions = active_conversions
        self.max_queue_size = max(self.max_queue_size, queue_size)


class ChromiumManager:
    """
    Runs HTML to PDF conversions, each in a dedicated headless Chromium session.

    Browser processes are never shared between conversions; the manager only
    limits how many run at once and keeps conversion metrics.
    """

    def __init__(
        self,
        config: ChromiumConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Initialize ChromiumManager.

        Args:
            config: Configuration settings. If None, creates default config from environment variables.
            logger: Optional logger; if None, a module-level logger is used.
        """
        self.log = logger or logging.getLogger(__name__)

        if config is None:
            config = ChromiumConfig()

        self.navigation_timeout = self._validate_int_config(config.navigation_timeout, "CHROMIUM_NAVIGATION_TIMEOUT", default=30, min_value=1, max_value=300)
        self.print_timeout = self._validate_int_config(config.print_timeout, "CHROMIUM_PRINT_TIMEOUT", default=60, min_value=5, max_value=600)
        self.max_concurrent_conversions = self._validate_int_config(config.max_concurrent_conversions, "MAX_CONCURRENT_CONVERSIONS", default=10, min_value=1, max_value=100)

        self._semaphore = asyncio.Semaphore(self.max_concurrent_conversions)
        self._metrics = ChromiumMetrics()
        self._chromium_version: str | None = None

        # Track waiting and active conversions
        self._waiting_in_queue = 0
        self._active_conversions = 0
        self._queue_lock = asyncio.Lock()

    async def convert(self, html: str, options: EnginePrintOptions, binary_path: Path) -> bytes:
        """
        Convert an HTML document to PDF in a fresh browser session.

        Args:
            html: The HTML document.
            options: Resolved print options.
            binary_path: Chromium executable to launch.

        Returns:
            The PDF document as bytes.

        Raises:
            ConversionError: LaunchError, TabError, NavigationError, NavigationTimeoutError or PrintError
                depending on the step that failed. The browser is torn down in every case.
        """
        session = ChromiumSession()

        async with self._acquire_slot():
            start_time = time.time()
            try:
                await self._launch(session, binary_path)
                await self._open_tab(session)
                await self._navigate(session, build_data_url(html))
                await self._wait_until_navigated(session)
                pdf_bytes = await self._print(session, options)
                duration_ms = (time.time() - start_time) * 1000
            except ConversionError as e:
                session.fail(e)
                self.record_failure(e.stage)
                self.log.error("PDF conversion failed (%s): %s", e.stage, e)
                raise
            finally:
                await self._close(session)

        self.log.info("PDF conversion completed in %d ms", duration_ms)
        self._metrics.record_success(duration_ms)
        increment_pdf_generation_success(duration_ms / 1000.0)
        return pdf_bytes

    def record_failure(self, stage: str) -> None:
        """Count a failed conversion, including failures that happen before a session exists."""
        self._metrics.record_failure(stage)
        increment_pdf_generation_failure(stage)

    async def _launch(self, session: ChromiumSession, binary_path: Path) -> None:
        session.transition(SessionState.LAUNCHING)
        self.log.debug("Launching Chromium from %s", binary_path)
        try:
            session.playwright = await async_playwright().start()
            session.browser = await session.playwright.chromium.launch(
                executable_path=str(binary_path),
                headless=True,
                chromium_sandbox=False,
                args=CHROMIUM_ARGS,
            )
        except Exception as e:
            raise LaunchError(f"Failed to launch browser: {e}") from e
        self._chromium_version = self._parse_version(session.browser.version)

    async def _open_tab(self, session: ChromiumSession) -> None:
        if session.browser is None:
            raise TabError("Failed to create new tab: browser is not running")
        try:
            session.context = await session.browser.new_context(ignore_https_errors=True)
            session.page = await session.context.new_page()
        except Exception as e:
            raise TabError(f"Failed to create new tab: {e}") from e
        session.transition(SessionState.TAB_OPEN)

    async def _navigate(self, session: ChromiumSession, data_url: str) -> None:
        session.transition(SessionState.NAVIGATING)
        self.log.debug("Navigating to data URL of %d characters", len(data_url))
        try:
            # "commit" returns once the navigation is accepted; the load event is awaited separately
            await session.page.goto(data_url, wait_until="commit", timeout=self.navigation_timeout * 1000)  # type: ignore[union-attr]
        except Exception as e:
            raise NavigationError(f"Failed to navigate: {e}") from e

    async def _wait_until_navigated(self, session: ChromiumSession) -> None:
        try:
            await session.page.wait_for_load_state("load", timeout=self.navigation_timeout * 1000)  # type: ignore[union-attr]
        except Exception as e:
            raise NavigationTimeoutError(f"Navigation timeout: {e}") from e
        session.transition(SessionState.NAVIGATED)

    async def _print(self, session: ChromiumSession, options: EnginePrintOptions) -> bytes:
        session.transition(SessionState.PRINTING)
        try:
            pdf_bytes = await asyncio.wait_for(session.page.pdf(**options.to_pdf_kwargs()), timeout=self.print_timeout)  # type: ignore[union-attr]
        except TimeoutError as e:
            raise PrintError(f"Failed to generate PDF: no result after {self.print_timeout} seconds") from e
        except Exception as e:
            raise PrintError(f"Failed to generate PDF: {e}") from e
        session.transition(SessionState.PRINTED)
        self.log.debug("Chromium printed %d bytes", len(pdf_bytes))
        return pdf_bytes

    async def _close(self, session: ChromiumSession) -> list[CleanupWarning]:
        """
        Release the tab, context, browser and Playwright driver of a session.

        Failures are logged as CleanupWarning and never raised, so they cannot mask
        the conversion result (or the original conversion error). A cancellation
        arriving during teardown is re-raised only after every resource was released.
        """
        failed = session.state is SessionState.FAILED
        if not failed:
            session.transition(SessionState.CLOSING)

        closers: list[tuple[str, Callable[[], Awaitable[None]]]] = []
        if session.page is not None:
            closers.append(("tab", functools.partial(session.page.close, run_before_unload=True)))
        if session.context is not None:
            closers.append(("browser context", session.context.close))
        if session.browser is not None:
            closers.append(("browser", session.browser.close))
        if session.playwright is not None:
            closers.append(("playwright driver", session.playwright.stop))

        warnings: list[CleanupWarning] = []
        cancelled: asyncio.CancelledError | None = None

        for resource, close in closers:
            try:
                await close()
            except asyncio.CancelledError as e:
                cancelled = e
                warnings.append(CleanupWarning(resource, e))
            except Exception as e:  # noqa: BLE001
                warnings.append(CleanupWarning(resource, e))

        session.page = None
        session.context = None
        session.browser = None
        session.playwright = None

        for warning in warnings:
            self.log.warning("Browser cleanup failed: %s", warning)
            self._metrics.record_cleanup_failure()
            increment_cleanup_failure()

        if not failed:
            session.transition(SessionState.CLOSED)
        if cancelled is not None:
            raise cancelled
        return warnings

    @asynccontextmanager
    async def _acquire_slot(self) -> AsyncGenerator[None]:
        """
        Wait for one of the max_concurrent_conversions browser slots.

        Keeps the queue and active counters in the metrics up to date, also when
        the waiting request is cancelled.
        """
        queue_entry_time = time.time()

        async with self._queue_lock:
            self._waiting_in_queue += 1
            self._metrics.update_queue_metrics(self._waiting_in_queue, self._active_conversions)

        try:
            await self._semaphore.acquire()
        except BaseException:
            async with self._queue_lock:
                self._waiting_in_queue -= 1
                self._metrics.update_queue_metrics(self._waiting_in_queue, self._active_conversions)
            raise

        try:
            self._metrics.record_queue_entry((time.time() - queue_entry_time) * 1000)
            async with self._queue_lock:
                self._waiting_in_queue -= 1
                self._active_conversions += 1
                self._metrics.update_queue_metrics(self._waiting_in_queue, self._active_conversions)

            try:
                yield
            finally:
                async with self._queue_lock:
                    self._active_conversions -= 1
                    self._metrics.update_queue_metrics(self._waiting_in_queue, self._active_conversions)
        finally:
            self._semaphore.release()

    def get_version(self) -> str | None:
        """
        Get the Chromium version seen at the last browser launch.

        Returns:
            Chromium version string (e.g., "131.0.6778.87") or None if no browser was launched yet.
        """
        return self._chromium_version

    @staticmethod
    def _parse_version(version_string: str) -> str:
        # Extract version number from "HeadlessChrome/131.0.6778.87" format
        if "/" in version_string:
            return version_string.split("/")[1]
        return version_string

    def get_metrics(self) -> dict[str, float | int | str | dict[str, int]]:
        """
        Get current metrics for monitoring and observability.

        Returns:
            Dictionary containing current metrics:
            - total_conversions: Total successful HTML to PDF conversions
            - failed_conversions: Total failed HTML to PDF conversions
            - failures_by_stage: Failed conversions per failing step
            - cleanup_failures: Ignored browser teardown failures
            - error_rate_percent: Conversion error rate as percentage
            - avg_conversion_time_ms: Average HTML to PDF conversion time
            - last_conversion: Formatted timestamp of the last finished conversion
            - uptime_seconds: Service uptime in seconds
            - total_memory_mb: Total system memory in MB
            - available_memory_mb: Available system memory in MB
            - queue_size: Current number of requests waiting for a browser slot
            - max_queue_size: Maximum queue size observed
            - active_conversions: Current number of running browser sessions
            - avg_queue_time_ms: Average time requests wait for a slot
            - max_concurrent_conversions: Maximum allowed concurrent browser sessions
        """
        system_memory = psutil.virtual_memory()
        total_memory_mb = system_memory.total / (1024 * 1024)
        available_memory_mb = system_memory.available / (1024 * 1024)

        last_conversion_str = ""
        if self._metrics.last_conversion > 0:
            dt = datetime.fromtimestamp(self._metrics.last_conversion)
            last_conversion_str = dt.strftime("%H:%M:%S %d.%m.%Y")

        return {
            "total_conversions": self._metrics.total_conversions,
            "failed_conversions": self._metrics.failed_conversions,
            "failures_by_stage": dict(self._metrics.failures_by_stage),
            "cleanup_failures": self._metrics.cleanup_failures,
            "error_rate_percent": round(self._metrics.get_error_rate(), 2),
            "avg_conversion_time_ms": round(self._metrics.avg_conversion_time_ms, 2),
            "last_conversion": last_conversion_str,
            "uptime_seconds": round(self._metrics.get_uptime(), 2),
            "total_memory_mb": round(total_memory_mb, 2),
            "available_memory_mb": round(available_memory_mb, 2),
            "queue_size": self._metrics.queue_size,
            "max_queue_size": self._metrics.max_queue_size,
            "active_conversions": self._metrics.active_conversions,
            "avg_queue_time_ms": round(self._metrics.avg_queue_time_ms, 2),
            "max_concurrent_conversions": self.max_concurrent_conversions,
        }

    def _validate_int_config(
        self,
        value: int | None,
        env_var: str,
        default: int,
        min_value: int,
        max_value: int,
    ) -> int:
        """
        Validate integer configuration parameters.

        Args:
            value: Value to validate or None to read from env.
            env_var: Environment variable name.
            default: Default value if env var not set or invalid.
            min_value: Minimum valid value (inclusive).
            max_value: Maximum valid value (inclusive).

        Returns:
            Validated integer configuration value.
        """
        if value is None:
            env_value = os.environ.get(env_var)
            value = self._parse_int(env_value, default)
        else:
            value = int(value)

        if not (min_value <= value <= max_value):
            self.log.warning("%s must be between %s and %s, using default: %s", env_var, min_value, max_value, default)
            return default

        return value

    @staticmethod
    def _parse_int(value: str | None, default: int) -> int:
        """Parse a string to int with a default fallback."""
        try:
            return int(value) if value is not None else default
        except (ValueError, TypeError):
            return default


# Global singleton instance
_chromium_manager: ChromiumManager | None = None


def get_chromium_manager() -> ChromiumManager:
    """
    Get the global ChromiumManager singleton instance.

    Returns:
        The ChromiumManager instance.

    Note:
        This is intended for dependency injection in FastAPI endpoints.
    """
    global _chromium_manager  # noqa: PLW0603
    if _chromium_manager is None:
        _chromium_manager = ChromiumManager()
    return _chromium_manager
