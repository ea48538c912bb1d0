"""Pytest configuration and fixtures for pdf-service tests."""

import os
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.utils_pdf import PDF_MAGIC


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command-line options to pytest."""
    parser.addoption(
        "--save-test-outputs",
        action="store_true",
        default=False,
        help="Save test output files (PDFs) to disk for manual inspection",
    )


@pytest.fixture
def save_test_outputs(request: pytest.FixtureRequest) -> bool:
    """Fixture to check if test outputs should be saved to disk."""
    return request.config.getoption("--save-test-outputs")


@pytest.fixture(autouse=True)
def offline_service_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the app lifespan from downloading Chromium or binding the metrics port during tests."""
    monkeypatch.setenv("CHROMIUM_PREFETCH", "false")
    monkeypatch.setenv("METRICS_SERVER_ENABLED", "false")


@pytest.fixture(scope="session")
def chromium_binary() -> Path:
    """
    Path to a locally installed Chromium for end-to-end tests.

    Uses CHROME_PATH if set, otherwise the Chromium installed by `playwright install chromium`.
    Tests using this fixture are skipped when no browser is available.
    """
    chrome_path = os.environ.get("CHROME_PATH")
    if chrome_path and Path(chrome_path).exists():
        return Path(chrome_path)

    try:
        from playwright.sync_api import sync_playwright

        with sync_playwright() as p:
            path = Path(p.chromium.executable_path)
    except Exception as e:  # noqa: BLE001
        pytest.skip(f"Playwright Chromium not available: {e}")

    if not path.exists():
        pytest.skip("Chromium is not installed (run `playwright install chromium`)")
    return path


@pytest.fixture
def playwright_mock() -> SimpleNamespace:
    """
    Fake Playwright driver whose browser, context and page succeed by default.

    Patch ``pdf_service.chromium_manager.async_playwright`` with ``playwright_mock.factory``
    and override individual coroutines (e.g. ``page.pdf.side_effect``) to simulate failures.
    """
    calls: list[str] = []

    def record(name: str, result: object = None) -> AsyncMock:
        async def _side_effect(*args: object, **kwargs: object) -> object:
            calls.append(name)
            return result

        return AsyncMock(side_effect=_side_effect)

    page = MagicMock()
    page.goto = record("goto")
    page.wait_for_load_state = record("wait_for_load_state")
    page.pdf = record("pdf", PDF_MAGIC + b"1.7\n%mock\n")
    page.close = record("page.close")

    context = MagicMock()
    context.new_page = record("new_page", page)
    context.close = record("context.close")

    browser = MagicMock()
    browser.version = "HeadlessChrome/131.0.6778.87"
    browser.new_context = record("new_context", context)
    browser.close = record("browser.close")

    playwright = MagicMock()
    playwright.chromium.launch = record("launch", browser)
    playwright.stop = record("playwright.stop")

    starter = MagicMock()
    starter.start = record("start", playwright)

    return SimpleNamespace(
        factory=MagicMock(return_value=starter),
        playwright=playwright,
        browser=browser,
        context=context,
        page=page,
        calls=calls,
    )
