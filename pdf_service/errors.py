"""
Error types raised by the HTML to PDF conversion pipeline.

Every failure of a conversion step is reported as a ConversionError subclass
carrying the name of the step (``stage``) that failed. The HTTP layer maps all
of them to a single plain-text 500 response.
"""

from __future__ import annotations


class ConversionError(Exception):
    """Base class for all failures of a single HTML to PDF conversion."""

    stage = "convert"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class LocateError(ConversionError):
    """Chromium binary could not be found or provisioned."""

    stage = "locate"


class LaunchError(ConversionError):
    """Chromium process failed to start."""

    stage = "launch"


class TabError(ConversionError):  # noqa: A001
    """A browser context or page could not be created in a launched browser."""

    stage = "tab"


class NavigationError(ConversionError):
    """The data URL could not be loaded into the page."""

    stage = "navigate"


class NavigationTimeoutError(ConversionError):
    """The load event never arrived (or navigation failed while waiting for it)."""

    stage = "navigation_timeout"


class PrintError(ConversionError):
    """Chromium refused or failed the print-to-PDF call."""

    stage = "print"


class CleanupWarning(Warning):
    """Non-fatal failure while tearing down a browser session after the result was produced."""

    def __init__(self, resource: str, error: BaseException) -> None:
        super().__init__(f"Failed to close {resource}: {error}")
        self.resource = resource
        self.error = error
