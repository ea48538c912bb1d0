"""Single entry point used by the HTTP layer to turn HTML into PDF bytes."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from pdf_service.chromium_locator import ChromiumLocator, get_chromium_locator
from pdf_service.chromium_manager import ChromiumManager, get_chromium_manager
from pdf_service.errors import ConversionError, LocateError
from pdf_service.pdf_options import PdfOptions, resolve_print_options

logger = logging.getLogger(__name__)


async def convert_html_to_pdf(
    html: str,
    pdf_options: PdfOptions | Mapping[str, Any] | None = None,
    *,
    chromium_manager: ChromiumManager | None = None,
    chromium_locator: ChromiumLocator | None = None,
) -> bytes:
    """
    Convert an HTML document to a PDF document.

    Args:
        html: The HTML document to render.
        pdf_options: Optional print options; omitted fields take their defaults.
        chromium_manager: Session manager to use; defaults to the process-wide instance.
        chromium_locator: Binary locator to use; defaults to the process-wide instance.

    Returns:
        The PDF document as bytes.

    Raises:
        ConversionError: If locating Chromium or any browser step fails.
    """
    chromium_manager = chromium_manager or get_chromium_manager()
    chromium_locator = chromium_locator or get_chromium_locator()

    try:
        binary_path = await chromium_locator.locate_async()
    except LocateError as e:
        chromium_manager.record_failure(e.stage)
        raise
    except Exception as e:
        chromium_manager.record_failure(LocateError.stage)
        raise LocateError(f"Failed to locate Chromium: {e}") from e

    try:
        print_options = resolve_print_options(pdf_options)
    except ValidationError as e:
        chromium_manager.record_failure(ConversionError.stage)
        raise ConversionError(f"Invalid PDF options: {e}") from e
    logger.debug("Resolved print options: %s", print_options)

    try:
        return await chromium_manager.convert(html, print_options, binary_path)
    except ConversionError:
        raise
    except Exception as e:
        chromium_manager.record_failure(ConversionError.stage)
        raise ConversionError(f"Unexpected error during PDF conversion: {e}") from e
