import contextlib
import logging
import os
import platform
import time
from collections.abc import AsyncGenerator
from importlib import metadata
from typing import Annotated

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError

from pdf_service.chromium_locator import ChromiumLocator, get_chromium_locator
from pdf_service.chromium_manager import ChromiumManager, get_chromium_manager
from pdf_service.errors import ConversionError
from pdf_service.metrics_server import MetricsServer, is_metrics_server_enabled
from pdf_service.pdf_converter import convert_html_to_pdf
from pdf_service.schemas import ConversionMetricsSchema, ConvertRequestSchema, HealthSchema, VersionSchema


def is_chromium_prefetch_enabled() -> bool:
    env_value = os.environ.get("CHROMIUM_PREFETCH", "true")
    return env_value.lower() in ("true", "1", "yes", "on")


@contextlib.asynccontextmanager
async def lifespan(app_instance: FastAPI) -> AsyncGenerator[None]:  # noqa: ARG001
    """
    Prepare the service on startup and release its resources on shutdown.

    On startup the Chromium binary is resolved (and downloaded if missing) so that the
    first request does not pay for provisioning. A failure here is logged but does not
    stop the service: conversions report the locate failure themselves.
    The dedicated metrics server is started when enabled.
    """
    logger = logging.getLogger(__name__)

    if is_chromium_prefetch_enabled():
        logger.info("Prepare Chromium binary for PDF conversion...")
        try:
            chromium_path = await get_chromium_locator().locate_async()
            logger.info("Chromium binary prepared: %s", chromium_path)
        except ConversionError as e:
            logger.error("Chromium binary could not be prepared, conversions will fail until it is available: %s", e)

    metrics_server: MetricsServer | None = None
    if is_metrics_server_enabled():
        metrics_server = MetricsServer()
        await metrics_server.start()

    yield  # Application runs here

    if metrics_server is not None:
        await metrics_server.stop()


logger = logging.getLogger(__name__)

app = FastAPI(
    title="Chromium PDF Service API",
    version="1.0.0",
    openapi_url="/static/openapi.json",
    docs_url="/api/docs",
    openapi_version="3.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> Response:  # noqa: ARG001
    """Reject malformed request bodies with 400 before any conversion is attempted."""
    messages = "; ".join(f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors())
    logger.warning("Invalid conversion request: %s", messages)
    return Response("Invalid request body: " + messages, media_type="text/plain", status_code=status.HTTP_400_BAD_REQUEST)


def _playwright_version() -> str | None:
    try:
        return metadata.version("playwright")
    except metadata.PackageNotFoundError:
        return None


@app.get(
    "/health",
    summary="Health check",
    description="Returns health status with optional detailed metrics. Use ?detailed=true for JSON response with metrics.",
    operation_id="getHealth",
    tags=["meta"],
    response_model=None,
    responses={
        200: {
            "content": {
                "text/plain": {"example": "OK"},
                "application/json": {
                    "schema": HealthSchema.model_json_schema(),
                },
            },
            "description": "Service is healthy",
        },
        503: {
            "content": {
                "text/plain": {"example": "Service Unavailable"},
                "application/json": {
                    "schema": HealthSchema.model_json_schema(),
                },
            },
            "description": "Service is unhealthy",
        },
    },
)
async def health(
    chromium_manager: Annotated[ChromiumManager, Depends(get_chromium_manager)],
    chromium_locator: Annotated[ChromiumLocator, Depends(get_chromium_locator)],
    detailed: bool = Query(False, description="Return detailed JSON response with metrics"),
) -> Response:
    """
    Health check endpoint.

    The service is healthy when a Chromium binary is available without downloading,
    i.e. every conversion can launch a browser right away.
    """
    chromium_path = chromium_locator.peek()
    healthy = chromium_path is not None

    if detailed:
        health_response = HealthSchema(
            status="healthy" if healthy else "unhealthy",
            version=os.environ.get("PDF_SERVICE_VERSION", "unknown"),
            chromium_available=healthy,
            chromium_path=str(chromium_path) if chromium_path else None,
            chromium_version=chromium_manager.get_version(),
            metrics=ConversionMetricsSchema(**chromium_manager.get_metrics()),  # type: ignore[arg-type]
        )
        return Response(
            content=health_response.model_dump_json(),
            media_type="application/json",
            status_code=200 if healthy else 503,
        )

    if healthy:
        return Response("OK", media_type="text/plain", status_code=200)
    return Response("Service Unavailable", media_type="text/plain", status_code=503)


@app.get(
    "/version",
    response_model=VersionSchema,
    summary="Service version information",
    description="Returns versions of Python, Playwright, the service itself, build timestamp, and Chromium.",
    operation_id="getVersion",
    tags=["meta"],
)
async def version(chromium_manager: Annotated[ChromiumManager, Depends(get_chromium_manager)]) -> dict[str, str | None]:
    """
    Get version information
    """
    logger.info("Version endpoint called")
    version_info = {
        "python": platform.python_version(),
        "playwright": _playwright_version(),
        "pdfService": os.environ.get("PDF_SERVICE_VERSION"),
        "timestamp": os.environ.get("PDF_SERVICE_BUILD_TIMESTAMP"),
        "chromium": chromium_manager.get_version(),
    }
    logger.debug("Version info: %s", version_info)
    return version_info


@app.post(
    "/convert",
    responses={
        200: {"content": {"application/pdf": {}}, "description": "PDF file generated from the provided HTML"},
        400: {"content": {"text/plain": {}}, "description": "Invalid Input"},
        500: {"content": {"text/plain": {}}, "description": "Internal PDF Conversion Error"},
    },
    summary="Convert HTML to PDF",
    description="Accepts an HTML document and optional print options as JSON and returns the PDF printed by headless Chromium.",
    operation_id="convert_post",
    tags=["convert"],
)
async def convert(
    body: ConvertRequestSchema,
    chromium_manager: Annotated[ChromiumManager, Depends(get_chromium_manager)],
    chromium_locator: Annotated[ChromiumLocator, Depends(get_chromium_locator)],
) -> Response:
    """
    Convert the HTML document from the request body to a PDF document.
    """
    start_time = time.time()
    logger.info("HTML to PDF conversion requested")
    logger.debug("Received HTML of %d characters", len(body.html))
    try:
        output_pdf = await convert_html_to_pdf(
            body.html,
            body.pdf_options,
            chromium_manager=chromium_manager,
            chromium_locator=chromium_locator,
        )
    except ConversionError as e:
        logger.error("PDF conversion error: %s", e, exc_info=True)
        return __process_error(e)

    logger.info("PDF generated successfully, size: %d bytes, took %d ms", len(output_pdf), (time.time() - start_time) * 1000)
    return Response(output_pdf, media_type="application/pdf", status_code=200)


def __process_error(e: ConversionError) -> Response:
    response = Response(f"Error while converting to PDF: {e}", media_type="text/plain", status_code=500)
    response.headers.append("Conversion-Error-Stage", e.stage)
    return response
