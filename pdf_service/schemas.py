from pydantic import BaseModel, Field

from pdf_service.pdf_options import PdfOptions


class ConvertRequestSchema(BaseModel):
    """Schema for request /convert"""

    html: str = Field(title="HTML", description="HTML document to convert", examples=["<html><body>Hello</body></html>"])
    pdf_options: PdfOptions | None = Field(None, title="PDF Options", description="Page layout and header/footer options; omitted fields take their defaults")


class VersionSchema(BaseModel):
    """Schema for response /version"""

    python: str = Field(title="Python", description="Python version")
    playwright: str | None = Field(title="Playwright", description="Playwright version")
    pdfService: str | None = Field(title="PDF Service", description="Service version")
    timestamp: str | None = Field(title="Build Timestamp", description="Build timestamp")
    chromium: str | None = Field(title="Chromium", description="Chromium version seen at the last browser launch")


class ConversionMetricsSchema(BaseModel):
    """Schema for HTML to PDF conversion metrics"""

    total_conversions: int = Field(title="PDF Generations", description="Total successful HTML to PDF generations")
    failed_conversions: int = Field(title="Failed PDF Generations", description="Total failed HTML to PDF generation attempts")
    failures_by_stage: dict[str, int] = Field(title="Failures by Stage", description="Failed generations per failing step (locate, launch, tab, navigate, navigation_timeout, print)")
    cleanup_failures: int = Field(title="Cleanup Failures", description="Browser teardown failures that were logged and ignored")
    error_rate_percent: float = Field(title="Error Rate (%)", description="HTML to PDF generation error rate as percentage")
    avg_conversion_time_ms: float = Field(title="Avg PDF Generation Time (ms)", description="Average time from browser launch to finished print in milliseconds")
    last_conversion: str = Field(title="Last Conversion", description="Formatted timestamp of the last finished conversion (HH:MM:SS DD.MM.YYYY)")
    uptime_seconds: float = Field(title="Uptime (seconds)", description="Service uptime in seconds")

    total_memory_mb: float = Field(title="Total Memory (MB)", description="Total system memory in MB")
    available_memory_mb: float = Field(title="Available Memory (MB)", description="Available system memory in MB")

    queue_size: int = Field(title="Queue Size", description="Current number of requests waiting for a browser slot")
    max_queue_size: int = Field(title="Max Queue Size", description="Maximum queue size observed")
    active_conversions: int = Field(title="Active PDF Generations", description="Current number of running browser sessions")
    avg_queue_time_ms: float = Field(title="Avg Queue Time (ms)", description="Average time requests spend waiting for a browser slot (milliseconds)")
    max_concurrent_conversions: int = Field(title="Max Concurrent PDF Generations", description="Maximum allowed concurrent browser sessions (configured limit)")


class HealthSchema(BaseModel):
    """Schema for detailed health status response"""

    status: str = Field(title="Status", description="Overall health status: healthy or unhealthy")
    version: str = Field(title="Version", description="PDF service version")
    chromium_available: bool = Field(title="Chromium Available", description="Whether a Chromium binary is available without downloading")
    chromium_path: str | None = Field(title="Chromium Path", description="Resolved Chromium binary path")
    chromium_version: str | None = Field(title="Chromium Version", description="Chromium version if a browser was launched")
    metrics: ConversionMetricsSchema = Field(title="Metrics", description="Conversion metrics")
