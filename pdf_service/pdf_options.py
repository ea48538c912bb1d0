"""
Print options accepted by the service and their translation into Chromium's print parameters.

Clients describe page layout in millimeters; Chromium's print-to-PDF expects inches.
``resolve_print_options`` fills in defaults field by field, converts distances,
and resolves the footer template so the browser never receives an ambiguous empty value.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

MM_PER_INCH = 25.4

DEFAULT_FOOTER_TEMPLATE = '<div style="width:100%;font-size:10px;color:#555;text-align:center;">Page <span class="pageNumber"></span> of <span class="totalPages"></span></div>'
EMPTY_FOOTER_TEMPLATE = "<div></div>"


def _mm_field(default: float, name: str, description: str) -> Any:
    # Accept the bare names ("margin_top") used by earlier clients as well as the explicit "_mm" names
    return Field(
        default,
        title=f"{name.replace('_', ' ').capitalize()} (mm)",
        description=description,
        validation_alias=AliasChoices(f"{name}_mm", name),
    )


class PdfOptions(BaseModel):
    """
    Page layout and header/footer settings of the generated PDF.

    Every field is optional; omitted fields take their individual default (A4 portrait, 10 mm margins,
    "Page X of Y" footer).
    """

    landscape: bool = Field(False, title="Landscape", description="Print in landscape orientation.")
    display_header_footer: bool = Field(True, title="Display Header/Footer", description="Render header and footer templates.")
    print_background: bool = Field(True, title="Print Background", description="Print background graphics.")
    scale: float = Field(1.0, title="Scale", description="Scale of the webpage rendering.")
    paper_width_mm: float = _mm_field(210.0, "paper_width", "Paper width in millimeters.")
    paper_height_mm: float = _mm_field(297.0, "paper_height", "Paper height in millimeters.")
    margin_top_mm: float = _mm_field(10.0, "margin_top", "Top margin in millimeters.")
    margin_bottom_mm: float = _mm_field(10.0, "margin_bottom", "Bottom margin in millimeters.")
    margin_left_mm: float = _mm_field(10.0, "margin_left", "Left margin in millimeters.")
    margin_right_mm: float = _mm_field(10.0, "margin_right", "Right margin in millimeters.")
    page_ranges: str = Field("", title="Page Ranges", description="Pages to print, e.g. '1-5, 8'. Empty prints all pages.")
    header_template: str = Field("", title="Header Template", description="HTML template for the print header. Empty leaves the header unset.")
    footer_template: str = Field(DEFAULT_FOOTER_TEMPLATE, title="Footer Template", description="HTML template for the print footer. Empty falls back to show_page_numbers.")
    prefer_css_page_size: bool = Field(False, title="Prefer CSS Page Size", description="Give CSS @page size priority over paper width/height.")
    show_page_numbers: bool = Field(True, title="Show Page Numbers", description="Use the built-in 'Page X of Y' footer when footer_template is empty.")


@dataclass(frozen=True)
class EnginePrintOptions:
    """Print parameters in Chromium's native units (inches); ``None`` means unset."""

    landscape: bool
    display_header_footer: bool
    print_background: bool
    scale: float
    paper_width_in: float
    paper_height_in: float
    margin_top_in: float
    margin_bottom_in: float
    margin_left_in: float
    margin_right_in: float
    page_ranges: str | None
    header_template: str | None
    footer_template: str
    prefer_css_page_size: bool
    generate_document_outline: bool = False
    generate_tagged_pdf: bool = False

    def sheet_size_in(self) -> tuple[float, float]:
        """
        Width and height of the printed sheet in inches.

        Landscape puts the long edge horizontally whichever way round the paper size was given,
        so ``landscape`` with 210x297 and with 297x210 both print a 297x210 sheet.
        """
        if not self.landscape:
            return self.paper_width_in, self.paper_height_in
        return max(self.paper_width_in, self.paper_height_in), min(self.paper_width_in, self.paper_height_in)

    def to_pdf_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for Playwright's ``Page.pdf()``."""
        width, height = self.sheet_size_in()
        kwargs: dict[str, Any] = {
            # Chromium swaps the paper edges for its landscape flag, so orientation is passed as the sheet size only
            "landscape": False,
            "display_header_footer": self.display_header_footer,
            "print_background": self.print_background,
            "scale": self.scale,
            "width": _inches(width),
            "height": _inches(height),
            "margin": {
                "top": _inches(self.margin_top_in),
                "bottom": _inches(self.margin_bottom_in),
                "left": _inches(self.margin_left_in),
                "right": _inches(self.margin_right_in),
            },
            "footer_template": self.footer_template,
            "prefer_css_page_size": self.prefer_css_page_size,
            "outline": self.generate_document_outline,
            "tagged": self.generate_tagged_pdf,
        }
        if self.page_ranges is not None:
            kwargs["page_ranges"] = self.page_ranges
        if self.header_template is not None:
            kwargs["header_template"] = self.header_template
        return kwargs


def mm_to_inches(mm: float) -> float:
    return mm / MM_PER_INCH


def _inches(value: float) -> str:
    return f"{value!r}in"


def resolve_footer_template(footer_template: str, show_page_numbers: bool) -> str:
    if footer_template:
        return footer_template
    return DEFAULT_FOOTER_TEMPLATE if show_page_numbers else EMPTY_FOOTER_TEMPLATE


def resolve_print_options(raw: PdfOptions | Mapping[str, Any] | None = None) -> EnginePrintOptions:
    """
    Build the engine-ready print options from client options.

    Args:
        raw: Client options as a PdfOptions instance, a plain mapping of field names, or None for all defaults.

    Returns:
        Fully populated EnginePrintOptions. Values are forwarded as given (no clamping);
        Chromium decides whether they are printable.
    """
    if raw is None:
        options = PdfOptions()
    elif isinstance(raw, PdfOptions):
        options = raw
    else:
        options = PdfOptions.model_validate(dict(raw))

    return EnginePrintOptions(
        landscape=options.landscape,
        display_header_footer=options.display_header_footer,
        print_background=options.print_background,
        scale=options.scale,
        paper_width_in=mm_to_inches(options.paper_width_mm),
        paper_height_in=mm_to_inches(options.paper_height_mm),
        margin_top_in=mm_to_inches(options.margin_top_mm),
        margin_bottom_in=mm_to_inches(options.margin_bottom_mm),
        margin_left_in=mm_to_inches(options.margin_left_mm),
        margin_right_in=mm_to_inches(options.margin_right_mm),
        page_ranges=options.page_ranges or None,
        header_template=options.header_template or None,
        footer_template=resolve_footer_template(options.footer_template, options.show_page_numbers),
        prefer_css_page_size=options.prefer_css_page_size,
    )
