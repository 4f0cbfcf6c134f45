import argparse
import io
import logging
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable

from dateutil import parser as date_parser
from pypdf import PdfReader, PdfWriter
from reportlab.lib.colors import Color
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from certificate_errors import FontLoadError, TemplateLoadError
from certificate_layout import DEFAULT_LAYOUT, CertificateLayout, WrappedFieldLayout, load_layout

logger = logging.getLogger(__name__)

DATE_PLACEHOLDER = "N/A"

_BASE14_FONTS = {
    "Courier",
    "Courier-Bold",
    "Courier-Oblique",
    "Courier-BoldOblique",
    "Helvetica",
    "Helvetica-Bold",
    "Helvetica-Oblique",
    "Helvetica-BoldOblique",
    "Times-Roman",
    "Times-Bold",
    "Times-Italic",
    "Times-BoldItalic",
    "Symbol",
    "ZapfDingbats",
}

# Font file path -> name it was registered under with reportlab.
_registered_fonts: dict[str, str] = {}


@dataclass(frozen=True)
class TextBlock:
    """Wrapped lines of one field, anchored by the baseline of the last line."""

    lines: tuple[str, ...]
    line_height: float
    anchor_baseline_y: float

    def __post_init__(self) -> None:
        if not self.lines:
            raise ValueError("TextBlock needs at least one line.")


@dataclass(frozen=True)
class DrawInstruction:
    x: float
    y: float
    text: str
    font_name: str
    font_size: float
    color: tuple[float, float, float]


@dataclass(frozen=True)
class CertificateAssets:
    """Decoded template and registered font, safe to share between requests."""

    template_bytes: bytes
    font_name: str
    page_width: float
    page_height: float
    page_index: int = 0


def wrap_text_to_lines(text: str, measure: Callable[[str], float], max_width: float) -> list[str]:
    """Greedily pack space-separated words into lines no wider than *max_width*.

    A single word wider than max_width is kept alone on its own line and
    allowed to overflow. Empty or blank text yields one empty line.
    """
    if not text or not text.strip():
        return [""]
    words = [word for word in text.split(" ") if word]
    if not words:
        return [""]

    lines: list[str] = []
    current = words[0]
    for word in words[1:]:
        candidate = f"{current} {word}"
        if measure(candidate) <= max_width:
            current = candidate
        else:
            lines.append(current)
            current = word
    lines.append(current)
    return lines


def place_lines(
    block: TextBlock,
    font_name: str,
    font_size: float,
    color: tuple[float, float, float],
    page_width: float,
    measure: Callable[[str], float] | None = None,
) -> list[DrawInstruction]:
    """Center every line on the page and stack the block upward from its anchor.

    The last line sits exactly on ``block.anchor_baseline_y``; each earlier
    line is one ``line_height`` higher than the line after it.
    """
    if measure is None:
        def measure(line: str) -> float:
            return pdfmetrics.stringWidth(line, font_name, font_size)

    count = len(block.lines)
    instructions = []
    for i, line in enumerate(block.lines):
        y = block.anchor_baseline_y + (count - 1 - i) * block.line_height
        x = (page_width - measure(line)) / 2.0
        instructions.append(DrawInstruction(x, y, line, font_name, font_size, color))
    return instructions


def estimated_block_height(line_count: int, line_height: float, font_size: float) -> float:
    return (line_count - 1) * line_height + font_size


def layout_wrapped_field(
    text: str,
    field: WrappedFieldLayout,
    font_name: str,
    color: tuple[float, float, float],
    page_width: float,
    label: str,
) -> list[DrawInstruction]:
    def measure(line: str) -> float:
        return pdfmetrics.stringWidth(line, font_name, field.font_size)

    lines = wrap_text_to_lines(text, measure, field.max_width)
    if field.max_height is not None:
        height = estimated_block_height(len(lines), field.line_height, field.font_size)
        if height > field.max_height:
            logger.warning(
                "%s text %r might exceed the defined height (%.2f > %.2f points).",
                label,
                text,
                height,
                field.max_height,
            )
    block = TextBlock(tuple(lines), field.line_height, field.anchor_y)
    return place_lines(block, font_name, field.font_size, color, page_width, measure)


def format_completion_date(value: date | str | None) -> str:
    """Render a completion date as e.g. "January 5, 2024".

    Falls back to the raw text when it cannot be parsed, and to a
    placeholder when nothing was given.
    """
    if value is None:
        return DATE_PLACEHOLDER
    if isinstance(value, date):
        parsed = value
    else:
        raw = str(value).strip()
        if not raw:
            return DATE_PLACEHOLDER
        parsed = _parse_date(raw)
        if parsed is None:
            logger.warning("Invalid date format for: %s", raw)
            return raw
    return f"{parsed:%B} {parsed.day}, {parsed.year}"


def _parse_date(raw: str) -> date | None:
    try:
        return date_parser.parse(raw).date()
    except (ValueError, OverflowError):
        return None


def layout_certificate(
    name: str,
    training_type: str,
    completion_date: date | str | None,
    font_name: str,
    page_width: float,
    layout: CertificateLayout = DEFAULT_LAYOUT,
) -> list[DrawInstruction]:
    """Compute every string to draw on the certificate page, in paint order."""
    color = layout.color
    instructions = layout_wrapped_field(
        str(name or ""), layout.name, font_name, color, page_width, label="Name"
    )
    instructions += layout_wrapped_field(
        str(training_type or ""),
        layout.training_type,
        font_name,
        color,
        page_width,
        label="Training Type",
    )
    instructions.append(
        DrawInstruction(
            x=layout.date.x,
            y=layout.date.y,
            text=format_completion_date(completion_date),
            font_name=font_name,
            font_size=layout.date.font_size,
            color=color,
        )
    )
    return instructions


def draw_instructions(c: canvas.Canvas, instructions: list[DrawInstruction]) -> None:
    for item in instructions:
        c.setFont(item.font_name, item.font_size)
        c.setFillColor(Color(*item.color))
        c.drawString(item.x, item.y, item.text)


def draw_overlay(page_w: float, page_h: float, instructions: list[DrawInstruction]) -> bytes:
    packet = io.BytesIO()
    c = canvas.Canvas(packet, pagesize=(page_w, page_h))
    draw_instructions(c, instructions)
    c.showPage()
    c.save()
    return packet.getvalue()


def register_certificate_font(font_path: Path) -> str:
    """Register a TTF/OTF file with reportlab and return its font name."""
    key = str(Path(font_path).resolve())
    if key in _registered_fonts:
        return _registered_fonts[key]
    font_name = f"Certificate-{Path(font_path).stem}"
    try:
        pdfmetrics.registerFont(TTFont(font_name, key))
    except Exception as exc:
        raise FontLoadError(
            f"Custom font file could not be loaded: {font_path} ({exc})"
        ) from exc
    _registered_fonts[key] = font_name
    logger.info("Registered font %s from %s", font_name, font_path)
    return font_name


def load_assets(
    template_path: Path,
    font_path: Path | None,
    layout: CertificateLayout = DEFAULT_LAYOUT,
) -> CertificateAssets:
    """Read the template PDF and make the certificate font available.

    When *font_path* is None the layout's base-14 fallback font is used.
    """
    try:
        template_bytes = Path(template_path).read_bytes()
    except OSError as exc:
        raise TemplateLoadError(f"Template file could not be read: {template_path} ({exc})") from exc
    try:
        reader = PdfReader(io.BytesIO(template_bytes))
        page_count = len(reader.pages)
    except Exception as exc:
        raise TemplateLoadError(f"Template file is not a valid PDF: {template_path} ({exc})") from exc
    if layout.page >= page_count:
        raise TemplateLoadError(
            f"Layout page={layout.page} but template has {page_count} page(s)."
        )
    page = reader.pages[layout.page]

    if font_path is None:
        if layout.fallback_font not in _BASE14_FONTS:
            raise FontLoadError(f"Fallback font '{layout.fallback_font}' is not a base-14 font.")
        font_name = layout.fallback_font
    else:
        font_name = register_certificate_font(font_path)

    return CertificateAssets(
        template_bytes=template_bytes,
        font_name=font_name,
        page_width=float(page.mediabox.width),
        page_height=float(page.mediabox.height),
        page_index=layout.page,
    )


def build_certificate(
    name: str,
    training_type: str,
    completion_date: date | str | None,
    assets: CertificateAssets,
    layout: CertificateLayout = DEFAULT_LAYOUT,
) -> bytes:
    """Overlay one recipient's text onto the template and return the PDF bytes."""
    instructions = layout_certificate(
        name,
        training_type,
        completion_date,
        font_name=assets.font_name,
        page_width=assets.page_width,
        layout=layout,
    )
    overlay_bytes = draw_overlay(assets.page_width, assets.page_height, instructions)

    writer = PdfWriter(clone_from=PdfReader(io.BytesIO(assets.template_bytes)))
    writer.pages[assets.page_index].merge_page(PdfReader(io.BytesIO(overlay_bytes)).pages[0])

    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()


def sanitize_filename_part(value: str, fallback: str = "user") -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9]", "", str(value or "")).lower()
    return cleaned or fallback


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Overlay a recipient's name, training type and date onto a certificate template PDF."
    )
    parser.add_argument("--template", required=True, help="Path to the template PDF.")
    parser.add_argument(
        "--font",
        help="TTF/OTF font to embed. Defaults to the layout's base-14 fallback font.",
    )
    parser.add_argument("--layout", help="Optional JSON layout file.")
    parser.add_argument("--name", help="Recipient name (single certificate).")
    parser.add_argument("--training-type", help="Training type (single certificate).")
    parser.add_argument("--date", help="Completion date (single certificate).")
    parser.add_argument(
        "--csv",
        dest="csv_path",
        help="CSV with userName,trainingType,date columns. Output becomes a ZIP archive.",
    )
    parser.add_argument("--output", required=True, help="Output PDF (or ZIP with --csv) path.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    layout = load_layout(Path(args.layout) if args.layout else None)
    assets = load_assets(
        Path(args.template),
        Path(args.font) if args.font else None,
        layout,
    )
    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if args.csv_path:
        from bulk_generation import generate_bulk_outcomes, parse_bulk_csv, write_bulk_archive

        records = parse_bulk_csv(Path(args.csv_path).read_bytes())
        print(f"Generating {len(records)} certificates...")
        outcomes = generate_bulk_outcomes(records, assets, layout)
        with output_path.open("wb") as f:
            write_bulk_archive(outcomes, f)
        for outcome in outcomes:
            print(f"  [{outcome.row_number}/{len(records)}] {outcome.status.value}: {outcome.entry_name}")
        print(f"Created ZIP archive: {output_path}")
        return

    if not (args.name and args.training_type and args.date):
        raise ValueError("Provide --name, --training-type and --date, or --csv.")
    pdf_bytes = build_certificate(args.name, args.training_type, args.date, assets, layout)
    output_path.write_bytes(pdf_bytes)
    print(f"Wrote: {output_path}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    main()
