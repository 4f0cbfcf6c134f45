import argparse
import json
from pathlib import Path

import fitz

from certificate_layout import CertificateLayout, WrappedFieldLayout, load_layout


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Inspect a certificate template with PyMuPDF to calibrate the layout file."
    )
    parser.add_argument("--template", required=True, help="Path to template PDF.")
    parser.add_argument("--page", type=int, default=None, help="Zero-based page index (defaults to the layout page).")
    parser.add_argument(
        "--contains",
        help="Filter spans containing this text (case-insensitive).",
    )
    parser.add_argument("--layout", help="Optional JSON layout file to draw on the annotated copy.")
    parser.add_argument(
        "--output-json",
        help="Optional JSON output path for extracted spans.",
    )
    parser.add_argument(
        "--annotate",
        help="Optional output PDF with span boxes and the certificate field guides drawn on the template.",
    )
    return parser.parse_args()


def to_bottom_left_bbox(bbox: list[float], page_h: float) -> list[float]:
    x0, y0, x1, y1 = bbox
    return [x0, page_h - y1, x1, page_h - y0]


def collect_spans(page: fitz.Page, contains: str | None = None) -> list[dict]:
    """Text spans on *page* with boxes and baselines in bottom-left PDF points."""
    page_h = float(page.rect.height)
    needle = contains.lower() if contains else None
    items: list[dict] = []
    data = page.get_text("dict")
    for block in data.get("blocks", []):
        if block.get("type") != 0:
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = (span.get("text") or "").strip()
                if not text:
                    continue
                if needle and needle not in text.lower():
                    continue
                bbox_top_left = list(span.get("bbox", [0, 0, 0, 0]))
                origin = span.get("origin")
                items.append(
                    {
                        "text": text,
                        "font": span.get("font"),
                        "size": span.get("size"),
                        "bbox_top_left": bbox_top_left,
                        "bbox_bottom_left": to_bottom_left_bbox(bbox_top_left, page_h),
                        "baseline_y": page_h - origin[1] if origin else None,
                    }
                )
    return items


def _draw_wrapped_field_guide(
    page: fitz.Page,
    label: str,
    field: WrappedFieldLayout,
    color: tuple[float, float, float],
) -> None:
    page_w = float(page.rect.width)
    page_h = float(page.rect.height)
    # fitz uses a top-left origin.
    baseline = page_h - field.anchor_y
    left = (page_w - field.max_width) / 2.0
    right = left + field.max_width
    page.draw_line(fitz.Point(left, baseline), fitz.Point(right, baseline), color=color, width=0.8)
    top = baseline - (field.max_height if field.max_height is not None else field.font_size)
    page.draw_rect(fitz.Rect(left, top, right, baseline), color=color, width=0.5, dashes="[3] 0")
    page.insert_text(fitz.Point(left, baseline + 9), f"{label} anchor y={field.anchor_y:.1f}", fontsize=7, color=color)


def annotate_template(
    doc: fitz.Document,
    page_index: int,
    spans: list[dict],
    layout: CertificateLayout,
    output_path: Path,
) -> None:
    page = doc[page_index]
    page_h = float(page.rect.height)
    for idx, item in enumerate(spans, start=1):
        rect = fitz.Rect(item["bbox_top_left"])
        page.draw_rect(rect, color=(1, 0, 0), width=0.7)
        page.insert_text(rect.tl + fitz.Point(0, -2), f"{idx:03d}", fontsize=7, color=(1, 0, 0))

    _draw_wrapped_field_guide(page, "name", layout.name, (0, 0, 1))
    _draw_wrapped_field_guide(page, "training_type", layout.training_type, (0, 0.5, 0))

    dx, dy = layout.date.x, page_h - layout.date.y
    page.draw_line(fitz.Point(dx - 6, dy), fitz.Point(dx + 6, dy), color=(1, 0, 1), width=0.7)
    page.draw_line(fitz.Point(dx, dy - 6), fitz.Point(dx, dy + 6), color=(1, 0, 1), width=0.7)
    page.insert_text(fitz.Point(dx + 8, dy + 9), "date", fontsize=7, color=(1, 0, 1))

    output_path.parent.mkdir(parents=True, exist_ok=True)
    doc.save(output_path)


def main() -> None:
    args = parse_args()
    template_path = Path(args.template)
    layout = load_layout(Path(args.layout) if args.layout else None)
    page_index = layout.page if args.page is None else args.page

    doc = fitz.open(template_path)
    if page_index < 0 or page_index >= len(doc):
        raise IndexError(f"Page {page_index} out of range. PDF has {len(doc)} page(s).")

    page = doc[page_index]
    page_w = float(page.rect.width)
    page_h = float(page.rect.height)
    spans = collect_spans(page, args.contains)

    print(f"Template: {template_path}")
    print(f"Page: {page_index}  Size: {page_w:.2f} x {page_h:.2f} points")
    print(f"Matches: {len(spans)}")
    for idx, item in enumerate(spans, start=1):
        bbox = item["bbox_bottom_left"]
        print(
            f"{idx:03d} | '{item['text']}' | font={item['font']} size={item['size']:.1f} | "
            f"bbox_bl=({bbox[0]:.2f},{bbox[1]:.2f},{bbox[2]:.2f},{bbox[3]:.2f})"
        )
    if layout.date.x > page_w or layout.date.y > page_h:
        print(f"[WARN] Date position ({layout.date.x}, {layout.date.y}) lies outside the page.")

    if args.output_json:
        output_path = Path(args.output_json)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "template": str(template_path),
            "page": page_index,
            "page_size_points": [page_w, page_h],
            "layout": layout.model_dump(),
            "items": spans,
        }
        output_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"Wrote JSON: {output_path}")

    if args.annotate:
        annotate_template(doc, page_index, spans, layout, Path(args.annotate))
        print(f"Wrote annotated PDF: {args.annotate}")


if __name__ == "__main__":
    main()
