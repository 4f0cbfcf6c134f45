"""Page layout for the certificate template.

Coordinates are PDF points measured from the bottom-left corner of the
template page. Defaults match the stock certificate template. A JSON file
with the same shape can override any subset of them; nested field sections
are merged key by key onto the defaults.
"""

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from certificate_errors import LayoutLoadError


class WrappedFieldLayout(BaseModel):
    """A centered field that wraps and grows upward from its anchor baseline."""

    model_config = ConfigDict(extra="forbid")

    anchor_y: float
    max_width: float = Field(gt=0)
    font_size: float = Field(gt=0)
    line_height_ratio: float = Field(default=1.2, gt=0)
    max_height: float | None = None

    @property
    def line_height(self) -> float:
        return self.font_size * self.line_height_ratio


class FixedFieldLayout(BaseModel):
    model_config = ConfigDict(extra="forbid")

    x: float
    y: float
    font_size: float = Field(gt=0)


class CertificateLayout(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page: int = Field(default=0, ge=0)
    color: tuple[float, float, float] = (0.0, 0.0, 0.0)
    fallback_font: str = "Times-Bold"
    name: WrappedFieldLayout = WrappedFieldLayout(
        anchor_y=520.0,
        max_width=11.45 * 72,
        font_size=48.0,
    )
    training_type: WrappedFieldLayout = WrappedFieldLayout(
        anchor_y=370.0,
        max_width=11.85 * 72,
        font_size=32.0,
        max_height=0.83 * 72,
    )
    date: FixedFieldLayout = FixedFieldLayout(x=880.0, y=330.0, font_size=28.0)


DEFAULT_LAYOUT = CertificateLayout()


def merge_overrides(base: dict, overrides: dict) -> dict:
    """Overlay *overrides* onto *base*, recursing into nested field sections."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_overrides(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_layout(path: Path | None) -> CertificateLayout:
    if path is None:
        return DEFAULT_LAYOUT
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise LayoutLoadError(f"Layout file could not be read: {path} ({exc})") from exc
    except json.JSONDecodeError as exc:
        raise LayoutLoadError(f"Invalid JSON in layout file {path}: {exc}") from exc
    try:
        if isinstance(payload, dict):
            payload = merge_overrides(DEFAULT_LAYOUT.model_dump(), payload)
        return CertificateLayout.model_validate(payload)
    except PydanticValidationError as exc:
        raise LayoutLoadError(f"Invalid layout in {path}: {exc}") from exc
