"""Bulk certificate generation from an uploaded CSV file.

Each CSV row becomes one RecordOutcome: a generated PDF, a skipped row with
the missing fields, or a failed row with the rendering error. Outcomes are
collected in row order and then written into a single ZIP archive.
"""

import csv
import io
import logging
import tempfile
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from certificate_errors import (
    CertificateError,
    CsvParseError,
    FontLoadError,
    PerRecordError,
    StreamError,
    TemplateLoadError,
    ValidationError,
)
from certificate_layout import DEFAULT_LAYOUT, CertificateLayout
from certificate_overlay import CertificateAssets, build_certificate, sanitize_filename_part

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("userName", "trainingType", "date")


@dataclass(frozen=True)
class BulkRecord:
    row_number: int
    values: dict[str, str]

    def get(self, column: str) -> str:
        return self.values.get(column, "")

    def missing_fields(self) -> list[str]:
        return [column for column in REQUIRED_COLUMNS if not self.get(column)]


class OutcomeStatus(Enum):
    GENERATED = "generated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class RecordOutcome:
    row_number: int
    status: OutcomeStatus
    entry_name: str
    payload: bytes
    error: CertificateError | None = None

    @classmethod
    def generated(cls, record: BulkRecord, pdf_bytes: bytes) -> "RecordOutcome":
        safe_name = sanitize_filename_part(record.get("userName"))
        return cls(
            row_number=record.row_number,
            status=OutcomeStatus.GENERATED,
            entry_name=f"certificate_{safe_name}_{record.row_number}.pdf",
            payload=pdf_bytes,
        )

    @classmethod
    def skipped(cls, record: BulkRecord, missing: list[str]) -> "RecordOutcome":
        message = f"Skipped record {record.row_number}: Missing data ({', '.join(missing)})"
        return cls(
            row_number=record.row_number,
            status=OutcomeStatus.SKIPPED,
            entry_name=f"error_log_{record.row_number}.txt",
            payload=f"{message}\n".encode("utf-8"),
            error=ValidationError(message),
        )

    @classmethod
    def failed(cls, record: BulkRecord, exc: Exception) -> "RecordOutcome":
        user_name = record.get("userName")
        message = f"Error for {user_name}: {exc}"
        safe_name = sanitize_filename_part(user_name)
        return cls(
            row_number=record.row_number,
            status=OutcomeStatus.FAILED,
            entry_name=f"error_log_{safe_name}_{record.row_number}.txt",
            payload=f"{message}\n".encode("utf-8"),
            error=PerRecordError(record.row_number, message),
        )


def parse_bulk_csv(data: bytes) -> list[BulkRecord]:
    """Parse raw CSV bytes into records, trimming header and cell whitespace."""
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise CsvParseError(f"CSV file is not valid UTF-8: {exc}") from exc

    try:
        reader = csv.DictReader(io.StringIO(text, newline=""), strict=True)
        if reader.fieldnames is None:
            return []
        reader.fieldnames = [header.strip() for header in reader.fieldnames]
        records = []
        for index, row in enumerate(reader, start=1):
            values = {key: (value or "").strip() for key, value in row.items() if key is not None}
            records.append(BulkRecord(row_number=index, values=values))
    except csv.Error as exc:
        raise CsvParseError(f"CSV parse error: {exc}") from exc
    return records


def generate_record(
    record: BulkRecord,
    assets: CertificateAssets,
    layout: CertificateLayout = DEFAULT_LAYOUT,
) -> RecordOutcome:
    missing = record.missing_fields()
    if missing:
        logger.warning("Skipping record %d: Missing data (%s)", record.row_number, ", ".join(missing))
        return RecordOutcome.skipped(record, missing)
    try:
        pdf_bytes = build_certificate(
            record.get("userName"),
            record.get("trainingType"),
            record.get("date"),
            assets,
            layout,
        )
    except (TemplateLoadError, FontLoadError):
        raise
    except Exception as exc:
        logger.exception("Error generating PDF for %s (record %d)", record.get("userName"), record.row_number)
        return RecordOutcome.failed(record, exc)
    return RecordOutcome.generated(record, pdf_bytes)


def generate_bulk_outcomes(
    records: list[BulkRecord],
    assets: CertificateAssets,
    layout: CertificateLayout = DEFAULT_LAYOUT,
) -> list[RecordOutcome]:
    return [generate_record(record, assets, layout) for record in records]


def write_bulk_archive(outcomes: list[RecordOutcome], fileobj: BinaryIO) -> None:
    with zipfile.ZipFile(fileobj, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as zipf:
        for outcome in outcomes:
            zipf.writestr(outcome.entry_name, outcome.payload)


def build_bulk_archive_file(
    records: list[BulkRecord],
    assets: CertificateAssets,
    temp_dir: Path,
    layout: CertificateLayout = DEFAULT_LAYOUT,
) -> Path:
    """Render every record into a temporary ZIP file and return its path.

    The caller owns the returned file and must delete it. If rendering or
    writing fails the partial file is removed before the error propagates.
    """
    temp_dir.mkdir(parents=True, exist_ok=True)
    zip_path = Path(
        tempfile.NamedTemporaryFile(
            delete=False,
            prefix="certificates_bulk_",
            suffix=".zip",
            dir=temp_dir,
        ).name
    )
    try:
        outcomes = generate_bulk_outcomes(records, assets, layout)
        with zip_path.open("wb") as f:
            write_bulk_archive(outcomes, f)
    except (OSError, zipfile.LargeZipFile) as exc:
        zip_path.unlink(missing_ok=True)
        raise StreamError(f"ZIP stream error: {exc}") from exc
    except BaseException:
        zip_path.unlink(missing_ok=True)
        raise

    generated = sum(1 for outcome in outcomes if outcome.status is OutcomeStatus.GENERATED)
    logger.info(
        "Bulk archive %s: %d certificate(s), %d error log(s)",
        zip_path.name,
        generated,
        len(outcomes) - generated,
    )
    return zip_path
