import io
import zipfile

import pytest

import bulk_generation
from bulk_generation import (
    BulkRecord,
    OutcomeStatus,
    build_bulk_archive_file,
    generate_bulk_outcomes,
    parse_bulk_csv,
    write_bulk_archive,
)
from certificate_errors import CsvParseError, PerRecordError, StreamError, TemplateLoadError, ValidationError
from certificate_overlay import load_assets

THREE_ROWS = (
    "userName,trainingType,date\n"
    "Jane Doe,Fire Safety,2024-01-05\n"
    "John Roe,First Aid,\n"
    "Ana Lima,Forklift Operation,2024-02-10\n"
).encode("utf-8")


@pytest.fixture
def assets(template_pdf):
    return load_assets(template_pdf, None)


def test_parse_bulk_csv_trims_headers_and_values():
    data = "\ufeff userName , trainingType,date \n  Jane Doe , Fire Safety ,2024-01-05\n".encode("utf-8")
    [record] = parse_bulk_csv(data)

    assert record.row_number == 1
    assert record.values == {"userName": "Jane Doe", "trainingType": "Fire Safety", "date": "2024-01-05"}


def test_parse_bulk_csv_empty_input():
    assert parse_bulk_csv(b"") == []
    assert parse_bulk_csv(b"userName,trainingType,date\n") == []


def test_parse_bulk_csv_rejects_non_utf8():
    with pytest.raises(CsvParseError):
        parse_bulk_csv("userName\nJos\xe9\n".encode("latin-1"))


def test_parse_bulk_csv_rejects_malformed_quoting():
    with pytest.raises(CsvParseError):
        parse_bulk_csv(b'userName,trainingType,date\n"Jane "Doe,Fire Safety,2024-01-05\n')


def test_parse_bulk_csv_short_row_counts_as_missing():
    [record] = parse_bulk_csv(b"userName,trainingType,date\nJane Doe\n")
    assert record.missing_fields() == ["trainingType", "date"]


def test_bulk_outcomes_keep_row_order(assets):
    outcomes = generate_bulk_outcomes(parse_bulk_csv(THREE_ROWS), assets)

    assert [outcome.status for outcome in outcomes] == [
        OutcomeStatus.GENERATED,
        OutcomeStatus.SKIPPED,
        OutcomeStatus.GENERATED,
    ]
    assert [outcome.entry_name for outcome in outcomes] == [
        "certificate_janedoe_1.pdf",
        "error_log_2.txt",
        "certificate_analima_3.pdf",
    ]
    skipped = outcomes[1]
    assert isinstance(skipped.error, ValidationError)
    assert skipped.payload == b"Skipped record 2: Missing data (date)\n"


def test_write_bulk_archive_contains_pdfs_and_error_logs(assets):
    outcomes = generate_bulk_outcomes(parse_bulk_csv(THREE_ROWS), assets)
    buffer = io.BytesIO()
    write_bulk_archive(outcomes, buffer)

    with zipfile.ZipFile(io.BytesIO(buffer.getvalue())) as zipf:
        names = zipf.namelist()
        assert names == ["certificate_janedoe_1.pdf", "error_log_2.txt", "certificate_analima_3.pdf"]
        assert zipf.read("certificate_janedoe_1.pdf").startswith(b"%PDF")
        assert zipf.read("error_log_2.txt").decode("utf-8").startswith("Skipped record 2")


def test_failed_record_is_logged_and_batch_continues(assets, monkeypatch):
    real_build = bulk_generation.build_certificate

    def flaky_build(name, *args, **kwargs):
        if name == "Jane Doe":
            raise ValueError("glyph missing")
        return real_build(name, *args, **kwargs)

    monkeypatch.setattr(bulk_generation, "build_certificate", flaky_build)
    outcomes = generate_bulk_outcomes(parse_bulk_csv(THREE_ROWS), assets)

    failed = outcomes[0]
    assert failed.status is OutcomeStatus.FAILED
    assert failed.entry_name == "error_log_janedoe_1.txt"
    assert failed.payload == b"Error for Jane Doe: glyph missing\n"
    assert isinstance(failed.error, PerRecordError)
    assert failed.error.row_number == 1
    assert outcomes[2].status is OutcomeStatus.GENERATED


def test_template_failure_aborts_batch(assets, monkeypatch):
    def broken_build(*args, **kwargs):
        raise TemplateLoadError("template vanished")

    monkeypatch.setattr(bulk_generation, "build_certificate", broken_build)
    with pytest.raises(TemplateLoadError):
        generate_bulk_outcomes([BulkRecord(1, {"userName": "A", "trainingType": "B", "date": "C"})], assets)


def test_build_bulk_archive_file_writes_temp_zip(assets, tmp_path):
    temp_dir = tmp_path / "out"
    zip_path = build_bulk_archive_file(parse_bulk_csv(THREE_ROWS), assets, temp_dir)

    assert zip_path.parent == temp_dir
    assert zip_path.name.startswith("certificates_bulk_")
    with zipfile.ZipFile(zip_path) as zipf:
        assert len(zipf.namelist()) == 3


def test_build_bulk_archive_file_removes_partial_file(assets, tmp_path, monkeypatch):
    def failing_write(outcomes, fileobj):
        raise OSError("disk full")

    monkeypatch.setattr(bulk_generation, "write_bulk_archive", failing_write)
    temp_dir = tmp_path / "out"
    with pytest.raises(StreamError, match="disk full"):
        build_bulk_archive_file(parse_bulk_csv(THREE_ROWS), assets, temp_dir)
    assert list(temp_dir.iterdir()) == []
