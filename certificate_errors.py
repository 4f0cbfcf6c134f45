"""Exceptions raised while building certificates.

Validation problems and per-record failures are recoverable inside a bulk
batch. Template, font, layout and CSV/stream failures abort the request.
"""


class CertificateError(Exception):
    """Base class for every certificate generation failure."""

    status_code = 500


class ValidationError(CertificateError):
    """One or more required fields are missing or the upload is unusable."""

    status_code = 400


class TemplateLoadError(CertificateError):
    pass


class FontLoadError(CertificateError):
    pass


class LayoutLoadError(CertificateError):
    pass


class CsvParseError(CertificateError):
    pass


class PerRecordError(CertificateError):
    """A single bulk row could not be rendered; the batch carries on."""

    def __init__(self, row_number: int, message: str) -> None:
        super().__init__(message)
        self.row_number = row_number


class StreamError(CertificateError):
    pass
