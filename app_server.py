import logging
import os
import time
from contextlib import asynccontextmanager
from functools import lru_cache
from pathlib import Path

# load_dotenv() must run before the module-level path settings below read
# os.environ.
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, PlainTextResponse, Response
from starlette.background import BackgroundTask

from bulk_generation import build_bulk_archive_file, parse_bulk_csv
from certificate_errors import CertificateError, ValidationError
from certificate_layout import CertificateLayout, load_layout
from certificate_overlay import CertificateAssets, build_certificate, load_assets, sanitize_filename_part

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("certificate_server")

ROOT_DIR = Path(__file__).resolve().parent
INDEX_HTML = ROOT_DIR / "public" / "index.html"


def _env_path(name: str, default: Path | None) -> Path | None:
    """Read an optional path; an explicitly empty variable means "none"."""
    value = os.environ.get(name)
    if value is None:
        return default
    value = value.strip()
    return Path(value) if value else None


TEMPLATE_PATH = Path(os.environ.get("CERTIFICATE_TEMPLATE") or ROOT_DIR / "templates" / "certificate_template.pdf")
FONT_PATH: Path | None = _env_path("CERTIFICATE_FONT", ROOT_DIR / "fonts" / "GEORGIAB.TTF")
LAYOUT_PATH: Path | None = _env_path("CERTIFICATE_LAYOUT", None)
TEMP_DIR = Path(os.environ.get("CERTIFICATE_TEMP_DIR") or ROOT_DIR / "out")

# Archives younger than this may still be streaming from another worker.
STALE_ARCHIVE_SECONDS = 3600

REQUIRED_FIELDS_MESSAGE = "All fields (User Name, Training Type, Date) are required."


@lru_cache(maxsize=1)
def get_certificate_assets() -> tuple[CertificateLayout, CertificateAssets]:
    """Load layout, template and font once per process.

    Failures are not cached, so a fixed asset is picked up by the next request.
    """
    layout = load_layout(LAYOUT_PATH)
    assets = load_assets(TEMPLATE_PATH, FONT_PATH, layout)
    logger.info("Template: %s  Font: %s", TEMPLATE_PATH, FONT_PATH or layout.fallback_font)
    return layout, assets


def remove_temp_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.error("Temp file cleanup failed for %s: %s", path, exc)


def remove_stale_archives(temp_dir: Path, max_age: float = STALE_ARCHIVE_SECONDS) -> None:
    if not temp_dir.exists():
        return
    cutoff = time.time() - max_age
    for archive in temp_dir.glob("certificates_bulk_*.zip"):
        try:
            modified = archive.stat().st_mtime
        except FileNotFoundError:
            continue
        if modified < cutoff:
            remove_temp_file(archive)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Archives left behind by a response that never finished sending.
    remove_stale_archives(TEMP_DIR)
    yield


app = FastAPI(title="Certificate Generator", lifespan=lifespan)


@app.exception_handler(CertificateError)
async def certificate_error_handler(request: Request, exc: CertificateError) -> PlainTextResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return PlainTextResponse(str(exc), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> PlainTextResponse:
    fields = ", ".join(str(error["loc"][-1]) for error in exc.errors() if error.get("loc"))
    return PlainTextResponse(f"Request validation failed: {fields}", status_code=400)


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/", include_in_schema=False)
def index() -> Response:
    if INDEX_HTML.exists():
        return FileResponse(INDEX_HTML)
    return PlainTextResponse("Form page not found: public/index.html", status_code=503)


@app.post("/generate-certificate")
def generate_certificate(
    userName: str | None = Form(None),
    trainingType: str | None = Form(None),
    date: str | None = Form(None),
) -> Response:
    user_name = (userName or "").strip()
    training_type = (trainingType or "").strip()
    completion_date = (date or "").strip()
    if not (user_name and training_type and completion_date):
        raise ValidationError(REQUIRED_FIELDS_MESSAGE)

    layout, assets = get_certificate_assets()
    pdf_bytes = build_certificate(user_name, training_type, completion_date, assets, layout)
    filename = f"certificate_{sanitize_filename_part(user_name)}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def is_csv_upload(upload: UploadFile) -> bool:
    filename = (upload.filename or "").lower()
    return upload.content_type == "text/csv" or filename.endswith(".csv")


@app.post("/bulk-generate-certificates")
def bulk_generate_certificates(bulkDataFile: UploadFile | None = File(None)) -> FileResponse:
    if bulkDataFile is None or not bulkDataFile.filename:
        raise ValidationError("No CSV file uploaded.")
    if not is_csv_upload(bulkDataFile):
        raise ValidationError("Only .csv files are allowed!")

    records = parse_bulk_csv(bulkDataFile.file.read())
    if not records:
        raise ValidationError("CSV file is empty or not properly formatted.")

    layout, assets = get_certificate_assets()
    zip_path = build_bulk_archive_file(records, assets, TEMP_DIR, layout)
    download_name = f"certificates_bulk_{int(time.time() * 1000)}.zip"
    return FileResponse(
        zip_path,
        media_type="application/zip",
        filename=download_name,
        background=BackgroundTask(remove_temp_file, zip_path),
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", "3000"))
    print(f"Server running at http://localhost:{port}")
    print("CSV Headers: userName,trainingType,date")
    uvicorn.run(app, host=os.environ.get("HOST", "127.0.0.1"), port=port)
