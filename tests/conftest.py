import pathlib
import sys

import pytest
import reportlab
from reportlab.pdfgen import canvas

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Wide enough for the stock date position at x=880.
PAGE_SIZE = (1152.0, 864.0)

VERA_BOLD = pathlib.Path(reportlab.__file__).resolve().parent / "fonts" / "VeraBd.ttf"


def make_template(path: pathlib.Path, pages: int = 1, size: tuple[float, float] = PAGE_SIZE) -> pathlib.Path:
    c = canvas.Canvas(str(path), pagesize=size)
    for index in range(pages):
        c.setFont("Helvetica", 12)
        c.drawString(36, 36, f"Certificate of Completion - page {index + 1}")
        c.showPage()
    c.save()
    return path


@pytest.fixture
def template_pdf(tmp_path):
    return make_template(tmp_path / "certificate_template.pdf")


@pytest.fixture
def font_file():
    if not VERA_BOLD.exists():
        pytest.skip("reportlab bundled Vera fonts are not installed")
    return VERA_BOLD
