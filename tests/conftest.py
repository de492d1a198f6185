from pathlib import Path

import pymupdf
import pytest
from mcp.shared.memory import create_connected_server_and_client_session as client_session

from mcp_pdf_filler import PdfFillerContext, create_server


@pytest.fixture
def anyio_backend():
    return "asyncio"


def build_form(path: Path, fields: list[dict], text: str | None = None, **save_options) -> Path:
    """Write a one-page PDF with the given form fields.

    Each field is a dict with ``name``, ``type`` (a ``pymupdf.PDF_WIDGET_TYPE_*``
    constant) and optionally ``value`` and ``choices``. Repeating a radio
    button name adds another button to that group.
    """
    doc = pymupdf.open()
    page = doc.new_page()
    if text:
        page.insert_text((72, 60), text)

    for index, field in enumerate(fields):
        widget = pymupdf.Widget()
        widget.field_name = field["name"]
        widget.field_type = field["type"]
        top = 100 + index * 40
        if field["type"] in (pymupdf.PDF_WIDGET_TYPE_CHECKBOX, pymupdf.PDF_WIDGET_TYPE_RADIOBUTTON):
            widget.rect = pymupdf.Rect(72, top, 92, top + 20)
            widget.field_value = field.get("value", False)
        else:
            widget.rect = pymupdf.Rect(72, top, 300, top + 24)
            if "choices" in field:
                widget.choice_values = field["choices"]
            widget.field_value = field.get("value", "")
        page.add_widget(widget)

    doc.save(str(path), **save_options)
    doc.close()
    return path


FORM_FIELDS = [
    {"name": "Name", "type": pymupdf.PDF_WIDGET_TYPE_TEXT},
    {"name": "Email", "type": pymupdf.PDF_WIDGET_TYPE_TEXT},
    {"name": "Subscribe", "type": pymupdf.PDF_WIDGET_TYPE_CHECKBOX},
    {
        "name": "Color",
        "type": pymupdf.PDF_WIDGET_TYPE_COMBOBOX,
        "choices": ["Red", "Green", "Blue"],
        "value": "Red",
    },
]


RADIO_FIELDS = [
    {"name": "Name", "type": pymupdf.PDF_WIDGET_TYPE_TEXT},
    {"name": "Agree", "type": pymupdf.PDF_WIDGET_TYPE_RADIOBUTTON},
    {"name": "Agree", "type": pymupdf.PDF_WIDGET_TYPE_RADIOBUTTON},
]


@pytest.fixture
def context(tmp_path: Path) -> PdfFillerContext:
    pdf_dir = tmp_path / "pdfs"
    pdf_dir.mkdir()
    context = PdfFillerContext(pdf_dir=pdf_dir, profiles_dir=tmp_path / "profiles")
    context.ensure_directories()
    return context


@pytest.fixture
def form_pdf(context: PdfFillerContext) -> Path:
    """Contact form with two text fields, a checkbox and a dropdown."""
    return build_form(context.pdf_dir / "form.pdf", FORM_FIELDS)


@pytest.fixture
def radio_pdf(context: PdfFillerContext) -> Path:
    """A text field and a two-button radio group."""
    return build_form(context.pdf_dir / "consent.pdf", RADIO_FIELDS)


@pytest.fixture
def blank_pdf(context: PdfFillerContext) -> Path:
    """A page with no text layer and no fields, like a scanned document."""
    return build_form(context.pdf_dir / "scan.pdf", [])


@pytest.fixture
def text_pdf(context: PdfFillerContext) -> Path:
    return build_form(context.pdf_dir / "letter.pdf", [], text="Hello from the letter")


@pytest.fixture
async def client(context: PdfFillerContext):
    """In-memory MCP client session talking to a server built for ``context``."""
    async with client_session(create_server(context)) as session:
        yield session
