#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.10"
# dependencies = ["mcp>=1.10.0", "PyMuPDF>=1.24.3", "anyio>=4.0"]
#
# [project.optional-dependencies]
# dev = ["pytest>=7.0", "pytest-asyncio>=0.21.0"]
# ///
"""
`mcp_pdf_filler.py` – **Model Context Protocol** server for filling PDF forms.

Reads, fills, validates and extracts AcroForm fields with **PyMuPDF**, keeps
reusable field-value profiles on disk, and falls back to a rendered page image
when a PDF has no extractable text (scanned documents).

Tools exposed to LLMs
--------------------
* **`list_pdfs`** – List PDF files in a directory (default: ~/Documents)
* **`read_pdf_fields`** – Describe every form field (name, type, options, value)
* **`fill_pdf`** – Fill a form and save the result
* **`bulk_fill_from_csv`** – Fill one template once per CSV row
* **`save_profile`** / **`load_profile`** / **`list_profiles`** – Reusable field data
* **`fill_with_profile`** – Fill from a saved profile plus optional overrides
* **`extract_to_csv`** – Collect form data from several PDFs into one CSV
* **`validate_pdf`** – Report empty and required-looking empty fields
* **`read_pdf_content`** – Extract page text, or page 1 as PNG if there is none
* **`get_pdf_resource_uri`** – Hand out a `pdf://` URI readable as a resource

Path Examples
-------------
Every path argument accepts:

* **Home directory**: `'~/Documents/form.pdf'`
* **Relative path**: `'forms/w9.pdf'` (resolved against the working directory)
* **Absolute path**: `'/srv/forms/w9.pdf'`

Field values
------------
* Text fields take any value, converted to a string.
* Checkboxes are checked by `true`, `"true"`, `"yes"` or `"1"`; anything else unchecks.
* Radio groups and dropdowns must be given one of their options
  (see `read_pdf_fields`).

Problems with individual fields never abort a fill: they are listed in the
result next to the fields that were filled.

Quick start
-----------
```bash
chmod +x mcp_pdf_filler.py

# 1. Run as MCP server (stdio)
./mcp_pdf_filler.py

# 2. CLI usage
./mcp_pdf_filler.py tools
./mcp_pdf_filler.py call read_pdf_fields '{"pdf_path": "~/Documents/w9.pdf"}'
./mcp_pdf_filler.py --profiles-dir /tmp/profiles call list_profiles
```

Configuration
------------
* `--pdf-dir` / `MCP_PDF_FILLER_PDF_DIR` – default directory for `list_pdfs`
  (default `~/Documents`)
* `--profiles-dir` / `MCP_PDF_FILLER_PROFILES_DIR` – where profiles are stored
  (default `~/.pdf-filler-profiles`)
"""

from __future__ import annotations

import argparse
import base64
import json
import logging
import math
import os
import sys
from pathlib import Path
from typing import Any, Callable
from urllib.parse import unquote

import anyio
import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
import pymupdf

__version__ = "0.3.0"

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)

SERVER_NAME = "pdf-filler"

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_PDF_DIR = "~/Documents"
DEFAULT_PROFILES_DIR = "~/.pdf-filler-profiles"

PDF_URI_SCHEME = "pdf://"
PDF_MIME_TYPE = "application/pdf"

# read_pdf_content image fallback: aim for ~500 KB once base64 encoded
FALLBACK_TARGET_KB = 375
FALLBACK_MAX_SCALE = 1.5

# validate_pdf lists at most this many empty fields
MAX_LISTED_EMPTY_FIELDS = 10

PASSWORD_REQUIRED_MESSAGE = (
    "PDF is password-protected. Please provide the correct password "
    "using the 'password' parameter."
)


class PdfFillerContext:
    """Directories and capabilities shared by every tool call."""

    def __init__(
        self,
        pdf_dir: str | Path,
        profiles_dir: str | Path,
        rasterizer_available: bool = True,
    ):
        self.pdf_dir = Path(pdf_dir)
        self.profiles_dir = Path(profiles_dir)
        self.rasterizer_available = rasterizer_available
        self.profiles = ProfileStore(self.profiles_dir)

    @classmethod
    def from_env(
        cls, pdf_dir: str | None = None, profiles_dir: str | None = None
    ) -> PdfFillerContext:
        """Build a context from CLI values, then environment, then defaults."""
        pdf_dir = pdf_dir or os.environ.get("MCP_PDF_FILLER_PDF_DIR") or DEFAULT_PDF_DIR
        profiles_dir = (
            profiles_dir
            or os.environ.get("MCP_PDF_FILLER_PROFILES_DIR")
            or DEFAULT_PROFILES_DIR
        )
        return cls(
            pdf_dir=resolve_path(pdf_dir),
            profiles_dir=resolve_path(profiles_dir),
            rasterizer_available=probe_rasterizer(),
        )

    def ensure_directories(self) -> None:
        """Create the profile directory. Failing here is fatal for the server."""
        self.profiles_dir.mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class PdfFillerError(Exception):
    """Base class for errors reported back to the caller."""


class ValidationError(PdfFillerError):
    """Raised when tool arguments are missing or malformed."""


class UnknownTool(ValidationError):
    """Raised when a tool name is not in the catalog."""


class NotFound(PdfFillerError):
    """Raised when a file, profile or field does not exist."""


class ProfileNotFound(NotFound):
    pass


class PasswordRequired(PdfFillerError):
    """Raised when an encrypted PDF cannot be opened with the given password."""


class LoadFailure(PdfFillerError):
    """Raised when PyMuPDF cannot open a document for any other reason."""


class FieldApplyError(PdfFillerError):
    """A single field could not take a value. Never fatal for the whole fill."""


class FieldNotFound(NotFound, FieldApplyError):
    def __init__(self, field_name: str):
        super().__init__(
            f"Field '{field_name}' not found in PDF. Check field name or use "
            f"'read_pdf_fields' to see available fields."
        )
        self.field_name = field_name


class CapabilityUnavailable(PdfFillerError):
    """Raised when an optional capability failed to initialise at startup."""


# ---------------------------------------------------------------------------
# Path resolver
# ---------------------------------------------------------------------------


def resolve_path(value: str | None) -> str | None:
    """Turn '~/x', 'x' or '/x' into an absolute path without touching the disk."""
    if not value:
        return value

    if value.startswith("~"):
        return os.path.join(os.path.expanduser("~"), value[1:].lstrip("/\\"))

    if os.path.isabs(value):
        return value

    return os.path.abspath(value)


# ---------------------------------------------------------------------------
# Tabular codec
# ---------------------------------------------------------------------------


def _unquote_cell(cell: str) -> str:
    cell = cell.strip()
    if len(cell) >= 2 and cell[0] == '"' and cell[-1] == '"':
        return cell[1:-1]
    return cell


def decode_csv(text: str) -> list[dict[str, str]]:
    """Parse header + rows by splitting on commas.

    There is no escape handling: a comma inside a value splits it. One pair of
    enclosing double quotes is removed from each cell so that the output of
    :func:`encode_csv` reads back unchanged.
    """
    lines = [line for line in text.strip().splitlines() if line.strip()]
    if not lines:
        return []

    headers = [_unquote_cell(h) for h in lines[0].split(",")]
    records = []
    for line in lines[1:]:
        values = [_unquote_cell(v) for v in line.split(",")]
        records.append(
            {
                header: values[index] if index < len(values) else ""
                for index, header in enumerate(headers)
            }
        )
    return records


def encode_csv(headers: list[str], rows: list[dict[str, Any]]) -> str:
    """Header row as-is, every value double-quoted. Embedded quotes are not escaped."""
    lines = [",".join(headers)]
    for row in rows:
        lines.append(",".join(f'"{row.get(h) or ""}"' for h in headers))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# PDF documents
# ---------------------------------------------------------------------------


def _mentions_encryption(message: str) -> bool:
    message = message.lower()
    return "password" in message or "encrypt" in message


def load_document(source: str | bytes, password: str | None = None) -> pymupdf.Document:
    """Open a PDF from a path or from bytes, authenticating if it is encrypted."""
    if isinstance(source, str) and not os.path.isfile(source):
        raise NotFound(f"PDF file not found: {source}")

    try:
        if isinstance(source, bytes):
            doc = pymupdf.open(stream=source, filetype="pdf")
        else:
            doc = pymupdf.open(source)
    except Exception as exc:
        if _mentions_encryption(str(exc)):
            raise PasswordRequired(PASSWORD_REQUIRED_MESSAGE) from exc
        raise LoadFailure(f"Failed to load PDF: {exc}") from exc

    if doc.needs_pass and not (password and doc.authenticate(password)):
        doc.close()
        raise PasswordRequired(PASSWORD_REQUIRED_MESSAGE)

    return doc


class FormFields(dict):
    """Widgets grouped by field name, in page order.

    Radio groups (and fields shown on several pages) have one widget per
    appearance but a single name. A widget only weakly references its page,
    so the pages are held here for as long as the mapping is in use.
    """

    def __init__(self, doc: pymupdf.Document):
        super().__init__()
        self.pages = list(doc)
        for page in self.pages:
            for widget in page.widgets():
                if not widget.field_name:
                    continue
                self.setdefault(widget.field_name, []).append(widget)


def collect_fields(doc: pymupdf.Document) -> FormFields:
    return FormFields(doc)


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------

TEXT = "text"
CHECKBOX = "checkbox"
RADIO = "radio"
DROPDOWN = "dropdown"
UNKNOWN = "unknown"

FIELD_KINDS = {
    pymupdf.PDF_WIDGET_TYPE_TEXT: TEXT,
    pymupdf.PDF_WIDGET_TYPE_CHECKBOX: CHECKBOX,
    pymupdf.PDF_WIDGET_TYPE_RADIOBUTTON: RADIO,
    pymupdf.PDF_WIDGET_TYPE_COMBOBOX: DROPDOWN,
    pymupdf.PDF_WIDGET_TYPE_LISTBOX: DROPDOWN,
}

# Exact, case-sensitive spellings that check a checkbox
CHECKBOX_TRUTHY = ("true", "yes", "1")


class FillResult:
    """Outcome of applying a field value map: partial success is normal."""

    def __init__(self) -> None:
        self.filled: list[str] = []
        self.errors: dict[str, str] = {}

    def error_lines(self) -> list[str]:
        return list(self.errors.values())


def field_kind(widgets: list[pymupdf.Widget]) -> str:
    return FIELD_KINDS.get(widgets[0].field_type, UNKNOWN)


def is_checked_value(raw_value: Any) -> bool:
    return raw_value is True or (
        isinstance(raw_value, str) and raw_value in CHECKBOX_TRUTHY
    )


def stringify(raw_value: Any) -> str:
    if raw_value is None:
        return ""
    if isinstance(raw_value, bool):
        return "true" if raw_value else "false"
    return str(raw_value)


def _is_on(value: Any) -> bool:
    return value not in (None, False, "", "Off")


def _on_state(widget: pymupdf.Widget) -> str:
    state = widget.on_state()
    return state if isinstance(state, str) else ""


def _option_value(choice: Any) -> str:
    # Choices may be [export value, display text] pairs
    if isinstance(choice, (list, tuple)):
        return str(choice[0])
    return str(choice)


def field_options(kind: str, widgets: list[pymupdf.Widget]) -> list[str]:
    if kind == DROPDOWN:
        return [_option_value(c) for c in widgets[0].choice_values or []]
    if kind == RADIO:
        states = (_on_state(w) for w in widgets)
        return list(dict.fromkeys(state for state in states if state))
    return []


def read_field_value(kind: str, widgets: list[pymupdf.Widget]) -> str | bool:
    if kind == TEXT:
        return widgets[0].field_value or ""
    if kind == CHECKBOX:
        return any(_is_on(w.field_value) for w in widgets)
    if kind == RADIO:
        for widget in widgets:
            if _is_on(widget.field_value):
                return _on_state(widget)
        return ""
    if kind == DROPDOWN:
        return widgets[0].field_value or ""
    return ""


def describe_field(name: str, widgets: list[pymupdf.Widget]) -> dict[str, Any]:
    """Field summary for listings. Detection problems degrade to 'unknown'."""
    try:
        kind = field_kind(widgets)
        return {
            "name": name,
            "type": kind,
            "options": field_options(kind, widgets),
            "currentValue": read_field_value(kind, widgets),
        }
    except Exception as exc:
        logger.debug("Could not inspect field %r: %s", name, exc)
        return {"name": name, "type": UNKNOWN, "options": [], "currentValue": ""}


def export_value(widgets: list[pymupdf.Widget]) -> str:
    """Cell value for extract_to_csv; unreadable fields export as ''."""
    try:
        kind = field_kind(widgets)
        if kind == CHECKBOX:
            return "yes" if read_field_value(kind, widgets) else "no"
        return stringify(read_field_value(kind, widgets))
    except Exception as exc:
        logger.debug("Could not read field %r: %s", widgets[0].field_name, exc)
        return ""


def _require_option(name: str, value: str, options: list[str]) -> None:
    if value not in options:
        raise FieldApplyError(
            f"'{value}' is not a valid option. Available options: {', '.join(options)}"
        )


def apply_value(name: str, widgets: list[pymupdf.Widget], raw_value: Any) -> None:
    """Write one value using the setter that matches the field kind."""
    kind = field_kind(widgets)

    if kind == TEXT:
        text = stringify(raw_value)
        for widget in widgets:
            widget.field_value = text
            widget.update()

    elif kind == CHECKBOX:
        checked = is_checked_value(raw_value)
        for widget in widgets:
            widget.field_value = checked
            widget.update()

    elif kind == RADIO:
        value = stringify(raw_value)
        _require_option(name, value, field_options(kind, widgets))
        # Turn the other buttons off first so the chosen one sets the group value
        chosen = [w for w in widgets if _on_state(w) == value]
        for widget in widgets:
            if widget not in chosen:
                widget.field_value = False
                widget.update()
        for widget in chosen:
            widget.field_value = True
            widget.update()

    elif kind == DROPDOWN:
        value = stringify(raw_value)
        _require_option(name, value, field_options(kind, widgets))
        for widget in widgets:
            widget.field_value = value
            widget.update()


def apply_field_values(doc: pymupdf.Document, field_data: dict[str, Any]) -> FillResult:
    """Apply every key independently and collect what worked and what did not."""
    fields = collect_fields(doc)
    result = FillResult()

    for name, value in field_data.items():
        try:
            widgets = fields.get(name)
            if not widgets:
                raise FieldNotFound(name)
            apply_value(name, widgets, value)
        except FieldNotFound as exc:
            result.errors[name] = str(exc)
        except Exception as exc:
            result.errors[name] = f"Field '{name}': {exc}"
        else:
            result.filled.append(name)

    return result


def fill_document(
    source: str | bytes, field_data: dict[str, Any], password: str | None = None
) -> tuple[bytes, FillResult]:
    """Load, fill and serialise a PDF. The input file is never modified."""
    with load_document(source, password) as doc:
        result = apply_field_values(doc, field_data)
        return doc.tobytes(), result


def _format_fill_summary(first_line: str, result: FillResult) -> str:
    message = f"{first_line}\nFields filled: {len(result.filled)}"
    if result.errors:
        message += "\nErrors:\n" + "\n".join(result.error_lines())
    return message


# ---------------------------------------------------------------------------
# Profile store
# ---------------------------------------------------------------------------


class ProfileStore:
    """One JSON file per profile. No locking: the last save wins."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ValidationError(f"Invalid profile name: '{name}'")
        return self.directory / f"{name}.json"

    def save(self, name: str, data: dict[str, Any]) -> None:
        self._path(name).write_text(json.dumps(data, indent=2), encoding="utf-8")

    def load_raw(self, name: str) -> str:
        path = self._path(name)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ProfileNotFound(
                f"Profile '{name}' not found. Use 'list_profiles' to see saved profiles."
            ) from None

    def load(self, name: str) -> dict[str, Any]:
        data = json.loads(self.load_raw(name))
        if not isinstance(data, dict):
            raise ValidationError(f"Profile '{name}' does not contain a field map")
        return data

    def list(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json") if p.is_file())


def merge_profile_data(
    profile: dict[str, Any], additional: dict[str, Any] | None
) -> dict[str, Any]:
    """Shallow merge; keys from *additional* override the profile."""
    return {**profile, **(additional or {})}


# ---------------------------------------------------------------------------
# Tool catalog
# ---------------------------------------------------------------------------

Content = types.TextContent | types.ImageContent
ToolResult = str | list[Content]
ToolHandler = Callable[[PdfFillerContext, dict[str, Any]], ToolResult]

TOOLS: dict[str, dict[str, Any]] = {}

_PASSWORD_PROPERTY = {
    "type": "string",
    "description": "Password for encrypted PDFs (optional)",
}


def _tool(
    name: str,
    description: str,
    properties: dict[str, Any] | None = None,
    required: tuple[str, ...] = (),
) -> Callable[[ToolHandler], ToolHandler]:
    """Register a handler under *name* with its JSON input schema."""

    def register(handler: ToolHandler) -> ToolHandler:
        TOOLS[name] = {
            "description": description,
            "inputSchema": {
                "type": "object",
                "properties": properties or {},
                "required": list(required),
            },
            "handler": handler,
        }
        return handler

    return register


def _text(text: str) -> types.TextContent:
    return types.TextContent(type="text", text=text)


def _object_argument(arguments: dict[str, Any], key: str) -> dict[str, Any]:
    """Return an object argument. JSON text is accepted from clients that send strings."""
    value = arguments.get(key)
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            pass
    if not isinstance(value, dict):
        raise ValidationError(f"'{key}' must be an object of field names to values")
    return value


def dispatch(
    context: PdfFillerContext, name: str, arguments: dict[str, Any] | None
) -> list[Content]:
    """Run one tool call. Failures come back as a single 'Error: ...' text item."""
    arguments = arguments or {}
    try:
        spec = TOOLS.get(name)
        if spec is None:
            raise UnknownTool(f"Unknown tool: {name}")

        for key in spec["inputSchema"]["required"]:
            if arguments.get(key) is None:
                raise ValidationError(f"Missing required argument: '{key}'")

        logger.debug("Calling %s with %s", name, sorted(arguments))
        result = spec["handler"](context, arguments)
    except Exception as exc:
        logger.warning("Tool %s failed: %s", name, exc)
        return [_text(f"Error: {exc}")]

    if isinstance(result, str):
        return [_text(result)]
    return result


# ---------------------------------------------------------------------------
# Tool: list_pdfs
# ---------------------------------------------------------------------------


@_tool(
    "list_pdfs",
    description=(
        "List all PDF files in a directory.\n\n"
        "Args:\n"
        "  directory (str, optional): Directory to search. Default: ~/Documents.\n\n"
        "Returns: count of PDF files followed by one absolute path per line"
    ),
    properties={
        "directory": {
            "type": "string",
            "description": "Directory path to search for PDFs (default: ~/Documents)",
        }
    },
)
def list_pdfs(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    directory = resolve_path(arguments.get("directory") or str(context.pdf_dir))
    pdf_files = [
        os.path.join(directory, name)
        for name in sorted(os.listdir(directory))
        if name.lower().endswith(".pdf")
    ]
    return f"Found {len(pdf_files)} PDF files:\n" + "\n".join(pdf_files)


# ---------------------------------------------------------------------------
# Tool: read_pdf_fields
# ---------------------------------------------------------------------------


@_tool(
    "read_pdf_fields",
    description=(
        "Read all form fields from a PDF file.\n\n"
        "Args:\n"
        "  pdf_path (str): Path to the PDF file. Required.\n"
        "  password (str, optional): Password for encrypted PDFs.\n\n"
        "Returns: JSON array of { name, type, options, currentValue } where type is\n"
        "one of text, checkbox, radio, dropdown, unknown"
    ),
    properties={
        "pdf_path": {"type": "string", "description": "Path to the PDF file"},
        "password": _PASSWORD_PROPERTY,
    },
    required=("pdf_path",),
)
def read_pdf_fields(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    path = resolve_path(arguments["pdf_path"])
    with load_document(path, arguments.get("password")) as doc:
        fields = collect_fields(doc)
        field_info = [describe_field(name, widgets) for name, widgets in fields.items()]
    return f"PDF has {len(field_info)} form fields:\n{json.dumps(field_info, indent=2)}"


# ---------------------------------------------------------------------------
# Tool: fill_pdf
# ---------------------------------------------------------------------------


@_tool(
    "fill_pdf",
    description=(
        "Fill a PDF form with provided data and save it.\n\n"
        "Args:\n"
        "  pdf_path (str): Source PDF. Required.\n"
        "  output_path (str): Where the filled PDF is written. Required.\n"
        "  field_data (object): Field names mapped to values. Required.\n"
        "  password (str, optional): Password for encrypted PDFs.\n\n"
        "Checkboxes accept true, 'true', 'yes' or '1' to check. Radio groups and\n"
        "dropdowns need one of their options.\n\n"
        "Returns: number of filled fields and one line per field that failed"
    ),
    properties={
        "pdf_path": {"type": "string", "description": "Path to the source PDF file"},
        "output_path": {
            "type": "string",
            "description": "Path where the filled PDF will be saved",
        },
        "field_data": {
            "type": "object",
            "description": "Object with field names as keys and values to fill",
        },
        "password": _PASSWORD_PROPERTY,
    },
    required=("pdf_path", "output_path", "field_data"),
)
def fill_pdf(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    field_data = _object_argument(arguments, "field_data")
    output_path = arguments["output_path"]

    data, result = fill_document(
        resolve_path(arguments["pdf_path"]), field_data, arguments.get("password")
    )
    Path(resolve_path(output_path)).write_bytes(data)

    return _format_fill_summary(
        f"PDF filled successfully and saved to: {output_path}", result
    )


# ---------------------------------------------------------------------------
# Tool: bulk_fill_from_csv
# ---------------------------------------------------------------------------


def _output_filename(record: dict[str, str], filename_column: str | None, index: int) -> str:
    stem = record.get(filename_column) if filename_column else None
    if not stem:
        return f"filled_{index}.pdf"
    return stem.replace("/", "_").replace("\\", "_") + ".pdf"


@_tool(
    "bulk_fill_from_csv",
    description=(
        "Fill multiple PDFs using data from a CSV file.\n\n"
        "Args:\n"
        "  pdf_path (str): Template PDF. Required.\n"
        "  csv_path (str): CSV file; the first row holds field names. Required.\n"
        "  output_directory (str): Where filled PDFs are written. Required.\n"
        "  filename_column (str, optional): Column used to name each output file.\n"
        "  password (str, optional): Password for encrypted PDFs.\n\n"
        "Values are split on commas; quoting does not protect commas inside values.\n\n"
        "Returns: one ✓/✗ line per CSV row. A failing row does not stop the others."
    ),
    properties={
        "pdf_path": {"type": "string", "description": "Path to the template PDF file"},
        "csv_path": {
            "type": "string",
            "description": "Path to CSV file with data (first row should be field names)",
        },
        "output_directory": {
            "type": "string",
            "description": "Directory where filled PDFs will be saved",
        },
        "filename_column": {
            "type": "string",
            "description": "CSV column to use for output filenames (optional)",
        },
        "password": _PASSWORD_PROPERTY,
    },
    required=("pdf_path", "csv_path", "output_directory"),
)
def bulk_fill_from_csv(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    pdf_path = resolve_path(arguments["pdf_path"])
    csv_path = resolve_path(arguments["csv_path"])
    output_dir = Path(resolve_path(arguments["output_directory"]))
    filename_column = arguments.get("filename_column")
    password = arguments.get("password")

    records = decode_csv(Path(csv_path).read_text(encoding="utf-8"))
    output_dir.mkdir(parents=True, exist_ok=True)
    if not os.path.isfile(pdf_path):
        raise NotFound(f"PDF file not found: {pdf_path}")
    template = Path(pdf_path).read_bytes()

    lines = []
    for index, record in enumerate(records, start=1):
        filename = _output_filename(record, filename_column, index)
        try:
            data, result = fill_document(template, record, password)
            (output_dir / filename).write_bytes(data)
        except Exception as exc:
            logger.warning("Bulk fill row %d (%s) failed: %s", index, filename, exc)
            lines.append(f"✗ {filename}: {exc}")
            continue

        line = f"✓ {filename}: {len(result.filled)} fields filled"
        if result.errors:
            line += f", {len(result.errors)} field errors"
        lines.append(line)

    return "Bulk fill complete!\n" + "\n".join(lines)


# ---------------------------------------------------------------------------
# Tools: profiles
# ---------------------------------------------------------------------------


@_tool(
    "save_profile",
    description=(
        "Save form data as a reusable profile.\n\n"
        "Args:\n"
        "  profile_name (str): Profile name, e.g. 'work' or 'personal'. Required.\n"
        "  field_data (object): Field names mapped to values. Required.\n\n"
        "Saving under an existing name replaces that profile."
    ),
    properties={
        "profile_name": {
            "type": "string",
            "description": "Name for the profile (e.g., 'work', 'personal')",
        },
        "field_data": {
            "type": "object",
            "description": "Object with field names and values to save",
        },
    },
    required=("profile_name", "field_data"),
)
def save_profile(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    name = arguments["profile_name"]
    context.profiles.save(name, _object_argument(arguments, "field_data"))
    return f"Profile '{name}' saved successfully!"


@_tool(
    "load_profile",
    description=(
        "Load a saved profile.\n\n"
        "Args:\n"
        "  profile_name (str): Name of the profile. Required.\n\n"
        "Returns: the stored JSON document"
    ),
    properties={
        "profile_name": {"type": "string", "description": "Name of the profile to load"}
    },
    required=("profile_name",),
)
def load_profile(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    name = arguments["profile_name"]
    return f"Profile '{name}' loaded:\n{context.profiles.load_raw(name)}"


@_tool("list_profiles", description="List all saved profiles, sorted by name.")
def list_profiles(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    profiles = context.profiles.list()
    if not profiles:
        return "No profiles saved yet"
    return "Available profiles:\n" + "\n".join(profiles)


@_tool(
    "fill_with_profile",
    description=(
        "Fill a PDF using a saved profile.\n\n"
        "Args:\n"
        "  pdf_path (str): Source PDF. Required.\n"
        "  output_path (str): Where the filled PDF is written. Required.\n"
        "  profile_name (str): Profile to use. Required.\n"
        "  additional_data (object, optional): Extra fields; these win over the profile.\n"
        "  password (str, optional): Password for encrypted PDFs."
    ),
    properties={
        "pdf_path": {"type": "string", "description": "Path to the PDF file"},
        "output_path": {
            "type": "string",
            "description": "Path where the filled PDF will be saved",
        },
        "profile_name": {"type": "string", "description": "Name of the profile to use"},
        "additional_data": {
            "type": "object",
            "description": "Additional fields to fill/override (optional)",
        },
        "password": _PASSWORD_PROPERTY,
    },
    required=("pdf_path", "output_path", "profile_name"),
)
def fill_with_profile(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    name = arguments["profile_name"]
    output_path = arguments["output_path"]
    additional = _object_argument(arguments, "additional_data")

    field_data = merge_profile_data(context.profiles.load(name), additional)
    data, result = fill_document(
        resolve_path(arguments["pdf_path"]), field_data, arguments.get("password")
    )
    Path(resolve_path(output_path)).write_bytes(data)

    return _format_fill_summary(
        f"PDF filled with profile '{name}' and saved to: {output_path}", result
    )


# ---------------------------------------------------------------------------
# Tool: extract_to_csv
# ---------------------------------------------------------------------------


@_tool(
    "extract_to_csv",
    description=(
        "Extract form data from filled PDFs to a CSV file.\n\n"
        "Args:\n"
        "  pdf_paths (list[str]): PDF files to read. Required.\n"
        "  output_csv (str): Where the CSV is written. Required.\n\n"
        "Columns are _filename followed by every field name seen, sorted.\n"
        "Checkboxes export as yes/no. PDFs that cannot be opened are skipped and listed."
    ),
    properties={
        "pdf_paths": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Array of PDF file paths to extract data from",
        },
        "output_csv": {
            "type": "string",
            "description": "Path where the CSV file will be saved",
        },
    },
    required=("pdf_paths", "output_csv"),
)
def extract_to_csv(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    pdf_paths = arguments["pdf_paths"]
    if not isinstance(pdf_paths, list) or not all(isinstance(p, str) for p in pdf_paths):
        raise ValidationError("'pdf_paths' must be an array of file paths")
    output_csv = arguments["output_csv"]

    rows = []
    field_names: set[str] = set()
    skipped = []
    for pdf_path in pdf_paths:
        filename = os.path.basename(pdf_path)
        try:
            with load_document(resolve_path(pdf_path)) as doc:
                row = {"_filename": filename}
                fields = collect_fields(doc)
                for name, widgets in fields.items():
                    field_names.add(name)
                    row[name] = export_value(widgets)
        except PdfFillerError as exc:
            skipped.append(f"✗ {filename}: {exc}")
            continue
        rows.append(row)

    headers = ["_filename", *sorted(field_names)]
    Path(resolve_path(output_csv)).write_text(encode_csv(headers, rows), encoding="utf-8")

    message = (
        f"Extracted data from {len(rows)} PDFs to: {output_csv}\n"
        f"Fields extracted: {len(field_names)}"
    )
    if skipped:
        message += "\nSkipped:\n" + "\n".join(skipped)
    return message


# ---------------------------------------------------------------------------
# Tool: validate_pdf
# ---------------------------------------------------------------------------


def looks_required(field_name: str) -> bool:
    lowered = field_name.lower()
    return "required" in lowered or "must" in lowered or "*" in field_name


def _is_empty(kind: str, widgets: list[pymupdf.Widget]) -> bool:
    if kind == CHECKBOX:
        return False
    if kind in (TEXT, RADIO, DROPDOWN):
        return not str(read_field_value(kind, widgets)).strip()
    return True


def validate_fields(fields: dict[str, list[pymupdf.Widget]]) -> dict[str, Any]:
    report: dict[str, Any] = {
        "total": len(fields),
        "filled": 0,
        "empty": 0,
        "required": [],
        "empty_fields": [],
    }
    for name, widgets in fields.items():
        try:
            empty = _is_empty(field_kind(widgets), widgets)
        except Exception as exc:
            logger.debug("Could not read field %r: %s", name, exc)
            report["empty"] += 1
            report["empty_fields"].append(f"{name} (error reading)")
            continue

        if empty:
            report["empty"] += 1
            report["empty_fields"].append(name)
            if looks_required(name):
                report["required"].append(name)
        else:
            report["filled"] += 1
    return report


@_tool(
    "validate_pdf",
    description=(
        "Validate if all required fields in a PDF are filled.\n\n"
        "Args:\n"
        "  pdf_path (str): PDF to check. Required.\n"
        "  password (str, optional): Password for encrypted PDFs.\n\n"
        "Fields whose names contain 'required', 'must' or '*' are treated as required."
    ),
    properties={
        "pdf_path": {"type": "string", "description": "Path to the PDF file to validate"},
        "password": _PASSWORD_PROPERTY,
    },
    required=("pdf_path",),
)
def validate_pdf(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    pdf_path = arguments["pdf_path"]
    with load_document(resolve_path(pdf_path), arguments.get("password")) as doc:
        report = validate_fields(collect_fields(doc))

    message = (
        f"PDF Validation Report for: {os.path.basename(pdf_path)}\n"
        f"Total fields: {report['total']}\n"
        f"Filled: {report['filled']}\n"
        f"Empty: {report['empty']}\n"
    )

    if report["required"]:
        message += "\n⚠️  Required fields that are empty:\n"
        message += "\n".join(report["required"])

    empty_fields = report["empty_fields"]
    if empty_fields and len(empty_fields) <= MAX_LISTED_EMPTY_FIELDS:
        message += "\n\nEmpty fields:\n" + "\n".join(empty_fields)
    elif len(empty_fields) > MAX_LISTED_EMPTY_FIELDS:
        message += f"\n\nFirst {MAX_LISTED_EMPTY_FIELDS} empty fields:\n"
        message += "\n".join(empty_fields[:MAX_LISTED_EMPTY_FIELDS])
        message += f"\n... and {len(empty_fields) - MAX_LISTED_EMPTY_FIELDS} more"

    return message


# ---------------------------------------------------------------------------
# Content extraction fallback
# ---------------------------------------------------------------------------


def probe_rasterizer() -> bool:
    """Check once whether PyMuPDF can render PNGs on this host."""
    try:
        with pymupdf.open() as doc:
            doc.new_page(width=8, height=8)
            doc[0].get_pixmap().tobytes("png")
    except Exception as exc:
        logger.warning("Page rendering unavailable, image fallback disabled: %s", exc)
        return False
    return True


def fallback_scale(size_kb: float) -> float:
    """Scale that keeps the rendered page near FALLBACK_TARGET_KB."""
    if size_kb <= 0:
        return FALLBACK_MAX_SCALE
    return min(FALLBACK_MAX_SCALE, math.sqrt(FALLBACK_TARGET_KB / size_kb))


def render_page_png(
    context: PdfFillerContext, data: bytes, page_number: int = 1, scale: float = 1.0
) -> bytes:
    if not context.rasterizer_available:
        raise CapabilityUnavailable(
            "Image extraction is not available. Page rendering could not be initialized."
        )

    with load_document(data) as doc:
        if page_number < 1 or page_number > doc.page_count:
            raise ValueError(f"Invalid page number. PDF has {doc.page_count} pages.")
        pixmap = doc[page_number - 1].get_pixmap(
            matrix=pymupdf.Matrix(scale, scale), alpha=False
        )
        return pixmap.tobytes("png")


def extract_content(context: PdfFillerContext, path: str) -> ToolResult:
    data = Path(path).read_bytes()
    filename = os.path.basename(path)
    size_kb = len(data) / 1024

    with load_document(data) as doc:
        page_count = doc.page_count
        text = "\n\n".join(page.get_text() for page in doc)

    details = f"File: {filename}\nSize: {size_kb:.2f} KB\nPages: {page_count}\n"

    if text.strip():
        rule = "=" * 50
        return (
            "PDF Content Extracted Successfully!\n\n"
            f"{details}"
            f"Text Length: {len(text)} characters\n"
            f"\n{rule}\nEXTRACTED TEXT:\n{rule}\n\n"
            f"{text}"
        )

    response = (
        "No text could be extracted from this PDF (likely a scanned document).\n"
        "Converting page 1 to image for visual analysis...\n\n"
        f"{details}"
    )
    scale = fallback_scale(size_kb)
    try:
        image = render_page_png(context, data, 1, scale)
    except Exception as exc:
        logger.warning("Image fallback failed for %s: %s", path, exc)
        return (
            f"{response}\n\nNote: No text could be extracted from this PDF, "
            "and image extraction also failed.\n"
            f"Error: {exc}\n"
            "This might be because:\n"
            "- The PDF is encrypted or has restrictions\n"
            "- The PDF is corrupted\n"
            "- Memory limitations\n"
        )

    response += (
        f"\nPage 1 extracted as image ({len(image) / 1024:.2f} KB, scale: {scale:.2f})\n"
    )
    return [
        _text(response),
        types.ImageContent(
            type="image",
            data=base64.b64encode(image).decode("ascii"),
            mimeType="image/png",
        ),
    ]


@_tool(
    "read_pdf_content",
    description=(
        "Read and analyze the full content of a PDF file. Extract text, summarize,\n"
        "convert to markdown, answer questions, or analyze the document structure.\n"
        "Use this when you need to understand PDF contents beyond just form fields.\n\n"
        "Args:\n"
        "  pdf_path (str): Path to the PDF file. Required.\n\n"
        "When the PDF has no text layer (scanned documents) page 1 is returned as a\n"
        "PNG image instead."
    ),
    properties={"pdf_path": {"type": "string", "description": "Path to the PDF file"}},
    required=("pdf_path",),
)
def read_pdf_content(context: PdfFillerContext, arguments: dict[str, Any]) -> ToolResult:
    try:
        return extract_content(context, resolve_path(arguments["pdf_path"]))
    except Exception as exc:
        return (
            f"Error reading PDF file: {exc}\n\n"
            "Please ensure the file path is correct and the file exists."
        )


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


def pdf_resource_uri(path: str) -> str:
    return f"{PDF_URI_SCHEME}{path}"


@_tool(
    "get_pdf_resource_uri",
    description=(
        "Get a resource URI for a PDF file that can be read through the MCP\n"
        "Resources API (for clients with built-in PDF reading).\n\n"
        "Args:\n"
        "  pdf_path (str): Path to the PDF file. Required.\n\n"
        "Returns: a pdf://<absolute path> URI"
    ),
    properties={"pdf_path": {"type": "string", "description": "Path to the PDF file"}},
    required=("pdf_path",),
)
def get_pdf_resource_uri(context: PdfFillerContext, arguments: dict[str, Any]) -> str:
    path = resolve_path(arguments["pdf_path"])
    try:
        if not os.path.isfile(path):
            raise FileNotFoundError(f"No such file: {path}")
        size_kb = os.path.getsize(path) / 1024
    except OSError as exc:
        return (
            f"Error accessing PDF file: {exc}\n\n"
            "Please ensure the file path is correct and the file exists."
        )

    return (
        f"Resource URI created: {pdf_resource_uri(path)}\n\n"
        f"File: {os.path.basename(path)}\n"
        f"Size: {size_kb:.2f} KB\n\n"
        "The PDF can now be read through the Resources API using this URI."
    )


def list_pdf_resources(context: PdfFillerContext) -> list[types.Resource]:
    """PDFs in the default directory, exposed as pdf:// resources."""
    if not context.pdf_dir.is_dir():
        return []
    return [
        types.Resource(
            uri=pdf_resource_uri(str(path)),
            name=path.name,
            mimeType=PDF_MIME_TYPE,
        )
        for path in sorted(context.pdf_dir.iterdir())
        if path.is_file() and path.suffix.lower() == ".pdf"
    ]


def read_pdf_resource(uri: str) -> bytes:
    if not uri.startswith(PDF_URI_SCHEME):
        raise ValueError(f"Unsupported resource URI: {uri}")

    path = resolve_path(unquote(uri[len(PDF_URI_SCHEME):]))
    logger.info("Reading PDF resource %s -> %s", uri, path)
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise ValueError(f"Failed to read PDF: {exc}") from exc


# ---------------------------------------------------------------------------
# MCP server
# ---------------------------------------------------------------------------


def create_server(context: PdfFillerContext) -> Server:
    """Wire the tool catalog and pdf:// resources onto an MCP server."""
    server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=name,
                description=spec["description"],
                inputSchema=spec["inputSchema"],
            )
            for name, spec in TOOLS.items()
        ]

    # Required arguments are checked by dispatch so errors come back as text
    @server.call_tool(validate_input=False)
    async def handle_call_tool(name: str, arguments: dict[str, Any] | None) -> list[Content]:
        return dispatch(context, name, arguments)

    @server.list_resources()
    async def handle_list_resources() -> list[types.Resource]:
        return list_pdf_resources(context)

    @server.read_resource()
    async def handle_read_resource(uri: Any) -> list[ReadResourceContents]:
        return [ReadResourceContents(content=read_pdf_resource(str(uri)), mime_type=PDF_MIME_TYPE)]

    return server


async def _serve(server: Server) -> None:
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


# ---------------------------------------------------------------------------
# CLI Interface
# ---------------------------------------------------------------------------


def _print_result(contents: list[Content]) -> None:
    for item in contents:
        if isinstance(item, types.ImageContent):
            print(f"[{item.mimeType} image, {len(item.data)} base64 characters]")
        else:
            print(item.text)


def main() -> None:
    """Run the MCP server, or a single tool call from the command line."""
    parser = argparse.ArgumentParser(description="PDF form filler MCP server")
    parser.add_argument(
        "--pdf-dir",
        default=None,
        help="Default directory for list_pdfs (env: MCP_PDF_FILLER_PDF_DIR)",
    )
    parser.add_argument(
        "--profiles-dir",
        default=None,
        help="Directory for saved profiles (env: MCP_PDF_FILLER_PROFILES_DIR)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    subparsers.add_parser("tools", help="List available tools")
    call_parser = subparsers.add_parser("call", help="Call a tool once and print the result")
    call_parser.add_argument("tool", help="Tool name, e.g. read_pdf_fields")
    call_parser.add_argument(
        "arguments", nargs="?", default="{}", help="Tool arguments as a JSON object"
    )

    args = parser.parse_args()

    if args.command == "tools":
        for name, spec in TOOLS.items():
            print(f"{name}: {spec['description'].splitlines()[0]}")
        return

    context = PdfFillerContext.from_env(args.pdf_dir, args.profiles_dir)
    try:
        context.ensure_directories()
    except OSError as exc:
        logger.error("Cannot create profile directory %s: %s", context.profiles_dir, exc)
        sys.exit(1)

    if not args.command:
        logger.info(
            "PDF Filler MCP server running (profiles: %s, image fallback: %s)",
            context.profiles_dir,
            "enabled" if context.rasterizer_available else "disabled",
        )
        anyio.run(_serve, create_server(context))
        return

    try:
        arguments = json.loads(args.arguments)
    except json.JSONDecodeError as exc:
        parser.error(f"arguments must be a JSON object: {exc}")
    if not isinstance(arguments, dict):
        parser.error("arguments must be a JSON object")

    _print_result(dispatch(context, args.tool, arguments))


if __name__ == "__main__":
    main()
