"""
Export File Parsing

Minimal content check plus parsing of CSV / Excel / JSON exports into
row dicts. Every cell is read as text; numeric coercion happens later in
normalization so strict and lenient modes see the same raw values.
"""

import io
import json
from pathlib import Path
from typing import Any

import pandas as pd
import structlog

from core.errors import IngestionParseError, UnsupportedFileError

logger = structlog.get_logger()

ALLOWED_EXTENSIONS = (".csv", ".xlsx", ".xls", ".json")

XLSX_MAGIC = b"PK\x03\x04"
XLS_MAGIC = bytes.fromhex("D0CF11E0A1B11AE1")


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower()


def check_content(filename: str, content: bytes) -> str:
    """
    Check that the declared extension matches the bytes.

    This is a sanity check against mislabelled uploads, not a malware scan.
    Returns the normalized extension.
    """
    ext = file_extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise UnsupportedFileError(f"File type {ext or '(none)'} not supported. Use: {', '.join(ALLOWED_EXTENSIONS)}")
    if not content:
        raise UnsupportedFileError("Uploaded file is empty")

    if ext == ".xlsx" and not content.startswith(XLSX_MAGIC):
        raise UnsupportedFileError("File content does not match .xlsx format")
    if ext == ".xls" and not content.startswith(XLS_MAGIC):
        raise UnsupportedFileError("File content does not match .xls format")
    if ext == ".json":
        try:
            json.loads(content.decode("utf-8-sig"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise UnsupportedFileError(f"File content is not valid JSON: {exc}") from exc
    if ext == ".csv":
        if b"\x00" in content:
            raise UnsupportedFileError("File content does not look like CSV text")
        try:
            content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise UnsupportedFileError("CSV file must be UTF-8 encoded text") from exc

    return ext


def _frame_to_records(frame: pd.DataFrame) -> list[dict[str, Any]]:
    frame = frame.rename(columns=lambda c: str(c).strip())
    frame = frame.dropna(how="all")
    records = []
    for row in frame.to_dict(orient="records"):
        cleaned = {}
        for key, value in row.items():
            if value is None or (isinstance(value, float) and pd.isna(value)):
                continue
            text = str(value).strip()
            if text:
                cleaned[key] = text
        records.append(cleaned)
    return records


def parse_records(filename: str, content: bytes) -> list[dict[str, Any]]:
    """
    Parse an export into a list of row dicts.

    JSON may be a list of objects or an object wrapping them under
    ``records``. Raises IngestionParseError with the parser's message.
    """
    ext = check_content(filename, content)

    try:
        if ext == ".csv":
            frame = pd.read_csv(
                io.StringIO(content.decode("utf-8-sig")),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
            )
            return _frame_to_records(frame)

        if ext in (".xlsx", ".xls"):
            engine = "openpyxl" if ext == ".xlsx" else "xlrd"
            frame = pd.read_excel(io.BytesIO(content), dtype=str, engine=engine)
            return _frame_to_records(frame)

        payload = json.loads(content.decode("utf-8-sig"))
    except Exception as exc:
        logger.warning("ingestion.parse_failed", filename=filename, error=str(exc))
        raise IngestionParseError(f"Failed to parse {filename}: {exc}") from exc

    if isinstance(payload, dict):
        payload = payload.get("records")
    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        raise IngestionParseError(
            f"Failed to parse {filename}: expected a list of objects or {{\"records\": [...]}}"
        )

    records = []
    for item in payload:
        records.append(
            {str(k).strip(): v for k, v in item.items() if v is not None and str(v).strip() != ""}
        )
    return records
