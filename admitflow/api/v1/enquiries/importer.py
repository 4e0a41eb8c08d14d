"""
Bulk enquiry import from Excel. Columns are matched by name, loosely:
name, course, contact|phone|mobile, email, city, source. Header row first.
"""

import io
import re
from typing import Dict, List, Optional, Tuple

from fastapi import UploadFile
from openpyxl import load_workbook

from admitflow.core.enums import EnquiryStage, EnquiryStatus

EXCEL_MAX_ROWS = 2000
DEFAULT_SOURCE = "Website"

# Field -> pattern a header must match. First matching column wins.
HEADER_PATTERNS: Dict[str, re.Pattern] = {
    "name": re.compile(r"name"),
    "course": re.compile(r"course"),
    "contact": re.compile(r"contact|phone|mobile"),
    "email": re.compile(r"email"),
    "city": re.compile(r"city"),
    "source": re.compile(r"source"),
}
REQUIRED_FIELDS = ("name", "course", "contact")


def _norm(s) -> str:
    return (str(s).strip().lower() if s is not None else "").replace(" ", "_")


def _cell_str(row: tuple, col: Optional[int]) -> str:
    if col is None or col >= len(row) or row[col] is None:
        return ""
    value = row[col]
    # numeric phone numbers come back as floats
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _column_index(header_row: List[str]) -> Dict[str, Optional[int]]:
    idx: Dict[str, Optional[int]] = {}
    for field, pattern in HEADER_PATTERNS.items():
        idx[field] = next((i for i, h in enumerate(header_row) if pattern.search(h)), None)
    missing = [f for f in REQUIRED_FIELDS if idx[f] is None]
    if missing:
        raise ValueError(f"Missing required column(s): {', '.join(missing)}. Found: {header_row}")
    return idx


def parse_enquiries_workbook(content: bytes) -> Tuple[List[dict], List[Tuple[int, str]]]:
    """
    Parse workbook bytes. Returns (rows, skipped) where rows are enquiry column dicts and
    skipped is [(row_number, reason)]. Raises ValueError for an unreadable file or header.
    """
    try:
        wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ValueError(f"Invalid Excel file: {e}") from e
    try:
        ws = wb.active
        if not ws:
            raise ValueError("Excel file has no active sheet")
        rows_iter = ws.iter_rows(values_only=True)
        header_row = next(rows_iter, None)
        if not header_row:
            raise ValueError("Excel file has no header row")
        idx = _column_index([_norm(c) for c in header_row])

        rows: List[dict] = []
        skipped: List[Tuple[int, str]] = []
        for row_num, row in enumerate(rows_iter, start=2):
            if row_num - 1 > EXCEL_MAX_ROWS:
                raise ValueError(f"Maximum {EXCEL_MAX_ROWS} data rows allowed")
            if not row or all(c is None or (isinstance(c, str) and not c.strip()) for c in row):
                continue
            values = {field: _cell_str(row, col) for field, col in idx.items()}
            missing = [f for f in REQUIRED_FIELDS if not values[f]]
            if missing:
                skipped.append((row_num, f"Row {row_num}: {', '.join(missing)} required"))
                continue
            source = values["source"] or DEFAULT_SOURCE
            rows.append(
                {
                    "name": values["name"],
                    "course": values["course"],
                    "contact": values["contact"],
                    "email": values["email"] or None,
                    "city": values["city"] or None,
                    "sources": [source],
                    "stage": EnquiryStage.PROSPECTIVE.value,
                    "status": EnquiryStatus.PENDING.value,
                }
            )
        return rows, skipped
    finally:
        wb.close()


async def read_enquiries_upload(file: UploadFile) -> Tuple[List[dict], List[Tuple[int, str]]]:
    if not file.filename or not file.filename.lower().endswith(".xlsx"):
        raise ValueError("File must be an Excel file (.xlsx)")
    content = await file.read()
    if not content:
        raise ValueError("File is empty")
    return parse_enquiries_workbook(content)
