"""
spreadsheet.py - Read tabular RFQ attachments into header→value rows

.xlsx workbooks go through openpyxl (first worksheet only), .csv through the
csv module. Legacy .xls is not readable here and is skipped by the caller.
"""

import csv
import io
import logging
from typing import List

from openpyxl import load_workbook

log = logging.getLogger("spreadsheet")

XLSX_EXTS = (".xlsx", ".xlsm")
CSV_EXTS = (".csv",)
SPREADSHEET_EXTS = XLSX_EXTS + CSV_EXTS + (".xls",)


def is_spreadsheet(filename: str) -> bool:
    return (filename or "").lower().endswith(SPREADSHEET_EXTS)


def is_readable(filename: str) -> bool:
    return (filename or "").lower().endswith(XLSX_EXTS + CSV_EXTS)


def _rows_from_matrix(matrix) -> List[dict]:
    """First non-empty row is the header; blank rows are dropped."""
    header = None
    rows = []
    for values in matrix:
        values = ["" if v is None else v for v in values]
        if not any(str(v).strip() for v in values):
            continue
        if header is None:
            header = [str(v).strip() or f"column_{i}" for i, v in enumerate(values)]
            continue
        row = {}
        for i, name in enumerate(header):
            row[name] = values[i] if i < len(values) else ""
        rows.append(row)
    return rows


def read_xlsx(content: bytes) -> List[dict]:
    wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        return _rows_from_matrix(ws.iter_rows(values_only=True))
    finally:
        wb.close()


def read_csv(content: bytes) -> List[dict]:
    text = content.decode("utf-8-sig", errors="replace")
    return _rows_from_matrix(csv.reader(io.StringIO(text)))


def read_spreadsheet(filename: str, content: bytes) -> List[dict]:
    """Rows of a spreadsheet attachment. Raises ValueError for unsupported formats."""
    name = (filename or "").lower()
    if name.endswith(XLSX_EXTS):
        rows = read_xlsx(content)
    elif name.endswith(CSV_EXTS):
        rows = read_csv(content)
    else:
        raise ValueError(f"Unsupported spreadsheet format: {filename}")
    log.debug("%s: %d data rows", filename, len(rows))
    return rows
