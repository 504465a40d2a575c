"""Readers for the spreadsheet CSV export."""

import csv
import io
from pathlib import Path
from typing import Dict, List, Optional, Union

from woo_ledger.config.constants import CSV_FILE_PREFIX, CSV_FILES, EXPENSES_HEADER_MARKER
from woo_ledger.core.logger import setup_logger

logger = setup_logger(__name__)


def csv_path(directory: Union[str, Path], sheet: str) -> Path:
    """Path of one exported sheet, e.g. csv_path(dir, "orders")."""
    return Path(directory) / f"{CSV_FILE_PREFIX}{CSV_FILES[sheet]}.csv"


def _clean_rows(reader: csv.DictReader) -> List[Dict[str, str]]:
    rows = []
    for raw in reader:
        row = {
            (key or "").strip(): (value or "").strip() if isinstance(value, str) else ""
            for key, value in raw.items()
            if key is not None
        }
        # Skip rows where every cell is blank
        if any(row.values()):
            rows.append(row)
    return rows


def read_csv(path: Union[str, Path]) -> List[Dict[str, str]]:
    """Rows keyed by header with whitespace trimmed; blank rows dropped."""
    with open(path, newline="", encoding="utf-8-sig") as handle:
        return _clean_rows(csv.DictReader(handle))


def read_expense_csv(path: Union[str, Path]) -> Optional[List[Dict[str, str]]]:
    """
    Rows of the expenses sheet, read from its real header row.

    The sheet starts with title and summary rows; the header is the first
    line containing EXPENSES_HEADER_MARKER. Returns None when there is none.
    """
    with open(path, newline="", encoding="utf-8-sig") as handle:
        lines = handle.read().splitlines()

    for index, line in enumerate(lines):
        if EXPENSES_HEADER_MARKER in line:
            return _clean_rows(csv.DictReader(io.StringIO("\n".join(lines[index:]))))

    logger.warning(f"No expenses header row found in {path}")
    return None
