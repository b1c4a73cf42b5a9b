"""
Spreadsheet archive (.xlsx) reading.

Cell values are read with openpyxl, which decodes shared strings and
recognises date number formats. The style extractor (see styles.py) needs the
raw XML parts instead, so this module also knows just enough of the archive
layout to:
- locate a worksheet part by tab name (xl/workbook.xml + its relationships)
- parse one XML part with BeautifulSoup
"""

from __future__ import annotations

import io
import logging
import posixpath
import re
import zipfile
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import openpyxl
from bs4 import BeautifulSoup

log = logging.getLogger(__name__)

WORKBOOK_PART = "xl/workbook.xml"
WORKBOOK_RELS_PART = "xl/_rels/workbook.xml.rels"
STYLES_PART = "xl/styles.xml"

_CELL_REF_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?(\d+)$")


def cell_coordinates(ref: str) -> Tuple[int, int]:
    """
    Convert an A1-style reference to a 0-based (row, col) pair: 'E8' -> (7, 4).
    Raises ValueError for invalid references.
    """
    m = _CELL_REF_RE.match(ref.strip())
    if not m:
        raise ValueError(f"Invalid cell reference: {ref!r}")
    letters, digits = m.group(1).upper(), m.group(2)
    col = 0
    for ch in letters:
        col = col * 26 + (ord(ch) - ord("A") + 1)
    return int(digits) - 1, col - 1


def open_archive(data: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(data))


def read_part(archive: zipfile.ZipFile, name: str) -> Optional[BeautifulSoup]:
    """
    Parse one XML part of the archive, or return None if the part is missing.
    """
    try:
        raw = archive.read(name)
    except KeyError:
        return None
    return BeautifulSoup(raw, "xml")


def sheet_part_name(archive: zipfile.ZipFile, sheet_name: Optional[str] = None) -> Optional[str]:
    """
    Resolve the archive path of a worksheet by its tab name.

    With no tab name the first sheet is returned. Returns None when the tab
    (or the workbook part itself) does not exist.
    """
    workbook = read_part(archive, WORKBOOK_PART)
    rels = read_part(archive, WORKBOOK_RELS_PART)
    if workbook is None or rels is None:
        return None

    targets: Dict[str, str] = {}
    for rel in rels.find_all("Relationship"):
        target = rel.get("Target", "")
        if target.startswith("/"):
            targets[rel.get("Id", "")] = target.lstrip("/")
        else:
            targets[rel.get("Id", "")] = posixpath.normpath(posixpath.join("xl", target))

    sheets = workbook.find_all("sheet")
    if not sheets:
        return None

    if sheet_name is None:
        chosen = sheets[0]
    else:
        chosen = next((s for s in sheets if s.get("name", "").strip() == sheet_name.strip()), None)
        if chosen is None:
            log.warning("Worksheet %r not found in workbook", sheet_name)
            return None

    return targets.get(chosen.get("r:id", ""))


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        # Column A dates are read day-first downstream
        return f"{value.day}/{value.month}/{value.year}"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def read_grid(data: bytes, sheet_name: Optional[str] = None) -> List[List[str]]:
    """
    Read one worksheet of an .xlsx archive into a grid of strings.

    Row i / column j of the result is the physical cell at 0-based (i, j);
    gaps are filled with '' and trailing empty cells are dropped. Date cells
    are rendered D/M/YYYY. With no tab name the first sheet is read. Returns []
    when the worksheet cannot be found.
    """
    wb = openpyxl.load_workbook(io.BytesIO(data), data_only=True)
    try:
        if sheet_name is None:
            ws = wb.worksheets[0] if wb.worksheets else None
        else:
            ws = next((s for s in wb.worksheets if s.title.strip() == sheet_name.strip()), None)
            if ws is None:
                log.warning("Worksheet %r not found in workbook", sheet_name)
        if ws is None:
            return []

        grid: List[List[str]] = []
        for values in ws.iter_rows(values_only=True):
            row = [_cell_text(v) for v in values]
            while row and row[-1] == "":
                row.pop()
            grid.append(row)
    finally:
        wb.close()

    while grid and not grid[-1]:
        grid.pop()
    return grid
