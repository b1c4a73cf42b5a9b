"""
Cancellation detection from cell styles.

Cancelled sessions are marked in the source spreadsheet by formatting alone:
the text is struck through AND coloured red. Only the .xlsx archive carries
that information, so this module reads the style table of the archive and
returns a sparse map of the grid cells that use such a format:

    {(row, col): True, ...}     # 0-based, same coordinates as the parsed grid

Every missing input (no styles part, unknown worksheet, broken archive)
yields an empty map: nothing is marked cancelled.
"""

from __future__ import annotations

import logging
import re
import zipfile
from typing import Dict, Optional, Set, Tuple

from bs4 import BeautifulSoup

from timetable_sync.workbook import STYLES_PART, cell_coordinates, open_archive, read_part, sheet_part_name

log = logging.getLogger(__name__)

CancellationMap = Dict[Tuple[int, int], bool]

_HEX_RE = re.compile(r"^[0-9A-Fa-f]{6}([0-9A-Fa-f]{2})?$")


def is_red(rgb: Optional[str]) -> bool:
    """
    True for a 6-hex RGB or 8-hex ARGB colour inside the red band R>200, G<50, B<50.
    """
    if not rgb or not _HEX_RE.match(rgb):
        return False
    hex6 = rgb[-6:]
    r, g, b = int(hex6[0:2], 16), int(hex6[2:4], 16), int(hex6[4:6], 16)
    return r > 200 and g < 50 and b < 50


def _has_strike(font) -> bool:
    strike = font.find("strike")
    if strike is None:
        return False
    return strike.get("val", "1").lower() not in ("0", "false")


def cancelled_font_ids(styles: BeautifulSoup) -> Set[int]:
    """
    Indices of font definitions that are both struck through and red.
    """
    fonts = styles.find("fonts")
    if fonts is None:
        return set()

    out: Set[int] = set()
    for index, font in enumerate(fonts.find_all("font", recursive=False)):
        color = font.find("color")
        rgb = color.get("rgb") if color is not None else None
        if _has_strike(font) and is_red(rgb):
            out.add(index)
    return out


def cancelled_format_ids(styles: BeautifulSoup, font_ids: Set[int]) -> Set[int]:
    """
    Indices of cell formats (cellXfs entries) that reference a cancelled font.
    """
    cell_xfs = styles.find("cellXfs")
    if cell_xfs is None or not font_ids:
        return set()

    out: Set[int] = set()
    for index, xf in enumerate(cell_xfs.find_all("xf", recursive=False)):
        font_id = xf.get("fontId")
        if font_id is not None and font_id.isdigit() and int(font_id) in font_ids:
            out.add(index)
    return out


def cell_format_ids(sheet: BeautifulSoup) -> Dict[Tuple[int, int], int]:
    """
    Map every styled cell of a worksheet to its format id.
    """
    out: Dict[Tuple[int, int], int] = {}
    for c in sheet.find_all("c"):
        ref, style = c.get("r"), c.get("s")
        if not ref or style is None or not style.isdigit():
            continue
        try:
            out[cell_coordinates(ref)] = int(style)
        except ValueError:
            continue
    return out


def extract_cancellations(data: bytes, sheet_name: Optional[str] = None) -> CancellationMap:
    """
    Return {(row, col): True} for every cell formatted as cancelled (red + strikethrough).
    """
    try:
        archive = open_archive(data)
    except zipfile.BadZipFile:
        log.warning("Schedule file is not a valid spreadsheet archive; no cancellations detected")
        return {}

    with archive:
        styles = read_part(archive, STYLES_PART)
        if styles is None:
            log.info("No style table in archive; no cancellations detected")
            return {}

        formats = cancelled_format_ids(styles, cancelled_font_ids(styles))
        if not formats:
            return {}

        part = sheet_part_name(archive, sheet_name)
        sheet = read_part(archive, part) if part else None
        if sheet is None:
            log.info("Worksheet %r missing; no cancellations detected", sheet_name)
            return {}

        cells = cell_format_ids(sheet)

    cancelled = {coord: True for coord, fmt in cells.items() if fmt in formats}
    log.info("Detected %d cancelled cells", len(cancelled))
    return cancelled
