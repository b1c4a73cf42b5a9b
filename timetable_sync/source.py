"""
Schedule source (spreadsheet -> raw grid).

The timetable lives in a Google spreadsheet that may be a native Sheets
document or an uploaded .xlsx file. Fetching is an ordered list of strategies,
each returning a tagged FetchResult instead of raising:

    1. Sheets API, tab-qualified range
    2. Sheets API, default range (tab renamed / missing)
    3. Drive download of the file (uploaded .xlsx the values API refuses)
    4. public export download over HTTP
    5. local .xlsx / .csv file (when configured)

The first strategy that yields a non-empty grid wins. Strategies that return
the archive bytes also make cancellation detection possible.
"""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence

import requests
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from timetable_sync.gcal import authorized_http
from timetable_sync.workbook import read_grid

log = logging.getLogger(__name__)

DEFAULT_RANGE = "A1:Z200"
EXPORT_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}/export"


class ScheduleSourceError(RuntimeError):
    """Every strategy failed to produce a grid."""


@dataclass
class SheetSnapshot:
    grid: List[List[str]]
    archive: Optional[bytes] = None
    sheet_name: Optional[str] = None
    strategy: str = ""

    @property
    def supports_style_detection(self) -> bool:
        return self.archive is not None


@dataclass
class FetchResult:
    strategy: str
    snapshot: Optional[SheetSnapshot] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.snapshot is not None and bool(self.snapshot.grid)


class SourceStrategy(Protocol):
    name: str

    def fetch(self) -> FetchResult: ...


def _stringify(values: Sequence[Sequence[Any]]) -> List[List[str]]:
    return [["" if c is None else str(c) for c in row] for row in values]


def _archive_snapshot(name: str, data: bytes, sheet_name: Optional[str]) -> FetchResult:
    """
    Read a downloaded .xlsx; an unknown tab falls back to the first sheet.
    """
    try:
        grid = read_grid(data, sheet_name)
        used = sheet_name
        if not grid and sheet_name:
            log.warning("%s: tab %r not found, using the first sheet", name, sheet_name)
            grid = read_grid(data)
            used = None
    except zipfile.BadZipFile:
        return FetchResult(strategy=name, error="downloaded file is not an .xlsx archive")
    except (KeyError, OSError, ValueError) as e:
        return FetchResult(strategy=name, error=f"cannot read workbook: {e}")
    if not grid:
        return FetchResult(strategy=name, error="worksheet is empty")
    return FetchResult(strategy=name, snapshot=SheetSnapshot(grid=grid, archive=data, sheet_name=used, strategy=name))


class SheetsValuesStrategy:
    """
    Read formatted cell values through the Sheets v4 values API.
    """

    def __init__(self, service, spreadsheet_id: str, sheet_name: Optional[str] = None, cell_range: str = DEFAULT_RANGE):
        self.service = service
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self.cell_range = cell_range
        self.name = "sheets_api_tab" if sheet_name else "sheets_api_default"

    def fetch(self) -> FetchResult:
        rng = f"{self.sheet_name}!{self.cell_range}" if self.sheet_name else self.cell_range
        try:
            response = self.service.spreadsheets().values().get(spreadsheetId=self.spreadsheet_id, range=rng).execute()
        except HttpError as e:
            return FetchResult(strategy=self.name, error=f"values query {rng!r} failed: {e}")
        grid = _stringify(response.get("values", []))
        if not grid:
            return FetchResult(strategy=self.name, error=f"values query {rng!r} returned no rows")
        return FetchResult(
            strategy=self.name,
            snapshot=SheetSnapshot(grid=grid, sheet_name=self.sheet_name, strategy=self.name),
        )


class DriveDownloadStrategy:
    """
    Download the raw file through Drive (for uploaded .xlsx files).
    """

    name = "drive_download"

    def __init__(self, service, file_id: str, sheet_name: Optional[str] = None):
        self.service = service
        self.file_id = file_id
        self.sheet_name = sheet_name

    def fetch(self) -> FetchResult:
        try:
            data = self.service.files().get_media(fileId=self.file_id).execute()
        except HttpError as e:
            return FetchResult(strategy=self.name, error=f"download failed: {e}")
        return _archive_snapshot(self.name, data, self.sheet_name)


class ExportDownloadStrategy:
    """
    Download the spreadsheet as .xlsx through the public export endpoint.
    """

    name = "export_download"

    def __init__(self, sheet_id: str, sheet_name: Optional[str] = None, gid: str = "0", timeout: int = 30):
        self.sheet_id = sheet_id
        self.sheet_name = sheet_name
        self.gid = gid
        self.timeout = timeout

    def fetch(self) -> FetchResult:
        url = EXPORT_URL.format(sheet_id=self.sheet_id)
        try:
            resp = requests.get(url, params={"format": "xlsx", "gid": self.gid}, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            return FetchResult(strategy=self.name, error=f"export download failed: {e}")
        return _archive_snapshot(self.name, resp.content, self.sheet_name)


class LocalFileStrategy:
    """
    Read a local .xlsx or .csv file.
    """

    name = "local_file"

    def __init__(self, path: str | Path, sheet_name: Optional[str] = None):
        self.path = Path(path)
        self.sheet_name = sheet_name

    def fetch(self) -> FetchResult:
        try:
            data = self.path.read_bytes()
        except OSError as e:
            return FetchResult(strategy=self.name, error=f"cannot read {self.path}: {e}")

        if self.path.suffix.lower() == ".csv":
            text = data.decode("utf-8-sig", errors="replace")
            grid = [list(row) for row in csv.reader(io.StringIO(text))]
            if not grid:
                return FetchResult(strategy=self.name, error=f"{self.path} is empty")
            return FetchResult(strategy=self.name, snapshot=SheetSnapshot(grid=grid, strategy=self.name))

        return _archive_snapshot(self.name, data, self.sheet_name)


def fetch_schedule(strategies: Sequence[SourceStrategy]) -> SheetSnapshot:
    """
    Try each strategy in order and return the first usable snapshot.

    Raises ScheduleSourceError describing every failed attempt.
    """
    failures: List[str] = []
    for strategy in strategies:
        result = strategy.fetch()
        if result.ok:
            assert result.snapshot is not None
            log.info("Fetched %d rows via %s", len(result.snapshot.grid), result.strategy)
            return result.snapshot
        log.warning("Source strategy %s failed: %s", result.strategy, result.error or "no data")
        failures.append(f"{result.strategy}: {result.error or 'no data'}")

    if not failures:
        raise ScheduleSourceError("No schedule source configured")
    raise ScheduleSourceError("Could not fetch the schedule. Tried: " + "; ".join(failures))


def build_strategies(
    sheet_id: Optional[str],
    sheet_name: Optional[str] = None,
    credentials=None,
    source_file: Optional[str] = None,
    gid: str = "0",
) -> List[SourceStrategy]:
    """
    Assemble the fallback chain for the configured source.
    """
    if source_file:
        return [LocalFileStrategy(source_file, sheet_name)]

    strategies: List[SourceStrategy] = []
    if not sheet_id:
        return strategies

    if credentials is not None:
        sheets = build("sheets", "v4", http=authorized_http(credentials), cache_discovery=False)
        drive = build("drive", "v3", http=authorized_http(credentials), cache_discovery=False)
        if sheet_name:
            strategies.append(SheetsValuesStrategy(sheets, sheet_id, sheet_name))
        strategies.append(SheetsValuesStrategy(sheets, sheet_id))
        strategies.append(DriveDownloadStrategy(drive, sheet_id, sheet_name))

    strategies.append(ExportDownloadStrategy(sheet_id, sheet_name, gid))
    return strategies
