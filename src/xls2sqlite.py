#!/usr/bin/env python3
"""
xls2sqlite.py — convert a spreadsheet workbook into an SQLite database

USAGE
    $ ./xls2sqlite.py file.xls out.sqlite

LAYOUT (per sheet/tab)
    - Every sheet becomes one table named after the sheet.
    - Row 1 holds the column names; every later row is a record.
    - Columns whose header starts with '#' are ignored (neither created nor inserted).
    - Rows whose kept cells are all blank are skipped.
    - Sheets with fewer than two rows (header + data) are skipped with a warning.

NAMES
    Table and column names are lowercased and every run of characters outside
    a-z is replaced by a single '_' ("My Sheet!" -> "my_sheet_").

FEATURES
    - Reads .xls (xlrd), .xlsx/.xlsm (openpyxl) and .ods (zipfile + xml.etree).
    - All columns are created as TEXT; cell values are inserted as text.
    - No keys, indexes or constraints are created.
    - The database file is deleted and recreated if it already exists.
    - INSERTs are executed in batches (configurable) and committed per batch.

OPTIONS (selection)
    --batch N          Rows per executed batch (default: 100)
    -v, --verbose      Print a per-sheet summary to stderr
    --version          Show program version and exit

Progress goes to stdout. Warnings and errors go to stderr.
"""

from __future__ import annotations

import argparse
import os
import re
import sqlite3
import sys
import zipfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

import openpyxl
import xlrd
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.compdoc import CompDocError
from xlrd.xldate import XLDateError

__version__ = '0.1.0'

# Header cells starting with this marker are left out of the table
IGNORE_MARKER = '#'
# Rows per executed INSERT batch
BATCH_SIZE = 100
# Fallback codepage for BIFF (.xls) files
WORKBOOK_ENCODING = 'iso-8859-1'
COLUMN_TYPE = 'TEXT'

# Namespaces used in ODF/ODS content.xml
NS = {
    'office': 'urn:oasis:names:tc:opendocument:xmlns:office:1.0',
    'table': 'urn:oasis:names:tc:opendocument:xmlns:table:1.0',
    'text': 'urn:oasis:names:tc:opendocument:xmlns:text:1.0',
}


class WorkbookError(RuntimeError):
    pass


@dataclass
class Sheet:
    """A named grid of text cells. Row 0 is the header row."""

    name: str
    rows: list[list[str]]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def col_count(self) -> int:
        return max((len(r) for r in self.rows), default=0)

    def cell(self, col: int, row: int) -> str:
        cells = self.rows[row] if row < len(self.rows) else []
        return cells[col] if col < len(cells) else ''


@dataclass
class TableSpec:
    sheet: str
    name: str
    columns: list[str]  # normalized column names
    col_indices: list[int]  # sheet columns feeding each entry of `columns`


# ------------------------
# WORKBOOK READERS
# ------------------------


def _text(value: object) -> str:
    """Render a decoded cell value as text (None -> '', 30.0 -> '30')."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# Blank means only ASCII control characters and spaces; U+00A0 is content
_BLANK_CHARS = ''.join(map(chr, range(33)))


def _is_blank(value: Optional[str]) -> bool:
    return value is None or value.strip(_BLANK_CHARS) == ''


def _xls_cell_text(sh, r: int, c: int, datemode: int) -> str:
    """Render an xlrd cell as text according to its cell type."""
    ctype = sh.cell_type(r, c)
    value = sh.cell_value(r, c)
    if ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
        return ''
    if ctype == xlrd.XL_CELL_DATE:
        try:
            return _text(xlrd.xldate_as_datetime(value, datemode))
        except (XLDateError, ValueError, OverflowError):
            return _text(value)
    if ctype == xlrd.XL_CELL_BOOLEAN:
        return _text(bool(value))
    if ctype == xlrd.XL_CELL_ERROR:
        return xlrd.error_text_from_code.get(value, f'#ERR{value}')
    return _text(value)


def _trim_grid(rows: list[list[str]]) -> list[list[str]]:
    """Drop trailing blank cells in each row and trailing blank rows."""
    trimmed = []
    for cells in rows:
        end = len(cells)
        while end and cells[end - 1] == '':
            end -= 1
        trimmed.append(cells[:end])
    while trimmed and not trimmed[-1]:
        trimmed.pop()
    return trimmed


class Workbook:
    """Ordered sheets of a decoded workbook; close() releases the file."""

    def __init__(self, path: str):
        self.path = path

    def sheets(self) -> Iterator[Sheet]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> 'Workbook':
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class OdsWorkbook(Workbook):
    def __init__(self, path: str):
        super().__init__(path)
        try:
            with zipfile.ZipFile(path, 'r') as z:
                content = z.read('content.xml')
        except KeyError:
            raise WorkbookError(
                f'{path}: content.xml not found (is this a valid OpenDocument spreadsheet?)'
            )
        except zipfile.BadZipFile as e:
            raise WorkbookError(f'{path}: {e}')
        try:
            self._root = ET.fromstring(content)
        except ET.ParseError as e:
            raise WorkbookError(f'{path}: {e}')

    def sheets(self) -> Iterator[Sheet]:
        for table in self._root.findall('.//table:table', NS):
            name = table.get(f"{{{NS['table']}}}name") or 'Sheet'
            # Rows may sit inside table-header-rows / table-row-group / table-rows
            groups = [_expand_row(row_el) for row_el in table.iter(f"{{{NS['table']}}}table-row")]
            # LibreOffice pads every sheet with up to a million repeated empty rows
            while groups and not groups[-1][0]:
                groups.pop()
            rows: list[list[str]] = []
            for cells, repeat in groups:
                rows.extend([cells] * repeat)
            yield Sheet(name=name, rows=_trim_grid(rows))


def _cell_text(cell: ET.Element) -> str:
    # Join all text:p blocks; preserve line breaks if multiple <text:p>
    return '\n'.join(''.join(p.itertext()) for p in cell.findall('text:p', NS))


def _expand_row(row: ET.Element) -> tuple[list[str], int]:
    """Return the row's cells (columns repeats expanded) and its row repeat count."""
    cells: list[str] = []
    for el in row:
        tag = el.tag.split('}')[-1]
        if tag not in ('table-cell', 'covered-table-cell'):
            continue
        repeat = int(el.get(f"{{{NS['table']}}}number-columns-repeated", '1'))
        # covered cells (part of a merge) behave like empty
        text = _cell_text(el) if tag == 'table-cell' else ''
        cells.extend([text] * repeat)
    while cells and cells[-1] == '':
        cells.pop()
    return cells, int(row.get(f"{{{NS['table']}}}number-rows-repeated", '1'))


class XlsxWorkbook(Workbook):
    def __init__(self, path: str):
        super().__init__(path)
        try:
            self._wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            raise WorkbookError(f'{path}: {e}')

    def sheets(self) -> Iterator[Sheet]:
        for ws in self._wb.worksheets:
            # Stored dimensions can be stale; read every row that is present
            ws.reset_dimensions()
            rows = [[_text(v) for v in r] for r in ws.iter_rows(values_only=True)]
            yield Sheet(name=ws.title, rows=_trim_grid(rows))

    def close(self) -> None:
        self._wb.close()


class XlsWorkbook(Workbook):
    def __init__(self, path: str):
        super().__init__(path)
        try:
            self._book = xlrd.open_workbook(path, encoding_override=WORKBOOK_ENCODING)
        except (xlrd.XLRDError, CompDocError) as e:
            raise WorkbookError(f'{path}: {e}')

    def sheets(self) -> Iterator[Sheet]:
        for sh in self._book.sheets():
            rows = [
                [_xls_cell_text(sh, r, c, self._book.datemode) for c in range(sh.row_len(r))]
                for r in range(sh.nrows)
            ]
            yield Sheet(name=sh.name, rows=rows)

    def close(self) -> None:
        self._book.release_resources()


READERS = {
    '.ods': OdsWorkbook,
    '.xlsx': XlsxWorkbook,
    '.xlsm': XlsxWorkbook,
    '.xls': XlsWorkbook,
}


def open_workbook(path: str) -> Workbook:
    if not os.path.isfile(path):
        raise WorkbookError(f'File not found: {path}')
    ext = os.path.splitext(path)[1].lower()
    reader = READERS.get(ext)
    if reader is None:
        raise WorkbookError(f"Unsupported workbook format: '{ext or path}'")
    return reader(path)


# ------------------------
# SHEET -> TABLE
# ------------------------


def normalize_identifier(s: str) -> str:
    """Make a table/column name: lowercase, each run of non a-z chars -> '_'."""
    return re.sub(r'[^a-z]+', '_', s.lower())


def derive_table(sheet: Sheet, marker: str = IGNORE_MARKER) -> Optional[TableSpec]:
    """Build the TableSpec for a sheet from its header row.

    Returns None when the sheet has no data rows or no columns. Header cells
    starting with `marker` are dropped, and the same columns are dropped from
    every data row through `col_indices`.
    """
    if sheet.row_count < 2 or sheet.col_count < 1:
        return None
    columns: list[str] = []
    col_indices: list[int] = []
    for col in range(sheet.col_count):
        header = sheet.cell(col, 0)
        if header.startswith(marker):
            continue
        columns.append(normalize_identifier(header))
        col_indices.append(col)
    return TableSpec(
        sheet=sheet.name,
        name=normalize_identifier(sheet.name),
        columns=columns,
        col_indices=col_indices,
    )


def create_table_sql(spec: TableSpec) -> str:
    colsql = ', '.join(f'{c} {COLUMN_TYPE}' for c in spec.columns)
    return f'CREATE TABLE {spec.name} ({colsql})'


def insert_sql(spec: TableSpec) -> str:
    cols = ', '.join(spec.columns)
    params = ', '.join('?' for _ in spec.columns)
    return f'INSERT INTO {spec.name} ({cols}) VALUES ({params})'


def create_table(conn: sqlite3.Connection, spec: TableSpec, out) -> None:
    stmt = create_table_sql(spec)
    conn.execute(stmt)
    conn.commit()
    print(f'executed {stmt}', file=out)


def row_values(sheet: Sheet, row: int, spec: TableSpec) -> Optional[list[str]]:
    """Return the kept cells of a data row, or None if they are all blank."""
    values = [sheet.cell(col, row) for col in spec.col_indices]
    if all(_is_blank(v) for v in values):
        return None
    return values


class BatchInsert:
    """Pending rows for one prepared INSERT, executed together on flush()."""

    def __init__(self, conn: sqlite3.Connection, spec: TableSpec):
        self.conn = conn
        self.sql = insert_sql(spec)
        self.pending: list[list[str]] = []

    def add(self, values: list[str]) -> None:
        self.pending.append(values)

    def flush(self) -> int:
        count = len(self.pending)
        if count:
            self.conn.executemany(self.sql, self.pending)
        self.conn.commit()
        self.pending = []
        return count


def insert_rows(
    conn: sqlite3.Connection,
    sheet: Sheet,
    spec: TableSpec,
    out,
    batch_size: int = BATCH_SIZE,
) -> int:
    """Insert the non-blank data rows of `sheet`, flushing every `batch_size` rows.

    Flush points follow the sheet row number (1-based for data rows), so blank
    rows still advance towards the next flush. Returns the inserted row count.
    """
    batch_size = max(1, batch_size)
    batch = BatchInsert(conn, spec)
    inserted = 0
    for row in range(1, sheet.row_count):
        values = row_values(sheet, row, spec)
        if values is not None:
            batch.add(values)
        if row % batch_size == 0:
            inserted += batch.flush()
            print(f'{inserted} rows inserted into {spec.name}', file=out)
    inserted += batch.flush()
    print(f'{inserted} rows inserted into {spec.name}', file=out)
    return inserted


def convert_sheet(
    conn: sqlite3.Connection,
    sheet: Sheet,
    out,
    err,
    batch_size: int = BATCH_SIZE,
    marker: str = IGNORE_MARKER,
) -> Optional[tuple[TableSpec, int]]:
    spec = derive_table(sheet, marker)
    if spec is None:
        print(f'[WARN] Ignoring empty sheet {sheet.name}', file=err)
        return None
    create_table(conn, spec, out)
    return spec, insert_rows(conn, sheet, spec, out, batch_size)


# ------------------------
# DESTINATION
# ------------------------


def connect_database(path: str) -> sqlite3.Connection:
    """Open a fresh SQLite file at `path`, deleting any existing one."""
    if os.path.isfile(path):
        os.remove(path)
    return sqlite3.connect(path)


def convert_workbook(
    workbook_path: str,
    db_path: str,
    out=None,
    err=None,
    batch_size: int = BATCH_SIZE,
    marker: str = IGNORE_MARKER,
) -> list[tuple[TableSpec, int]]:
    """Convert every sheet of a workbook into a table of a new SQLite file.

    The workbook is opened first, so an unreadable workbook leaves the
    destination untouched. Both resources are closed on every exit path.
    """
    out = out or sys.stdout
    err = err or sys.stderr
    results: list[tuple[TableSpec, int]] = []
    with open_workbook(workbook_path) as wb:
        conn = connect_database(db_path)
        try:
            for sheet in wb.sheets():
                converted = convert_sheet(conn, sheet, out, err, batch_size, marker)
                if converted is not None:
                    results.append(converted)
        finally:
            conn.close()
    return results


# ------------------------
# CLI / MAIN
# ------------------------


def parse_args(argv: Optional[Iterable[str]] = None):
    p = argparse.ArgumentParser(
        description='Convert a spreadsheet workbook into an SQLite database (one table per sheet).',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument('workbook', help='Path to .xls, .xlsx or .ods file')
    p.add_argument('database', help='Path to the SQLite file to create (replaced if it exists)')
    p.add_argument(
        '--batch',
        type=int,
        default=BATCH_SIZE,
        help='Rows per executed INSERT batch (values below 1 mean 1)',
    )
    p.add_argument('-v', '--verbose', action='count', default=0, help='Increase verbosity (stderr)')
    p.add_argument('--version', action='version', version=f'xls2sqlite.py {__version__}')
    return p.parse_args(argv)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    try:
        results = convert_workbook(
            args.workbook, args.database, sys.stdout, sys.stderr, batch_size=args.batch
        )
    except (WorkbookError, sqlite3.Error, OSError) as e:
        print('[ERROR]', e, file=sys.stderr)
        return 2

    if not results:
        print('[WARN] No tables created.', file=sys.stderr)
    if args.verbose:
        for spec, count in results:
            msg = f'[INFO] {spec.sheet} -> {spec.name}  cols={len(spec.columns)} rows={count}'
            print(msg, file=sys.stderr)
    return 0


if __name__ == '__main__':
    sys.exit(main())
