import sqlite3
from zipfile import ZipFile
from xml.etree.ElementTree import Element, SubElement, tostring
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import openpyxl

NS: Dict[str, str] = {
    'office': 'urn:oasis:names:tc:opendocument:xmlns:office:1.0',
    'table': 'urn:oasis:names:tc:opendocument:xmlns:table:1.0',
    'text': 'urn:oasis:names:tc:opendocument:xmlns:text:1.0',
}


def q(ns: str, tag: str) -> str:
    return f'{{{NS[ns]}}}{tag}'


def make_cell(
    parent: Element,
    value: Optional[object] = None,
    *,
    cols_repeat: int = 1,
    covered: bool = False,
) -> Element:
    tag = 'covered-table-cell' if covered else 'table-cell'
    cell = SubElement(parent, q('table', tag))
    if cols_repeat > 1:
        cell.set(q('table', 'number-columns-repeated'), str(cols_repeat))
    if not covered and value is not None:
        cell.set(q('office', 'value-type'), 'string')
        for line in str(value).split('\n'):
            p = SubElement(cell, q('text', 'p'))
            p.text = line
    return cell


def make_row(table_el: Element, values: Sequence[Any], *, rows_repeat: int = 1) -> Element:
    row = SubElement(table_el, q('table', 'table-row'))
    if rows_repeat > 1:
        row.set(q('table', 'number-rows-repeated'), str(rows_repeat))
    for v in values:  # v can be plain or dict with {value, cols_repeat, covered}
        if isinstance(v, dict):
            make_cell(
                row,
                v.get('value'),
                cols_repeat=int(v.get('cols_repeat', 1) or 1),
                covered=bool(v.get('covered', False)),
            )
        else:
            make_cell(row, v)
    return row


def write_ods(path: Path, sheets: Sequence[tuple[str, Sequence[Any]]]) -> Path:
    """Write an .ods with one table per (name, rows) entry.

    A row is a list of cells, or a dict {'cells': [...], 'rows_repeat': n, 'wrap': tag};
    `wrap` puts the row inside a table:<tag> element such as 'table-header-rows'.
    """
    doc = Element(q('office', 'document-content'), {f'xmlns:{k}': v for k, v in NS.items()})
    body = SubElement(SubElement(doc, q('office', 'body')), q('office', 'spreadsheet'))
    for sheet_name, rows in sheets:
        sheet = SubElement(body, q('table', 'table'), {q('table', 'name'): sheet_name})
        for r in rows:
            if isinstance(r, dict):
                parent = SubElement(sheet, q('table', r['wrap'])) if r.get('wrap') else sheet
                make_row(parent, r['cells'], rows_repeat=int(r.get('rows_repeat', 1)))
            else:
                make_row(sheet, r)
    xml = tostring(doc, encoding='utf-8', xml_declaration=True)
    with ZipFile(path, 'w') as z:
        z.writestr('content.xml', xml)
    return path


def write_xlsx(path: Path, sheets: Sequence[tuple[str, Sequence[Sequence[Any]]]]) -> Path:
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for sheet_name, rows in sheets:
        ws = wb.create_sheet(sheet_name)
        for r in rows:
            ws.append(list(r))
    wb.save(path)
    return path


def table_rows(db_path: Path, table: str) -> list[tuple]:
    con = sqlite3.connect(db_path)
    try:
        return con.execute(f'select * from {table} order by rowid').fetchall()
    finally:
        con.close()


def table_columns(db_path: Path, table: str) -> list[tuple[str, str]]:
    con = sqlite3.connect(db_path)
    try:
        return [(r[1], r[2]) for r in con.execute(f'pragma table_info({table})')]
    finally:
        con.close()
