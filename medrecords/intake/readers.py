"""
原始字节 → 行列表（list[list[str]]）。

只做容器层面的读取：CSV 文本解码、xlsx 解压。
所有单元格统一转成去空白的字符串，后续组件不需要关心来源是 CSV 还是表格。
"""

import csv
import io
import zipfile
from datetime import date, datetime

from ..exceptions import UnrecognizedFormat

XLSX_MAGIC = b"PK\x03\x04"
OLE2_MAGIC = b"\xd0\xcf\x11\xe0"

CONTAINER_TEXT = "text"
CONTAINER_XLSX = "xlsx"
CONTAINER_OLE2 = "ole2"

_TEXT_ENCODINGS = ("utf-8-sig", "cp1252")

Rows = list[list[str]]


def sniff_container(raw: bytes) -> str:
    """按文件头魔数判断容器类型，不看扩展名。"""
    if raw.startswith(XLSX_MAGIC):
        return CONTAINER_XLSX
    if raw.startswith(OLE2_MAGIC):
        return CONTAINER_OLE2
    return CONTAINER_TEXT


def decode_text(raw: bytes) -> str:
    for encoding in _TEXT_ENCODINGS:
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise UnrecognizedFormat(
        message="File is not readable text.",
        code="UNDECODABLE_TEXT",
    )


def read_csv_rows(raw: bytes) -> Rows:
    text = decode_text(raw)
    if "\x00" in text:
        raise UnrecognizedFormat(
            message="File contains binary data and is not a CSV export.",
            code="BINARY_CONTENT",
        )
    try:
        reader = csv.reader(io.StringIO(text, newline=""))
        return [[cell.strip() for cell in row] for row in reader]
    except csv.Error as exc:
        raise UnrecognizedFormat(
            message=f"Malformed CSV: {exc}",
            code="MALFORMED_CSV",
        ) from exc


def read_xlsx_rows(raw: bytes) -> Rows:
    from openpyxl import load_workbook
    from openpyxl.utils.exceptions import InvalidFileException

    # read_only 模式下 sheet XML 在 iter_rows 时才解析，读行也必须在 try 里。
    # XML 解析错误（ElementTree.ParseError / lxml XMLSyntaxError）都是 SyntaxError 的子类。
    try:
        workbook = load_workbook(filename=io.BytesIO(raw), read_only=True, data_only=True)
        try:
            sheet = workbook.worksheets[0]
            return [
                [_cell_to_text(cell) for cell in row]
                for row in sheet.iter_rows(values_only=True)
            ]
        finally:
            workbook.close()
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError, SyntaxError, IndexError) as exc:
        # 损坏的 zip、截断的 sheet，或者 zip 里不是 OOXML 工作簿
        raise UnrecognizedFormat(
            message=f"Spreadsheet could not be read: {exc}",
            code="UNREADABLE_SPREADSHEET",
        ) from exc


def read_rows(raw: bytes) -> tuple[str, Rows]:
    """读取任意受支持的容器，返回 (container, rows)。"""
    container = sniff_container(raw)
    if container == CONTAINER_XLSX:
        return container, read_xlsx_rows(raw)
    if container == CONTAINER_OLE2:
        raise UnrecognizedFormat(
            message="Legacy .xls spreadsheets are not supported. Re-save the export as .xlsx or CSV.",
            code="LEGACY_SPREADSHEET",
        )
    return container, read_csv_rows(raw)


def _cell_to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.strftime("%m/%d/%Y")
    if isinstance(value, float) and value.is_integer():
        # Rx # / NDC# 在表格里常被存成数字
        return str(int(value))
    return str(value).strip()


def is_blank(row: list[str]) -> bool:
    return not any(cell for cell in row)
