"""
Row Tokenizer：定位表头行，并把表体切成一行一条的处方记录。

find_table_header() 是纯函数：输入行列表，返回 TableHeader 或 NotFound，
没有共享的扫描游标。

表体规则：
  - 表头之后的每个非空行都是一条处方
  - 空行（所有单元格为空）或页脚行（Total / Generics Saved / Insurance Saved）结束表体
  - Fill Date 缺失或格式错误 → 该行跳过，记为行级警告，不中断整个文件
"""

import re
from datetime import date, datetime

from .readers import Rows, is_blank
from .types import HeaderScan, NotFound, RawPrescriptionRow, SkippedRow, TableHeader, TokenizedBody

# ── 列名别名表 ──────────────────────────────────────────────────────────────
# key: canonical 字段名
# value: 导出文件中可能出现的列名（比较时统一小写、去空白）
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "fill_date":       ("fill date", "date filled", "filled"),
    "drug_name":       ("drug name", "prescription", "medication", "drug"),
    "rx_number":       ("rx number", "rx #", "rx#", "rx no", "rx"),
    "prescriber":      ("prescriber", "doctor", "prescribed by"),
    "quantity":        ("qty", "quantity"),
    "day_supply":      ("day supply", "days supply", "days' supply", "ds"),
    "generic":         ("generic", "generic flag"),
    "price":           ("price", "cost", "patient pay"),
    "ndc":             ("ndc#", "ndc", "ndc #"),
    "pharmacist":      ("pharmacist", "rph"),
    "insurance":       ("insurance", "plan"),
    "claim_reference": ("claim reference #", "claim reference", "claim ref"),
}

REQUIRED_COLUMNS = ("fill_date", "drug_name")
MIN_KNOWN_COLUMNS = 3

_ALIAS_LOOKUP = {
    alias: canonical
    for canonical, aliases in COLUMN_ALIASES.items()
    for alias in aliases
}

FOOTER_PREFIXES = ("total", "generics saved", "insurance saved")
_DECLARED_TOTAL_RE = re.compile(r"total\s+prescriptions\s*:?\s*(\d+)", re.IGNORECASE)

_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y-%m-%d", "%m-%d-%Y")


def _normalize_label(cell: str) -> str:
    return " ".join(cell.lower().split())


def match_columns(row: list[str]) -> dict[str, int]:
    """把一行单元格映射成 canonical 字段 → 列位置；同一字段只取第一次出现。"""
    columns: dict[str, int] = {}
    for position, cell in enumerate(row):
        canonical = _ALIAS_LOOKUP.get(_normalize_label(cell))
        if canonical and canonical not in columns:
            columns[canonical] = position
    return columns


def _is_complete(columns: dict[str, int]) -> bool:
    return all(c in columns for c in REQUIRED_COLUMNS) and len(columns) >= MIN_KNOWN_COLUMNS


def find_table_header(rows: Rows, max_rows: int | None = None) -> HeaderScan:
    """
    从上往下找第一个列名命中已知列集合的行。

    Returns:
        TableHeader(index, columns) 或 NotFound(scanned, reason)
    """
    limit = len(rows) if max_rows is None else min(max_rows, len(rows))
    for index in range(limit):
        columns = match_columns(rows[index])
        if _is_complete(columns):
            return TableHeader(index=index, columns=columns)
    return NotFound(scanned=limit, reason="no row matches the known prescription column set")


def parse_date(value: str) -> date | None:
    text = (value or "").strip()
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def footer_marker(row: list[str]) -> str | None:
    """页脚行返回命中的单元格文本，否则 None。"""
    for cell in row:
        if cell.lower().startswith(FOOTER_PREFIXES):
            return cell
    return None


def tokenize_rows(rows: Rows, header: TableHeader) -> TokenizedBody:
    body = TokenizedBody()

    for index in range(header.index + 1, len(rows)):
        row = rows[index]
        line_number = index + 1

        if is_blank(row):
            body.terminated_by = "blank"
            break

        values = {
            field_name: (row[position] if position < len(row) else "")
            for field_name, position in header.columns.items()
        }
        raw_date = values.get("fill_date", "")
        fill_date = parse_date(raw_date)

        # 有合法 Fill Date 的行永远是数据行，即使某列文本以 "Total" 开头
        if fill_date is None and footer_marker(row) is not None:
            declared = _DECLARED_TOTAL_RE.search(" ".join(row))
            if declared:
                body.declared_total = int(declared.group(1))
            body.terminated_by = "footer"
            break

        if fill_date is None:
            if raw_date:
                code, message = "MALFORMED_FILL_DATE", f"Unrecognized fill date {raw_date!r}; row skipped."
            else:
                code, message = "MISSING_FILL_DATE", "Fill date is empty; row skipped."
            body.entries.append(SkippedRow(line_number=line_number, code=code, message=message, values=values))
            continue

        body.entries.append(RawPrescriptionRow(line_number=line_number, values=values, fill_date=fill_date))

    return body
