"""
Format Detector：根据文件内容的结构特征判断供应商/布局。

不依赖扩展名（用户会改名上传）；扩展名只作为提示，不符时降低置信度。
同样的字节 + 文件名永远得到同样的结果。

识别为未知布局时直接抛 UnrecognizedFormat，下游组件不能在未知布局上运行。
"""

from pathlib import PurePath

from ..exceptions import UnrecognizedFormat
from .readers import CONTAINER_XLSX, Rows, read_rows
from .tokenizer import find_table_header
from .types import DetectedFormat, FormatKind, TableHeader

MARKER_TEXT = "confidential prescription records"
MARKER_SCAN_ROWS = 10
HEADER_SCAN_ROWS = 60

CONFIDENCE_MARKER_AND_HEADER = 1.0
CONFIDENCE_HEADER_ONLY = 0.8
EXTENSION_MISMATCH_PENALTY = 0.1

_EXPECTED_EXTENSIONS = {
    FormatKind.WALGREENS_CSV: {".csv", ".txt"},
    FormatKind.WALGREENS_SPREADSHEET: {".xlsx", ".xls"},
}


def has_vendor_marker(rows: Rows) -> bool:
    for row in rows[:MARKER_SCAN_ROWS]:
        if any(cell.lower().startswith(MARKER_TEXT) for cell in row):
            return True
    return False


def classify_rows(container: str, rows: Rows, filename: str = "") -> DetectedFormat:
    """对已经读出的行做结构判断。rows 不含任何可识别结构时返回 UNKNOWN。"""
    header = find_table_header(rows, max_rows=HEADER_SCAN_ROWS)
    if not isinstance(header, TableHeader):
        signals = ("vendor_marker",) if has_vendor_marker(rows) else ()
        return DetectedFormat(kind=FormatKind.UNKNOWN, signals=signals)

    kind = FormatKind.WALGREENS_SPREADSHEET if container == CONTAINER_XLSX else FormatKind.WALGREENS_CSV
    signals = ["table_header"]
    confidence = CONFIDENCE_HEADER_ONLY
    if has_vendor_marker(rows):
        signals.insert(0, "vendor_marker")
        confidence = CONFIDENCE_MARKER_AND_HEADER

    extension = PurePath(filename or "").suffix.lower()
    if extension and extension not in _EXPECTED_EXTENSIONS[kind]:
        signals.append("extension_mismatch")
        confidence -= EXTENSION_MISMATCH_PENALTY

    return DetectedFormat(
        kind=kind,
        confidence=round(confidence, 2),
        signals=tuple(signals),
        header_index=header.index,
    )


def detect_format(raw: bytes, filename: str = "") -> DetectedFormat:
    """
    Raises:
        UnrecognizedFormat: 空文件、无法解码、容器不支持，或找不到已知表头
    """
    if not raw or not raw.strip():
        raise UnrecognizedFormat(message="File is empty.", code="EMPTY_FILE")

    container, rows = read_rows(raw)
    detected = classify_rows(container, rows, filename)
    if not detected.is_known:
        raise UnrecognizedFormat(
            message="File does not match any supported pharmacy export layout.",
            detail={
                "filename": filename,
                "signals": list(detected.signals),
                "hint": "Expected a prescription table with at least Fill Date and Prescription/Drug Name columns.",
            },
        )
    return detected
