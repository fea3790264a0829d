"""
BasePharmacyAdapter: 所有药房导出格式 Adapter 的抽象基类。

每个新格式只需：
1. 继承 BasePharmacyAdapter
2. 实现 parse()（字节 → 行列表）
3. 在 factory.py 的 _build_registry() 注册一行

表头定位、患者信息提取、表体切分在基类里完成，子类可以 override 单独的步骤。
业务代码（services.py）无需任何改动。
"""

from abc import ABC, abstractmethod

from ..exceptions import UnrecognizedFormat
from .header import DEFAULT_LOOKAHEAD, extract_header
from .readers import Rows
from .tokenizer import find_table_header, tokenize_rows
from .types import DetectedFormat, FormatKind, ImportSource, ParsedExport, TableHeader


class BasePharmacyAdapter(ABC):
    """
    三步流水线：parse → transform → validate

    子类必须实现 parse()；
    transform() 提供通用的 表头定位 / 患者信息 / 表体切分；
    validate() 做文件级的一致性检查，只产生警告，不抛异常。
    """

    # 子类声明自己对应的格式（与 factory 注册键一致）
    kind: FormatKind = FormatKind.UNKNOWN

    def __init__(self, source: ImportSource, detected: DetectedFormat, lookahead: int = DEFAULT_LOOKAHEAD):
        self._source = source
        self._detected = detected
        self._lookahead = lookahead
        self._rows: Rows = []

    # ── 必须实现 ───────────────────────────────────────────────────────────

    @abstractmethod
    def parse(self) -> Rows:
        """
        原始字节 → 行列表，赋值给 self._rows 以便 transform() 使用。
        """

    # ── 提供默认实现，子类可 override ──────────────────────────────────────

    def locate_table(self) -> TableHeader:
        header = find_table_header(self._rows)
        if not isinstance(header, TableHeader):
            raise UnrecognizedFormat(
                message="Prescription table header not found.",
                code="TABLE_HEADER_NOT_FOUND",
                detail={"scanned_rows": header.scanned, "reason": header.reason},
            )
        return header

    def transform(self) -> ParsedExport:
        header = self.locate_table()
        patient_header = extract_header(self._rows, header.index, self._lookahead)
        body = tokenize_rows(self._rows, header)

        return ParsedExport(
            source=self._source,
            detected=self._detected,
            patient=patient_header.patient,
            body=body,
            report_period=patient_header.report_period,
            warnings=list(patient_header.warnings),
        )

    def validate(self, export: ParsedExport) -> None:
        if not export.body.entries:
            export.warnings.append({
                "code": "NO_PRESCRIPTION_ROWS",
                "message": "The prescription table is empty.",
            })

    # ── 对外统一入口 ───────────────────────────────────────────────────────

    def process(self) -> ParsedExport:
        """parse → transform → validate，返回 ParsedExport。致命错误直接抛出。"""
        self.parse()
        export = self.transform()
        self.validate(export)
        return export
