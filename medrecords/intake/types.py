"""
Intake 层的标准中间结构。

Adapter 只产出这些 dataclass；业务层（services.py）只消费它们，
永远不碰原始文件字节或单元格。

全部是一次导入调用内的临时对象，不落库。
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Union


class FormatKind(str, Enum):
    WALGREENS_CSV = "walgreens_csv"
    WALGREENS_SPREADSHEET = "walgreens_spreadsheet"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ImportSource:
    """上传文件的原始字节 + 声明的文件名。不可变。"""

    raw: bytes = field(repr=False)
    filename: str = ""

    @property
    def size(self) -> int:
        return len(self.raw)


@dataclass(frozen=True)
class DetectedFormat:
    """
    Format Detector 的产出。

    confidence   0~1，marker + 表头 = 1.0，仅表头 = 0.8，扩展名不符再扣 0.1
    signals      命中的结构特征，便于排查
    header_index 表头所在行（0-based），下游直接复用
    """

    kind: FormatKind
    confidence: float = 0.0
    signals: tuple[str, ...] = ()
    header_index: int | None = None

    @property
    def is_known(self) -> bool:
        return self.kind is not FormatKind.UNKNOWN


@dataclass(frozen=True)
class TableHeader:
    """表头扫描命中：index 是行号，columns 是 canonical 字段 → 列位置。"""

    index: int
    columns: dict[str, int]


@dataclass(frozen=True)
class NotFound:
    """扫描未命中。scanned 是实际扫描过的行数。"""

    scanned: int
    reason: str = ""


HeaderScan = Union[TableHeader, NotFound]


@dataclass
class PatientContext:
    name: str
    dob: date | None = None
    address: str = ""
    phone: str = ""
    gender: str = ""

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else ""

    @property
    def last_name(self) -> str:
        parts = self.name.split()
        return parts[-1] if len(parts) > 1 else ""


@dataclass(frozen=True)
class ParsedMedication:
    name: str
    strength: str = ""
    form: str = ""


@dataclass(frozen=True)
class RawPrescriptionRow:
    """
    表体中的一行处方。

    line_number 是源文件中的行号（1-based），报告按它排序；
    values 以 canonical 字段名为键（fill_date / drug_name / rx_number ...）。
    """

    line_number: int
    values: dict[str, str]
    fill_date: date

    def get(self, field_name: str) -> str:
        return self.values.get(field_name, "")


@dataclass(frozen=True)
class SkippedRow:
    """因 Fill Date 缺失或格式错误被跳过的行，作为行级警告进入报告。"""

    line_number: int
    code: str
    message: str
    values: dict[str, str] = field(default_factory=dict)


BodyEntry = Union[RawPrescriptionRow, SkippedRow]


@dataclass
class TokenizedBody:
    entries: list[BodyEntry] = field(default_factory=list)
    declared_total: int | None = None
    terminated_by: str = "eof"           # "blank" / "footer" / "eof"

    @property
    def rows(self) -> list[RawPrescriptionRow]:
        return [e for e in self.entries if isinstance(e, RawPrescriptionRow)]


@dataclass
class ParsedExport:
    """
    Adapter.process() 的最终产出：一个文件的全部解析结果。

    warnings 是文件级警告（DOB 无法解析、声明总数不符等）。
    """

    source: ImportSource
    detected: DetectedFormat
    patient: PatientContext
    body: TokenizedBody
    report_period: str = ""
    warnings: list[dict] = field(default_factory=list)
