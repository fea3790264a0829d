"""
Import Report Builder。

按源文件行号累计每一行的结果，处理完全部行后一次性 build()。
build() 之后 builder 被封存，调用方永远拿不到半成品报告。

行结果状态：
  created    新建 MedicationLog
  duplicate  import_key 已存在，跳过（不是错误）
  warning    部分解析：created=True 表示仍然入库（如缺 strength），
             created=False 表示整行被跳过（如 Fill Date 格式错误）
  error      行级失败（缺药名、ORM 校验失败等）
"""

from dataclasses import dataclass, field
from typing import Any

STATUS_CREATED = 'created'
STATUS_DUPLICATE = 'duplicate'
STATUS_WARNING = 'warning'
STATUS_ERROR = 'error'


@dataclass(frozen=True)
class RowOutcome:
    line_number: int
    status: str
    created: bool = False
    medication_log_id: str | None = None
    medicine_id: str | None = None
    drug_name: str = ''
    rx_number: str = ''
    fill_date: str = ''
    messages: tuple[dict, ...] = ()


@dataclass(frozen=True)
class ImportSummary:
    rows_seen: int = 0
    logs_created: int = 0
    duplicates: int = 0
    warnings: int = 0
    errors: int = 0
    medicines_created: int = 0
    medicines_reused: int = 0


@dataclass(frozen=True)
class ImportReport:
    filename: str
    format_kind: str
    format_confidence: float
    patient: dict[str, Any]
    family_member_id: str | None
    family_member_created: bool
    outcomes: tuple[RowOutcome, ...]
    summary: ImportSummary
    declared_total: int | None = None
    report_period: str = ''
    file_warnings: tuple[dict, ...] = ()


@dataclass
class ImportReportBuilder:
    filename: str
    format_kind: str
    format_confidence: float
    patient: dict[str, Any]
    declared_total: int | None = None
    report_period: str = ''
    file_warnings: list[dict] = field(default_factory=list)

    _outcomes: list[RowOutcome] = field(default_factory=list, init=False, repr=False)
    _medicine_ids: set[str] = field(default_factory=set, init=False, repr=False)
    _medicines_created: int = field(default=0, init=False)
    _medicines_reused: int = field(default=0, init=False)
    _family_member_id: str | None = field(default=None, init=False)
    _family_member_created: bool = field(default=False, init=False)
    _sealed: bool = field(default=False, init=False, repr=False)

    def _append(self, outcome: RowOutcome) -> None:
        if self._sealed:
            raise RuntimeError('ImportReportBuilder already built; outcomes can no longer be added.')
        self._outcomes.append(outcome)

    def note_family_member(self, family_member_id, created: bool) -> None:
        if self._family_member_id is None:
            self._family_member_id = str(family_member_id)
            self._family_member_created = created

    def note_medicine(self, medicine_id, created: bool) -> None:
        """同一 Medicine 在一个文件里只计一次。"""
        key = str(medicine_id)
        if key in self._medicine_ids:
            return
        self._medicine_ids.add(key)
        if created:
            self._medicines_created += 1
        else:
            self._medicines_reused += 1

    def add_created(self, line_number, log_id, medicine_id, row_info, warnings=()):
        self._append(RowOutcome(
            line_number=line_number,
            status=STATUS_WARNING if warnings else STATUS_CREATED,
            created=True,
            medication_log_id=str(log_id),
            medicine_id=str(medicine_id),
            messages=tuple(warnings),
            **row_info,
        ))

    def add_duplicate(self, line_number, log_id, row_info, warnings=()):
        self._append(RowOutcome(
            line_number=line_number,
            status=STATUS_DUPLICATE,
            medication_log_id=str(log_id),
            messages=(
                {'code': 'DUPLICATE_FILL', 'message': 'Fill already imported; row skipped.'},
                *warnings,
            ),
            **row_info,
        ))

    def add_skipped(self, line_number, code, message, row_info):
        self._append(RowOutcome(
            line_number=line_number,
            status=STATUS_WARNING,
            messages=({'code': code, 'message': message},),
            **row_info,
        ))

    def add_error(self, line_number, code, message, row_info, detail=None):
        entry = {'code': code, 'message': message}
        if detail is not None:
            entry['detail'] = detail
        self._append(RowOutcome(
            line_number=line_number,
            status=STATUS_ERROR,
            messages=(entry,),
            **row_info,
        ))

    def build(self) -> ImportReport:
        if self._sealed:
            raise RuntimeError('ImportReportBuilder.build() may only be called once.')
        self._sealed = True

        outcomes = tuple(sorted(self._outcomes, key=lambda o: o.line_number))
        rows_seen = len(outcomes)

        if self.declared_total is not None and self.declared_total != rows_seen:
            self.file_warnings.append({
                'code': 'DECLARED_TOTAL_MISMATCH',
                'message': f'Footer declares {self.declared_total} prescriptions but {rows_seen} rows were read.',
            })

        summary = ImportSummary(
            rows_seen=rows_seen,
            logs_created=sum(1 for o in outcomes if o.created),
            duplicates=sum(1 for o in outcomes if o.status == STATUS_DUPLICATE),
            warnings=sum(1 for o in outcomes if o.status == STATUS_WARNING),
            errors=sum(1 for o in outcomes if o.status == STATUS_ERROR),
            medicines_created=self._medicines_created,
            medicines_reused=self._medicines_reused,
        )

        return ImportReport(
            filename=self.filename,
            format_kind=self.format_kind,
            format_confidence=self.format_confidence,
            patient=dict(self.patient),
            family_member_id=self._family_member_id,
            family_member_created=self._family_member_created,
            outcomes=outcomes,
            summary=summary,
            declared_total=self.declared_total,
            report_period=self.report_period,
            file_warnings=tuple(self.file_warnings),
        )
