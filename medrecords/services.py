import logging
from datetime import date
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, IntegrityError, transaction

from .exceptions import BlockError, RowError, ValidationError
from .intake import ImportSource, detect_format, get_adapter
from .intake.header import DEFAULT_LOOKAHEAD
from .intake.medication import medicine_keys, normalize_key, parse_medication
from .intake.types import ParsedMedication, PatientContext, RawPrescriptionRow, SkippedRow
from .models import FamilyMember, ImportJob, Medicine, MedicationLog
from .report import ImportReport, ImportReportBuilder
from .serializers import serialize_patient

logger = logging.getLogger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024

_GENERIC_TRUE = {'y', 'yes', 'true', '1', 'generic', 'g'}
_GENERIC_FALSE = {'n', 'no', 'false', '0', 'brand', 'b'}


def find_or_create(model, lookup, defaults=None):
    """
    按唯一键查找，不存在则创建。返回 (instance, created)。

    - 先查；命中直接返回
    - 未命中 → full_clean() → 在 savepoint 里 INSERT
    - INSERT 撞上唯一约束（另一个导入抢先创建）→ 回滚 savepoint，退回查找
    full_clean() 失败抛 Django ValidationError，由逐行循环记为行级错误。
    """
    try:
        return model.objects.get(**lookup), False
    except model.DoesNotExist:
        pass

    instance = model(**lookup, **(defaults or {}))
    instance.full_clean(validate_unique=False, validate_constraints=False)
    try:
        with transaction.atomic():
            instance.save(force_insert=True)
    except IntegrityError:
        logger.info("[Import] %s 唯一键冲突，改为查找: %s", model.__name__, lookup)
        return model.objects.get(**lookup), False
    return instance, True


def resolve_family_member(patient: PatientContext):
    """
    FamilyMember 查找/创建。
    - 规范化姓名 + DOB 完全一致 → 复用
    - 否则新建（跨会话的模糊匹配暂不做）
    """
    return find_or_create(
        FamilyMember,
        lookup={
            'name_key': normalize_key(patient.name),
            'dob': patient.dob,
        },
        defaults={
            'name': ' '.join(patient.name.split()),
            'first_name': patient.first_name,
            'last_name': patient.last_name,
            'address': patient.address,
            'phone': patient.phone,
            'gender': patient.gender,
            'relationship': 'other',
            'notes': 'Auto-created from pharmacy import.',
        },
    )


def resolve_medicine(medication: ParsedMedication):
    """Medicine 查找/创建，键是规范化后的 (name, strength, form)。"""
    return find_or_create(
        Medicine,
        lookup=medicine_keys(medication),
        defaults={
            'name': medication.name,
            'strength': medication.strength,
            'form': medication.form,
        },
    )


def build_import_key(rx_number: str, fill_date: date, family_member_id, medicine_id=None) -> str:
    """
    import_key = Rx Number + fill date + FamilyMember id。数量不参与。

    没有 Rx Number 的行用 Medicine id 代替，避免同一天的不同药互相冲突。
    """
    rx_number = (rx_number or '').strip()
    prefix = f"rx:{rx_number}" if rx_number else f"med:{medicine_id}"
    return f"{prefix}|{fill_date.isoformat()}|{family_member_id}"


# ── 单元格解析 ─────────────────────────────────────────────────────────────

def _parse_decimal(value, label, warnings):
    text = (value or '').replace('$', '').replace(',', '').strip()
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        number = None
    if number is None or not number.is_finite():
        warnings.append({
            'code': f'UNPARSEABLE_{label.upper()}',
            'message': f"{label.replace('_', ' ').title()} {value!r} could not be parsed and was left empty.",
        })
        return None
    return number


def _parse_day_supply(value, warnings):
    number = _parse_decimal(value, 'day_supply', warnings)
    if number is None:
        return None
    if number != number.to_integral_value() or number < 0:
        warnings.append({
            'code': 'UNPARSEABLE_DAY_SUPPLY',
            'message': f"Day supply {value!r} is not a whole number and was left empty.",
        })
        return None
    return int(number)


def _parse_generic(value):
    text = (value or '').strip().lower()
    if text in _GENERIC_TRUE:
        return True
    if text in _GENERIC_FALSE:
        return False
    return None


def _row_info(row) -> dict:
    return {
        'drug_name': row.values.get('drug_name', ''),
        'rx_number': row.values.get('rx_number', ''),
        'fill_date': row.fill_date.isoformat() if isinstance(row, RawPrescriptionRow) else row.values.get('fill_date', ''),
    }


# ── Reconciliation ─────────────────────────────────────────────────────────

def reconcile_row(row: RawPrescriptionRow, patient: PatientContext, source_format: str, builder: ImportReportBuilder):
    """
    单行 reconciliation，整行在一个事务里：
      1. FamilyMember 查找/创建
      2. Medicine 查找/创建
      3. import_key 已存在 → duplicate
      4. 否则新建 MedicationLog
    失败抛 RowError / Django ValidationError / DatabaseError，事务回滚，由调用方记录。
    """
    drug_text = row.get('drug_name').strip()
    if not drug_text:
        raise RowError(message='Drug name is empty.', code='MISSING_DRUG_NAME')

    parsed = parse_medication(drug_text)
    if not parsed.medication.name:
        raise RowError(
            message=f"Could not extract a medication name from {drug_text!r}.",
            code='UNPARSEABLE_MEDICATION',
            detail={'strength': parsed.medication.strength, 'form': parsed.medication.form},
        )

    warnings = list(parsed.warnings)
    quantity = _parse_decimal(row.get('quantity'), 'quantity', warnings)
    price = _parse_decimal(row.get('price'), 'price', warnings)
    day_supply = _parse_day_supply(row.get('day_supply'), warnings)
    rx_number = row.get('rx_number').strip()
    if not rx_number:
        warnings.append({
            'code': 'MISSING_RX_NUMBER',
            'message': 'Rx number is empty; duplicate detection falls back to the medicine.',
        })

    with transaction.atomic():
        member, member_created = resolve_family_member(patient)
        medicine, medicine_created = resolve_medicine(parsed.medication)

        log, created = find_or_create(
            MedicationLog,
            lookup={'import_key': build_import_key(rx_number, row.fill_date, member.id, medicine.id)},
            defaults={
                'medicine': medicine,
                'family_member': member,
                'fill_date': row.fill_date,
                'quantity': quantity,
                'day_supply': day_supply,
                'prescriber': row.get('prescriber').strip(),
                'price': price,
                'rx_number': rx_number,
                'ndc': row.get('ndc').strip(),
                'pharmacist': row.get('pharmacist').strip(),
                'insurance': row.get('insurance').strip(),
                'claim_reference': row.get('claim_reference').strip(),
                'generic': _parse_generic(row.get('generic')),
                'source_format': source_format,
                'recorded_by': 'import',
            },
        )

    builder.note_family_member(member.id, member_created)
    builder.note_medicine(medicine.id, medicine_created)

    if created:
        builder.add_created(row.line_number, log.id, medicine.id, _row_info(row), warnings)
    else:
        builder.add_duplicate(row.line_number, log.id, _row_info(row), warnings)
    return log, created


def check_upload(source: ImportSource) -> None:
    max_bytes = getattr(settings, 'PHARMACY_IMPORT_MAX_UPLOAD_BYTES', DEFAULT_MAX_UPLOAD_BYTES)
    if source.size > max_bytes:
        raise ValidationError(
            message=f"Upload is {source.size} bytes; the limit is {max_bytes}.",
            code='UPLOAD_TOO_LARGE',
            detail={'size': source.size, 'max_bytes': max_bytes},
        )


def import_pharmacy_records(raw_body, filename='', lookahead=None) -> ImportReport:
    """
    导入一个药房导出文件，返回 ImportReport。

    - 致命错误（UnrecognizedFormat / PatientHeaderNotFound / PatientNameMissing）
      在任何写入之前抛出，没有部分报告
    - 逐行按源文件顺序处理，每行独立事务；一行失败不影响其他行
    - 同一个文件导入两次，第二次全部是 duplicate
    """
    if lookahead is None:
        lookahead = getattr(settings, 'PHARMACY_IMPORT_HEADER_LOOKAHEAD', DEFAULT_LOOKAHEAD)

    source = ImportSource(raw=bytes(raw_body), filename=filename or '')
    check_upload(source)

    detected = detect_format(source.raw, source.filename)
    logger.info("[Import] %s 识别为 %s (confidence=%.2f, signals=%s)",
                source.filename, detected.kind.value, detected.confidence, ','.join(detected.signals))

    export = get_adapter(source, detected, lookahead=lookahead).process()
    logger.info("[Import] 患者=%s DOB=%s，表体 %d 行",
                export.patient.name, export.patient.dob, len(export.body.entries))

    builder = ImportReportBuilder(
        filename=source.filename,
        format_kind=detected.kind.value,
        format_confidence=detected.confidence,
        patient=serialize_patient(export.patient),
        declared_total=export.body.declared_total,
        report_period=export.report_period,
        file_warnings=list(export.warnings),
    )

    for entry in export.body.entries:
        if isinstance(entry, SkippedRow):
            builder.add_skipped(entry.line_number, entry.code, entry.message, _row_info(entry))
            continue

        try:
            reconcile_row(entry, export.patient, detected.kind.value, builder)
        except RowError as exc:
            builder.add_error(entry.line_number, exc.code, exc.message, _row_info(entry), exc.detail)
        except DjangoValidationError as exc:
            detail = exc.message_dict if hasattr(exc, 'error_dict') else exc.messages
            logger.warning("[Import] 第 %d 行校验失败: %s", entry.line_number, detail)
            builder.add_error(entry.line_number, 'ROW_VALIDATION_FAILED', 'Record failed validation.',
                              _row_info(entry), detail)
        except DatabaseError as exc:
            logger.warning("[Import] 第 %d 行写入失败: %s", entry.line_number, exc)
            builder.add_error(entry.line_number, 'ROW_PERSISTENCE_FAILED', str(exc), _row_info(entry))

    report = builder.build()
    summary = report.summary
    logger.info("[Import] %s 完成: rows=%d created=%d duplicates=%d warnings=%d errors=%d",
                source.filename, summary.rows_seen, summary.logs_created,
                summary.duplicates, summary.warnings, summary.errors)
    return report


# ── ImportJob ──────────────────────────────────────────────────────────────

def submit_import_job(raw_body, filename):
    """
    保存上传文件为 ImportJob 并提交 Celery 任务，立即返回 job。
    Raises ValidationError: 空文件或超出大小限制。
    """
    source = ImportSource(raw=bytes(raw_body), filename=filename or '')
    if not source.raw:
        raise ValidationError(message='Uploaded file is empty.', code='EMPTY_UPLOAD')
    check_upload(source)

    job = ImportJob.objects.create(filename=source.filename, payload=source.raw, status='pending')
    logger.info("[Import] ImportJob %s 已创建 (%s, %d bytes)", job.id, job.filename, source.size)

    from medrecords.tasks import process_import_job
    process_import_job.delay(str(job.id))
    return job


def get_import_job(job_id):
    """Get import job by ID. Raises BlockError if not found."""
    try:
        return ImportJob.objects.get(id=job_id)
    except ImportJob.DoesNotExist:
        raise BlockError(
            message='Import job not found',
            code='IMPORT_JOB_NOT_FOUND',
            detail={'job_id': str(job_id)},
            http_status=404,
        )
