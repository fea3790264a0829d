"""
Response serializers: 导入结果 / ORM 对象 → JSON-able dict。

只负责「输出格式化」，不做任何解析或校验。
解析和校验在 medrecords/intake/ 和 services.py 里完成。
"""

from dataclasses import asdict


def serialize_patient(patient):
    """PatientContext → dict（DOB 用 ISO 格式，缺失为 None）。"""
    return {
        'name': patient.name,
        'first_name': patient.first_name,
        'last_name': patient.last_name,
        'dob': patient.dob.isoformat() if patient.dob else None,
        'address': patient.address,
        'phone': patient.phone,
        'gender': patient.gender,
    }


def serialize_row_outcome(outcome):
    data = asdict(outcome)
    data['messages'] = [dict(message) for message in outcome.messages]
    return data


def serialize_import_report(report):
    """Serialize ImportReport for API responses and ImportJob.report."""
    return {
        'filename': report.filename,
        'format': {
            'kind': report.format_kind,
            'confidence': report.format_confidence,
        },
        'patient': dict(report.patient),
        'family_member': {
            'id': report.family_member_id,
            'created': report.family_member_created,
        },
        'report_period': report.report_period,
        'declared_total': report.declared_total,
        'summary': asdict(report.summary),
        'warnings': [dict(warning) for warning in report.file_warnings],
        'rows': [serialize_row_outcome(outcome) for outcome in report.outcomes],
    }


def serialize_import_job(job):
    """Serialize import job with status-dependent fields."""
    response = {
        'job_id': str(job.id),
        'filename': job.filename,
        'status': job.status,
        'created_at': job.created_at.isoformat(),
        'updated_at': job.updated_at.isoformat(),
    }

    if job.status == 'pending':
        response['message'] = 'Import is queued for processing'
    elif job.status == 'processing':
        response['message'] = 'Import is being processed, please wait...'
    elif job.status == 'completed':
        response['message'] = 'Import finished'
        response['completed_at'] = job.completed_at.isoformat() if job.completed_at else None
        response['report'] = job.report
    elif job.status == 'failed':
        response['message'] = 'Import failed'
        response['error'] = {
            'code': job.error_code,
            'message': job.error_message,
            'retry_allowed': not job.error_code or job.error_code == 'RETRIES_EXHAUSTED',
        }

    return response
