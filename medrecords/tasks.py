import logging
from celery import shared_task
from django.db import DatabaseError
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,   # 初始重试延迟（秒），指数退避会乘以 2^retry_count
    acks_late=True,           # 任务执行完才 ack，防止 worker 崩溃时任务丢失
    reject_on_worker_lost=True,
)
def process_import_job(self, job_id: str):
    """
    异步执行一个药房导出文件的导入。

    重试策略：
      - 只有数据库错误才重试（最多 3 次，10s → 20s → 40s）
      - 文件本身被拒绝（ImportRejected）不重试，直接标记 failed
      - 其他异常也不重试，标记 failed（IMPORT_CRASHED），job 不会停在 processing
      - 重复执行是安全的：已导入的行会被识别为 duplicate
    """
    from medrecords.exceptions import ImportRejected
    from medrecords.models import ImportJob
    from medrecords.serializers import serialize_import_report
    from medrecords.services import import_pharmacy_records

    logger.info("[Celery][process_import_job] 开始处理 job_id=%s (attempt %d/%d)",
                job_id, self.request.retries + 1, self.max_retries + 1)

    try:
        job = ImportJob.objects.get(id=job_id)
    except ImportJob.DoesNotExist:
        logger.error("[Celery] ImportJob %s 不存在，跳过", job_id)
        return  # 不重试，直接结束

    job.status = 'processing'
    job.save(update_fields=['status', 'updated_at'])

    try:
        report = import_pharmacy_records(bytes(job.payload), job.filename)

    except ImportRejected as exc:
        logger.warning("[Celery] job_id=%s 文件被拒绝: %s (%s)", job_id, exc.message, exc.code)
        job.status = 'failed'
        job.error_code = exc.code
        job.error_message = exc.message
        job.save(update_fields=['status', 'error_code', 'error_message', 'updated_at'])
        return

    except DatabaseError as exc:
        logger.warning(
            "[Celery] job_id=%s 处理失败 (attempt %d): %s",
            job_id, self.request.retries + 1, str(exc)
        )

        if self.request.retries < self.max_retries:
            # 指数退避：countdown = 10 * 2^retries → 10s, 20s, 40s
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.info(
                "[Celery] 将在 %ds 后重试 (第 %d 次)...",
                countdown, self.request.retries + 1
            )
            job.status = 'pending'
            job.save(update_fields=['status', 'updated_at'])
            raise self.retry(exc=exc, countdown=countdown)

        logger.error("[Celery] job_id=%s 已达最大重试次数，标记为 failed", job_id)
        job.status = 'failed'
        job.error_code = 'RETRIES_EXHAUSTED'
        job.error_message = f"[重试 {self.max_retries} 次后仍失败] {str(exc)}"
        job.save(update_fields=['status', 'error_code', 'error_message', 'updated_at'])
        return

    except Exception as exc:
        # 非预期异常不重试：同一个文件再跑一次结果也一样
        logger.exception("[Celery] job_id=%s 导入时出现未预期异常", job_id)
        job.status = 'failed'
        job.error_code = 'IMPORT_CRASHED'
        job.error_message = f"{type(exc).__name__}: {exc}"
        job.save(update_fields=['status', 'error_code', 'error_message', 'updated_at'])
        return

    job.status = 'completed'
    job.report = serialize_import_report(report)
    job.completed_at = timezone.now()
    job.save(update_fields=['status', 'report', 'completed_at', 'updated_at'])

    logger.info("[Celery] job_id=%s 处理完成: %d 行, 新建 %d 条",
                job_id, report.summary.rows_seen, report.summary.logs_created)
