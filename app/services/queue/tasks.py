"""
Celery task definitions for asynchronous ERA processing.

Uploads are stored as an `EraFile` record first; the task then runs the file
through the posting pipeline (parse -> persist header -> post) so the upload
request returns immediately.

Tasks:
- process_era_file: parse and post one uploaded ERA file
"""
from celery import Task

from app.config.celery import celery_app
from app.config.database import SessionLocal
from app.config.sentry import add_breadcrumb, capture_exception, settings
from app.services.posting.processor import EraProcessor
from app.utils.errors import NotFoundError
from app.utils.logger import get_logger

logger = get_logger(__name__)


@celery_app.task(bind=True, name="process_era_file")
def process_era_file(self: Task, era_file_id: int, actor_id: str = None):
    """
    Parse and post an uploaded ERA file.

    Returns the processing summary: status, warnings, errors and the posting
    counts. A file rejected by the parser returns status "error" instead of
    failing the task.
    """
    logger.info(
        "Processing ERA file",
        era_file_id=era_file_id,
        task_id=self.request.id,
        actor_id=actor_id,
    )
    add_breadcrumb(
        message=f"Processing ERA file {era_file_id}",
        category="celery_task",
        level="info",
        data={"task": "process_era_file", "era_file_id": era_file_id, "task_id": self.request.id},
    )

    processor = EraProcessor(SessionLocal)
    try:
        summary = processor.process(era_file_id, actor_id=actor_id)
    except NotFoundError:
        logger.error("ERA file not found", era_file_id=era_file_id, task_id=self.request.id)
        raise
    except Exception as e:
        logger.error(
            "Failed to process ERA file",
            era_file_id=era_file_id,
            error=str(e),
            exc_info=True,
        )
        if settings.enable_alerts:
            capture_exception(
                e,
                level="error",
                context={
                    "task": {
                        "name": "process_era_file",
                        "id": self.request.id,
                        "retries": self.request.retries,
                    },
                    "era_file": {"id": era_file_id, "actor_id": actor_id},
                },
                tags={
                    "task": "process_era_file",
                    "error_type": type(e).__name__,
                },
            )
        processor.mark_error(era_file_id, str(e), {"stage": "task", "error_type": type(e).__name__})
        raise

    logger.info(
        "ERA file processed",
        era_file_id=era_file_id,
        status=summary["status"],
        total_claims=summary["total_claims"],
        successful_posts=summary["successful_posts"],
        failed_posts=summary["failed_posts"],
    )
    return {"task_id": self.request.id, **summary}
