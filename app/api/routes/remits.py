"""Remittance (835) upload endpoints."""
import os
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session

from app.api.middleware.auth import get_actor_id, get_required_actor_id
from app.config.database import get_db
from app.config.settings import get_posting_settings
from app.models.database import EraFile
from app.models.enums import EraFileStatus
from app.services.edi.parser import EraParser
from app.services.queue.tasks import process_era_file
from app.utils.errors import ValidationError
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024


async def _read_upload(file: UploadFile) -> str:
    """Validate extension and size, then return the upload decoded as UTF-8."""
    settings = get_posting_settings()
    filename = file.filename or "unknown"

    extension = os.path.splitext(filename)[1].lower()
    if extension not in settings.extension_list:
        raise ValidationError(
            f"Unsupported file extension '{extension or filename}'",
            details={"allowed_extensions": settings.extension_list},
        )

    max_bytes = settings.max_upload_mb * 1024 * 1024
    chunks = []
    size = 0
    while True:
        chunk = await file.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise ValidationError(
                f"File exceeds the {settings.max_upload_mb} MB upload limit",
                details={"max_upload_mb": settings.max_upload_mb},
            )
        chunks.append(chunk)

    content = b"".join(chunks)
    if not content.strip():
        raise ValidationError("Uploaded file is empty")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValidationError(
            "File is not valid UTF-8 text",
            details={"offset": e.start},
        ) from e


@router.post("/remits/upload", status_code=status.HTTP_202_ACCEPTED)
async def upload_remit_file(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_required_actor_id),
):
    """
    Upload an 835 remittance file for parsing and posting.

    The raw file is stored as an ERA file record and queued for processing;
    poll `/api/v1/era-files/{id}` for the outcome.

    **File Format:**
    - Extensions: .835, .edi, .x12, .txt (ERA_ALLOWED_EXTENSIONS)
    - Encoding: UTF-8
    - Size: up to ERA_MAX_UPLOAD_MB
    """
    filename = file.filename or "unknown"
    logger.info("Received remittance file upload", filename=filename)

    content = await _read_upload(file)
    era_file = EraFile(
        file_name=filename,
        file_content=content,
        file_size=len(content.encode("utf-8")),
        uploaded_by=actor_id,
        processing_status=EraFileStatus.UPLOADED,
    )
    db.add(era_file)
    db.commit()
    db.refresh(era_file)

    task = process_era_file.delay(era_file.id, actor_id)
    logger.info("ERA file queued", era_file_id=era_file.id, task_id=task.id, filename=filename)

    return {
        "message": "File queued for processing",
        "era_file_id": era_file.id,
        "task_id": task.id,
        "filename": filename,
        "file_size": era_file.file_size,
        "status": era_file.processing_status.value,
    }


@router.post("/remits/parse")
async def parse_remit_file(
    file: UploadFile = File(...),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    """
    Parse an 835 file without storing or posting it.

    Returns `{success, data, errors, warnings}`; a file with a corrupt
    envelope comes back with `success: false` and the error.
    """
    filename = file.filename or "unknown"
    content = await _read_upload(file)
    logger.info("Dry-run parse", filename=filename, actor_id=actor_id)
    return EraParser().parse(content, filename)
