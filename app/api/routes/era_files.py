"""ERA file, posting run and ledger endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from app.api.middleware.auth import get_required_actor_id
from app.config.database import get_db, get_session_factory
from app.models.database import EraFile, LedgerEntry, ParserLog, PostingRun
from app.models.enums import EraFileStatus
from app.services.posting.poster import PaymentPoster
from app.services.posting.report import build_failure_report, report_filename
from app.utils.decimal_utils import format_amount
from app.utils.errors import NotFoundError
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


class ReversalRequest(BaseModel):
    """Body of a ledger reversal request."""

    reason: str = Field(..., min_length=1, max_length=500)


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


def _amount(value) -> Optional[str]:
    return format_amount(value) if value is not None else None


def _get_era_file(db: Session, era_file_id: int) -> EraFile:
    era_file = db.query(EraFile).filter(EraFile.id == era_file_id).first()
    if not era_file:
        raise NotFoundError("ERA file", str(era_file_id))
    return era_file


def _era_file_summary(era_file: EraFile) -> dict:
    return {
        "id": era_file.id,
        "file_name": era_file.file_name,
        "processing_status": era_file.processing_status.value if era_file.processing_status else None,
        "interchange_sender_id": era_file.interchange_sender_id,
        "interchange_control_number": era_file.interchange_control_number,
        "payer_name": era_file.payer_name,
        "payment_amount": _amount(era_file.payment_amount),
        "payment_date": _isoformat(era_file.payment_date),
        "total_claims": era_file.total_claims,
        "claims_posted": era_file.claims_posted,
        "claims_failed": era_file.claims_failed,
        "created_at": _isoformat(era_file.created_at),
    }


def _posting_run(run: PostingRun, include_results: bool = True) -> dict:
    data = {
        "id": run.id,
        "era_file_id": run.era_file_id,
        "interchange_sender_id": run.interchange_sender_id,
        "interchange_control_number": run.interchange_control_number,
        "transaction_control_number": run.transaction_control_number,
        "is_repost": run.is_repost,
        "total_claims": run.total_claims,
        "successful_posts": run.successful_posts,
        "failed_posts": run.failed_posts,
        "skipped_posts": run.skipped_posts,
        "posted_by": run.posted_by,
        "started_at": _isoformat(run.started_at),
        "completed_at": _isoformat(run.completed_at),
    }
    if include_results:
        data["results"] = run.results
    return data


@router.get("/era-files")
async def list_era_files(
    skip: int = 0,
    limit: int = 100,
    status: Optional[EraFileStatus] = None,
    db: Session = Depends(get_db),
):
    """List uploaded ERA files, newest first."""
    query = db.query(EraFile)
    if status is not None:
        query = query.filter(EraFile.processing_status == status)
    total = query.count()
    era_files = query.order_by(EraFile.id.desc()).offset(skip).limit(limit).all()
    return {
        "era_files": [_era_file_summary(era_file) for era_file in era_files],
        "total": total,
        "skip": skip,
        "limit": limit,
    }


@router.get("/era-files/{era_file_id}")
async def get_era_file(era_file_id: int, db: Session = Depends(get_db)):
    """ERA file detail: header, counts, warnings, errors and unusable claim loops."""
    era_file = _get_era_file(db, era_file_id)
    parser_log_count = db.query(ParserLog).filter(ParserLog.era_file_id == era_file.id).count()

    result = _era_file_summary(era_file)
    result.update(
        {
            "file_size": era_file.file_size,
            "uploaded_by": era_file.uploaded_by,
            "transaction_control_number": era_file.transaction_control_number,
            "payer_identifier": era_file.payer_identifier,
            "payment_method": era_file.payment_method,
            "check_eft_number": era_file.check_eft_number,
            "total_service_lines": era_file.total_service_lines,
            "warnings": era_file.parse_warnings or [],
            "unusable_claims": era_file.unusable_claims or [],
            "error_message": era_file.error_message,
            "error_details": era_file.error_details,
            "parser_log_count": parser_log_count,
            "processing_started_at": _isoformat(era_file.processing_started_at),
            "processing_completed_at": _isoformat(era_file.processing_completed_at),
            "posting_runs": [_posting_run(run, include_results=False) for run in era_file.posting_runs],
        }
    )
    return result


@router.get("/era-files/{era_file_id}/posting-runs")
async def get_posting_runs(era_file_id: int, db: Session = Depends(get_db)):
    """All posting runs of an ERA file with per-claim results."""
    era_file = _get_era_file(db, era_file_id)
    return {
        "era_file_id": era_file.id,
        "posting_runs": [_posting_run(run) for run in era_file.posting_runs],
    }


@router.get("/era-files/{era_file_id}/failure-report")
async def download_failure_report(era_file_id: int, db: Session = Depends(get_db)):
    """CSV of failed claims, unusable claim loops and warnings for manual review."""
    era_file = _get_era_file(db, era_file_id)
    return Response(
        content=build_failure_report(era_file),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{report_filename(era_file)}"'},
    )


@router.get("/ledger/{entry_id}")
async def get_ledger_entry(entry_id: int, db: Session = Depends(get_db)):
    """Ledger entry with its adjustments."""
    entry = db.query(LedgerEntry).filter(LedgerEntry.id == entry_id).first()
    if not entry:
        raise NotFoundError("Ledger entry", str(entry_id))
    return {
        "id": entry.id,
        "posting_key": entry.posting_key,
        "entry_type": entry.entry_type.value,
        "era_file_id": entry.era_file_id,
        "claim_id": entry.claim_id,
        "reverses_entry_id": entry.reverses_entry_id,
        "claim_sequence": entry.claim_sequence,
        "patient_control_number": entry.patient_control_number,
        "billed_amount": _amount(entry.billed_amount),
        "allowed_amount": _amount(entry.allowed_amount),
        "paid_amount": _amount(entry.paid_amount),
        "patient_responsibility": _amount(entry.patient_responsibility),
        "previous_status": entry.previous_status.value if entry.previous_status else None,
        "new_status": entry.new_status.value if entry.new_status else None,
        "reversal_reason": entry.reversal_reason,
        "posted_by": entry.posted_by,
        "posted_at": _isoformat(entry.posted_at),
        "adjustments": [
            {
                "service_line_number": adj.service_line_number,
                "procedure_code": adj.procedure_code,
                "group_code": adj.group_code,
                "reason_code": adj.reason_code,
                "amount": _amount(adj.amount),
            }
            for adj in entry.adjustments
        ],
    }


@router.post("/ledger/{entry_id}/reverse")
async def reverse_ledger_entry(
    entry_id: int,
    body: ReversalRequest,
    actor_id: str = Depends(get_required_actor_id),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """
    Reverse a posted payment.

    Writes a reversal ledger entry with negated amounts and takes the payment
    back off the claim. A payment can be reversed once; a second request
    returns 409 ALREADY_POSTED.
    """
    logger.info("Reversal requested", ledger_entry_id=entry_id)
    return PaymentPoster(session_factory).reverse_entry(entry_id, body.reason, actor_id)
