"""
ERA file processing pipeline.

Takes an uploaded `EraFile` record through parse -> persist header -> post:

    UPLOADED -> PARSING -> PARSED -> POSTING -> POSTED | PARTIALLY_POSTED
                   |
                   +-> ERROR (fatal tokenize/envelope error, nothing posted)

Used by the Celery task and by tests directly.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from app.config.settings import PostingSettings, get_posting_settings
from app.models.core import Payer
from app.models.database import EraFile, ParserLog
from app.models.enums import EraFileStatus
from app.services.edi.domain import ERAFile
from app.services.edi.parser import EraParser, ParsedEra
from app.services.posting.poster import PaymentPoster
from app.services.posting.results import PostingResult
from app.utils.errors import EDIError, NotFoundError
from app.utils.logger import bound_context, get_logger

logger = get_logger(__name__)

UNUSABLE_CLAIM_MARKER = "is unusable:"
TRAILER_COUNT_PREFIXES = ("SE01", "GE01", "IEA01")


def classify_warning(message: str, parsed: ParsedEra) -> str:
    """Issue type stored on the parser log row for a warning."""
    if parsed.reconciliation is not None and message == parsed.reconciliation.message:
        return "reconciliation_mismatch"
    if UNUSABLE_CLAIM_MARKER in message:
        return "unusable_claim"
    if message.startswith("Unrecognized segment"):
        return "unknown_segment"
    if message.startswith(TRAILER_COUNT_PREFIXES):
        return "trailer_count"
    return "parse_warning"


class EraProcessor:
    """Runs an uploaded ERA file through parsing and posting."""

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Optional[PostingSettings] = None,
        parser: Optional[EraParser] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_posting_settings()
        self.parser = parser or EraParser(
            tolerance_per_claim=self.settings.reconciliation_tolerance_per_claim,
            chunk_size=self.settings.tokenizer_chunk_size,
        )
        self.poster = PaymentPoster(session_factory, self.settings)

    def process(self, era_file_id: int, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Parse and post an uploaded ERA file.

        Fatal parse errors are recorded on the file (status ERROR) and returned,
        not raised. Unexpected errors mark the file ERROR and propagate.

        Raises:
            NotFoundError: the ERA file record does not exist
        """
        with bound_context(era_file_id=era_file_id):
            parsed = self._parse(era_file_id)
            if parsed is None:
                return self._summary(era_file_id)

            self._set_status(era_file_id, EraFileStatus.POSTING)
            try:
                result = self.poster.post(era_file_id, parsed.era, actor_id)
            except Exception as e:
                self.mark_error(era_file_id, f"Posting failed: {e}", {"stage": "posting"})
                raise

            self._finish(era_file_id, result)
            return self._summary(era_file_id, result)

    def _parse(self, era_file_id: int) -> Optional[ParsedEra]:
        db: Session = self.session_factory()
        try:
            era_file = db.get(EraFile, era_file_id)
            if era_file is None:
                raise NotFoundError("ERA file", str(era_file_id))

            era_file.processing_status = EraFileStatus.PARSING
            era_file.processing_started_at = datetime.now()
            db.commit()

            try:
                parsed = self.parser.parse_era(era_file.file_content, era_file.file_name)
            except EDIError as e:
                logger.warning("ERA file rejected", error=e.code, message=e.message)
                era_file.processing_status = EraFileStatus.ERROR
                era_file.error_message = e.message
                era_file.error_details = {"error": e.code, **e.details}
                era_file.processing_completed_at = datetime.now()
                db.add(
                    ParserLog(
                        era_file_id=era_file.id,
                        file_name=era_file.file_name,
                        log_level="error",
                        segment_type=e.details.get("segment_id"),
                        issue_type=e.code.lower(),
                        message=e.message,
                        details=e.details or None,
                    )
                )
                db.commit()
                return None

            self._store_header(db, era_file, parsed)
            db.commit()
            return parsed
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _store_header(self, db: Session, era_file: EraFile, parsed: ParsedEra) -> None:
        era = parsed.era
        payer = self._get_or_create_payer(db, era)

        era_file.interchange_sender_id = era.sender_id
        era_file.interchange_control_number = era.interchange_control_number
        era_file.transaction_control_number = era.transaction_control_number
        era_file.payer_id = payer.id if payer else None
        era_file.payer_name = era.payer.name
        era_file.payer_identifier = era.payer.identifier
        era_file.payment_method = era.payment_method
        era_file.payment_amount = era.payment_amount
        era_file.payment_date = era.payment_date
        era_file.check_eft_number = era.check_eft_number
        era_file.total_claims = era.claim_loop_count
        era_file.total_service_lines = era.service_line_count
        era_file.parse_warnings = list(parsed.warnings)
        era_file.unusable_claims = [claim.to_dict() for claim in era.unusable_claims]
        era_file.processing_status = EraFileStatus.PARSED

        for message in parsed.warnings:
            issue_type = classify_warning(message, parsed)
            if issue_type == "unusable_claim":
                # stored per claim below
                continue
            details = None
            if issue_type == "reconciliation_mismatch":
                details = parsed.reconciliation.to_dict()
            db.add(
                ParserLog(
                    era_file_id=era_file.id,
                    file_name=era_file.file_name,
                    log_level="warning",
                    issue_type=issue_type,
                    message=message,
                    details=details,
                )
            )
        for claim in era.unusable_claims:
            db.add(
                ParserLog(
                    era_file_id=era_file.id,
                    file_name=era_file.file_name,
                    log_level="warning",
                    segment_type="CLP",
                    issue_type="unusable_claim",
                    message="; ".join(claim.reasons),
                    details=claim.to_dict(),
                    claim_control_number=claim.patient_control_number,
                )
            )

        logger.info(
            "ERA header stored",
            interchange_control_number=era.interchange_control_number,
            claims=len(era.claims),
            unusable_claims=len(era.unusable_claims),
            warnings_count=len(parsed.warnings),
        )

    def _get_or_create_payer(self, db: Session, era: ERAFile) -> Optional[Payer]:
        identifier = era.payer.identifier
        if not identifier:
            return None
        payer = db.query(Payer).filter(Payer.payer_id == identifier).first()
        address = era.payer.address.to_dict() if era.payer.address else None
        if payer is None:
            payer = Payer(payer_id=identifier, name=era.payer.name or identifier, address=address)
            db.add(payer)
            db.flush()
            logger.info("Created payer", payer_id=identifier)
        elif address:
            payer.address = address
        return payer

    def _finish(self, era_file_id: int, result: PostingResult) -> None:
        db: Session = self.session_factory()
        try:
            era_file = db.get(EraFile, era_file_id)
            era_file.claims_posted = result.successful_posts + result.skipped_posts
            era_file.claims_failed = result.failed_posts
            era_file.processing_status = (
                EraFileStatus.POSTED if result.failed_posts == 0 and not era_file.unusable_claims
                else EraFileStatus.PARTIALLY_POSTED
            )
            era_file.processing_completed_at = datetime.now()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _set_status(self, era_file_id: int, status: EraFileStatus) -> None:
        db: Session = self.session_factory()
        try:
            era_file = db.get(EraFile, era_file_id)
            era_file.processing_status = status
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def mark_error(self, era_file_id: int, message: str, details: Dict[str, Any]) -> None:
        db: Session = self.session_factory()
        try:
            era_file = db.get(EraFile, era_file_id)
            if era_file is None:
                return
            era_file.processing_status = EraFileStatus.ERROR
            era_file.error_message = message
            era_file.error_details = details
            era_file.processing_completed_at = datetime.now()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _summary(self, era_file_id: int, result: Optional[PostingResult] = None) -> Dict[str, Any]:
        db: Session = self.session_factory()
        try:
            era_file = db.get(EraFile, era_file_id)
            summary: Dict[str, Any] = {
                "era_file_id": era_file_id,
                "status": era_file.processing_status.value,
                "warnings": list(era_file.parse_warnings or []),
                "errors": [era_file.error_message] if era_file.error_message else [],
            }
        finally:
            db.close()

        if result is not None:
            summary.update(result.to_dict())
        else:
            summary.update({"total_claims": 0, "successful_posts": 0, "failed_posts": 0, "results": []})
        return summary
