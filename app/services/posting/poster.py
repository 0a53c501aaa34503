"""
Payment posting engine.

Posts the claims of a mapped ERA to the internal claims they match. Every
claim posts in its own session and transaction:

- the internal claim row is locked (SELECT ... FOR UPDATE) and versioned, so
  two postings cannot both change it
- a unique posting key (ISA06:ISA13:ST02:claim sequence) on the ledger entry
  makes reposting the same ERA a no-op per claim
- a match, validation or state failure is recorded for that claim and the
  run continues with the next one
- a transient conflict (stale version, lock error) is retried at most once

Each run is stored as an immutable PostingRun.
"""
import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.config.sentry import capture_exception
from app.config.sentry import settings as sentry_settings
from app.config.settings import PostingSettings, get_posting_settings
from app.models.database import Claim, ClaimAdjustment, LedgerEntry, PostingRun
from app.models.enums import (
    POSTABLE_CLAIM_STATUSES,
    ClaimStatus,
    LedgerEntryType,
    PostingOutcome,
)
from app.services.edi.domain import Claim as RemittanceClaim
from app.services.edi.domain import ERAFile
from app.services.posting.matcher import ClaimMatcher
from app.services.posting.results import ClaimPostingResult, PostingResult
from app.utils.decimal_utils import ZERO, format_amount, round_to_precision
from app.utils.errors import ClaimMatchError, NotFoundError, PostingError
from app.utils.logger import bound_context, get_logger

logger = get_logger(__name__)

REVERSAL_KEY_PREFIX = "reversal"


def resolve_claim_status(paid_amount: Decimal, billed_amount: Decimal) -> ClaimStatus:
    """Paid nothing: DENIED. Paid the billed amount or more: PAID. Otherwise PARTIALLY_PAID."""
    if paid_amount == ZERO:
        return ClaimStatus.DENIED
    if paid_amount >= billed_amount:
        return ClaimStatus.PAID
    return ClaimStatus.PARTIALLY_PAID


def _money(value: Optional[Decimal]) -> Decimal:
    return round_to_precision(Decimal(value)) if value is not None else ZERO


class PaymentPoster:
    """Posts ERA claims and reverses ledger entries."""

    def __init__(self, session_factory: sessionmaker, settings: Optional[PostingSettings] = None):
        self.session_factory = session_factory
        self.settings = settings or get_posting_settings()

    # Posting

    def post(self, era_file_id: int, era: ERAFile, actor_id: Optional[str] = None) -> PostingResult:
        """Post every usable claim of `era` sequentially."""
        started_at = datetime.now()
        with bound_context(era_file_id=era_file_id, interchange_control_number=era.interchange_control_number):
            logger.info("Posting ERA claims", claims=len(era.claims))
            results = [self._post_claim(era_file_id, era, claim, actor_id) for claim in era.claims]
            return self._record_run(era_file_id, era, results, actor_id, started_at)

    async def post_async(self, era_file_id: int, era: ERAFile, actor_id: Optional[str] = None) -> PostingResult:
        """
        Post claims concurrently, at most `posting_concurrency` at a time.

        Cancelling the coroutine leaves the claims already committed posted
        and the rest untouched; no posting run is recorded for a cancelled run.
        """
        started_at = datetime.now()
        semaphore = asyncio.Semaphore(self.settings.posting_concurrency)

        async def post_one(claim: RemittanceClaim) -> ClaimPostingResult:
            async with semaphore:
                return await asyncio.to_thread(self._post_claim, era_file_id, era, claim, actor_id)

        with bound_context(era_file_id=era_file_id, interchange_control_number=era.interchange_control_number):
            logger.info(
                "Posting ERA claims concurrently",
                claims=len(era.claims),
                concurrency=self.settings.posting_concurrency,
            )
            results = await asyncio.gather(*(post_one(claim) for claim in era.claims))
            return await asyncio.to_thread(
                self._record_run, era_file_id, era, list(results), actor_id, started_at
            )

    def _post_claim(
        self, era_file_id: int, era: ERAFile, claim: RemittanceClaim, actor_id: Optional[str]
    ) -> ClaimPostingResult:
        """Post one claim, retrying a transient conflict at most once."""
        posting_key = era.posting_key(claim)
        attempts = 0
        while True:
            attempts += 1
            try:
                result = self._post_claim_once(era_file_id, era, claim, actor_id, posting_key)
                result.attempts = attempts
                return result
            except PostingError as e:
                if e.transient and attempts <= self.settings.posting_max_retries:
                    logger.warning(
                        "Transient posting conflict, retrying",
                        claim_sequence=claim.sequence,
                        attempt=attempts,
                        error=e.message,
                    )
                    continue
                return self._failed(claim, posting_key, e.reason, e.message, attempts)
            except ClaimMatchError as e:
                return self._failed(claim, posting_key, e.reason, e.message, attempts)

    def _post_claim_once(
        self,
        era_file_id: int,
        era: ERAFile,
        claim: RemittanceClaim,
        actor_id: Optional[str],
        posting_key: str,
    ) -> ClaimPostingResult:
        session: Session = self.session_factory()
        try:
            existing = self._existing_entry(session, posting_key)
            if existing is not None:
                return self._already_posted(claim, posting_key, existing)

            match = ClaimMatcher(session).match(claim)
            internal = self._lock_claim(session, match.claim.id)
            result = self._apply(session, internal, claim, era, era_file_id, posting_key, actor_id)
            result.match_method = match.method
            session.commit()

            logger.info(
                "Claim posted",
                claim_sequence=claim.sequence,
                claim_id=result.claim_id,
                new_status=result.new_status.value,
                paid_amount=format_amount(claim.paid_amount),
            )
            return result
        except (StaleDataError, OperationalError) as e:
            session.rollback()
            raise PostingError(
                PostingError.CONFLICT,
                f"Claim {claim.patient_control_number} was changed by a concurrent posting",
                transient=True,
            ) from e
        except IntegrityError as e:
            session.rollback()
            existing = self._existing_entry(session, posting_key)
            if existing is not None:
                return self._already_posted(claim, posting_key, existing)
            raise PostingError(
                PostingError.CONFLICT,
                f"Claim {claim.patient_control_number} could not be written: {e.orig}",
            ) from e
        except (PostingError, ClaimMatchError):
            session.rollback()
            raise
        except Exception as e:
            session.rollback()
            logger.error(
                "Unexpected error posting claim",
                claim_sequence=claim.sequence,
                error=str(e),
                exc_info=True,
            )
            if sentry_settings.enable_alerts:
                capture_exception(
                    e,
                    level="error",
                    context={"posting": {"era_file_id": era_file_id, "claim_sequence": claim.sequence}},
                    tags={"component": "payment_poster", "error_type": type(e).__name__},
                )
            raise PostingError(
                PostingError.WRITE_FAILED,
                f"Claim {claim.patient_control_number} could not be posted: {type(e).__name__}: {e}",
            ) from e
        finally:
            session.close()

    def _apply(
        self,
        session: Session,
        internal: Claim,
        claim: RemittanceClaim,
        era: ERAFile,
        era_file_id: int,
        posting_key: str,
        actor_id: Optional[str],
    ) -> ClaimPostingResult:
        if claim.is_reversal:
            raise PostingError(
                PostingError.VALIDATION,
                f"Claim {claim.patient_control_number} is a payer reversal (CLP02 22) and needs manual review",
            )
        if claim.paid_amount < ZERO:
            raise PostingError(
                PostingError.VALIDATION,
                f"Claim {claim.patient_control_number} has a negative payment {format_amount(claim.paid_amount)}",
            )
        if internal.status not in POSTABLE_CLAIM_STATUSES:
            raise PostingError(
                PostingError.INVALID_STATE,
                f"Claim {internal.claim_control_number} is {internal.status.value} and cannot receive a remittance",
                details={"status": internal.status.value},
            )

        warnings = []
        previous_status = internal.status
        if previous_status is ClaimStatus.SUBMITTED:
            internal.status = ClaimStatus.ACCEPTED
        new_status = resolve_claim_status(claim.paid_amount, claim.billed_amount)

        if _money(internal.total_charge_amount) != claim.billed_amount:
            warnings.append(
                f"Remittance billed amount {format_amount(claim.billed_amount)} differs from "
                f"claim charge {format_amount(internal.total_charge_amount)}"
            )

        entry = LedgerEntry(
            posting_key=posting_key,
            entry_type=LedgerEntryType.PAYMENT,
            era_file_id=era_file_id,
            claim_id=internal.id,
            interchange_sender_id=era.sender_id,
            interchange_control_number=era.interchange_control_number,
            transaction_control_number=era.transaction_control_number,
            claim_sequence=claim.sequence,
            patient_control_number=claim.patient_control_number,
            payer_claim_control_number=claim.payer_claim_control_number,
            claim_status_code=claim.claim_status_code,
            check_eft_number=era.check_eft_number,
            billed_amount=claim.billed_amount,
            allowed_amount=claim.allowed_amount,
            paid_amount=claim.paid_amount,
            patient_responsibility=claim.patient_responsibility,
            contractual_adjustment=claim.total_contractual_adjustment,
            deductible=claim.total_deductible,
            coinsurance=claim.total_coinsurance,
            copay=claim.total_copay,
            other_adjustment=claim.total_other_adjustment,
            previous_status=previous_status,
            new_status=new_status,
            posted_by=actor_id,
            posted_at=datetime.now(),
        )
        session.add(entry)

        for adjustment in claim.adjustments:
            entry.adjustments.append(
                ClaimAdjustment(
                    claim_id=internal.id,
                    group_code=adjustment.group_code,
                    reason_code=adjustment.reason_code,
                    amount=adjustment.amount,
                    quantity=adjustment.quantity,
                )
            )
        for line in claim.service_lines:
            for adjustment in line.adjustments:
                entry.adjustments.append(
                    ClaimAdjustment(
                        claim_id=internal.id,
                        service_line_number=line.line_number,
                        procedure_code=line.procedure_code,
                        service_date=line.service_date,
                        group_code=adjustment.group_code,
                        reason_code=adjustment.reason_code,
                        amount=adjustment.amount,
                        quantity=adjustment.quantity,
                    )
                )

        internal.paid_amount = _money(internal.paid_amount) + claim.paid_amount
        internal.allowed_amount = claim.allowed_amount
        internal.patient_responsibility_amount = (
            _money(internal.patient_responsibility_amount) + claim.patient_responsibility
        )
        internal.adjustment_amount = (
            _money(internal.adjustment_amount)
            + claim.total_contractual_adjustment
            + claim.total_other_adjustment
        )
        internal.adjustment_reason_codes = list(claim.adjustment_codes)
        if claim.payer_claim_control_number:
            internal.payer_claim_control_number = claim.payer_claim_control_number
        internal.status = new_status
        internal.last_posted_at = datetime.now()

        session.flush()

        return ClaimPostingResult(
            claim_sequence=claim.sequence,
            patient_control_number=claim.patient_control_number,
            outcome=PostingOutcome.POSTED,
            posting_key=posting_key,
            claim_id=internal.id,
            ledger_entry_id=entry.id,
            previous_status=previous_status,
            new_status=new_status,
            paid_amount=claim.paid_amount,
            adjustment_codes=list(claim.adjustment_codes),
            warnings=warnings,
        )

    def _lock_claim(self, session: Session, claim_id: int) -> Claim:
        return (
            session.query(Claim)
            .filter(Claim.id == claim_id)
            .with_for_update()
            .populate_existing()
            .one()
        )

    def _existing_entry(self, session: Session, posting_key: str) -> Optional[LedgerEntry]:
        return session.query(LedgerEntry).filter(LedgerEntry.posting_key == posting_key).first()

    def _already_posted(
        self, claim: RemittanceClaim, posting_key: str, entry: LedgerEntry
    ) -> ClaimPostingResult:
        logger.info("Claim already posted, skipping", claim_sequence=claim.sequence, ledger_entry_id=entry.id)
        return ClaimPostingResult(
            claim_sequence=claim.sequence,
            patient_control_number=claim.patient_control_number,
            outcome=PostingOutcome.ALREADY_POSTED,
            posting_key=posting_key,
            claim_id=entry.claim_id,
            ledger_entry_id=entry.id,
            new_status=entry.new_status,
            paid_amount=entry.paid_amount,
        )

    def _failed(
        self, claim: RemittanceClaim, posting_key: str, code: str, message: str, attempts: int
    ) -> ClaimPostingResult:
        logger.warning(
            "Claim posting failed",
            claim_sequence=claim.sequence,
            error=code,
            message=message,
            attempts=attempts,
        )
        return ClaimPostingResult(
            claim_sequence=claim.sequence,
            patient_control_number=claim.patient_control_number,
            outcome=PostingOutcome.FAILED,
            posting_key=posting_key,
            paid_amount=claim.paid_amount,
            error_code=code,
            error_message=message,
            attempts=attempts,
            adjustment_codes=list(claim.adjustment_codes),
        )

    def _record_run(
        self,
        era_file_id: int,
        era: ERAFile,
        results: List[ClaimPostingResult],
        actor_id: Optional[str],
        started_at: datetime,
    ) -> PostingResult:
        result = PostingResult(era_file_id=era_file_id, results=results)
        session: Session = self.session_factory()
        try:
            previous = (
                session.query(PostingRun.id)
                .filter(
                    PostingRun.interchange_sender_id == era.sender_id,
                    PostingRun.interchange_control_number == era.interchange_control_number,
                    PostingRun.transaction_control_number == era.transaction_control_number,
                )
                .first()
            )
            result.is_repost = previous is not None
            run = PostingRun(
                era_file_id=era_file_id,
                interchange_sender_id=era.sender_id,
                interchange_control_number=era.interchange_control_number,
                transaction_control_number=era.transaction_control_number,
                is_repost=result.is_repost,
                total_claims=result.total_claims,
                successful_posts=result.successful_posts,
                failed_posts=result.failed_posts,
                skipped_posts=result.skipped_posts,
                results=[r.to_dict() for r in results],
                posted_by=actor_id,
                started_at=started_at,
                completed_at=datetime.now(),
            )
            session.add(run)
            session.commit()
            result.posting_run_id = run.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info(
            "Posting run recorded",
            posting_run_id=result.posting_run_id,
            is_repost=result.is_repost,
            total_claims=result.total_claims,
            successful_posts=result.successful_posts,
            failed_posts=result.failed_posts,
            skipped_posts=result.skipped_posts,
        )
        return result

    # Reversal

    def reverse_entry(self, ledger_entry_id: int, reason: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Reverse a payment ledger entry.

        Writes a new REVERSAL entry with negated amounts and takes the payment
        back off the claim. The claim returns to ACCEPTED when nothing else has
        been paid on it. Each payment can be reversed once.

        Raises:
            NotFoundError: no such ledger entry
            PostingError: the entry is a reversal, was already reversed, or
                the claim changed concurrently
        """
        session: Session = self.session_factory()
        try:
            entry = session.get(LedgerEntry, ledger_entry_id)
            if entry is None:
                raise NotFoundError("Ledger entry", str(ledger_entry_id))
            if entry.entry_type is LedgerEntryType.REVERSAL:
                raise PostingError(PostingError.VALIDATION, "A reversal entry cannot be reversed")
            already = (
                session.query(LedgerEntry.id)
                .filter(LedgerEntry.reverses_entry_id == entry.id)
                .first()
            )
            if already is not None:
                raise PostingError(
                    PostingError.ALREADY_POSTED,
                    f"Ledger entry {entry.id} has already been reversed",
                    details={"reversal_entry_id": already.id},
                )

            claim = self._lock_claim(session, entry.claim_id)
            previous_status = claim.status
            remaining_paid = _money(claim.paid_amount) - _money(entry.paid_amount)
            if remaining_paid > ZERO:
                new_status = resolve_claim_status(remaining_paid, _money(claim.total_charge_amount))
            else:
                new_status = ClaimStatus.ACCEPTED

            reversal = LedgerEntry(
                posting_key=f"{REVERSAL_KEY_PREFIX}:{entry.id}",
                entry_type=LedgerEntryType.REVERSAL,
                era_file_id=entry.era_file_id,
                claim_id=entry.claim_id,
                reverses_entry_id=entry.id,
                interchange_sender_id=entry.interchange_sender_id,
                interchange_control_number=entry.interchange_control_number,
                transaction_control_number=entry.transaction_control_number,
                claim_sequence=entry.claim_sequence,
                patient_control_number=entry.patient_control_number,
                payer_claim_control_number=entry.payer_claim_control_number,
                claim_status_code=entry.claim_status_code,
                check_eft_number=entry.check_eft_number,
                billed_amount=-_money(entry.billed_amount),
                allowed_amount=-_money(entry.allowed_amount),
                paid_amount=-_money(entry.paid_amount),
                patient_responsibility=-_money(entry.patient_responsibility),
                contractual_adjustment=-_money(entry.contractual_adjustment),
                deductible=-_money(entry.deductible),
                coinsurance=-_money(entry.coinsurance),
                copay=-_money(entry.copay),
                other_adjustment=-_money(entry.other_adjustment),
                previous_status=previous_status,
                new_status=new_status,
                reversal_reason=reason,
                posted_by=actor_id,
                posted_at=datetime.now(),
            )
            session.add(reversal)

            claim.paid_amount = remaining_paid
            claim.patient_responsibility_amount = (
                _money(claim.patient_responsibility_amount) - _money(entry.patient_responsibility)
            )
            claim.adjustment_amount = (
                _money(claim.adjustment_amount)
                - _money(entry.contractual_adjustment)
                - _money(entry.other_adjustment)
            )
            claim.status = new_status
            session.commit()

            logger.info(
                "Ledger entry reversed",
                ledger_entry_id=entry.id,
                reversal_entry_id=reversal.id,
                claim_id=claim.id,
                new_status=new_status.value,
            )
            return {
                "reversal_entry_id": reversal.id,
                "reversed_entry_id": entry.id,
                "claim_id": claim.id,
                "previous_status": previous_status.value,
                "new_status": new_status.value,
                "paid_amount": format_amount(reversal.paid_amount),
                "claim_paid_amount": format_amount(claim.paid_amount),
            }
        except (StaleDataError, OperationalError) as e:
            session.rollback()
            raise PostingError(
                PostingError.CONFLICT,
                f"Claim for ledger entry {ledger_entry_id} was changed concurrently",
                transient=True,
            ) from e
        except IntegrityError as e:
            session.rollback()
            raise PostingError(
                PostingError.ALREADY_POSTED,
                f"Ledger entry {ledger_entry_id} has already been reversed",
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
