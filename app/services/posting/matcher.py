"""Resolve remittance claims to internal claims."""
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.database import Claim
from app.services.edi.domain import Claim as RemittanceClaim
from app.utils.decimal_utils import round_to_precision
from app.utils.errors import ClaimMatchError
from app.utils.logger import get_logger

logger = get_logger(__name__)

EXACT_CONTROL_NUMBER = "control_number"
EXACT_ORIGINAL_REFERENCE = "original_reference"
PATIENT_FALLBACK = "patient_period_amount"


@dataclass(frozen=True)
class MatchOutcome:
    claim: Claim
    method: str


def _periods_overlap(
    first: Tuple[Optional[date], Optional[date]], second: Tuple[Optional[date], Optional[date]]
) -> bool:
    first_from, first_to = first
    second_from, second_to = second
    if not (first_from and first_to and second_from and second_to):
        return False
    return first_from <= second_to and second_from <= first_to


class ClaimMatcher:
    """
    Matches remittance claims to internal claims.

    1. Exact: CLP01 against the internal claim control number, then each
       REF*F8 original reference number.
    2. Fallback: same patient (member id, else last + first name), statement
       period overlapping the remittance dates and billed amount equal to the
       cent. Exactly one candidate must remain.

    The matcher never guesses: several fallback candidates are AMBIGUOUS.
    """

    def __init__(self, db: Session):
        self.db = db

    def match(self, remittance_claim: RemittanceClaim) -> MatchOutcome:
        """
        Raises:
            ClaimMatchError: NOT_FOUND or AMBIGUOUS
        """
        claim = self._find_by_control_number(remittance_claim.patient_control_number)
        if claim is not None:
            return MatchOutcome(claim, EXACT_CONTROL_NUMBER)

        for reference in remittance_claim.original_reference_numbers:
            claim = self._find_by_control_number(reference)
            if claim is not None:
                return MatchOutcome(claim, EXACT_ORIGINAL_REFERENCE)

        candidates = self._fallback_candidates(remittance_claim)
        if len(candidates) == 1:
            logger.info(
                "Matched claim by patient, period and amount",
                claim_sequence=remittance_claim.sequence,
                claim_id=candidates[0].id,
            )
            return MatchOutcome(candidates[0], PATIENT_FALLBACK)

        if len(candidates) > 1:
            candidate_ids = sorted(c.id for c in candidates)
            raise ClaimMatchError(
                ClaimMatchError.AMBIGUOUS,
                f"Claim {remittance_claim.patient_control_number} matches {len(candidates)} internal claims",
                candidate_ids=candidate_ids,
            )

        raise ClaimMatchError(
            ClaimMatchError.NOT_FOUND,
            f"No internal claim matches {remittance_claim.patient_control_number}",
        )

    def _find_by_control_number(self, control_number: Optional[str]) -> Optional[Claim]:
        if not control_number:
            return None
        return self.db.query(Claim).filter(Claim.claim_control_number == control_number).first()

    def _fallback_candidates(self, remittance_claim: RemittanceClaim) -> List[Claim]:
        patient = remittance_claim.patient
        if patient is None:
            return []

        query = self.db.query(Claim)
        if patient.identifier:
            query = query.filter(Claim.patient_member_id == patient.identifier)
        elif patient.last_name and patient.first_name:
            query = query.filter(
                func.lower(Claim.patient_last_name) == patient.last_name.lower(),
                func.lower(Claim.patient_first_name) == patient.first_name.lower(),
            )
        else:
            return []

        period = remittance_claim.service_period
        billed = round_to_precision(remittance_claim.billed_amount)

        # Amounts and periods compare in Python so Decimal equality is exact on every backend
        candidates = []
        for claim in query.all():
            if claim.total_charge_amount is None:
                continue
            if round_to_precision(claim.total_charge_amount) != billed:
                continue
            if not _periods_overlap(period, (claim.statement_from_date, claim.statement_to_date or claim.statement_from_date)):
                continue
            candidates.append(claim)
        return candidates
