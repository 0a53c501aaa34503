"""
Payment reconciliation for a mapped ERA.

The total payment (BPR02) must equal the claim payments (CLP04) less the
provider-level adjustments (PLB). Claim loops that could not be mapped still
count when their CLP04 is a valid amount, since the payer paid them. The
allowed drift is the per-claim tolerance times the number of claim loops.
A mismatch is a warning; it never blocks posting.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from app.services.edi.domain import ERAFile
from app.utils.decimal_utils import format_amount, round_to_precision, sum_amounts
from app.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TOLERANCE_PER_CLAIM = Decimal("0.01")


@dataclass(frozen=True)
class ReconciliationMismatch:
    """BPR02 does not reconcile with the claim payments."""

    payment_amount: Decimal
    claims_paid_total: Decimal
    provider_adjustment_total: Decimal
    discrepancy: Decimal
    tolerance: Decimal
    claim_count: int

    @property
    def expected_payment(self) -> Decimal:
        return round_to_precision(self.claims_paid_total - self.provider_adjustment_total)

    @property
    def message(self) -> str:
        message = (
            f"Total payment {format_amount(self.payment_amount)} does not reconcile with "
            f"claim payments {format_amount(self.claims_paid_total)}"
        )
        if self.provider_adjustment_total:
            message += f" less provider adjustments {format_amount(self.provider_adjustment_total)}"
        return message + f": discrepancy {format_amount(self.discrepancy)}"

    def to_dict(self) -> dict:
        return {
            "payment_amount": format_amount(self.payment_amount),
            "claims_paid_total": format_amount(self.claims_paid_total),
            "provider_adjustment_total": format_amount(self.provider_adjustment_total),
            "discrepancy": format_amount(self.discrepancy),
            "tolerance": format_amount(self.tolerance),
            "claim_count": self.claim_count,
        }


def reconcile(
    era: ERAFile, tolerance_per_claim: Decimal = DEFAULT_TOLERANCE_PER_CLAIM
) -> Optional[ReconciliationMismatch]:
    """Return the mismatch, or None when the ERA balances within tolerance."""
    claim_count = era.claim_loop_count
    claims_paid_total = sum_amounts(
        [claim.paid_amount for claim in era.claims]
        + [claim.paid_amount for claim in era.unusable_claims]
    )
    provider_adjustment_total = era.provider_adjustment_total
    expected = claims_paid_total - provider_adjustment_total
    discrepancy = round_to_precision(abs(era.payment_amount - expected))
    tolerance = round_to_precision(tolerance_per_claim * max(claim_count, 1))

    if discrepancy <= tolerance:
        return None

    mismatch = ReconciliationMismatch(
        payment_amount=era.payment_amount,
        claims_paid_total=claims_paid_total,
        provider_adjustment_total=provider_adjustment_total,
        discrepancy=discrepancy,
        tolerance=tolerance,
        claim_count=claim_count,
    )
    logger.warning(
        "ERA payment does not reconcile",
        interchange_control_number=era.interchange_control_number,
        discrepancy=format_amount(discrepancy),
        claim_count=claim_count,
    )
    return mismatch
