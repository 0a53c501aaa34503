"""Posting result types returned to callers and stored on posting runs."""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.models.enums import ClaimStatus, PostingOutcome
from app.utils.decimal_utils import format_amount


@dataclass
class ClaimPostingResult:
    """Outcome of posting one remittance claim."""

    claim_sequence: int
    patient_control_number: str
    outcome: PostingOutcome
    posting_key: str
    claim_id: Optional[int] = None
    ledger_entry_id: Optional[int] = None
    match_method: Optional[str] = None
    previous_status: Optional[ClaimStatus] = None
    new_status: Optional[ClaimStatus] = None
    paid_amount: Optional[Decimal] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 1
    adjustment_codes: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome is PostingOutcome.POSTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claim_sequence": self.claim_sequence,
            "patient_control_number": self.patient_control_number,
            "outcome": self.outcome.value,
            "posting_key": self.posting_key,
            "claim_id": self.claim_id,
            "ledger_entry_id": self.ledger_entry_id,
            "match_method": self.match_method,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value if self.new_status else None,
            "paid_amount": format_amount(self.paid_amount) if self.paid_amount is not None else None,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "attempts": self.attempts,
            "adjustment_codes": list(self.adjustment_codes),
            "warnings": list(self.warnings),
        }


@dataclass
class PostingResult:
    """
    Aggregate result of one posting run.

    Counts always satisfy total_claims = successful + failed + skipped.
    """

    era_file_id: int
    results: List[ClaimPostingResult]
    posting_run_id: Optional[int] = None
    is_repost: bool = False

    @property
    def total_claims(self) -> int:
        return len(self.results)

    @property
    def successful_posts(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def failed_posts(self) -> int:
        return sum(1 for r in self.results if r.outcome is PostingOutcome.FAILED)

    @property
    def skipped_posts(self) -> int:
        return sum(1 for r in self.results if r.outcome is PostingOutcome.ALREADY_POSTED)

    @property
    def failures(self) -> List[ClaimPostingResult]:
        return [r for r in self.results if r.outcome is PostingOutcome.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "era_file_id": self.era_file_id,
            "posting_run_id": self.posting_run_id,
            "is_repost": self.is_repost,
            "total_claims": self.total_claims,
            "successful_posts": self.successful_posts,
            "failed_posts": self.failed_posts,
            "skipped_posts": self.skipped_posts,
            "results": [r.to_dict() for r in self.results],
        }
