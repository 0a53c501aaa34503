"""
Status and type enumerations for database models.

Enums are string enums so they serialize cleanly to JSON and store as
readable values.
"""
import enum


class ClaimStatus(str, enum.Enum):
    """Internal claim lifecycle: SUBMITTED -> ACCEPTED -> PAID | PARTIALLY_PAID | DENIED."""

    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    DENIED = "denied"


class EraFileStatus(str, enum.Enum):
    """Processing status of an uploaded ERA file."""

    UPLOADED = "uploaded"
    PARSING = "parsing"
    PARSED = "parsed"
    POSTING = "posting"
    POSTED = "posted"
    PARTIALLY_POSTED = "partially_posted"
    ERROR = "error"


class LedgerEntryType(str, enum.Enum):
    """Kind of ledger entry."""

    PAYMENT = "payment"
    REVERSAL = "reversal"


class PostingOutcome(str, enum.Enum):
    """Per-claim outcome of a posting run."""

    POSTED = "posted"
    FAILED = "failed"
    ALREADY_POSTED = "already_posted"


# Claim states a remittance may be posted against
POSTABLE_CLAIM_STATUSES = frozenset({ClaimStatus.SUBMITTED, ClaimStatus.ACCEPTED})
