"""
Database models package.

    from app.models import Claim, LedgerEntry
    from app.models.enums import ClaimStatus
"""

from app.models.enums import (
    ClaimStatus,
    EraFileStatus,
    LedgerEntryType,
    PostingOutcome,
)

from app.models.core import Payer

from app.models.database import (
    Claim,
    EraFile,
    PostingRun,
    LedgerEntry,
    ClaimAdjustment,
    ParserLog,
)

__all__ = [
    # Enums
    "ClaimStatus",
    "EraFileStatus",
    "LedgerEntryType",
    "PostingOutcome",
    # Reference data
    "Payer",
    # Billing and remittances
    "Claim",
    "EraFile",
    "PostingRun",
    "LedgerEntry",
    "ClaimAdjustment",
    # Logging
    "ParserLog",
]
