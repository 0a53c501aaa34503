"""
SQLAlchemy database models for ERA ingestion and payment posting.

Core models (Payer) are in app.models.core. Enums are in app.models.enums.

Billing:
- Claim: internal claim record that remittances are posted against

Remittances:
- EraFile: uploaded 835 file, its parsed header and processing status
- PostingRun: immutable audit record of one posting run over an ERA file
- LedgerEntry: immutable payment/reversal entry for one claim
- ClaimAdjustment: CAS adjustment attached to a ledger entry

Logging:
- ParserLog: warnings raised while parsing an ERA file

Ledger entries and posting runs are append-only: an update to either raises
before it reaches the database. Reversals are written as new entries.
"""
from sqlalchemy import (
    Column,
    String,
    Integer,
    Numeric,
    Boolean,
    Date,
    DateTime,
    Text,
    ForeignKey,
    JSON,
    Enum as SQLEnum,
    event,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.config.database import Base, TimestampMixin
from app.models.enums import ClaimStatus, EraFileStatus, LedgerEntryType
from app.models.core import Payer

Money = Numeric(12, 2)


class Claim(Base, TimestampMixin):
    """
    Internal insurance claim.

    Claims are created by the billing workflow when an 837 is submitted; this
    service only reads them for matching and updates their financial state
    when a remittance is posted.

    Attributes:
        claim_control_number: Claim id sent as CLM01, echoed back by payers in CLP01
        payer_claim_control_number: Payer's own claim id (CLP07), learned on posting
        patient_member_id: Subscriber/member id used by fallback matching
        patient_last_name / patient_first_name: Used when no member id is sent
        statement_from_date / statement_to_date: Service period of the claim
        total_charge_amount: Billed amount
        paid_amount / allowed_amount / patient_responsibility_amount / adjustment_amount:
            Running totals maintained by the posting engine
        adjustment_reason_codes: Group+reason codes (e.g. "CO45") from the latest posting
        status: Lifecycle status (see ClaimStatus)
        version_id: Optimistic concurrency counter; a stale write raises StaleDataError
    """

    __tablename__ = "claims"

    id = Column(Integer, primary_key=True, index=True)
    claim_control_number = Column(String(50), unique=True, nullable=False, index=True)
    payer_claim_control_number = Column(String(50), index=True)
    payer_id = Column(Integer, ForeignKey("payers.id"), index=True)
    practice_id = Column(String(50), index=True)

    # Patient identity used by fallback matching
    patient_member_id = Column(String(80), index=True)
    patient_last_name = Column(String(100), index=True)
    patient_first_name = Column(String(100))

    statement_from_date = Column(Date)
    statement_to_date = Column(Date)

    # Financial state
    total_charge_amount = Column(Money, nullable=False)
    paid_amount = Column(Money, nullable=False, default=0)
    allowed_amount = Column(Money)
    patient_responsibility_amount = Column(Money, nullable=False, default=0)
    adjustment_amount = Column(Money, nullable=False, default=0)
    adjustment_reason_codes = Column(JSON)

    status = Column(SQLEnum(ClaimStatus), default=ClaimStatus.SUBMITTED, nullable=False, index=True)
    last_posted_at = Column(DateTime)

    version_id = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    payer = relationship("Payer", back_populates="claims")
    ledger_entries = relationship("LedgerEntry", back_populates="claim", order_by="LedgerEntry.id")
    adjustments = relationship("ClaimAdjustment", back_populates="claim")


class EraFile(Base, TimestampMixin):
    """
    Uploaded 835 remittance file.

    Created by the upload endpoint with the raw content; the processing task
    fills in the parsed header (control numbers, payer, payment) and the
    posting counts as the file moves through EraFileStatus.
    """

    __tablename__ = "era_files"

    id = Column(Integer, primary_key=True, index=True)
    file_name = Column(String(255), nullable=False)
    file_content = Column(Text, nullable=False)
    file_size = Column(Integer)
    uploaded_by = Column(String(100), index=True)

    processing_status = Column(
        SQLEnum(EraFileStatus), default=EraFileStatus.UPLOADED, nullable=False, index=True
    )
    processing_started_at = Column(DateTime)
    processing_completed_at = Column(DateTime)

    # Parsed header
    interchange_sender_id = Column(String(20), index=True)
    interchange_control_number = Column(String(20), index=True)
    transaction_control_number = Column(String(20), index=True)
    payer_id = Column(Integer, ForeignKey("payers.id"), index=True)
    payer_name = Column(String(255))
    payer_identifier = Column(String(80))
    payment_method = Column(String(30))
    payment_amount = Column(Money)
    payment_date = Column(Date)
    check_eft_number = Column(String(50))
    total_claims = Column(Integer)
    total_service_lines = Column(Integer)

    # Parse outcome
    parse_warnings = Column(JSON)
    unusable_claims = Column(JSON)
    error_message = Column(Text)
    error_details = Column(JSON)

    # Posting outcome of the latest run
    claims_posted = Column(Integer, default=0)
    claims_failed = Column(Integer, default=0)

    payer = relationship("Payer", back_populates="era_files")
    posting_runs = relationship("PostingRun", back_populates="era_file", order_by="PostingRun.id")
    ledger_entries = relationship("LedgerEntry", back_populates="era_file")


class PostingRun(Base, TimestampMixin):
    """
    Audit record of one posting run.

    Stores the aggregate posting result exactly as returned to the caller.
    A run against an ERA whose sender and control numbers were posted before
    is stored with is_repost=True; earlier runs are never touched.
    """

    __tablename__ = "posting_runs"

    id = Column(Integer, primary_key=True, index=True)
    era_file_id = Column(Integer, ForeignKey("era_files.id"), nullable=False, index=True)
    interchange_sender_id = Column(String(20), index=True)
    interchange_control_number = Column(String(20), nullable=False, index=True)
    transaction_control_number = Column(String(20), nullable=False, index=True)
    is_repost = Column(Boolean, default=False, nullable=False)

    total_claims = Column(Integer, nullable=False)
    successful_posts = Column(Integer, nullable=False)
    failed_posts = Column(Integer, nullable=False)
    skipped_posts = Column(Integer, nullable=False)
    results = Column(JSON, nullable=False)

    posted_by = Column(String(100))
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=False)

    era_file = relationship("EraFile", back_populates="posting_runs")


class LedgerEntry(Base, TimestampMixin):
    """
    Immutable reconciliation entry for one remittance claim posted to one claim.

    posting_key is unique: "<ISA06>:<ISA13>:<ST02>:<claim sequence>" for payments and
    "reversal:<entry id>" for reversals, so the database itself rejects a
    second posting of the same remittance claim.
    """

    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    posting_key = Column(String(120), unique=True, nullable=False, index=True)
    entry_type = Column(SQLEnum(LedgerEntryType), nullable=False, default=LedgerEntryType.PAYMENT)

    era_file_id = Column(Integer, ForeignKey("era_files.id"), index=True)
    claim_id = Column(Integer, ForeignKey("claims.id"), nullable=False, index=True)
    reverses_entry_id = Column(Integer, ForeignKey("ledger_entries.id"), unique=True)

    # Remittance reference
    interchange_sender_id = Column(String(20))
    interchange_control_number = Column(String(20))
    transaction_control_number = Column(String(20))
    claim_sequence = Column(Integer)
    patient_control_number = Column(String(50))
    payer_claim_control_number = Column(String(50))
    claim_status_code = Column(String(3))
    check_eft_number = Column(String(50))

    # Amounts (negated on reversals)
    billed_amount = Column(Money)
    allowed_amount = Column(Money)
    paid_amount = Column(Money, nullable=False)
    patient_responsibility = Column(Money, nullable=False, default=0)
    contractual_adjustment = Column(Money, nullable=False, default=0)
    deductible = Column(Money, nullable=False, default=0)
    coinsurance = Column(Money, nullable=False, default=0)
    copay = Column(Money, nullable=False, default=0)
    other_adjustment = Column(Money, nullable=False, default=0)

    previous_status = Column(SQLEnum(ClaimStatus))
    new_status = Column(SQLEnum(ClaimStatus))
    reversal_reason = Column(Text)

    posted_by = Column(String(100))
    posted_at = Column(DateTime, default=func.now(), nullable=False)

    claim = relationship("Claim", back_populates="ledger_entries")
    era_file = relationship("EraFile", back_populates="ledger_entries")
    adjustments = relationship("ClaimAdjustment", back_populates="ledger_entry", order_by="ClaimAdjustment.id")


class ClaimAdjustment(Base, TimestampMixin):
    """
    CAS adjustment recorded with a ledger entry.

    service_line_number is None for claim-level adjustments.
    """

    __tablename__ = "claim_adjustments"

    id = Column(Integer, primary_key=True, index=True)
    ledger_entry_id = Column(Integer, ForeignKey("ledger_entries.id"), nullable=False, index=True)
    claim_id = Column(Integer, ForeignKey("claims.id"), nullable=False, index=True)

    service_line_number = Column(Integer)
    procedure_code = Column(String(20))
    service_date = Column(Date)

    group_code = Column(String(2), nullable=False)
    reason_code = Column(String(5), nullable=False)
    amount = Column(Money, nullable=False)
    quantity = Column(Numeric(12, 3))

    ledger_entry = relationship("LedgerEntry", back_populates="adjustments")
    claim = relationship("Claim", back_populates="adjustments")


class ParserLog(Base, TimestampMixin):
    """
    Warnings raised while parsing an ERA file.

    Attributes:
        era_file_id: File the warning belongs to
        log_level: warning, error, info
        segment_type: Segment id involved (CLP, SVC, ...)
        issue_type: unusable_claim, reconciliation_mismatch, trailer_count, ...
        claim_control_number: CLP01 of the affected claim loop, if any
    """

    __tablename__ = "parser_logs"

    id = Column(Integer, primary_key=True, index=True)
    era_file_id = Column(Integer, ForeignKey("era_files.id"), index=True)
    file_name = Column(String(255), nullable=False)

    log_level = Column(String(20))
    segment_type = Column(String(10))
    issue_type = Column(String(50))
    message = Column(Text, nullable=False)
    details = Column(JSON)

    claim_control_number = Column(String(50))

    created_at = Column(DateTime, default=func.now(), nullable=False, index=True)


def _reject_update(mapper, connection, target):
    raise ValueError(f"{type(target).__name__} records are append-only")


event.listen(LedgerEntry, "before_update", _reject_update)
event.listen(PostingRun, "before_update", _reject_update)


__all__ = [
    "Payer",
    "ClaimStatus",
    "EraFileStatus",
    "LedgerEntryType",
    "Claim",
    "EraFile",
    "PostingRun",
    "LedgerEntry",
    "ClaimAdjustment",
    "ParserLog",
]
