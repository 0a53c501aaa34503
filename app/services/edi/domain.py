"""
Immutable remittance domain model produced by the mapper.

Every type is a frozen dataclass with tuple collections, so a mapped
`ERAFile` can be shared between the reconciliation check, the matcher and the
poster without any of them changing it. Equal input bytes map to equal values.
"""
from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from app.utils.decimal_utils import format_amount, sum_amounts

# CARC codes broken out of the PR (patient responsibility) group
DEDUCTIBLE_REASON = "1"
COINSURANCE_REASON = "2"
COPAY_REASON = "3"

ADJUSTMENT_GROUP_CODES = frozenset({"CO", "PR", "OA", "PI", "CR"})


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format_amount(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, tuple):
        return [_jsonable(item) for item in value]
    if hasattr(value, "__dataclass_fields__"):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    return value


class _Serializable:
    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation: amounts as "0.00" strings, dates as ISO strings."""
        return _jsonable(self)


@dataclass(frozen=True)
class Address(_Serializable):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass(frozen=True)
class Contact(_Serializable):
    """PER contact. `communications` holds (qualifier, number) pairs."""

    function_code: Optional[str] = None
    name: Optional[str] = None
    communications: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Reference(_Serializable):
    qualifier: str
    value: str


@dataclass(frozen=True)
class Party(_Serializable):
    """Payer (N1*PR) or payee (N1*PE)."""

    entity_code: str
    name: Optional[str] = None
    id_qualifier: Optional[str] = None
    identifier: Optional[str] = None
    address: Optional[Address] = None
    contacts: Tuple[Contact, ...] = ()
    references: Tuple[Reference, ...] = ()


@dataclass(frozen=True)
class Person(_Serializable):
    """Individual or organization named by an NM1 segment in a claim loop."""

    entity_code: str
    last_name: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    id_qualifier: Optional[str] = None
    identifier: Optional[str] = None


@dataclass(frozen=True)
class Adjustment(_Serializable):
    """One CAS reason/amount pair."""

    group_code: str
    reason_code: str
    amount: Decimal
    quantity: Optional[Decimal] = None

    @property
    def code(self) -> str:
        """Group and reason code as one token, e.g. "CO45"."""
        return f"{self.group_code}{self.reason_code}"


class _AdjustmentTotals:
    """Derived totals over an `adjustments` tuple."""

    adjustments: Tuple[Adjustment, ...]

    def _total(self, group_code: str, reason_codes=None) -> Decimal:
        return sum_amounts(
            adj.amount
            for adj in self.adjustments
            if adj.group_code == group_code and (reason_codes is None or adj.reason_code in reason_codes)
        )

    @property
    def contractual_adjustment(self) -> Decimal:
        return self._total("CO")

    @property
    def patient_responsibility_adjustment(self) -> Decimal:
        return self._total("PR")

    @property
    def deductible(self) -> Decimal:
        return self._total("PR", {DEDUCTIBLE_REASON})

    @property
    def coinsurance(self) -> Decimal:
        return self._total("PR", {COINSURANCE_REASON})

    @property
    def copay(self) -> Decimal:
        return self._total("PR", {COPAY_REASON})

    @property
    def other_adjustment(self) -> Decimal:
        return sum_amounts(adj.amount for adj in self.adjustments if adj.group_code not in ("CO", "PR"))


@dataclass(frozen=True)
class ServiceLine(_AdjustmentTotals, _Serializable):
    """SVC loop."""

    line_number: int
    procedure_code: str
    billed_amount: Decimal
    paid_amount: Decimal
    procedure_qualifier: Optional[str] = None
    modifiers: Tuple[str, ...] = ()
    revenue_code: Optional[str] = None
    allowed_amount: Optional[Decimal] = None
    units: Optional[Decimal] = None
    original_units: Optional[Decimal] = None
    service_date: Optional[date] = None
    service_end_date: Optional[date] = None
    line_item_control_number: Optional[str] = None
    adjustments: Tuple[Adjustment, ...] = ()
    remark_codes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Claim(_AdjustmentTotals, _Serializable):
    """
    CLP loop.

    `adjustments` are the claim-level CAS adjustments; service line
    adjustments stay on their lines. `all_adjustments` returns both.
    """

    sequence: int
    patient_control_number: str
    claim_status_code: str
    billed_amount: Decimal
    paid_amount: Decimal
    patient_responsibility: Decimal
    claim_status_description: Optional[str] = None
    allowed_amount: Optional[Decimal] = None
    filing_indicator: Optional[str] = None
    payer_claim_control_number: Optional[str] = None
    facility_code: Optional[str] = None
    frequency_code: Optional[str] = None
    patient: Optional[Person] = None
    insured: Optional[Person] = None
    rendering_provider: Optional[Person] = None
    statement_from: Optional[date] = None
    statement_to: Optional[date] = None
    received_date: Optional[date] = None
    original_reference_numbers: Tuple[str, ...] = ()
    references: Tuple[Reference, ...] = ()
    adjustments: Tuple[Adjustment, ...] = ()
    service_lines: Tuple[ServiceLine, ...] = ()

    @property
    def all_adjustments(self) -> Tuple[Adjustment, ...]:
        line_adjustments = tuple(adj for line in self.service_lines for adj in line.adjustments)
        return self.adjustments + line_adjustments

    @property
    def adjustment_codes(self) -> Tuple[str, ...]:
        """Distinct group+reason codes in first-seen order."""
        seen = []
        for adj in self.all_adjustments:
            if adj.code not in seen:
                seen.append(adj.code)
        return tuple(seen)

    def _grand_total(self, name: str) -> Decimal:
        return sum_amounts(
            [getattr(self, name)] + [getattr(line, name) for line in self.service_lines]
        )

    @property
    def total_contractual_adjustment(self) -> Decimal:
        return self._grand_total("contractual_adjustment")

    @property
    def total_deductible(self) -> Decimal:
        return self._grand_total("deductible")

    @property
    def total_coinsurance(self) -> Decimal:
        return self._grand_total("coinsurance")

    @property
    def total_copay(self) -> Decimal:
        return self._grand_total("copay")

    @property
    def total_other_adjustment(self) -> Decimal:
        return self._grand_total("other_adjustment")

    @property
    def service_period(self) -> Tuple[Optional[date], Optional[date]]:
        """Statement dates, else the span of the service line dates."""
        if self.statement_from or self.statement_to:
            return (self.statement_from or self.statement_to, self.statement_to or self.statement_from)
        dates = []
        for line in self.service_lines:
            if line.service_date:
                dates.append(line.service_date)
            if line.service_end_date:
                dates.append(line.service_end_date)
        if not dates:
            return (None, None)
        return (min(dates), max(dates))

    @property
    def is_reversal(self) -> bool:
        """CLP02 22: payer reversal of a previous payment."""
        return self.claim_status_code == "22"


@dataclass(frozen=True)
class ProviderAdjustment(_Serializable):
    """One PLB reason/amount pair. Positive amounts reduce the payment."""

    provider_identifier: str
    fiscal_period_date: Optional[date]
    reason_code: str
    amount: Decimal
    reference_id: Optional[str] = None


@dataclass(frozen=True)
class UnusableClaim(_Serializable):
    """A claim loop that could not be mapped, with the reasons."""

    sequence: int
    patient_control_number: Optional[str]
    reasons: Tuple[str, ...]
    paid_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class ERAFile(_Serializable):
    """One 835 transaction: payment header, parties and claims."""

    interchange_control_number: str
    group_control_number: str
    transaction_control_number: str
    payer: Party
    payment_amount: Decimal
    transaction_handling_code: Optional[str] = None
    credit_debit_flag: Optional[str] = None
    payment_method_code: Optional[str] = None
    payment_method: Optional[str] = None
    payment_format_code: Optional[str] = None
    payment_date: Optional[date] = None
    trace_type_code: Optional[str] = None
    check_eft_number: Optional[str] = None
    originator_id: Optional[str] = None
    sender_id: Optional[str] = None
    receiver_id: Optional[str] = None
    version: Optional[str] = None
    production_date: Optional[date] = None
    currency: Optional[str] = None
    payee: Optional[Party] = None
    claims: Tuple[Claim, ...] = ()
    unusable_claims: Tuple[UnusableClaim, ...] = ()
    provider_adjustments: Tuple[ProviderAdjustment, ...] = ()

    @property
    def claim_loop_count(self) -> int:
        return len(self.claims) + len(self.unusable_claims)

    @property
    def service_line_count(self) -> int:
        return sum(len(claim.service_lines) for claim in self.claims)

    @property
    def claims_paid_total(self) -> Decimal:
        return sum_amounts(claim.paid_amount for claim in self.claims)

    @property
    def provider_adjustment_total(self) -> Decimal:
        return sum_amounts(adj.amount for adj in self.provider_adjustments)

    @property
    def posting_key_prefix(self) -> str:
        return f"{self.sender_id or ''}:{self.interchange_control_number}:{self.transaction_control_number}"

    def posting_key(self, claim: Claim) -> str:
        """Idempotence key of one claim posting."""
        return f"{self.posting_key_prefix}:{claim.sequence}"


__all__ = [
    "ADJUSTMENT_GROUP_CODES",
    "Address",
    "Adjustment",
    "Claim",
    "Contact",
    "ERAFile",
    "Party",
    "Person",
    "ProviderAdjustment",
    "Reference",
    "ServiceLine",
    "UnusableClaim",
]
