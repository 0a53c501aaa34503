"""Element conversions shared by the 835 extractors.

Conversions that fail inside a claim loop raise `ClaimMappingError`, which
demotes that claim loop only.
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence

from app.services.edi.domain import ADJUSTMENT_GROUP_CODES, Adjustment, Reference
from app.services.edi.segments import Segment, SegmentKind
from app.utils.decimal_utils import parse_decimal, parse_financial_amount
from app.utils.errors import ClaimMappingError

# CAS carries up to six reason/amount/quantity triples after the group code
CAS_TRIPLE_STARTS = (2, 5, 8, 11, 14, 17)


def _mapping_error(segment: Segment, index: int, problem: str) -> ClaimMappingError:
    return ClaimMappingError(
        f"{segment.segment_id}{index:02d} {problem} at segment {segment.position}",
        segment_id=segment.segment_id,
        position=segment.position,
    )


def required_amount(segment: Segment, index: int) -> Decimal:
    """Monetary element that must be present and numeric."""
    raw = segment.get(index)
    if not raw:
        raise _mapping_error(segment, index, "is missing")
    amount = parse_financial_amount(raw)
    if amount is None:
        raise _mapping_error(segment, index, f"is not a valid amount ({raw!r})")
    return amount


def optional_amount(segment: Segment, index: int) -> Optional[Decimal]:
    """Monetary element that may be blank but must be numeric when sent."""
    if not segment.get(index):
        return None
    return required_amount(segment, index)


def optional_quantity(segment: Segment, index: int) -> Optional[Decimal]:
    raw = segment.get(index)
    if not raw:
        return None
    quantity = parse_decimal(raw)
    if quantity is None:
        raise _mapping_error(segment, index, f"is not a valid quantity ({raw!r})")
    return quantity


def parse_edi_date(value: str) -> Optional[date]:
    """CCYYMMDD to date; None when blank. Raises ValueError when malformed."""
    if not value:
        return None
    if len(value) != 8 or not value.isdigit():
        raise ValueError(f"invalid date {value!r}")
    return date(int(value[0:4]), int(value[4:6]), int(value[6:8]))


def segment_date(segment: Segment, index: int) -> Optional[date]:
    """Date element inside a claim loop."""
    try:
        return parse_edi_date(segment.get(index))
    except ValueError as e:
        raise _mapping_error(segment, index, f"is not a valid date ({segment.get(index)!r})") from e


def parse_adjustments(segment: Segment) -> List[Adjustment]:
    """Expand one CAS segment into its adjustments."""
    group_code = segment.get(1)
    if group_code not in ADJUSTMENT_GROUP_CODES:
        raise _mapping_error(segment, 1, f"has unknown adjustment group code {group_code!r}")

    adjustments = []
    for start in CAS_TRIPLE_STARTS:
        reason_code = segment.get(start)
        if not reason_code:
            continue
        adjustments.append(
            Adjustment(
                group_code=group_code,
                reason_code=reason_code,
                amount=required_amount(segment, start + 1),
                quantity=optional_quantity(segment, start + 2),
            )
        )
    if not adjustments:
        raise _mapping_error(segment, 2, "is missing (no adjustment reason)")
    return adjustments


def find_segments(segments: Sequence[Segment], kind: SegmentKind, qualifier: Optional[str] = None) -> List[Segment]:
    """Segments of one kind, optionally filtered on their first element."""
    result = []
    for segment in segments:
        if segment.kind is kind and (qualifier is None or segment.get(1) == qualifier):
            result.append(segment)
    return result


def find_segment(segments: Sequence[Segment], kind: SegmentKind, qualifier: Optional[str] = None) -> Optional[Segment]:
    for segment in segments:
        if segment.kind is kind and (qualifier is None or segment.get(1) == qualifier):
            return segment
    return None


def references(segments: Sequence[Segment]) -> List[Reference]:
    """REF qualifier/value pairs; REF segments without a value are skipped."""
    result = []
    for segment in find_segments(segments, SegmentKind.REF):
        if segment.has(1, 2):
            result.append(Reference(qualifier=segment.get(1), value=segment.get(2)))
    return result
