"""Extract claim payment data from 835 CLP loops."""
from typing import Optional

from app.services.edi.config import describe_claim_status
from app.services.edi.domain import Claim, Person
from app.services.edi.extractors.elements import (
    find_segment,
    find_segments,
    optional_amount,
    parse_adjustments,
    references,
    required_amount,
    segment_date,
)
from app.services.edi.extractors.line_extractor import LineExtractor
from app.services.edi.segments import Delimiters, Segment, SegmentKind
from app.services.edi.structure import ClaimLoop
from app.utils.decimal_utils import ZERO, round_to_precision, sum_amounts
from app.utils.logger import get_logger

logger = get_logger(__name__)

# NM1 entity identifier codes in the claim loop
PATIENT = "QC"
INSURED = "IL"
RENDERING_PROVIDER = "82"

# Claim-level DTM qualifiers
STATEMENT_FROM = "232"
STATEMENT_TO = "233"
CLAIM_RECEIVED = "050"

ORIGINAL_REFERENCE_NUMBER = "F8"


class ClaimExtractor:
    """Map one usable `ClaimLoop` to a `Claim`."""

    def __init__(self, delimiters: Delimiters):
        self.line_extractor = LineExtractor(delimiters)

    def extract(self, loop: ClaimLoop) -> Claim:
        """
        Extract claim data from CLP segment and related segments.

        Raises:
            ClaimMappingError: an amount, date or adjustment code in the loop is invalid
        """
        clp = loop.clp

        billed_amount = required_amount(clp, 3)
        paid_amount = required_amount(clp, 4)
        patient_responsibility = optional_amount(clp, 5)
        if patient_responsibility is None:
            patient_responsibility = ZERO

        adjustments = []
        for cas in find_segments(loop.details, SegmentKind.CAS):
            adjustments.extend(parse_adjustments(cas))

        service_lines = self.line_extractor.extract(loop.services)

        statement_from = statement_to = received_date = None
        for dtm in find_segments(loop.details, SegmentKind.DTM):
            qualifier = dtm.get(1)
            if qualifier == STATEMENT_FROM:
                statement_from = segment_date(dtm, 2)
            elif qualifier == STATEMENT_TO:
                statement_to = segment_date(dtm, 2)
            elif qualifier == CLAIM_RECEIVED:
                received_date = segment_date(dtm, 2)

        # Allowed: line allowed amounts when lines exist, else billed - contractual
        claim_contractual = sum_amounts(adj.amount for adj in adjustments if adj.group_code == "CO")
        if service_lines:
            allowed_amount = sum_amounts(line.allowed_amount for line in service_lines) - claim_contractual
        else:
            allowed_amount = billed_amount - claim_contractual

        claim_refs = references(loop.details)
        status_code = clp.get(2)

        return Claim(
            sequence=loop.sequence,
            patient_control_number=clp.get(1),
            claim_status_code=status_code,
            claim_status_description=describe_claim_status(status_code),
            billed_amount=billed_amount,
            paid_amount=paid_amount,
            patient_responsibility=patient_responsibility,
            allowed_amount=round_to_precision(allowed_amount),
            filing_indicator=clp.get(6) or None,
            payer_claim_control_number=clp.get(7) or None,
            facility_code=clp.get(8) or None,
            frequency_code=clp.get(9) or None,
            patient=self._extract_person(loop, PATIENT),
            insured=self._extract_person(loop, INSURED),
            rendering_provider=self._extract_person(loop, RENDERING_PROVIDER),
            statement_from=statement_from,
            statement_to=statement_to,
            received_date=received_date,
            original_reference_numbers=tuple(
                ref.value for ref in claim_refs if ref.qualifier == ORIGINAL_REFERENCE_NUMBER
            ),
            references=tuple(claim_refs),
            adjustments=tuple(adjustments),
            service_lines=tuple(service_lines),
        )

    def _extract_person(self, loop: ClaimLoop, entity_code: str) -> Optional[Person]:
        nm1: Optional[Segment] = find_segment(loop.details, SegmentKind.NM1, entity_code)
        if nm1 is None:
            return None
        return Person(
            entity_code=entity_code,
            last_name=nm1.get(3) or None,
            first_name=nm1.get(4) or None,
            middle_name=nm1.get(5) or None,
            id_qualifier=nm1.get(8) or None,
            identifier=nm1.get(9) or None,
        )
