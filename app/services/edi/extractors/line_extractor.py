"""Extract service line payments from 835 SVC loops."""
from typing import List

from app.services.edi.domain import ServiceLine
from app.services.edi.extractors.elements import (
    find_segment,
    find_segments,
    optional_amount,
    optional_quantity,
    parse_adjustments,
    required_amount,
    segment_date,
)
from app.services.edi.segments import Delimiters, SegmentKind
from app.services.edi.structure import ServiceLoop
from app.utils.decimal_utils import round_to_precision, sum_amounts
from app.utils.logger import get_logger

logger = get_logger(__name__)

# SVC01 qualifier for NUBC revenue codes
REVENUE_CODE_QUALIFIER = "NU"

# DTM qualifiers inside the service loop
SERVICE_DATE = "472"
SERVICE_PERIOD_START = "150"
SERVICE_PERIOD_END = "151"


class LineExtractor:
    """Extract `ServiceLine` values; raises ClaimMappingError on bad elements."""

    def __init__(self, delimiters: Delimiters):
        self.delimiters = delimiters

    def extract(self, services: List[ServiceLoop]) -> List[ServiceLine]:
        lines = []
        for line_number, service in enumerate(services, start=1):
            lines.append(self._extract_line(line_number, service))
        return lines

    def _extract_line(self, line_number: int, service: ServiceLoop) -> ServiceLine:
        svc = service.svc

        # SVC01 composite: qualifier:code:modifier1..4
        procedure = svc.components(1, self.delimiters.component)
        if len(procedure) > 1:
            qualifier, code = procedure[0], procedure[1]
        else:
            qualifier, code = None, svc.get(1)
        modifiers = tuple(m for m in procedure[2:6] if m)

        revenue_code = svc.get(4) or None
        if revenue_code is None and qualifier == REVENUE_CODE_QUALIFIER:
            revenue_code = code

        billed_amount = required_amount(svc, 2)
        paid_amount = required_amount(svc, 3)

        adjustments = []
        for cas in find_segments(service.details, SegmentKind.CAS):
            adjustments.extend(parse_adjustments(cas))

        service_date = None
        service_end_date = None
        for dtm in find_segments(service.details, SegmentKind.DTM):
            qualifier_code = dtm.get(1)
            if qualifier_code in (SERVICE_DATE, SERVICE_PERIOD_START):
                service_date = segment_date(dtm, 2)
            elif qualifier_code == SERVICE_PERIOD_END:
                service_end_date = segment_date(dtm, 2)

        line_item = find_segment(service.details, SegmentKind.REF, "6R")
        remark_codes = tuple(
            lq.get(2) for lq in find_segments(service.details, SegmentKind.LQ) if lq.get(2)
        )

        # AMT*B6 is the payer's allowed amount; without it allowed = billed - contractual
        allowed_segment = find_segment(service.details, SegmentKind.AMT, "B6")
        allowed_amount = optional_amount(allowed_segment, 2) if allowed_segment else None
        if allowed_amount is None:
            contractual = sum_amounts(adj.amount for adj in adjustments if adj.group_code == "CO")
            allowed_amount = round_to_precision(billed_amount - contractual)

        return ServiceLine(
            line_number=line_number,
            procedure_code=code,
            procedure_qualifier=qualifier,
            modifiers=modifiers,
            revenue_code=revenue_code,
            billed_amount=billed_amount,
            paid_amount=paid_amount,
            allowed_amount=allowed_amount,
            units=optional_quantity(svc, 5),
            original_units=optional_quantity(svc, 7),
            service_date=service_date,
            service_end_date=service_end_date,
            line_item_control_number=line_item.get(2) if line_item else None,
            adjustments=tuple(adjustments),
            remark_codes=remark_codes,
        )
