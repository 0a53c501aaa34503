"""
Domain mapper: structural tree to immutable `ERAFile`.

The mapper never modifies the tree. Header problems that make the file
meaningless (a BPR02 that is not an amount) raise `EnvelopeError`. Problems
inside one claim loop demote that claim to `unusable_claims` with a warning
and mapping continues with the next claim.
"""
from dataclasses import replace
from datetime import date
from typing import List, Optional, Tuple

from app.services.edi.config import describe_payment_method
from app.services.edi.domain import ERAFile, Party, ProviderAdjustment, UnusableClaim
from app.services.edi.extractors.claim_extractor import ClaimExtractor
from app.services.edi.extractors.elements import find_segment, parse_edi_date
from app.services.edi.extractors.party_extractor import (
    PAYEE_ENTITY_CODE,
    PAYER_ENTITY_CODE,
    PartyExtractor,
)
from app.services.edi.segments import Segment, SegmentKind
from app.services.edi.structure import ClaimLoop, StructuralTree
from app.utils.decimal_utils import parse_financial_amount
from app.utils.errors import ClaimMappingError, EnvelopeError
from app.utils.logger import get_logger

logger = get_logger(__name__)

# PLB carries up to six reason/amount pairs after the provider id and date
PLB_PAIR_STARTS = (3, 5, 7, 9, 11, 13)

PRODUCTION_DATE = "405"
PAYER_ID_REFERENCE = "2U"


class DomainMapper:
    """Maps a `StructuralTree` to an `ERAFile` and the warnings raised on the way."""

    def __init__(self):
        self.party_extractor = PartyExtractor()

    def map(self, tree: StructuralTree) -> Tuple[ERAFile, List[str]]:
        """
        Raises:
            EnvelopeError: BPR/TRN missing or BPR02 is not a valid amount
        """
        warnings: List[str] = []
        bpr = tree.header_segment(SegmentKind.BPR)
        trn = tree.header_segment(SegmentKind.TRN)
        if bpr is None or trn is None:
            raise EnvelopeError("Required BPR or TRN segment is missing")

        payment_amount = parse_financial_amount(bpr.get(2))
        if payment_amount is None:
            raise EnvelopeError(
                f"BPR02 total payment amount is not a valid amount ({bpr.get(2)!r})",
                segment_id="BPR",
                position=bpr.position,
            )

        payer = self._map_payer(tree, trn, warnings)
        payee = self.party_extractor.extract(tree.entities, PAYEE_ENTITY_CODE)
        claims, unusable = self._map_claims(tree, warnings)

        currency = tree.header_segment(SegmentKind.CUR)
        production = find_segment(tree.header, SegmentKind.DTM, PRODUCTION_DATE)

        era = ERAFile(
            interchange_control_number=tree.interchange_control_number,
            group_control_number=tree.gs.get(6),
            transaction_control_number=tree.transaction_control_number,
            payer=payer,
            payee=payee,
            payment_amount=payment_amount,
            transaction_handling_code=bpr.get(1) or None,
            credit_debit_flag=bpr.get(3) or None,
            payment_method_code=bpr.get(4) or None,
            payment_method=describe_payment_method(bpr.get(4)),
            payment_format_code=bpr.get(5) or None,
            payment_date=self._header_date(bpr, 16, "payment date", warnings),
            trace_type_code=trn.get(1) or None,
            check_eft_number=trn.get(2) or None,
            originator_id=trn.get(3) or None,
            sender_id=tree.isa.get(6) or None,
            receiver_id=tree.isa.get(8) or None,
            version=tree.gs.get(8) or None,
            production_date=(
                self._header_date(production, 2, "production date", warnings) if production else None
            ),
            currency=currency.get(2) if currency else None,
            claims=tuple(claims),
            unusable_claims=tuple(unusable),
            provider_adjustments=tuple(self._map_provider_adjustments(tree, warnings)),
        )

        logger.debug(
            "Mapped ERA",
            interchange_control_number=era.interchange_control_number,
            claims=len(era.claims),
            unusable_claims=len(era.unusable_claims),
        )
        return era, warnings

    def _map_payer(self, tree: StructuralTree, trn: Segment, warnings: List[str]) -> Party:
        payer = self.party_extractor.extract(tree.entities, PAYER_ENTITY_CODE)
        if payer is None:
            warnings.append("Payer identification loop (N1*PR) is missing")
            return Party(entity_code=PAYER_ENTITY_CODE, identifier=trn.get(3) or None)
        if payer.identifier:
            return payer

        # No N104: fall back to the payer id reference, then the TRN originator
        for ref in payer.references:
            if ref.qualifier == PAYER_ID_REFERENCE:
                return replace(payer, identifier=ref.value)
        if trn.get(3):
            return replace(payer, identifier=trn.get(3))
        return payer

    def _map_claims(self, tree: StructuralTree, warnings: List[str]):
        extractor = ClaimExtractor(tree.delimiters)
        claims = []
        unusable = []
        for loop in tree.claims:
            if not loop.usable:
                # Structural errors were already reported by the parser
                unusable.append(self._unusable(loop, loop.errors))
                continue
            try:
                claims.append(extractor.extract(loop))
            except ClaimMappingError as e:
                label = loop.patient_control_number or "no claim id"
                warnings.append(f"Claim {loop.sequence} ({label}) is unusable: {e.message}")
                logger.warning(
                    "Claim loop demoted to unusable",
                    claim_sequence=loop.sequence,
                    error=e.message,
                )
                unusable.append(self._unusable(loop, [e.message]))
        return claims, unusable

    def _unusable(self, loop: ClaimLoop, reasons: List[str]) -> UnusableClaim:
        return UnusableClaim(
            sequence=loop.sequence,
            patient_control_number=loop.patient_control_number or None,
            reasons=tuple(reasons),
            paid_amount=parse_financial_amount(loop.clp.get(4)),
        )

    def _map_provider_adjustments(self, tree: StructuralTree, warnings: List[str]) -> List[ProviderAdjustment]:
        adjustments = []
        component = tree.delimiters.component
        for plb in tree.provider_adjustments:
            fiscal_date = self._header_date(plb, 2, "fiscal period date", warnings)
            for start in PLB_PAIR_STARTS:
                composite = plb.components(start, component)
                if not composite:
                    continue
                amount = parse_financial_amount(plb.get(start + 1))
                if amount is None:
                    warnings.append(
                        f"PLB{start + 1:02d} at segment {plb.position} is not a valid amount "
                        f"({plb.get(start + 1)!r}); provider adjustment ignored"
                    )
                    continue
                adjustments.append(
                    ProviderAdjustment(
                        provider_identifier=plb.get(1),
                        fiscal_period_date=fiscal_date,
                        reason_code=composite[0],
                        reference_id=composite[1] if len(composite) > 1 and composite[1] else None,
                        amount=amount,
                    )
                )
        return adjustments

    def _header_date(self, segment: Segment, index: int, label: str, warnings: List[str]) -> Optional[date]:
        try:
            return parse_edi_date(segment.get(index))
        except ValueError:
            warnings.append(
                f"{segment.segment_id}{index:02d} {label} is not a valid date ({segment.get(index)!r})"
            )
            return None
