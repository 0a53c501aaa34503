"""Extract payer and payee parties from the 835 N1 loops."""
from typing import List, Optional

from app.services.edi.domain import Address, Contact, Party
from app.services.edi.extractors.elements import find_segment, find_segments, references
from app.services.edi.segments import SegmentKind
from app.services.edi.structure import EntityLoop
from app.utils.logger import get_logger

logger = get_logger(__name__)

PAYER_ENTITY_CODE = "PR"
PAYEE_ENTITY_CODE = "PE"

# PER communication number pairs: (qualifier, number)
PER_COMMUNICATION_PAIRS = ((3, 4), (5, 6), (7, 8))


class PartyExtractor:
    """Extract N1/N2/N3/N4/PER/REF detail for one entity code."""

    def extract(self, entities: List[EntityLoop], entity_code: str) -> Optional[Party]:
        """First N1 loop with `entity_code`, or None when the file has none."""
        for entity in entities:
            if entity.entity_code == entity_code:
                return self._extract_party(entity)
        return None

    def _extract_party(self, entity: EntityLoop) -> Party:
        n1 = entity.name
        name = n1.get(2) or None
        n2 = find_segment(entity.details, SegmentKind.N2)
        if n2 is not None and n2.get(1):
            name = f"{name} {n2.get(1)}" if name else n2.get(1)

        return Party(
            entity_code=entity.entity_code,
            name=name,
            id_qualifier=n1.get(3) or None,
            identifier=n1.get(4) or None,
            address=self._extract_address(entity),
            contacts=tuple(self._extract_contacts(entity)),
            references=tuple(references(entity.details)),
        )

    def _extract_address(self, entity: EntityLoop) -> Optional[Address]:
        n3 = find_segment(entity.details, SegmentKind.N3)
        n4 = find_segment(entity.details, SegmentKind.N4)
        if n3 is None and n4 is None:
            return None
        return Address(
            line1=(n3.get(1) or None) if n3 else None,
            line2=(n3.get(2) or None) if n3 else None,
            city=(n4.get(1) or None) if n4 else None,
            state=(n4.get(2) or None) if n4 else None,
            postal_code=(n4.get(3) or None) if n4 else None,
        )

    def _extract_contacts(self, entity: EntityLoop) -> List[Contact]:
        contacts = []
        for per in find_segments(entity.details, SegmentKind.PER):
            communications = []
            for qualifier_index, number_index in PER_COMMUNICATION_PAIRS:
                if per.has(qualifier_index, number_index):
                    communications.append((per.get(qualifier_index), per.get(number_index)))
            contacts.append(
                Contact(
                    function_code=per.get(1) or None,
                    name=per.get(2) or None,
                    communications=tuple(communications),
                )
            )
        return contacts
