"""
835 remittance parser.

Runs the parsing pipeline: tokenizer -> structural parser -> domain mapper ->
reconciliation check. Each stage only reads the previous stage's output.

Fatal problems (`TokenizeError`, `EnvelopeError`) abort the parse with no
partial result. Claim-level problems and reconciliation mismatches come back
as warnings next to the mapped `ERAFile`.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.config.settings import get_posting_settings
from app.services.edi.domain import ERAFile
from app.services.edi.mapper import DomainMapper
from app.services.edi.reconciliation import ReconciliationMismatch, reconcile
from app.services.edi.structure import StructuralParser
from app.services.edi.tokenizer import SegmentTokenizer, Source
from app.utils.errors import EDIError
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ParsedEra:
    """Mapped ERA plus the non-fatal findings collected while parsing it."""

    era: ERAFile
    warnings: List[str] = field(default_factory=list)
    reconciliation: Optional[ReconciliationMismatch] = None
    segment_count: int = 0


class EraParser:
    """Parse 835 files into `ERAFile` values."""

    def __init__(
        self,
        tolerance_per_claim: Optional[Decimal] = None,
        chunk_size: Optional[int] = None,
    ):
        settings = get_posting_settings()
        self.tolerance_per_claim = (
            tolerance_per_claim
            if tolerance_per_claim is not None
            else settings.reconciliation_tolerance_per_claim
        )
        self.chunk_size = chunk_size or settings.tokenizer_chunk_size
        self.structural_parser = StructuralParser()
        self.mapper = DomainMapper()

    def parse_era(self, content: Source, filename: str = "<memory>") -> ParsedEra:
        """
        Parse content into a `ParsedEra`.

        Raises:
            TokenizeError: content is empty or undecodable
            EnvelopeError: the envelope is corrupt
        """
        logger.info("Starting 835 parsing", filename=filename)

        tokenizer = SegmentTokenizer(self.chunk_size)
        segments = tokenizer.tokenize(content)
        tree = self.structural_parser.parse(segments.segments, segments.delimiters)
        era, mapping_warnings = self.mapper.map(tree)

        warnings = list(tree.warnings) + mapping_warnings
        mismatch = reconcile(era, self.tolerance_per_claim)
        if mismatch is not None:
            warnings.append(mismatch.message)

        logger.info(
            "835 parsing complete",
            filename=filename,
            interchange_control_number=era.interchange_control_number,
            claims=len(era.claims),
            unusable_claims=len(era.unusable_claims),
            warnings_count=len(warnings),
        )
        return ParsedEra(
            era=era,
            warnings=warnings,
            reconciliation=mismatch,
            segment_count=len(segments.segments),
        )

    def parse(self, content: Source, filename: str = "<memory>") -> Dict[str, Any]:
        """
        Parse content and report `{success, data, errors, warnings}`.

        Fatal EDI errors are returned in `errors` with `success=False`
        instead of being raised.
        """
        try:
            parsed = self.parse_era(content, filename)
        except EDIError as e:
            logger.warning("835 parsing failed", filename=filename, error=e.code, message=e.message)
            return {
                "success": False,
                "data": None,
                "errors": [e.message],
                "warnings": [],
            }

        return {
            "success": True,
            "data": parsed.era.to_dict(),
            "errors": [],
            "warnings": parsed.warnings,
        }


def parse_835(content: Source, filename: str = "<memory>") -> Dict[str, Any]:
    """Parse with default settings."""
    return EraParser().parse(content, filename)
