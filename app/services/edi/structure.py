"""
Envelope and loop structural parser for 835 transactions.

Groups the flat segment stream into the 835 loop hierarchy:

    ISA
      GS
        ST
          header: BPR TRN CUR REF DTM
          1000A/1000B: N1 (N2 N3 N4 REF PER)
          2000: LX TS3 TS2
            2100: CLP CAS NM1 MIA MOA REF DTM PER AMT QTY
              2110: SVC CAS DTM REF AMT QTY LQ
          PLB
        SE
      GE
    IEA

Corrupt envelopes raise `EnvelopeError` and no tree is returned. A malformed
claim loop is kept in the tree with its errors recorded, so the mapper can
report it as unusable while the rest of the file is mapped.
"""
import enum
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from app.services.edi.segments import Delimiters, Segment, SegmentKind
from app.utils.errors import EnvelopeError, SegmentError
from app.utils.logger import get_logger

logger = get_logger(__name__)


class LoopLevel(str, enum.Enum):
    """Position of the parser inside the 835 hierarchy."""

    NONE = "none"
    INTERCHANGE = "interchange"
    GROUP = "group"
    HEADER = "header"
    ENTITY = "entity"
    HEADER_NUMBER = "header_number"
    CLAIM = "claim"
    SERVICE = "service"
    SUMMARY = "summary"
    CLOSED = "closed"


@dataclass
class EntityLoop:
    """N1 loop: payer (PR) or payee (PE) with its detail segments."""

    name: Segment
    details: List[Segment] = field(default_factory=list)

    @property
    def entity_code(self) -> str:
        return self.name.get(1)


@dataclass
class ServiceLoop:
    """SVC loop with its adjustments, dates, references and amounts."""

    svc: Segment
    details: List[Segment] = field(default_factory=list)


@dataclass
class ClaimLoop:
    """
    CLP loop.

    `sequence` is the 1-based ordinal of the CLP in the transaction, counted
    over every claim loop including malformed ones.
    """

    sequence: int
    clp: Segment
    header_number: Optional[Segment] = None
    details: List[Segment] = field(default_factory=list)
    services: List[ServiceLoop] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def usable(self) -> bool:
        return not self.errors

    @property
    def patient_control_number(self) -> str:
        return self.clp.get(1)


@dataclass
class StructuralTree:
    """One interchange holding one functional group holding one 835 transaction."""

    delimiters: Delimiters
    isa: Segment
    gs: Optional[Segment] = None
    st: Optional[Segment] = None
    se: Optional[Segment] = None
    ge: Optional[Segment] = None
    iea: Optional[Segment] = None
    header: List[Segment] = field(default_factory=list)
    entities: List[EntityLoop] = field(default_factory=list)
    claims: List[ClaimLoop] = field(default_factory=list)
    provider_adjustments: List[Segment] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def header_segment(self, kind: SegmentKind) -> Optional[Segment]:
        for segment in self.header:
            if segment.kind is kind:
                return segment
        return None

    @property
    def interchange_control_number(self) -> str:
        return self.isa.get(13)

    @property
    def transaction_control_number(self) -> str:
        return self.st.get(2) if self.st else ""


@dataclass
class ParserContext:
    """Mutable state threaded through one structural parse."""

    delimiters: Delimiters
    loop: LoopLevel = LoopLevel.NONE
    depth: int = 0
    warnings: List[str] = field(default_factory=list)
    tree: Optional[StructuralTree] = None
    entity: Optional[EntityLoop] = None
    claim: Optional[ClaimLoop] = None
    service: Optional[ServiceLoop] = None
    header_number: Optional[Segment] = None
    group_count: int = 0
    transaction_count: int = 0
    transaction_segment_count: int = 0

    def warn(self, message: str) -> None:
        self.warnings.append(message)


def _same_control_number(left: str, right: str) -> bool:
    if left.isdigit() and right.isdigit():
        return int(left) == int(right)
    return left == right


def _check_count(ctx: ParserContext, segment: Segment, expected: int, label: str) -> None:
    declared = segment.get(1)
    if not declared.isdigit():
        ctx.warn(f"{segment.segment_id}01 {label} count is missing or not numeric")
    elif int(declared) != expected:
        ctx.warn(
            f"{segment.segment_id}01 declares {declared} {label}, found {expected}"
        )


class StructuralParser:
    """Builds a `StructuralTree` from tokenized segments."""

    def parse(self, segments: Iterable[Segment], delimiters: Optional[Delimiters] = None) -> StructuralTree:
        """
        Parse a segment stream.

        Raises:
            EnvelopeError: the envelope is corrupt or the nesting cannot be resolved
        """
        ctx = ParserContext(delimiters=delimiters or Delimiters())

        for segment in segments:
            if ctx.loop is LoopLevel.CLOSED:
                raise EnvelopeError(
                    f"Segment {segment.segment_id} found after IEA",
                    segment_id=segment.segment_id,
                    position=segment.position,
                )
            if ctx.tree is None and segment.kind is not SegmentKind.ISA:
                raise EnvelopeError(
                    "File does not start with an ISA segment",
                    segment_id=segment.segment_id,
                    position=segment.position,
                )
            self._dispatch(segment, ctx)

        if ctx.tree is None:
            raise EnvelopeError("File does not contain an ISA segment")
        if ctx.loop is not LoopLevel.CLOSED:
            missing = {3: "SE", 2: "GE", 1: "IEA"}.get(ctx.depth, "IEA")
            raise EnvelopeError(f"File is truncated: missing {missing} trailer")

        ctx.tree.warnings.extend(ctx.warnings)
        logger.debug(
            "Structural parse complete",
            claim_loops=len(ctx.tree.claims),
            warnings_count=len(ctx.tree.warnings),
        )
        return ctx.tree

    def _dispatch(self, segment: Segment, ctx: ParserContext) -> None:
        kind = segment.kind

        if ctx.depth == 3:
            ctx.transaction_segment_count += 1

        if kind is SegmentKind.ISA:
            self._open_interchange(segment, ctx)
        elif kind is SegmentKind.GS:
            self._open_group(segment, ctx)
        elif kind is SegmentKind.ST:
            self._open_transaction(segment, ctx)
        elif kind is SegmentKind.SE:
            self._close_transaction(segment, ctx)
        elif kind is SegmentKind.GE:
            self._close_group(segment, ctx)
        elif kind is SegmentKind.IEA:
            self._close_interchange(segment, ctx)
        elif ctx.depth != 3:
            raise EnvelopeError(
                f"Segment {segment.segment_id} is outside of a transaction set",
                segment_id=segment.segment_id,
                position=segment.position,
            )
        elif kind in (SegmentKind.BPR, SegmentKind.TRN, SegmentKind.CUR, SegmentKind.RDM):
            self._header_segment(segment, ctx)
        elif kind is SegmentKind.N1:
            self._open_entity(segment, ctx)
        elif kind in (SegmentKind.N2, SegmentKind.N3, SegmentKind.N4):
            self._entity_detail(segment, ctx)
        elif kind in (SegmentKind.REF, SegmentKind.DTM, SegmentKind.PER):
            self._shared_detail(segment, ctx)
        elif kind is SegmentKind.LX:
            self._close_claim(ctx)
            ctx.header_number = segment
            ctx.loop = LoopLevel.HEADER_NUMBER
        elif kind in (SegmentKind.TS3, SegmentKind.TS2):
            if ctx.loop is not LoopLevel.HEADER_NUMBER:
                self._out_of_place(segment, ctx)
        elif kind is SegmentKind.CLP:
            if ctx.loop is LoopLevel.SUMMARY:
                self._out_of_place(segment, ctx)
            else:
                self._open_claim(segment, ctx)
        elif kind in (SegmentKind.NM1, SegmentKind.MIA, SegmentKind.MOA):
            self._claim_detail(segment, ctx)
        elif kind in (SegmentKind.CAS, SegmentKind.AMT, SegmentKind.QTY):
            self._loop_detail(segment, ctx)
        elif kind is SegmentKind.SVC:
            self._open_service(segment, ctx)
        elif kind is SegmentKind.LQ:
            if ctx.service is not None:
                ctx.service.details.append(segment)
            else:
                self._out_of_place(segment, ctx)
        elif kind is SegmentKind.PLB:
            self._close_claim(ctx)
            ctx.loop = LoopLevel.SUMMARY
            ctx.tree.provider_adjustments.append(segment)
        else:
            ctx.warn(f"Unrecognized segment {segment.segment_id} at segment {segment.position} ignored")

    # Envelope

    def _open_interchange(self, segment: Segment, ctx: ParserContext) -> None:
        if ctx.tree is not None:
            raise EnvelopeError(
                "ISA found inside an open interchange",
                segment_id="ISA",
                position=segment.position,
            )
        if not segment.get(13):
            raise EnvelopeError("ISA13 interchange control number is missing", segment_id="ISA", position=segment.position)
        ctx.tree = StructuralTree(delimiters=ctx.delimiters, isa=segment)
        ctx.depth = 1
        ctx.loop = LoopLevel.INTERCHANGE

    def _open_group(self, segment: Segment, ctx: ParserContext) -> None:
        if ctx.depth != 1:
            raise EnvelopeError("GS found inside an open functional group", segment_id="GS", position=segment.position)
        if ctx.group_count:
            raise EnvelopeError(
                "Multiple functional groups in one file are not supported",
                segment_id="GS",
                position=segment.position,
            )
        ctx.tree.gs = segment
        ctx.group_count += 1
        ctx.depth = 2
        ctx.loop = LoopLevel.GROUP

    def _open_transaction(self, segment: Segment, ctx: ParserContext) -> None:
        if ctx.depth == 3:
            raise EnvelopeError("ST found inside an open transaction set", segment_id="ST", position=segment.position)
        if ctx.depth != 2:
            raise EnvelopeError("ST found outside of a functional group", segment_id="ST", position=segment.position)
        if ctx.transaction_count:
            raise EnvelopeError(
                "Multiple transaction sets in one file are not supported",
                segment_id="ST",
                position=segment.position,
            )
        if segment.get(1) != "835":
            raise EnvelopeError(
                f"Transaction set {segment.get(1) or '(missing)'} is not an 835",
                segment_id="ST",
                position=segment.position,
            )
        ctx.tree.st = segment
        ctx.transaction_count += 1
        ctx.transaction_segment_count = 1
        ctx.depth = 3
        ctx.loop = LoopLevel.HEADER

    def _close_transaction(self, segment: Segment, ctx: ParserContext) -> None:
        if ctx.depth != 3:
            raise EnvelopeError("SE found without an open transaction set", segment_id="SE", position=segment.position)
        self._close_claim(ctx)
        tree = ctx.tree

        if not _same_control_number(segment.get(2), tree.st.get(2)):
            raise EnvelopeError(
                f"SE02 control number {segment.get(2)!r} does not match ST02 {tree.st.get(2)!r}",
                segment_id="SE",
                position=segment.position,
            )
        if tree.header_segment(SegmentKind.BPR) is None:
            raise EnvelopeError("Required BPR segment is missing", segment_id="BPR")
        if tree.header_segment(SegmentKind.TRN) is None:
            raise EnvelopeError("Required TRN segment is missing", segment_id="TRN")

        _check_count(ctx, segment, ctx.transaction_segment_count, "segments")
        tree.se = segment
        ctx.depth = 2
        ctx.loop = LoopLevel.GROUP

    def _close_group(self, segment: Segment, ctx: ParserContext) -> None:
        if ctx.depth == 3:
            raise EnvelopeError("GE found while a transaction set is open", segment_id="GE", position=segment.position)
        if ctx.depth != 2:
            raise EnvelopeError("GE found without an open functional group", segment_id="GE", position=segment.position)
        tree = ctx.tree
        if not _same_control_number(segment.get(2), tree.gs.get(6)):
            raise EnvelopeError(
                f"GE02 control number {segment.get(2)!r} does not match GS06 {tree.gs.get(6)!r}",
                segment_id="GE",
                position=segment.position,
            )
        _check_count(ctx, segment, ctx.transaction_count, "transaction sets")
        tree.ge = segment
        ctx.depth = 1
        ctx.loop = LoopLevel.INTERCHANGE

    def _close_interchange(self, segment: Segment, ctx: ParserContext) -> None:
        if ctx.depth != 1:
            raise EnvelopeError(
                "IEA found while a functional group or transaction set is open",
                segment_id="IEA",
                position=segment.position,
            )
        tree = ctx.tree
        if not _same_control_number(segment.get(2), tree.isa.get(13)):
            raise EnvelopeError(
                f"IEA02 control number {segment.get(2)!r} does not match ISA13 {tree.isa.get(13)!r}",
                segment_id="IEA",
                position=segment.position,
            )
        if tree.st is None:
            raise EnvelopeError("Interchange does not contain an 835 transaction set", segment_id="IEA")
        _check_count(ctx, segment, ctx.group_count, "functional groups")
        tree.iea = segment
        ctx.depth = 0
        ctx.loop = LoopLevel.CLOSED

    # Header

    def _header_segment(self, segment: Segment, ctx: ParserContext) -> None:
        if ctx.loop not in (LoopLevel.HEADER, LoopLevel.ENTITY):
            self._out_of_place(segment, ctx)
            return
        if ctx.tree.header_segment(segment.kind) is not None:
            ctx.warn(f"Duplicate {segment.segment_id} at segment {segment.position} ignored")
            return
        ctx.entity = None
        ctx.loop = LoopLevel.HEADER
        ctx.tree.header.append(segment)

    def _open_entity(self, segment: Segment, ctx: ParserContext) -> None:
        if ctx.loop not in (LoopLevel.HEADER, LoopLevel.ENTITY):
            self._out_of_place(segment, ctx)
            return
        ctx.entity = EntityLoop(name=segment)
        ctx.tree.entities.append(ctx.entity)
        ctx.loop = LoopLevel.ENTITY

    def _entity_detail(self, segment: Segment, ctx: ParserContext) -> None:
        if ctx.loop is LoopLevel.ENTITY:
            ctx.entity.details.append(segment)
        else:
            self._out_of_place(segment, ctx)

    def _shared_detail(self, segment: Segment, ctx: ParserContext) -> None:
        """REF, DTM and PER appear in the header, N1, claim and service loops."""
        if ctx.loop is LoopLevel.SERVICE and segment.kind is not SegmentKind.PER:
            ctx.service.details.append(segment)
        elif ctx.loop in (LoopLevel.CLAIM, LoopLevel.SERVICE):
            ctx.claim.details.append(segment)
        elif ctx.loop is LoopLevel.ENTITY:
            ctx.entity.details.append(segment)
        elif ctx.loop is LoopLevel.HEADER and segment.kind is not SegmentKind.PER:
            ctx.tree.header.append(segment)
        else:
            self._out_of_place(segment, ctx)

    # Claims

    def _open_claim(self, segment: Segment, ctx: ParserContext) -> None:
        self._close_claim(ctx)
        sequence = len(ctx.tree.claims) + 1
        claim = ClaimLoop(sequence=sequence, clp=segment, header_number=ctx.header_number)
        ctx.tree.claims.append(claim)
        ctx.claim = claim
        ctx.loop = LoopLevel.CLAIM
        try:
            self._require(segment, (1, 2, 3, 4), "claim id, status, charge and payment")
        except SegmentError as e:
            self._reject_claim(claim, e, ctx)

    def _claim_detail(self, segment: Segment, ctx: ParserContext) -> None:
        if ctx.claim is None:
            self._out_of_place(segment, ctx)
            return
        if ctx.loop is LoopLevel.SERVICE:
            ctx.warn(
                f"{segment.segment_id} at segment {segment.position} follows a service line; "
                f"attached to claim {ctx.claim.sequence}"
            )
        ctx.claim.details.append(segment)

    def _loop_detail(self, segment: Segment, ctx: ParserContext) -> None:
        """CAS, AMT and QTY belong to the innermost open claim or service loop."""
        if ctx.loop is LoopLevel.SERVICE:
            ctx.service.details.append(segment)
        elif ctx.loop is LoopLevel.CLAIM:
            ctx.claim.details.append(segment)
        elif segment.kind is SegmentKind.CAS:
            error = SegmentError(
                f"Orphan CAS at segment {segment.position} outside of a claim loop",
                segment_id="CAS",
                position=segment.position,
            )
            ctx.warn(error.message)
        else:
            self._out_of_place(segment, ctx)

    def _open_service(self, segment: Segment, ctx: ParserContext) -> None:
        service = ServiceLoop(svc=segment)
        if ctx.claim is None:
            error = SegmentError(
                f"Orphan SVC at segment {segment.position} outside of a claim loop",
                segment_id="SVC",
                position=segment.position,
            )
            ctx.warn(error.message)
            # Collect the orphan's detail segments without attaching them anywhere
            ctx.service = service
            ctx.loop = LoopLevel.SERVICE
            ctx.claim = ClaimLoop(sequence=0, clp=segment)
            return

        ctx.claim.services.append(service)
        ctx.service = service
        ctx.loop = LoopLevel.SERVICE
        try:
            self._require(segment, (1, 2, 3), "procedure, charge and payment")
        except SegmentError as e:
            self._reject_claim(ctx.claim, e, ctx)

    def _close_claim(self, ctx: ParserContext) -> None:
        ctx.claim = None
        ctx.service = None
        ctx.entity = None
        if ctx.loop in (LoopLevel.CLAIM, LoopLevel.SERVICE, LoopLevel.ENTITY):
            ctx.loop = LoopLevel.HEADER_NUMBER if ctx.header_number is not None else LoopLevel.HEADER

    def _require(self, segment: Segment, indexes, description: str) -> None:
        missing = [f"{segment.segment_id}{index:02d}" for index in indexes if not segment.get(index)]
        if missing:
            raise SegmentError(
                f"{segment.segment_id} at segment {segment.position} is missing {description} "
                f"({', '.join(missing)})",
                segment_id=segment.segment_id,
                position=segment.position,
            )

    def _reject_claim(self, claim: ClaimLoop, error: SegmentError, ctx: ParserContext) -> None:
        first_error = not claim.errors
        claim.errors.append(error.message)
        # One warning per unusable claim; later errors are kept on the loop only
        if not first_error:
            return
        label = claim.patient_control_number or "no claim id"
        ctx.warn(f"Claim {claim.sequence} ({label}) is unusable: {error.message}")

    def _out_of_place(self, segment: Segment, ctx: ParserContext) -> None:
        ctx.warn(
            f"Unexpected {segment.segment_id} at segment {segment.position} "
            f"in {ctx.loop.value} loop ignored"
        )


def parse_structure(segments: Iterable[Segment], delimiters: Optional[Delimiters] = None) -> StructuralTree:
    """Convenience wrapper around `StructuralParser().parse`."""
    return StructuralParser().parse(segments, delimiters)
