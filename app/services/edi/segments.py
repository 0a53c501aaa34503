"""X12 segment primitives shared by the tokenizer, structural parser and mapper."""
import enum
from typing import NamedTuple, Optional, Tuple


class SegmentKind(str, enum.Enum):
    """Segment ids the 835 parser understands. Anything else resolves to UNKNOWN."""

    # Envelope
    ISA = "ISA"
    GS = "GS"
    ST = "ST"
    SE = "SE"
    GE = "GE"
    IEA = "IEA"

    # Header
    BPR = "BPR"
    TRN = "TRN"
    CUR = "CUR"
    REF = "REF"
    DTM = "DTM"
    N1 = "N1"
    N2 = "N2"
    N3 = "N3"
    N4 = "N4"
    PER = "PER"
    RDM = "RDM"

    # Header number loop
    LX = "LX"
    TS3 = "TS3"
    TS2 = "TS2"

    # Claim payment loop
    CLP = "CLP"
    CAS = "CAS"
    NM1 = "NM1"
    MIA = "MIA"
    MOA = "MOA"
    AMT = "AMT"
    QTY = "QTY"

    # Service payment loop
    SVC = "SVC"
    LQ = "LQ"

    # Summary
    PLB = "PLB"

    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_id(cls, segment_id: str) -> "SegmentKind":
        try:
            return cls(segment_id)
        except ValueError:
            return cls.UNKNOWN


class Delimiters(NamedTuple):
    """Separators declared by the ISA header."""

    element: str = "*"
    component: str = ":"
    repetition: Optional[str] = None
    segment: str = "~"

    @classmethod
    def from_isa(cls, header: str) -> Optional["Delimiters"]:
        """
        Read the separators from an ISA header.

        The element separator is the character after "ISA". The component
        separator is ISA16 and the segment terminator is the character right
        after it. ISA is fixed width (separator at offset 3, ISA16 at 104,
        terminator at 105), but counting separators also handles senders that
        trim the padded fields.

        Returns None when the header is incomplete.
        """
        if len(header) < 4 or not header.startswith("ISA"):
            return None
        element = header[3]

        offset = -1
        for _ in range(16):
            offset = header.find(element, offset + 1)
            if offset == -1:
                return None
        if len(header) < offset + 3:
            return None

        component = header[offset + 1]
        segment = header[offset + 2]

        isa_fields = header[: offset + 1].split(element)
        repetition = isa_fields[11] if len(isa_fields) > 11 else ""
        # 4010 files carry the standards id "U" in ISA11 instead of a separator
        if len(repetition) != 1 or repetition.isalnum():
            repetition = None

        return cls(element=element, component=component, repetition=repetition, segment=segment)


class Segment(NamedTuple):
    """
    One tokenized segment.

    `elements` excludes the segment id, so `get(1)` is the X12 "01" element
    (CLP01, SVC03 ...). `position` is the 1-based ordinal of the segment in
    the file.
    """

    segment_id: str
    elements: Tuple[str, ...]
    position: int

    @property
    def kind(self) -> SegmentKind:
        return SegmentKind.from_id(self.segment_id)

    def get(self, index: int, default: str = "") -> str:
        """Element by X12 ordinal, stripped, or `default` when absent or empty."""
        if 0 < index <= len(self.elements):
            value = self.elements[index - 1].strip()
            if value:
                return value
        return default

    def has(self, *indexes: int) -> bool:
        """True when every listed element is present and non-empty."""
        return all(self.get(index) for index in indexes)

    def components(self, index: int, separator: str) -> Tuple[str, ...]:
        """Split a composite element (e.g. SVC01 "HC:99213:25") on `separator`."""
        value = self.get(index)
        if not value:
            return ()
        return tuple(part.strip() for part in value.split(separator))

    def __str__(self) -> str:
        return f"{self.segment_id} (segment {self.position})"
