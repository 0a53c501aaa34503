"""
Segment tokenizer for X12 835 files.

Turns raw file content into an ordered stream of `Segment` tuples. Delimiters
default to `~` `*` `:` and are replaced by the ones declared in the ISA header
when the content starts with one.

Input may be a `str`, `bytes`, a text or binary file object, or an iterable of
str/bytes chunks. Streams are read `chunk_size` at a time, so large files are
never held in memory as a single buffer.
"""
import codecs
from typing import IO, Iterable, Iterator, List, NamedTuple, Optional, Union

from app.services.edi.segments import Delimiters, Segment
from app.utils.errors import TokenizeError
from app.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

# Fixed ISA length including its terminator
ISA_HEADER_LENGTH = 106

_NEWLINE_TRANSLATION_TABLE = str.maketrans("", "", "\r\n")

Source = Union[str, bytes, bytearray, IO, Iterable[Union[str, bytes]]]


class TokenizedFile(NamedTuple):
    delimiters: Delimiters
    segments: List[Segment]


class SegmentTokenizer:
    """
    Incremental segment tokenizer.

    `delimiters` is populated once the header has been read, i.e. after the
    first segment has been yielded by `iter_segments`.
    """

    def __init__(self, chunk_size: Optional[int] = None):
        self.chunk_size = chunk_size or DEFAULT_CHUNK_SIZE
        self.delimiters: Optional[Delimiters] = None

    def tokenize(self, source: Source) -> TokenizedFile:
        """Tokenize the whole source into a list."""
        segments = list(self.iter_segments(source))
        return TokenizedFile(self.delimiters, segments)

    def iter_segments(self, source: Source) -> Iterator[Segment]:
        """
        Yield segments in file order.

        Raises:
            TokenizeError: input is empty, is not valid UTF-8, or contains no segments
        """
        self.delimiters = None
        buffer = ""
        position = 0

        for text in self._decoded_chunks(source):
            if self.delimiters is None:
                buffer = (buffer + text).lstrip()
                if not self._header_ready(buffer):
                    continue
                self.delimiters = self._detect_delimiters(buffer)
            else:
                buffer += text

            terminator = self.delimiters.segment
            pieces = buffer.split(terminator)
            # The last piece may be an incomplete segment
            buffer = pieces.pop()
            for piece in pieces:
                segment = self._build_segment(piece, position + 1)
                if segment is not None:
                    position += 1
                    yield segment

        if self.delimiters is None:
            if not buffer.strip():
                raise TokenizeError("EDI content is empty")
            self.delimiters = self._detect_delimiters(buffer)
            pieces = buffer.split(self.delimiters.segment)
            buffer = pieces.pop()
            for piece in pieces:
                segment = self._build_segment(piece, position + 1)
                if segment is not None:
                    position += 1
                    yield segment

        # Trailing segment without a terminator
        segment = self._build_segment(buffer, position + 1)
        if segment is not None:
            position += 1
            yield segment

        if position == 0:
            raise TokenizeError("No segments found in EDI content")

        logger.debug("Tokenized EDI content", segment_count=position)

    def _decoded_chunks(self, source: Source) -> Iterator[str]:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="strict")
        first = True
        offset = 0
        try:
            for chunk in self._raw_chunks(source):
                if isinstance(chunk, (bytes, bytearray)):
                    text = decoder.decode(bytes(chunk))
                elif isinstance(chunk, str):
                    text = chunk
                else:
                    raise TokenizeError(
                        "Unsupported EDI chunk type",
                        details={"type": type(chunk).__name__},
                    )
                if first and text:
                    text = text.lstrip("\ufeff")
                    first = False
                offset += len(chunk)
                if text:
                    yield text
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail
        except UnicodeDecodeError as e:
            raise TokenizeError(
                "EDI content is not valid UTF-8",
                details={"offset": offset + e.start, "reason": e.reason},
            ) from e

    def _raw_chunks(self, source: Source) -> Iterator[Union[str, bytes]]:
        if isinstance(source, (str, bytes, bytearray)):
            if len(source) == 0:
                raise TokenizeError("EDI content is empty")
            yield source
            return

        if hasattr(source, "read"):
            while True:
                chunk = source.read(self.chunk_size)
                if not chunk:
                    return
                yield chunk

        if source is None:
            raise TokenizeError("EDI content is empty")

        yield from source

    def _header_ready(self, buffer: str) -> bool:
        """True once enough content is buffered to read the delimiters."""
        if not buffer.startswith("ISA"):
            return len(buffer) >= 3
        return len(buffer) >= ISA_HEADER_LENGTH

    def _detect_delimiters(self, buffer: str) -> Delimiters:
        delimiters = Delimiters.from_isa(buffer)
        if delimiters is None:
            if buffer.startswith("ISA"):
                logger.warning("ISA header is incomplete, using default delimiters")
            delimiters = Delimiters()
        return delimiters

    def _build_segment(self, piece: str, position: int) -> Optional[Segment]:
        if self.delimiters.segment not in "\r\n" and ("\r" in piece or "\n" in piece):
            piece = piece.translate(_NEWLINE_TRANSLATION_TABLE)
        piece = piece.strip()
        if not piece:
            return None
        parts = piece.split(self.delimiters.element)
        return Segment(parts[0].strip(), tuple(parts[1:]), position)


def tokenize(source: Source, chunk_size: Optional[int] = None) -> TokenizedFile:
    """Tokenize `source` into its delimiters and ordered segments."""
    return SegmentTokenizer(chunk_size).tokenize(source)


def iter_segments(source: Source, chunk_size: Optional[int] = None) -> Iterator[Segment]:
    """Stream segments from `source` without building a list."""
    return SegmentTokenizer(chunk_size).iter_segments(source)
