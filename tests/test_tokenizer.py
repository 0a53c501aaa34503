"""Tests for the 835 segment tokenizer."""
import io

import pytest

from app.services.edi.segments import Delimiters, Segment, SegmentKind
from app.services.edi.tokenizer import ISA_HEADER_LENGTH, SegmentTokenizer, iter_segments, tokenize
from app.utils.errors import TokenizeError
from tests.edi_samples import build_835, isa


@pytest.mark.unit
class TestDelimiterDetection:
    """Delimiters come from the ISA header."""

    def test_standard_delimiters(self):
        delimiters = Delimiters.from_isa(isa())

        assert delimiters.element == "*"
        assert delimiters.component == ":"
        assert delimiters.repetition == "^"
        assert delimiters.segment == "~"

    def test_isa_header_is_fixed_length(self):
        assert len(isa()) == ISA_HEADER_LENGTH

    def test_custom_delimiters(self):
        header = isa().replace("*", "|").replace(":~", ">\n").replace("^", "{")

        delimiters = Delimiters.from_isa(header)

        assert delimiters.element == "|"
        assert delimiters.component == ">"
        assert delimiters.repetition == "{"
        assert delimiters.segment == "\n"

    def test_version_4010_has_no_repetition_separator(self):
        header = isa().replace("*^*00501*", "*U*00401*")

        assert Delimiters.from_isa(header).repetition is None

    def test_incomplete_header_returns_none(self):
        assert Delimiters.from_isa("ISA*00*") is None
        assert Delimiters.from_isa("GS*HP*") is None


@pytest.mark.unit
class TestTokenize:
    """Splitting content into segments."""

    def test_segments_in_file_order_with_positions(self):
        result = tokenize(build_835("0.00"))

        ids = [segment.segment_id for segment in result.segments]
        assert ids[:4] == ["ISA", "GS", "ST", "BPR"]
        assert ids[-3:] == ["SE", "GE", "IEA"]
        assert [segment.position for segment in result.segments] == list(range(1, len(ids) + 1))

    def test_elements_exclude_segment_id(self):
        result = tokenize(build_835("1200.00"))
        bpr = result.segments[3]

        assert bpr.kind is SegmentKind.BPR
        assert bpr.get(1) == "I"
        assert bpr.get(2) == "1200.00"
        assert bpr.get(16) == "20240115"
        assert bpr.get(5) == ""
        assert bpr.get(40, "missing") == "missing"

    def test_line_breaks_between_segments_are_ignored(self):
        with_newlines = tokenize(build_835("10.00", terminator="~\r\n"))
        without = tokenize(build_835("10.00", terminator="~"))

        assert [s.segment_id for s in with_newlines.segments] == [s.segment_id for s in without.segments]
        assert [s.elements for s in with_newlines.segments] == [s.elements for s in without.segments]

    def test_newline_terminated_file(self):
        content = build_835("10.00", terminator="\n")

        result = tokenize(content)

        assert result.delimiters.segment == "\n"
        assert result.segments[-1].segment_id == "IEA"

    def test_bytes_with_bom(self):
        content = "\ufeff" + build_835("10.00")

        result = tokenize(content.encode("utf-8"))

        assert result.segments[0].segment_id == "ISA"

    def test_file_object_read_in_small_chunks(self):
        content = build_835("10.00")

        streamed = tokenize(io.BytesIO(content.encode("utf-8")), chunk_size=7)
        whole = tokenize(content)

        assert streamed.segments == whole.segments
        assert streamed.delimiters == whole.delimiters

    def test_iterable_of_chunks(self):
        content = build_835("10.00")
        chunks = [content[i:i + 50] for i in range(0, len(content), 50)]

        assert list(iter_segments(chunks)) == tokenize(content).segments

    def test_multibyte_character_split_across_chunks(self):
        content = build_835("10.00", header=["REF*EV*CAFÉ"])
        data = content.encode("utf-8")

        result = tokenize(io.BytesIO(data), chunk_size=3)

        ref = next(s for s in result.segments if s.segment_id == "REF")
        assert ref.get(2) == "CAFÉ"

    def test_trailing_segment_without_terminator(self):
        content = build_835("10.00").rstrip().rstrip("~")

        result = tokenize(content)

        assert result.segments[-1] == Segment("IEA", ("1", "000000101"), len(result.segments))

    def test_content_without_isa_uses_default_delimiters(self):
        tokenizer = SegmentTokenizer()

        segments = list(tokenizer.iter_segments("ST*835*0001~SE*2*0001~"))

        assert tokenizer.delimiters == Delimiters()
        assert [s.segment_id for s in segments] == ["ST", "SE"]

    def test_deterministic(self):
        content = build_835("10.00")

        assert tokenize(content) == tokenize(content)


@pytest.mark.unit
class TestTokenizeErrors:
    """Inputs the tokenizer rejects."""

    @pytest.mark.parametrize("content", ["", b"", "   \n  "])
    def test_empty_content(self, content):
        with pytest.raises(TokenizeError):
            tokenize(content)

    def test_invalid_utf8_reports_offset(self):
        data = build_835("10.00").encode("utf-8")
        corrupt = data[:120] + b"\xff\xfe" + data[120:]

        with pytest.raises(TokenizeError) as exc_info:
            tokenize(corrupt)

        assert exc_info.value.code == "TOKENIZE_ERROR"
        assert exc_info.value.details["offset"] == 120

    def test_only_terminators(self):
        with pytest.raises(TokenizeError, match="No segments"):
            tokenize("~~~")

    def test_unsupported_chunk_type(self):
        with pytest.raises(TokenizeError, match="Unsupported"):
            tokenize([build_835("1.00"), 42])
