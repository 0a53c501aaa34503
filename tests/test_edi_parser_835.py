"""Tests for the 835 parsing pipeline."""
import io
from decimal import Decimal

import pytest

from app.services.edi.parser import EraParser, parse_835
from app.utils.errors import EnvelopeError, TokenizeError
from tests.edi_samples import build_835, claim_segments


@pytest.mark.unit
class TestParseEra:
    """EraParser.parse_era returns the mapped ERA and its warnings."""

    def test_sample_file(self, sample_835_content: str):
        parsed = EraParser().parse_era(sample_835_content, "sample_835.txt")

        assert parsed.warnings == []
        assert parsed.reconciliation is None
        assert parsed.segment_count == 30
        assert len(parsed.era.claims) == 2
        assert parsed.era.claims_paid_total == Decimal("1200.00")

    def test_bytes_and_file_objects(self, sample_835_content: str):
        parser = EraParser(chunk_size=256)

        from_text = parser.parse_era(sample_835_content)
        from_bytes = parser.parse_era(sample_835_content.encode("utf-8"))
        from_file = parser.parse_era(io.BytesIO(sample_835_content.encode("utf-8")))

        assert from_text.era == from_bytes.era == from_file.era

    def test_one_malformed_claim_of_ten(self):
        """One broken CLP loop costs one claim and one warning, nothing else."""
        claims = [claim_segments(f"CLM{i:02d}", "100.00", "100.00") for i in range(1, 11)]
        claims[6][0] = "CLP*CLM07*1*100.00"

        parsed = EraParser().parse_era(build_835("900.00", claims))

        assert len(parsed.era.claims) == 9
        assert len(parsed.era.unusable_claims) == 1
        assert parsed.era.unusable_claims[0].sequence == 7
        assert len(parsed.warnings) == 1
        assert parsed.warnings[0].startswith("Claim 7 (CLM07) is unusable")

    def test_mismatch_and_claim_warnings_combined(self):
        claims = [
            claim_segments("CLM1", "100.00", "100.00", extra=["ZZZ*1"]),
            claim_segments("CLM2", "100.00", "50.00"),
        ]

        parsed = EraParser().parse_era(build_835("100.00", claims))

        assert len(parsed.warnings) == 2
        assert parsed.warnings[0].startswith("Unrecognized segment ZZZ")
        assert parsed.warnings[1] == parsed.reconciliation.message

    def test_deterministic(self, sample_835_content: str):
        parser = EraParser()

        assert parser.parse_era(sample_835_content) == parser.parse_era(sample_835_content)

    def test_fatal_errors_raise(self):
        parser = EraParser()

        with pytest.raises(TokenizeError):
            parser.parse_era("")
        with pytest.raises(EnvelopeError):
            parser.parse_era(build_835("0.00").replace("IEA*1*000000101", "IEA*1*000000102"))


@pytest.mark.unit
class TestParseDict:
    """EraParser.parse reports success, data, errors and warnings."""

    def test_success(self, sample_835_content: str):
        result = parse_835(sample_835_content, "sample_835.txt")

        assert result["success"] is True
        assert result["errors"] == []
        assert result["warnings"] == []
        data = result["data"]
        assert data["payer"]["identifier"] == "87726"
        assert data["payment_amount"] == "1200.00"
        assert [c["patient_control_number"] for c in data["claims"]] == ["CLM001", "CLM002"]

    def test_fatal_error_reported_not_raised(self):
        content = build_835("0.00").replace("ST*835*", "ST*837*")

        result = EraParser().parse(content)

        assert result["success"] is False
        assert result["data"] is None
        assert "not an 835" in result["errors"][0]

    def test_warnings_passed_through(self):
        result = EraParser().parse(build_835("10.00", [claim_segments("CLM1", "10.00", "5.00")]))

        assert result["success"] is True
        assert len(result["warnings"]) == 1
        assert "does not reconcile" in result["warnings"][0]
