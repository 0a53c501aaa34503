"""Tests for the BPR02 payment reconciliation check."""
from decimal import Decimal

import pytest

from app.services.edi.parser import EraParser
from app.services.edi.reconciliation import reconcile
from tests.edi_samples import build_835, claim_segments


def parse(content: str, tolerance: str = "0.01"):
    return EraParser(tolerance_per_claim=Decimal(tolerance)).parse_era(content)


def two_claims(second_paid: str = "500.00"):
    return [
        claim_segments("CLM1", "1000.00", "1000.00"),
        claim_segments("CLM2", "500.00", second_paid),
    ]


@pytest.mark.unit
class TestReconcile:
    """BPR02 = sum(CLP04) - sum(PLB) within tolerance."""

    def test_balanced_file(self):
        parsed = parse(build_835("1500.00", two_claims()))

        assert parsed.reconciliation is None
        assert reconcile(parsed.era) is None
        assert parsed.warnings == []

    def test_underpaid_file_is_one_warning(self):
        parsed = parse(build_835("1500.00", two_claims("400.00")))

        mismatch = parsed.reconciliation
        assert mismatch is not None
        assert mismatch.discrepancy == Decimal("100.00")
        assert mismatch.claims_paid_total == Decimal("1400.00")
        assert mismatch.claim_count == 2
        assert mismatch.tolerance == Decimal("0.02")
        assert parsed.warnings == [mismatch.message]
        assert mismatch.message == (
            "Total payment 1500.00 does not reconcile with claim payments 1400.00: discrepancy 100.00"
        )

    def test_claims_still_mapped_on_mismatch(self):
        parsed = parse(build_835("1500.00", two_claims("400.00")))

        assert len(parsed.era.claims) == 2

    def test_provider_adjustments_reduce_payment(self):
        content = build_835(
            "1490.00",
            two_claims(),
            trailer=["PLB*1234567893*20241231*WO:INV1*10.00"],
        )

        assert parse(content).reconciliation is None

    def test_provider_adjustment_in_message(self):
        content = build_835(
            "1500.00",
            two_claims(),
            trailer=["PLB*1234567893*20241231*WO:INV1*10.00"],
        )

        mismatch = parse(content).reconciliation

        assert mismatch.expected_payment == Decimal("1490.00")
        assert "less provider adjustments 10.00" in mismatch.message
        assert mismatch.discrepancy == Decimal("10.00")

    @pytest.mark.parametrize("payment,balanced", [("1500.02", True), ("1499.98", True), ("1500.03", False)])
    def test_tolerance_scales_with_claim_count(self, payment, balanced):
        parsed = parse(build_835(payment, two_claims()))

        assert (parsed.reconciliation is None) is balanced

    def test_custom_tolerance(self):
        parsed = parse(build_835("1500.50", two_claims()), tolerance="0.25")

        assert parsed.reconciliation is None

    def test_unusable_claims_still_count(self):
        claims = two_claims()
        claims[1].append("CAS*XX*45*1.00")

        parsed = parse(build_835("1500.00", claims))

        assert len(parsed.era.unusable_claims) == 1
        assert parsed.reconciliation is None

    def test_empty_remittance(self):
        parsed = parse(build_835("0.00"))

        assert parsed.reconciliation is None

    def test_to_dict(self):
        mismatch = parse(build_835("1500.00", two_claims("400.00"))).reconciliation

        assert mismatch.to_dict() == {
            "payment_amount": "1500.00",
            "claims_paid_total": "1400.00",
            "provider_adjustment_total": "0.00",
            "discrepancy": "100.00",
            "tolerance": "0.02",
            "claim_count": 2,
        }
