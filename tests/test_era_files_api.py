"""Tests for ERA file, posting run and ledger API endpoints."""
import csv
import io

import pytest

from app.models.database import LedgerEntry
from app.services.posting.processor import EraProcessor
from app.services.posting.report import REPORT_HEADERS
from tests.edi_samples import build_835, claim_segments
from tests.factories import EraFileFactory

ACTOR = {"X-Actor-Id": "user-1"}


@pytest.fixture
def process(db_session, session_factory, posting_settings):
    """Run an ERA file through the pipeline and refresh the test session."""

    def _process(era_file):
        era_file_id = era_file.id
        EraProcessor(session_factory, posting_settings).process(era_file_id, actor_id="user-1")
        db_session.expire_all()
        return era_file_id

    return _process


@pytest.fixture
def processed_file(process, sample_claims, uploaded_era_file):
    return process(uploaded_era_file)


@pytest.fixture
def partially_posted_file(process, sample_claims):
    content = build_835(
        "1080.00",
        [
            claim_segments("CLM001", "500.00", "500.00"),
            claim_segments("CLM999", "80.00", "80.00", member_id="NOBODY", extra=["CAS*CO*45*10.00"]),
            ["CLP*CLM888*1*50.00"],
        ],
    )
    return process(EraFileFactory(file_name="partial.835", file_content=content))


@pytest.mark.api
class TestEraFiles:
    """Tests for GET /api/v1/era-files endpoints."""

    def test_list(self, client, processed_file):
        response = client.get("/api/v1/era-files")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        era_file = data["era_files"][0]
        assert era_file["id"] == processed_file
        assert era_file["processing_status"] == "posted"
        assert era_file["payment_amount"] == "1200.00"
        assert era_file["payment_date"] == "2024-01-15"
        assert era_file["claims_posted"] == 2

    def test_list_filter_by_status(self, client, db_session, processed_file):
        EraFileFactory()

        uploaded = client.get("/api/v1/era-files", params={"status": "uploaded"}).json()
        posted = client.get("/api/v1/era-files", params={"status": "posted"}).json()

        assert uploaded["total"] == 1
        assert [f["id"] for f in posted["era_files"]] == [processed_file]

    def test_list_invalid_status(self, client):
        response = client.get("/api/v1/era-files", params={"status": "bogus"})

        assert response.status_code == 422

    def test_detail(self, client, processed_file):
        response = client.get(f"/api/v1/era-files/{processed_file}")

        assert response.status_code == 200
        data = response.json()
        assert data["interchange_control_number"] == "000000101"
        assert data["payer_identifier"] == "87726"
        assert data["payment_method"] == "ACH"
        assert data["uploaded_by"] == "user-1"
        assert data["warnings"] == []
        assert data["unusable_claims"] == []
        assert data["parser_log_count"] == 0
        assert len(data["posting_runs"]) == 1
        assert "results" not in data["posting_runs"][0]

    def test_detail_not_found(self, client):
        response = client.get("/api/v1/era-files/999")

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_posting_runs(self, client, processed_file):
        response = client.get(f"/api/v1/era-files/{processed_file}/posting-runs")

        assert response.status_code == 200
        runs = response.json()["posting_runs"]
        assert len(runs) == 1
        assert runs[0]["successful_posts"] == 2
        assert runs[0]["posted_by"] == "user-1"
        assert [r["outcome"] for r in runs[0]["results"]] == ["posted", "posted"]

    def test_failure_report(self, client, partially_posted_file):
        response = client.get(f"/api/v1/era-files/{partially_posted_file}/failure-report")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert (
            response.headers["content-disposition"]
            == f'attachment; filename="era_{partially_posted_file}_failures.csv"'
        )

        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0] == REPORT_HEADERS
        by_type = {}
        for row in rows[1:]:
            by_type.setdefault(row[0], []).append(row)

        failed = by_type["failed_claim"][0]
        assert failed[2] == "CLM999"
        assert failed[4] == "NOT_FOUND"
        assert failed[6] == "CO45"
        assert failed[7] == "CO45: Charge exceeds fee schedule/maximum allowable"

        unusable = by_type["unusable_claim"][0]
        assert unusable[1] == "3"
        assert unusable[2] == "CLM888"
        assert "CLP04" in unusable[5]
        assert len(by_type["warning"]) == 2

    def test_failure_report_for_rejected_file(self, client, process):
        content = build_835("0.00").replace("IEA*1*000000101", "IEA*1*000000999")
        era_file_id = process(EraFileFactory(file_content=content))

        response = client.get(f"/api/v1/era-files/{era_file_id}/failure-report")

        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[-1][0] == "error"
        assert rows[-1][4] == "ENVELOPE_ERROR"


@pytest.mark.api
class TestLedger:
    """Tests for ledger entry endpoints."""

    def test_get_entry(self, client, db_session, processed_file):
        entry = db_session.query(LedgerEntry).filter(LedgerEntry.patient_control_number == "CLM002").one()

        response = client.get(f"/api/v1/ledger/{entry.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["entry_type"] == "payment"
        assert data["posting_key"] == "87726:000000101:0001:2"
        assert data["paid_amount"] == "700.00"
        assert data["new_status"] == "partially_paid"
        assert [a["group_code"] + a["reason_code"] for a in data["adjustments"]] == ["CO45", "PR1"]

    def test_get_entry_not_found(self, client):
        assert client.get("/api/v1/ledger/999").status_code == 404

    def test_reverse(self, client, db_session, processed_file):
        entry = db_session.query(LedgerEntry).filter(LedgerEntry.patient_control_number == "CLM001").one()

        response = client.post(
            f"/api/v1/ledger/{entry.id}/reverse",
            json={"reason": "Payment applied to the wrong patient"},
            headers=ACTOR,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["reversed_entry_id"] == entry.id
        assert data["previous_status"] == "paid"
        assert data["new_status"] == "accepted"
        assert data["paid_amount"] == "-500.00"

        reversal = client.get(f"/api/v1/ledger/{data['reversal_entry_id']}").json()
        assert reversal["entry_type"] == "reversal"
        assert reversal["reverses_entry_id"] == entry.id
        assert reversal["posted_by"] == "user-1"

    def test_reverse_twice_conflicts(self, client, db_session, processed_file):
        entry = db_session.query(LedgerEntry).filter(LedgerEntry.patient_control_number == "CLM001").one()
        url = f"/api/v1/ledger/{entry.id}/reverse"

        client.post(url, json={"reason": "Duplicate"}, headers=ACTOR)
        response = client.post(url, json={"reason": "Duplicate"}, headers=ACTOR)

        assert response.status_code == 409
        assert response.json()["error"] == "ALREADY_POSTED"

    def test_reverse_requires_actor(self, client, db_session, processed_file):
        entry = db_session.query(LedgerEntry).first()

        response = client.post(f"/api/v1/ledger/{entry.id}/reverse", json={"reason": "Duplicate"})

        assert response.status_code == 401

    def test_reverse_requires_reason(self, client, db_session, processed_file):
        entry = db_session.query(LedgerEntry).first()

        response = client.post(f"/api/v1/ledger/{entry.id}/reverse", json={"reason": ""}, headers=ACTOR)

        assert response.status_code == 422

    def test_reverse_unknown_entry(self, client):
        response = client.post("/api/v1/ledger/999/reverse", json={"reason": "Missing"}, headers=ACTOR)

        assert response.status_code == 404
