"""
Failure report for manual follow-up on an ERA file.

One CSV row per failed claim from the latest posting run, per unusable claim
loop and per file warning. Adjustment codes are expanded with their CARC
descriptions.
"""
import csv
import io
from typing import Any, Dict, Iterable, List, Optional

from app.models.database import EraFile, PostingRun
from app.models.enums import PostingOutcome
from app.services.edi.config import describe_carc

REPORT_HEADERS = [
    "row_type",
    "claim_sequence",
    "patient_control_number",
    "paid_amount",
    "reason",
    "message",
    "adjustment_codes",
    "adjustment_descriptions",
]


def describe_adjustment_codes(codes: Iterable[str]) -> str:
    """'CO45' -> 'CO45: Charge exceeds fee schedule/maximum allowable ...'"""
    return "; ".join(f"{code}: {describe_carc(code[2:])}" for code in codes)


def _failure_rows(run: Optional[PostingRun]) -> List[List[Any]]:
    if run is None:
        return []
    rows = []
    for result in run.results:
        if result.get("outcome") != PostingOutcome.FAILED.value:
            continue
        codes = result.get("adjustment_codes") or []
        rows.append(
            [
                "failed_claim",
                result.get("claim_sequence"),
                result.get("patient_control_number"),
                result.get("paid_amount") or "",
                result.get("error_code") or "",
                result.get("error_message") or "",
                " ".join(codes),
                describe_adjustment_codes(codes),
            ]
        )
    return rows


def _unusable_rows(unusable_claims: List[Dict[str, Any]]) -> List[List[Any]]:
    return [
        [
            "unusable_claim",
            claim.get("sequence"),
            claim.get("patient_control_number") or "",
            claim.get("paid_amount") or "",
            "UNUSABLE",
            "; ".join(claim.get("reasons") or []),
            "",
            "",
        ]
        for claim in unusable_claims
    ]


def build_failure_report(era_file: EraFile) -> str:
    """Render the failure report for `era_file` as CSV text."""
    latest_run = era_file.posting_runs[-1] if era_file.posting_runs else None

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(REPORT_HEADERS)

    for row in _failure_rows(latest_run):
        writer.writerow(row)
    for row in _unusable_rows(era_file.unusable_claims or []):
        writer.writerow(row)
    for warning in era_file.parse_warnings or []:
        writer.writerow(["warning", "", "", "", "", warning, "", ""])
    if era_file.error_message:
        writer.writerow(["error", "", "", "", (era_file.error_details or {}).get("error", ""), era_file.error_message, "", ""])

    return output.getvalue()


def report_filename(era_file: EraFile) -> str:
    return f"era_{era_file.id}_failures.csv"
