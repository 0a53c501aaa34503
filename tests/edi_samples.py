"""Builders for 835 test content with consistent envelopes and trailer counts."""
from typing import List, Optional, Sequence


def isa(control_number: str = "000000101", sender_id: str = "87726") -> str:
    return (
        f"ISA*00*          *00*          *ZZ*{sender_id:<15}*ZZ*PROVIDER01     "
        f"*240115*1200*^*00501*{control_number:0>9}*0*P*:~"
    )


def claim_segments(
    claim_id: str,
    billed: str,
    paid: str,
    patient_responsibility: str = "0",
    status: str = "1",
    member_id: Optional[str] = None,
    last_name: str = "DOE",
    first_name: str = "JANE",
    service_date: str = "20240110",
    extra: Sequence[str] = (),
) -> List[str]:
    """One CLP loop with a patient name, statement dates and a single service line."""
    segments = [f"CLP*{claim_id}*{status}*{billed}*{paid}*{patient_responsibility}*12*ICN{claim_id}*11*1"]
    member = f"****MI*{member_id}" if member_id else ""
    segments.append(f"NM1*QC*1*{last_name}*{first_name}{member}")
    segments.append(f"DTM*232*{service_date}")
    segments.append(f"DTM*233*{service_date}")
    segments.extend(extra)
    segments.append(f"SVC*HC:99213*{billed}*{paid}**1")
    segments.append(f"DTM*472*{service_date}")
    return segments


def build_835(
    payment_amount: str,
    claims: Sequence[Sequence[str]] = (),
    control_number: str = "000000101",
    transaction_number: str = "0001",
    header: Sequence[str] = (),
    trailer: Sequence[str] = (),
    terminator: str = "~\n",
    sender_id: str = "87726",
) -> str:
    """
    Assemble a complete interchange: ISA/GS/ST, BPR/TRN, payer and payee loops,
    the claim loops, then SE/GE/IEA with correct counts.
    """
    body = [
        f"ST*835*{transaction_number}",
        f"BPR*I*{payment_amount}*C*CHK************20240115",
        "TRN*1*CHK12345*1512345678",
        *header,
        "N1*PR*UNITED HEALTHCARE*XV*87726",
        "N1*PE*GOOD HEALTH CLINIC*XX*1234567893",
    ]
    if claims:
        body.append("LX*1")
    for claim in claims:
        body.extend(claim)
    body.extend(trailer)
    body.append(f"SE*{len(body) + 1}*{transaction_number}")

    group_number = str(int(control_number))
    segments = [
        f"GS*HP*{sender_id}*PROVIDER01*20240115*1200*{group_number}*X*005010X221A1",
        *body,
        f"GE*1*{group_number}",
        f"IEA*1*{control_number}",
    ]
    return isa(control_number, sender_id).rstrip("~") + terminator + terminator.join(segments) + terminator
