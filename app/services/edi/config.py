"""Code tables used when mapping 835 remittances."""
from typing import Optional

# CLP02 claim status codes
CLAIM_STATUS_CODE_MAP = {
    "1": "Processed as Primary",
    "2": "Processed as Secondary",
    "3": "Processed as Tertiary",
    "4": "Denied",
    "19": "Processed as Primary, Forwarded to Additional Payer(s)",
    "20": "Processed as Secondary, Forwarded to Additional Payer(s)",
    "21": "Processed as Tertiary, Forwarded to Additional Payer(s)",
    "22": "Reversal of Previous Payment",
    "23": "Not Our Claim, Forwarded to Additional Payer(s)",
    "25": "Predetermination Pricing Only - No Payment",
}

# BPR04 payment method codes
PAYMENT_METHOD_MAP = {
    "ACH": "ACH",
    "BOP": "Financial Institution Option",
    "CHK": "Check",
    "FWT": "Wire",
    "NON": "No Payment",
}

# BPR03 credit/debit flag
CREDIT_DEBIT_FLAG_MAP = {
    "C": "Credit",
    "D": "Debit",
}

# CAS01 claim adjustment group codes
ADJUSTMENT_GROUP_MAP = {
    "CO": "Contractual Obligations",
    "CR": "Corrections and Reversals",
    "OA": "Other Adjustments",
    "PI": "Payer Initiated Reductions",
    "PR": "Patient Responsibility",
}

# Most frequent claim adjustment reason codes (CARC)
CARC_DESCRIPTION_MAP = {
    "1": "Deductible Amount",
    "2": "Coinsurance Amount",
    "3": "Co-payment Amount",
    "4": "Procedure code inconsistent with the modifier used",
    "5": "Procedure code/bill type inconsistent with the place of service",
    "6": "Procedure/revenue code inconsistent with the patient's age",
    "16": "Claim/service lacks information or has submission/billing error(s)",
    "18": "Exact duplicate claim/service",
    "22": "Care may be covered by another payer per coordination of benefits",
    "23": "Impact of prior payer(s) adjudication",
    "24": "Charges are covered under a capitation agreement/managed care plan",
    "26": "Expenses incurred prior to coverage",
    "27": "Expenses incurred after coverage terminated",
    "29": "The time limit for filing has expired",
    "31": "Patient cannot be identified as our insured",
    "45": "Charge exceeds fee schedule/maximum allowable",
    "50": "Non-covered services, not deemed a medical necessity",
    "96": "Non-covered charge(s)",
    "97": "Benefit included in the payment/allowance for another service/procedure",
    "109": "Claim/service not covered by this payer/contractor",
    "119": "Benefit maximum for this time period or occurrence has been reached",
    "197": "Precertification/authorization/notification absent",
    "204": "Service/equipment/drug not covered under the patient's current benefit plan",
    "242": "Services not provided by network/primary care providers",
    "253": "Sequestration - reduction in federal payment",
}

# PLB03 provider adjustment reason codes
PROVIDER_ADJUSTMENT_REASON_MAP = {
    "72": "Authorized Return",
    "CS": "Adjustment",
    "FB": "Forwarding Balance",
    "IR": "Internal Revenue Service Withholding",
    "L6": "Interest Owed",
    "LE": "Levy",
    "WO": "Overpayment Recovery",
}


def describe_claim_status(code: Optional[str]) -> Optional[str]:
    return CLAIM_STATUS_CODE_MAP.get(code or "")


def describe_payment_method(code: Optional[str]) -> Optional[str]:
    """Human-readable BPR04; unknown codes are returned as sent."""
    if not code:
        return None
    return PAYMENT_METHOD_MAP.get(code, code)


def describe_carc(reason_code: Optional[str]) -> str:
    if not reason_code:
        return ""
    return CARC_DESCRIPTION_MAP.get(reason_code, f"CARC {reason_code}")
