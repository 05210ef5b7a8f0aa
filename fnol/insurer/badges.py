"""Display labels and badge rules shared by the dashboard and the PDF report."""

from typing import Any, Dict, Optional

from ..models.claim import Claim

ROUTING_LABELS = {
    "straight_through": "Straight Through",
    "junior_adjuster": "Junior Adjuster",
    "senior_adjuster": "Senior Adjuster",
    "specialist": "Specialist",
    "fraud_investigation": "Fraud Investigation",
}

SEVERITY_LABELS = {
    "low": "Low Severity",
    "medium": "Medium Severity",
    "high": "High Severity",
    "critical": "Critical Severity",
    "fraudulent": "Fraudulent",
    "invalid_images": "Invalid Images",
}

POTENTIAL_FRAUD = "Potential Fraud"
LEGITIMATE = "Legitimate Claim"
VERIFICATION_PENDING = "Verification Pending"


def format_routing(routing: Optional[str]) -> str:
    return ROUTING_LABELS.get(routing or "", routing or "Pending")


def format_severity(severity: Optional[str]) -> str:
    return SEVERITY_LABELS.get(severity or "", severity or "Pending Assessment")


def format_confidence(score: Optional[float]) -> str:
    return f"{round(score * 100)}%" if score else "N/A"


def _sections(claim: Claim):
    payload: Dict[str, Any] = claim.ai_assessment or {}
    fraud = payload.get("fraud_indicators") or {}
    authenticity = payload.get("image_authenticity") or {}
    return fraud, authenticity


def legitimacy(claim: Claim) -> str:
    """Potential fraud on any red flag or inauthentic images; legitimate only when authenticity is confirmed."""
    fraud, authenticity = _sections(claim)
    appears_authentic = authenticity.get("appears_authentic")
    if fraud.get("has_red_flags") or appears_authentic is False:
        return POTENTIAL_FRAUD
    if appears_authentic is True:
        return LEGITIMATE
    return VERIFICATION_PENDING


def has_fraud_signals(claim: Claim) -> bool:
    fraud, authenticity = _sections(claim)
    return (
        claim.routing_decision == "fraud_investigation"
        or claim.severity_level == "fraudulent"
        or bool(fraud.get("has_red_flags"))
        or authenticity.get("appears_authentic") is False
    )
