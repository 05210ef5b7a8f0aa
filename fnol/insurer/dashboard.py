"""
Insurer dashboard.

Read-only list and detail views over the claim record store, plus manual
re-finalization of claims still in ``submitted`` and PDF export.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..models.claim import Claim, ClaimStatus
from ..utils.errors import ClaimsProcessingError, WorkflowError
from .access import AccessGate
from .badges import (
    format_confidence,
    format_routing,
    format_severity,
    has_fraud_signals,
    legitimacy,
)
from .report import render_claim_report

if TYPE_CHECKING:
    from ..intake import IntakeService

logger = logging.getLogger(__name__)


class InsurerDashboard:
    """
    Dashboard view bound to one verified session token.

    Lists are point-in-time snapshots; call ``list_claims`` again to refresh.
    """

    def __init__(self, token: str, gate: AccessGate, service: "IntakeService"):
        gate.verify(token)
        self.token = token
        self.service = service
        self.store = service.store
        self.snapshot: List[Dict[str, Any]] = []

    def _summary(self, claim: Claim) -> Dict[str, Any]:
        fraud = has_fraud_signals(claim)
        return {
            "id": claim.id,
            "claim_number": claim.claim_number,
            "policy_number": claim.policy_number,
            "incident_type": claim.incident.incident_type.value,
            "incident_date": claim.incident.incident_date.isoformat(),
            "status": claim.status.value,
            "severity_level": claim.severity_level,
            "routing_decision": claim.routing_decision,
            "confidence_score": claim.confidence_score,
            "severity_label": format_severity(claim.severity_level),
            "routing_label": format_routing(claim.routing_decision),
            "legitimacy": legitimacy(claim),
            "fraud_flag": fraud,
            "vehicle": claim.vehicle.summary(),
            "created_at": claim.created_at.isoformat(),
        }

    def list_claims(self) -> List[Dict[str, Any]]:
        """All claims, newest first."""
        self.snapshot = [self._summary(claim) for claim in self.store.list_claims()]
        return self.snapshot

    def _badges(self, claim: Claim) -> Dict[str, Any]:
        """Fraud panel, or the legitimacy, severity and routing badges; never both."""
        if has_fraud_signals(claim):
            return {"fraud_panel": self._fraud_panel(claim)}
        return {
            "legitimacy": legitimacy(claim),
            "severity": format_severity(claim.severity_level),
            "routing": format_routing(claim.routing_decision),
            "confidence": format_confidence(claim.confidence_score),
        }

    @staticmethod
    def _fraud_panel(claim: Claim) -> Dict[str, Any]:
        payload = claim.ai_assessment or {}
        authenticity = payload.get("image_authenticity") or {}
        fraud = payload.get("fraud_indicators") or {}
        return {
            "image_authenticity": {
                "appears_authentic": authenticity.get("appears_authentic"),
                "validation_notes": authenticity.get("validation_notes"),
                "concerns": authenticity.get("concerns") or [],
                "confidence": authenticity.get("confidence"),
            },
            "fraud_indicators": {
                "has_red_flags": bool(fraud.get("has_red_flags")),
                "verification_status": fraud.get("verification_status"),
                "concerns": fraud.get("concerns") or [],
            },
        }

    def claim_detail(self, claim_id: str) -> Dict[str, Any]:
        claim = self.store.get_claim(claim_id)
        files = self.store.list_files(claim_id)
        questions = self.store.list_questions(claim_id)
        payload = claim.ai_assessment or {}

        panels: Dict[str, Any] = {
            "damage_assessment": payload.get("damage_assessment"),
            "recommendations": payload.get("recommendations"),
            "reasoning": payload.get("reasoning"),
            "qa_summary": payload.get("qa_summary"),
        }
        vehicle_validation = payload.get("vehicle_validation") or {}
        if vehicle_validation and vehicle_validation.get("details_consistent") is False:
            panels["vehicle_validation"] = vehicle_validation

        return {
            "claim": claim.to_dict(),
            "files": [f.to_dict() for f in files],
            "photos": [f.to_dict() for f in files if f.is_photo],
            "questions": [q.to_dict() for q in questions],
            "badges": self._badges(claim),
            "panels": panels,
            "can_refinalize": claim.status is ClaimStatus.SUBMITTED,
        }

    def _refresh_quietly(self) -> None:
        try:
            self.list_claims()
        except ClaimsProcessingError as e:
            logger.warning(f"Claim list refresh failed after re-finalization: {e}")

    async def refinalize(self, claim_id: str) -> Dict[str, Any]:
        """
        Re-run finalization for a claim still in ``submitted``.

        Raises:
            WorkflowError: If the claim is already assessed
        """
        claim = self.store.get_claim(claim_id)
        if claim.status is not ClaimStatus.SUBMITTED:
            raise WorkflowError.invalid_transition(
                claim_id, claim.status.value, ClaimStatus.ASSESSED.value, [ClaimStatus.SUBMITTED.value]
            )
        logger.info(f"Re-finalizing claim {claim.claim_number} from the dashboard")
        updated = await self.service.finalize_claim(claim_id)
        self._refresh_quietly()
        return self._summary(updated)

    def export_report(self, claim_id: str) -> bytes:
        claim = self.store.get_claim(claim_id)
        return render_claim_report(claim, self.store.list_questions(claim_id))

    def report_filename(self, claim_id: Optional[str] = None, claim: Optional[Claim] = None) -> str:
        claim = claim or self.store.get_claim(claim_id)
        return f"claim-report-{claim.claim_number}.pdf"
