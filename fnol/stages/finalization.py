"""Final, binding assessment from the initial pass plus follow-up answers."""

import json
import logging
from typing import Any, Dict, List, Sequence

from ..models.assessment import FINAL_REQUIRED_FIELDS, FinalAssessment
from ..models.claim import Claim, ClaimQuestion
from ..utils.logging import with_context
from .gateway import VisionGateway

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert AUTO INSURANCE claims assessor providing FINAL triage and routing decisions.

Based on the initial damage analysis, the claimant's follow-up answers and any additional photos, provide:
1. Final severity level
2. Detailed damage assessment with cost estimates
3. Routing decision
4. Fraud indicators and image authenticity findings
5. A summary of what the follow-up answers revealed
6. Final recommendations

Severity Guidelines:
- LOW: Minor cosmetic damage, no safety issues, under $2,000 (small dent, scratch, minor glass)
- MEDIUM: Moderate damage, functional impact, $2,000-$10,000 (panel damage, window, door)
- HIGH: Significant damage, safety concerns, $10,000-$50,000 (multiple panels, suspension, frame concerns)
- CRITICAL: Total loss potential, bodily injury, over $50,000 (major structural, fire, severe collision)
- FRAUDULENT: Photos appear manipulated or unrelated to the claim, or answers contradict the evidence

Routing Decisions:
- straight_through: Simple, well-documented, low-value claims (under $3,000, no injuries, clear liability)
- junior_adjuster: Standard claims with moderate damage and good documentation
- senior_adjuster: Complex claims, high value, or unclear liability
- specialist: Total loss potential, bodily injury, or requires expert evaluation (frame damage, flood, fire)
- fraud_investigation: Credible fraud indicators that need the special investigations unit

Respond with a single JSON object:
{
  "severity_level": "low|medium|high|critical|fraudulent",
  "confidence_score": 0.0-1.0,
  "routing_decision": "straight_through|junior_adjuster|senior_adjuster|specialist|fraud_investigation",
  "fraud_indicators": {
    "has_red_flags": true|false,
    "concerns": ["concern1"],
    "verification_status": "verified|needs_review|suspicious"
  },
  "image_authenticity": {
    "appears_authentic": true|false,
    "confidence": 0.0-1.0,
    "concerns": ["concern1"],
    "validation_notes": "string"
  },
  "vehicle_validation": {
    "details_consistent": true|false,
    "notes": "string"
  },
  "damage_assessment": {
    "damage_types": ["specific damage types"],
    "affected_areas": ["specific vehicle areas"],
    "estimated_cost_range": "$X,XXX - $X,XXX",
    "safety_concerns": ["any safety issues"],
    "repair_complexity": "simple|moderate|complex|severe",
    "is_drivable": true|false,
    "total_loss_risk": "low|medium|high"
  },
  "recommendations": {
    "immediate_actions": ["action1", "action2"],
    "required_documentation": ["doc1", "doc2"],
    "estimated_timeline": "X-Y days/weeks"
  },
  "qa_summary": {
    "credibility_score": 0.0-1.0,
    "overall_impression": "string",
    "key_takeaways": [{"category": "incident_details|damage|safety|coverage|vehicle", "insight": "string"}],
    "gaps_and_concerns": [{"issue": "string", "severity": "low|medium|high", "recommendation": "string"}]
  },
  "reasoning": "Comprehensive explanation of final assessment and routing decision"
}"""


def build_user_text(
    claim: Claim,
    initial_assessment: Dict[str, Any],
    answered_questions: Sequence[ClaimQuestion],
    has_extra_photos: bool
) -> str:
    incident = claim.incident
    qa_lines = "\n\n".join(f"Q: {q.question}\nA: {q.answer}" for q in answered_questions if q.is_answered)
    return (
        f"INITIAL CLAIM DATA:\n"
        f"Claim Number: {claim.claim_number}\n"
        f"Incident Type: {incident.incident_type.value}\n"
        f"Incident Date: {incident.incident_date.isoformat()}\n"
        f"Description: {incident.description or 'No description provided'}\n"
        f"Location: {incident.location or 'Not specified'}\n"
        f"Policy Number: {claim.policy_number}\n"
        f"Vehicle: {claim.vehicle.summary()} (VIN: {claim.vehicle.vin or 'not provided'})\n\n"
        f"INITIAL VISUAL ASSESSMENT:\n"
        f"{json.dumps(initial_assessment.get('visible_damage_analysis', {}), indent=2)}\n"
        f"Initial Severity: {initial_assessment.get('initial_severity', 'unknown')}\n"
        f"Image Authenticity: {json.dumps(initial_assessment.get('image_authenticity'))}\n\n"
        f"FOLLOW-UP ANSWERS:\n{qa_lines or 'No answers provided'}\n\n"
        + ("Additional damage photos have been provided below.\n\n" if has_extra_photos else "")
        + "Please provide the final comprehensive assessment and routing decision."
    )


class FinalizationStage:
    """
    Produces the binding verdict. The only component allowed to route a
    claim to fraud_investigation; it writes nothing itself.
    """

    def __init__(self, gateway: VisionGateway):
        self.gateway = gateway

    @with_context(stage="finalization")
    async def finalize(
        self,
        claim: Claim,
        initial_assessment: Dict[str, Any],
        answered_questions: Sequence[ClaimQuestion],
        extra_photo_urls: List[str]
    ) -> FinalAssessment:
        """
        Raises:
            BedrockAPIError: Upstream failure or timeout
            MalformedResponseError: Missing keys or unknown severity/routing
        """
        data = await self.gateway.invoke_json(
            FinalAssessment.STAGE,
            SYSTEM_PROMPT,
            build_user_text(claim, initial_assessment or {}, answered_questions, bool(extra_photo_urls)),
            image_urls=extra_photo_urls,
            required_fields=FINAL_REQUIRED_FIELDS,
            max_tokens=6000,
        )
        assessment = FinalAssessment.from_dict(data)

        logger.info(
            f"Final assessment for {claim.claim_number}: severity={assessment.severity_level.value}, "
            f"routing={assessment.routing_decision.value}, confidence={assessment.confidence_score:.2f}"
        )
        return assessment
