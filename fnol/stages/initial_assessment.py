"""Initial (preliminary) assessment from intake photos."""

import logging
from typing import Sequence

from ..models.assessment import INITIAL_REQUIRED_FIELDS, InitialAssessment
from ..models.claim import IncidentDetails, VehicleDetails
from ..utils.errors import ValidationError
from ..utils.logging import with_context
from .gateway import VisionGateway

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert AUTO INSURANCE claims assessor analyzing vehicle damage photos for initial triage.

Your task for this INITIAL assessment:
1. Carefully analyze the vehicle damage photos
2. Check whether the photos look like genuine, unedited photos of a real vehicle
3. Check whether the pictured vehicle is consistent with the claimed vehicle
4. Identify visible damage types and affected areas
5. Assess preliminary severity based on visible damage
6. Generate 3-7 targeted follow-up questions based on what you see in the images

Important: This is ONLY the initial assessment. Do NOT provide final routing decisions or cost estimates yet.

Generate follow-up questions that:
- Ask about damage not visible in photos (undercarriage, mechanical, alignment issues)
- Clarify circumstances (speed, impact angle, other vehicles involved)
- Determine if airbags deployed, if vehicle is drivable
- Ask about injuries to driver/passengers
- Request additional photos of specific areas if needed (use question_type: "additional_images")
- Verify vehicle ownership and coverage details relevant to the damage type

Question Types:
- "damage_details": Questions about extent and specifics of damage
- "incident_details": Questions about how the incident occurred
- "vehicle_verification": Questions confirming the vehicle, VIN or ownership
- "coverage": Questions about policy coverage and deductibles
- "safety": Questions about injuries and vehicle safety
- "additional_images": Requests for additional photos of specific areas

Respond with a single JSON object:
{
  "initial_severity": "low|medium|high|critical",
  "confidence_score": 0.0-1.0,
  "image_authenticity": {
    "appears_authentic": true|false,
    "confidence": 0.0-1.0,
    "concerns": ["concern1"],
    "validation_notes": "What supports or undermines authenticity"
  },
  "vehicle_match": {
    "matches_claimed_vehicle": true|false|null,
    "observed_vehicle": "Make/model/colour visible in the photos",
    "notes": "Consistency with the claimed vehicle"
  },
  "visible_damage_analysis": {
    "damage_types": ["type1", "type2"],
    "affected_areas": ["area1", "area2"],
    "preliminary_notes": "What you can see in the images"
  },
  "follow_up_questions": [
    {
      "question": "Specific question based on visible damage",
      "question_type": "damage_details|incident_details|vehicle_verification|coverage|safety|additional_images",
      "is_required": true|false,
      "reasoning": "Why this question is important based on what you see"
    }
  ],
  "reasoning": "Brief explanation of what you observed and why these questions are needed"
}"""


def build_user_text(policy_number: str, incident: IncidentDetails, vehicle: VehicleDetails) -> str:
    return (
        f"Incident Type: {incident.incident_type.value}\n"
        f"Incident Date: {incident.incident_date.isoformat()}\n"
        f"Description: {incident.description or 'No description provided'}\n"
        f"Location: {incident.location or 'Not specified'}\n"
        f"Policy Number: {policy_number}\n\n"
        f"CLAIMED VEHICLE:\n"
        f"Make/Model/Year: {vehicle.summary()}\n"
        f"VIN: {vehicle.vin or 'Not provided'}\n"
        f"License Plate: {vehicle.license_plate or 'Not provided'}\n"
        f"Ownership: {vehicle.ownership_status or 'Not provided'}\n\n"
        f"Please assess this claim and provide your analysis."
    )


class InitialAssessmentStage:
    """Turns intake photos and incident details into a preliminary assessment and follow-up questions."""

    def __init__(self, gateway: VisionGateway):
        self.gateway = gateway

    @with_context(stage="initial_assessment")
    async def assess_initial(
        self,
        policy_number: str,
        incident: IncidentDetails,
        vehicle: VehicleDetails,
        photo_urls: Sequence[str]
    ) -> InitialAssessment:
        """
        Args:
            policy_number: Validated policy number
            incident: Validated incident details
            vehicle: Vehicle descriptor (possibly partial)
            photo_urls: Stored intake photo URLs, at least one

        Returns:
            Validated InitialAssessment

        Raises:
            ValidationError: If no photos were given (no model call is made)
            BedrockAPIError: Upstream failure or timeout
            MalformedResponseError: Response missing required keys or wrongly shaped
        """
        if not photo_urls:
            raise ValidationError.photo_required()

        data = await self.gateway.invoke_json(
            InitialAssessment.STAGE,
            SYSTEM_PROMPT,
            build_user_text(policy_number, incident, vehicle),
            image_urls=list(photo_urls),
            required_fields=INITIAL_REQUIRED_FIELDS,
        )
        assessment = InitialAssessment.from_dict(data)

        logger.info(
            f"Initial assessment: severity={assessment.initial_severity}, "
            f"questions={len(assessment.follow_up_questions)}"
        )
        return assessment
