"""AI assessment data models, validated at the model-response boundary."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.errors import MalformedResponseError


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    FRAUDULENT = "fraudulent"


class Routing(Enum):
    STRAIGHT_THROUGH = "straight_through"
    JUNIOR_ADJUSTER = "junior_adjuster"
    SENIOR_ADJUSTER = "senior_adjuster"
    SPECIALIST = "specialist"
    FRAUD_INVESTIGATION = "fraud_investigation"


INITIAL_SEVERITIES = ("low", "medium", "high", "critical")

INITIAL_REQUIRED_FIELDS = ["initial_severity", "visible_damage_analysis", "follow_up_questions"]
FINAL_REQUIRED_FIELDS = [
    "severity_level",
    "routing_decision",
    "confidence_score",
    "damage_assessment",
    "recommendations",
]


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def _confidence(value: Any, stage: str, field_name: str, required: bool = False) -> Optional[float]:
    if value is None and not required:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedResponseError.for_stage(stage, f"{field_name} must be a number")
    if not 0.0 <= float(value) <= 1.0:
        raise MalformedResponseError.for_stage(stage, f"{field_name} {value} outside 0.0-1.0")
    return float(value)


def _section(data: Dict[str, Any], key: str, stage: str, required: bool = False) -> Optional[Dict[str, Any]]:
    value = data.get(key)
    if value is None and not required:
        return None
    if not isinstance(value, dict):
        raise MalformedResponseError.for_stage(stage, f"{key} must be an object")
    return value


@dataclass
class FollowUpQuestion:
    """
    A question the initial assessment wants answered.

    Attributes:
        question: Question text shown to the claimant
        question_type: Free-form tag (damage_details, incident_details,
            coverage, safety, additional_images, ...)
        is_required: Whether the model marked the question required
        reasoning: Why the model asks it
    """
    question: str
    question_type: str
    is_required: bool = False
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "question_type": self.question_type,
            "is_required": self.is_required,
            "reasoning": self.reasoning,
        }


@dataclass
class InitialAssessment:
    """Preliminary, non-binding assessment produced from the intake photos."""
    initial_severity: str
    visible_damage_analysis: Dict[str, Any]
    follow_up_questions: List[FollowUpQuestion]
    reasoning: str = ""
    confidence_score: Optional[float] = None
    image_authenticity: Optional[Dict[str, Any]] = None
    vehicle_match: Optional[Dict[str, Any]] = None

    STAGE = "initial_assessment"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InitialAssessment":
        """
        Validate a parsed model response.

        Raises:
            MalformedResponseError: If required keys are missing or shapes are wrong
        """
        stage = cls.STAGE
        missing = [name for name in INITIAL_REQUIRED_FIELDS if data.get(name) is None]
        if missing:
            raise MalformedResponseError.for_stage(stage, f"missing required fields {missing}", missing_fields=missing)

        severity = str(data["initial_severity"]).strip().lower()
        if severity not in INITIAL_SEVERITIES:
            raise MalformedResponseError.for_stage(stage, f"unknown initial_severity '{severity}'")

        analysis = _section(data, "visible_damage_analysis", stage, required=True)

        raw_questions = data["follow_up_questions"]
        if not isinstance(raw_questions, list):
            raise MalformedResponseError.for_stage(stage, "follow_up_questions must be a list")

        questions = []
        for raw in raw_questions:
            if not isinstance(raw, dict) or not str(raw.get("question") or "").strip():
                raise MalformedResponseError.for_stage(stage, "follow-up question without question text")
            questions.append(FollowUpQuestion(
                question=str(raw["question"]).strip(),
                question_type=str(raw.get("question_type") or "incident_details").strip(),
                is_required=bool(raw.get("is_required", False)),
                reasoning=str(raw.get("reasoning") or ""),
            ))

        return cls(
            initial_severity=severity,
            visible_damage_analysis={
                "damage_types": _string_list(analysis.get("damage_types")),
                "affected_areas": _string_list(analysis.get("affected_areas")),
                "preliminary_notes": str(analysis.get("preliminary_notes") or ""),
            },
            follow_up_questions=questions,
            reasoning=str(data.get("reasoning") or ""),
            confidence_score=_confidence(data.get("confidence_score"), stage, "confidence_score"),
            image_authenticity=_section(data, "image_authenticity", stage),
            vehicle_match=_section(data, "vehicle_match", stage),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initial_severity": self.initial_severity,
            "confidence_score": self.confidence_score,
            "image_authenticity": self.image_authenticity,
            "vehicle_match": self.vehicle_match,
            "visible_damage_analysis": self.visible_damage_analysis,
            "follow_up_questions": [q.to_dict() for q in self.follow_up_questions],
            "reasoning": self.reasoning,
        }


@dataclass
class FinalAssessment:
    """
    Binding triage verdict.

    Only severity, routing and confidence are typed; the remaining sections
    are kept as the model returned them and stored as the claim's opaque
    ``ai_assessment`` payload.
    """
    severity_level: Severity
    routing_decision: Routing
    confidence_score: float
    damage_assessment: Dict[str, Any]
    recommendations: Dict[str, Any]
    reasoning: str = ""
    fraud_indicators: Optional[Dict[str, Any]] = None
    qa_summary: Optional[Dict[str, Any]] = None
    image_authenticity: Optional[Dict[str, Any]] = None
    vehicle_validation: Optional[Dict[str, Any]] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    STAGE = "finalization"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FinalAssessment":
        stage = cls.STAGE
        missing = [name for name in FINAL_REQUIRED_FIELDS if data.get(name) is None]
        if missing:
            raise MalformedResponseError.for_stage(stage, f"missing required fields {missing}", missing_fields=missing)

        try:
            severity = Severity(str(data["severity_level"]).strip().lower())
        except ValueError:
            raise MalformedResponseError.for_stage(stage, f"unknown severity_level '{data['severity_level']}'")
        try:
            routing = Routing(str(data["routing_decision"]).strip().lower())
        except ValueError:
            raise MalformedResponseError.for_stage(stage, f"unknown routing_decision '{data['routing_decision']}'")

        known = set(FINAL_REQUIRED_FIELDS) | {
            "reasoning", "fraud_indicators", "qa_summary", "image_authenticity", "vehicle_validation"
        }
        return cls(
            severity_level=severity,
            routing_decision=routing,
            confidence_score=_confidence(data["confidence_score"], stage, "confidence_score", required=True),
            damage_assessment=_section(data, "damage_assessment", stage, required=True),
            recommendations=_section(data, "recommendations", stage, required=True),
            reasoning=str(data.get("reasoning") or ""),
            fraud_indicators=_section(data, "fraud_indicators", stage),
            qa_summary=_section(data, "qa_summary", stage),
            image_authenticity=_section(data, "image_authenticity", stage),
            vehicle_validation=_section(data, "vehicle_validation", stage),
            extras={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = dict(self.extras)
        payload.update({
            "severity_level": self.severity_level.value,
            "routing_decision": self.routing_decision.value,
            "confidence_score": self.confidence_score,
            "damage_assessment": self.damage_assessment,
            "recommendations": self.recommendations,
            "reasoning": self.reasoning,
        })
        for key in ("fraud_indicators", "qa_summary", "image_authenticity", "vehicle_validation"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload
