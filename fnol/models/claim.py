"""Claim record data models."""

import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.errors import ValidationError


class IncidentType(Enum):
    COLLISION = "collision"
    THEFT = "theft"
    VANDALISM = "vandalism"
    WEATHER = "weather"
    FIRE = "fire"
    FLOOD = "flood"
    GLASS = "glass"
    ANIMAL_STRIKE = "animal_strike"
    OTHER = "other"


class ClaimStatus(Enum):
    SUBMITTED = "submitted"
    ASSESSED = "assessed"


class FileStage(Enum):
    """Point in the workflow at which a file was uploaded."""
    INTAKE_PHOTO = "intake_photo"
    INTAKE_DOCUMENT = "intake_document"
    POLICY_DOCUMENT = "policy_document"
    FOLLOW_UP_PHOTO = "follow_up_photo"


OWNERSHIP_STATUSES = ("owned", "leased", "financed")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def generate_claim_number() -> str:
    return f"CLM-{uuid.uuid4().hex[:8].upper()}"


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise ValidationError.invalid_input(f"{field_name} is required", field=field_name)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError.invalid_input(
                f"{field_name} must be an ISO-8601 date or timestamp", field=field_name
            )
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


@dataclass
class VehicleDetails:
    """
    Claimant-supplied vehicle descriptor.

    Every field is optional; the policy document extractor may fill
    fields the claimant left empty.
    """
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    vin: Optional[str] = None
    license_plate: Optional[str] = None
    ownership_status: Optional[str] = None
    odometer: Optional[int] = None
    purchase_date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "VehicleDetails":
        data = data or {}
        vehicle = cls()
        for f in fields(cls):
            value = data.get(f.name)
            if _blank(value):
                continue
            if f.name in ("year", "odometer"):
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise ValidationError.invalid_input(f"vehicle {f.name} must be a number", field=f"vehicle.{f.name}")
            elif isinstance(value, str):
                value = value.strip()
            setattr(vehicle, f.name, value)

        if vehicle.ownership_status is not None:
            vehicle.ownership_status = vehicle.ownership_status.lower()
            if vehicle.ownership_status not in OWNERSHIP_STATUSES:
                raise ValidationError.invalid_input(
                    f"ownership status must be one of {', '.join(OWNERSHIP_STATUSES)}",
                    field="vehicle.ownership_status"
                )
        return vehicle

    def empty_fields(self) -> List[str]:
        return [f.name for f in fields(self) if _blank(getattr(self, f.name))]

    def fill_from(self, other: "VehicleDetails") -> "VehicleDetails":
        """Copy of self with empty fields taken from ``other``."""
        updates = {name: getattr(other, name) for name in self.empty_fields() if not _blank(getattr(other, name))}
        return replace(self, **updates)

    def summary(self) -> str:
        parts = [str(p) for p in (self.year, self.make, self.model) if p]
        return " ".join(parts) if parts else "Unknown vehicle"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class IncidentDetails:
    """
    What happened, when, and where.

    Attributes:
        incident_type: One of the IncidentType values
        incident_date: When the loss occurred (timezone-aware)
        description: Free-text narrative
        location: Free-text location
    """
    incident_type: IncidentType
    incident_date: datetime
    description: str = ""
    location: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], now: Optional[datetime] = None) -> "IncidentDetails":
        """
        Validate raw incident input.

        Raises:
            ValidationError: On an unknown incident type or an incident date in the future
        """
        raw_type = str(data.get("incident_type") or "").strip().lower()
        try:
            incident_type = IncidentType(raw_type)
        except ValueError:
            allowed = ", ".join(t.value for t in IncidentType)
            raise ValidationError.invalid_input(
                f"Unknown incident type '{raw_type}'. Expected one of: {allowed}",
                field="incident_type"
            )

        incident_date = parse_timestamp(data.get("incident_date"), "incident_date")
        if incident_date > (now or utcnow()):
            raise ValidationError.invalid_input("Incident date cannot be in the future", field="incident_date")

        return cls(
            incident_type=incident_type,
            incident_date=incident_date,
            description=str(data.get("description") or "").strip(),
            location=str(data.get("location") or "").strip(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "incident_type": self.incident_type.value,
            "incident_date": self.incident_date.isoformat(),
            "description": self.description,
            "location": self.location,
        }


@dataclass
class Claim:
    """
    A claim record.

    Severity, routing, confidence and ai_assessment are written together by
    finalization only; the initial pass lives in ``initial_assessment``.
    """
    policy_number: str
    policy_status: str
    incident: IncidentDetails
    vehicle: VehicleDetails
    id: str = field(default_factory=new_id)
    claim_number: str = field(default_factory=generate_claim_number)
    status: ClaimStatus = ClaimStatus.SUBMITTED
    severity_level: Optional[str] = None
    confidence_score: Optional[float] = None
    routing_decision: Optional[str] = None
    ai_assessment: Optional[Dict[str, Any]] = None
    initial_assessment: Optional[Dict[str, Any]] = None
    policy_document_url: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "claim_number": self.claim_number,
            "policy_number": self.policy_number,
            "policy_status": self.policy_status,
            **self.incident.to_dict(),
            "vehicle": self.vehicle.to_dict(),
            "status": self.status.value,
            "severity_level": self.severity_level,
            "confidence_score": self.confidence_score,
            "routing_decision": self.routing_decision,
            "ai_assessment": self.ai_assessment,
            "initial_assessment": self.initial_assessment,
            "policy_document_url": self.policy_document_url,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ClaimFile:
    """An uploaded file belonging to a claim. Never mutated after creation."""
    claim_id: str
    file_name: str
    file_type: str
    file_url: str
    file_size: int
    stage: FileStage
    damage_tags: List[str] = field(default_factory=list)
    ai_analysis: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_photo(self) -> bool:
        return self.stage in (FileStage.INTAKE_PHOTO, FileStage.FOLLOW_UP_PHOTO)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "file_url": self.file_url,
            "file_size": self.file_size,
            "stage": self.stage.value,
            "damage_tags": list(self.damage_tags),
            "ai_analysis": self.ai_analysis,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ClaimQuestion:
    """
    A follow-up question generated by the initial assessment.

    ``answer`` and ``answered_at`` are always set together.
    """
    claim_id: str
    question: str
    question_type: str
    is_required: bool = False
    answer: Optional[str] = None
    answered_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)
    asked_at: datetime = field(default_factory=utcnow)

    @property
    def is_answered(self) -> bool:
        return not _blank(self.answer)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "question": self.question,
            "question_type": self.question_type,
            "is_required": self.is_required,
            "answer": self.answer,
            "asked_at": self.asked_at.isoformat(),
            "answered_at": self.answered_at.isoformat() if self.answered_at else None,
        }
