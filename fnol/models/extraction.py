"""Policy verdict and policy-document extraction models."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from .claim import VehicleDetails


class PolicyStatus(Enum):
    ACTIVE = "active"
    LAPSED = "lapsed"
    INVALID = "invalid"
    PENDING = "pending"


@dataclass
class PolicyVerdict:
    """
    Result of checking a policy number.

    Attributes:
        policy_number: Normalized policy number that was checked
        status: Oracle status
        metadata: Optional policy metadata from the oracle
        message: Optional user-facing explanation
    """
    policy_number: str
    status: PolicyStatus
    metadata: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.status is PolicyStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_number": self.policy_number,
            "valid": self.valid,
            "status": self.status.value,
            "metadata": self.metadata,
            "message": self.message,
        }


# Response key -> VehicleDetails attribute
EXTRACTED_VEHICLE_FIELDS = {
    "vehicle_make": "make",
    "vehicle_model": "model",
    "vehicle_year": "year",
    "vehicle_vin": "vin",
    "vehicle_license_plate": "license_plate",
    "vehicle_ownership_status": "ownership_status",
}


@dataclass
class DocumentExtraction:
    """
    Vehicle fields read from a policy document.

    ``fields`` only holds values the model could determine; an absent key
    means unknown, never a placeholder.
    """
    fields: Dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    notes: str = ""
    policy_number: Optional[str] = None
    coverage_summary: Optional[str] = None
    document_url: Optional[str] = None

    @classmethod
    def empty(cls, notes: str = "", document_url: Optional[str] = None) -> "DocumentExtraction":
        return cls(notes=notes, document_url=document_url)

    def merge_into(self, vehicle: VehicleDetails) -> VehicleDetails:
        """Return a copy of ``vehicle`` with only its empty fields filled."""
        empty = set(vehicle.empty_fields())
        updates = {name: value for name, value in self.fields.items() if name in empty}
        return replace(vehicle, **updates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": dict(self.fields),
            "confidence": self.confidence,
            "notes": self.notes,
            "policy_number": self.policy_number,
            "coverage_summary": self.coverage_summary,
            "document_url": self.document_url,
        }
