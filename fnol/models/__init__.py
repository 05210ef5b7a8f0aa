"""Data models for claims, assessments and policy checks."""

from .claim import (
    Claim,
    ClaimFile,
    ClaimQuestion,
    ClaimStatus,
    FileStage,
    IncidentDetails,
    IncidentType,
    VehicleDetails,
)
from .assessment import FinalAssessment, FollowUpQuestion, InitialAssessment, Routing, Severity
from .extraction import DocumentExtraction, PolicyStatus, PolicyVerdict

__all__ = [
    "Claim",
    "ClaimFile",
    "ClaimQuestion",
    "ClaimStatus",
    "FileStage",
    "IncidentDetails",
    "IncidentType",
    "VehicleDetails",
    "FinalAssessment",
    "FollowUpQuestion",
    "InitialAssessment",
    "Routing",
    "Severity",
    "DocumentExtraction",
    "PolicyStatus",
    "PolicyVerdict",
]
