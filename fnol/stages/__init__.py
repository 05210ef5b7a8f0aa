"""Workflow stages: policy validation, extraction, initial assessment, finalization."""

from .gateway import InlineDocument, VisionGateway
from .policy_validator import HttpPolicyOracle, LocalPolicyOracle, PolicyValidator
from .document_extractor import DocumentExtractor
from .initial_assessment import InitialAssessmentStage
from .finalization import FinalizationStage

__all__ = [
    "InlineDocument",
    "VisionGateway",
    "HttpPolicyOracle",
    "LocalPolicyOracle",
    "PolicyValidator",
    "DocumentExtractor",
    "InitialAssessmentStage",
    "FinalizationStage",
]
