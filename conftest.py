"""Shared fixtures: a scripted Bedrock runtime and a fully wired intake service."""

import io
import json
from typing import Any, Dict, List

import pytest
from PIL import Image

from fnol.intake import IntakeService
from fnol.stages.document_extractor import DocumentExtractor
from fnol.stages.finalization import FinalizationStage
from fnol.stages.gateway import VisionGateway
from fnol.stages.initial_assessment import InitialAssessmentStage
from fnol.stages.policy_validator import LocalPolicyOracle, PolicyValidator
from fnol.storage.object_storage import LocalObjectStorage
from fnol.storage.record_store import InMemoryRecordStore
from fnol.utils.bedrock_client import BedrockClient


def png_bytes(color=(200, 30, 30), size=(8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def initial_response(questions: List[Dict[str, Any]] = None, **overrides) -> Dict[str, Any]:
    payload = {
        "initial_severity": "medium",
        "confidence_score": 0.8,
        "image_authenticity": {"appears_authentic": True, "concerns": []},
        "vehicle_match": {"matches_claimed_vehicle": True},
        "visible_damage_analysis": {
            "damage_types": ["dent", "scratch"],
            "affected_areas": ["rear bumper"],
            "preliminary_notes": "Rear impact damage",
        },
        "follow_up_questions": questions if questions is not None else [
            {"question": "Can you confirm the VIN shown on the dashboard?", "question_type": "vehicle_verification", "is_required": True},
            {"question": "How fast were you travelling?", "question_type": "incident_details", "is_required": True},
            {"question": "Did any airbags deploy?", "question_type": "safety", "is_required": False},
            {"question": "Please photograph the undercarriage", "question_type": "additional_images", "is_required": False},
        ],
        "reasoning": "Moderate rear damage visible",
    }
    payload.update(overrides)
    return payload


def final_response(**overrides) -> Dict[str, Any]:
    payload = {
        "severity_level": "medium",
        "routing_decision": "junior_adjuster",
        "confidence_score": 0.82,
        "damage_assessment": {
            "estimated_cost_range": "$1,500-$3,000",
            "repair_complexity": "moderate",
            "is_drivable": True,
            "total_loss_risk": "low",
            "damage_types": ["dent"],
            "affected_areas": ["rear bumper"],
        },
        "recommendations": {"immediate_actions": ["Schedule inspection"], "estimated_timeline": "1-2 weeks"},
        "fraud_indicators": {"has_red_flags": False, "concerns": [], "verification_status": "verified"},
        "image_authenticity": {"appears_authentic": True},
        "reasoning": "Answers are consistent with the photos",
    }
    payload.update(overrides)
    return payload


class ScriptedRuntime:
    """
    Stands in for the bedrock-runtime client.

    Each ``converse`` call consumes the next scripted item: a dict is returned
    as JSON text, a str verbatim, and an exception is raised.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls: List[Dict[str, Any]] = []

    def push(self, *items):
        self.script.extend(items)

    def converse(self, **params):
        self.calls.append(params)
        if not self.script:
            raise AssertionError("unexpected model call")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        text = item if isinstance(item, str) else json.dumps(item)
        return {
            "output": {"message": {"role": "assistant", "content": [{"text": text}]}},
            "stopReason": "end_turn",
            "usage": {"inputTokens": 10, "outputTokens": 20},
        }

    def image_count(self, call_index: int) -> int:
        content = self.calls[call_index]["messages"][0]["content"]
        return sum(1 for block in content if "image" in block)


@pytest.fixture
def runtime():
    return ScriptedRuntime()


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(base_dir=str(tmp_path / "uploads"), public_base_url="http://testserver/files")


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def service(runtime, storage, store):
    bedrock = BedrockClient(runtime=runtime, max_retries=2)
    gateway = VisionGateway(bedrock, storage=storage)
    validator = PolicyValidator(LocalPolicyOracle({"POL-123456": "active", "POL-000000": "lapsed"}))
    return IntakeService(
        validator=validator,
        extractor=DocumentExtractor(gateway),
        initial_stage=InitialAssessmentStage(gateway),
        finalization=FinalizationStage(gateway),
        store=store,
        storage=storage,
    )


@pytest.fixture
def incident():
    return {
        "incident_type": "collision",
        "incident_date": "2024-03-01T14:30:00Z",
        "description": "Rear-ended at a stop light",
        "location": "Main St & 5th Ave",
    }


@pytest.fixture
def vehicle():
    return {"make": "Toyota", "model": "Camry", "year": "2020", "ownership_status": "owned"}
