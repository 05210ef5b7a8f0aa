"""Tests for model-response parsing and claim data models."""

import re
from datetime import datetime, timedelta, timezone

import pytest

from conftest import final_response, initial_response
from fnol.models.assessment import FinalAssessment, InitialAssessment, Routing, Severity
from fnol.models.claim import IncidentDetails, IncidentType, VehicleDetails, generate_claim_number
from fnol.utils.errors import ErrorType, MalformedResponseError, ValidationError
from fnol.utils.response_formatter import ResponseFormatter


class TestResponseFormatter:

    def test_raw_json(self):
        assert ResponseFormatter.extract_json_from_response('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        text = 'Here is the assessment:\n```json\n{"initial_severity": "low"}\n```\nThanks'
        assert ResponseFormatter.extract_json_from_response(text) == {"initial_severity": "low"}

    def test_embedded_json_after_prose(self):
        text = 'Sure {not json} the result is {"severity_level": "high", "nested": {"x": 1}} done'
        assert ResponseFormatter.extract_json_from_response(text) == {"severity_level": "high", "nested": {"x": 1}}

    def test_no_json(self):
        assert ResponseFormatter.extract_json_from_response("I cannot help with that") is None

    def test_parse_model_json_without_object(self):
        with pytest.raises(MalformedResponseError) as exc_info:
            ResponseFormatter.parse_model_json("no braces here", "initial_assessment")
        assert exc_info.value.error_type is ErrorType.UPSTREAM_RESPONSE_MALFORMED
        assert exc_info.value.recoverable

    def test_parse_model_json_reports_missing_fields(self):
        with pytest.raises(MalformedResponseError) as exc_info:
            ResponseFormatter.parse_model_json('{"a": 1, "b": null}', "finalization", ["a", "b", "c"])
        assert exc_info.value.context.details["missing_fields"] == ["b", "c"]


class TestInitialAssessment:

    def test_parses_questions(self):
        assessment = InitialAssessment.from_dict(initial_response())

        assert assessment.initial_severity == "medium"
        assert len(assessment.follow_up_questions) == 4
        assert assessment.follow_up_questions[0].is_required is True
        assert assessment.visible_damage_analysis["affected_areas"] == ["rear bumper"]

    def test_question_type_defaults_to_incident_details(self):
        assessment = InitialAssessment.from_dict(initial_response(questions=[{"question": "When?"}]))
        assert assessment.follow_up_questions[0].question_type == "incident_details"

    def test_rejects_unknown_severity(self):
        with pytest.raises(MalformedResponseError):
            InitialAssessment.from_dict(initial_response(initial_severity="fraudulent"))

    def test_rejects_question_without_text(self):
        with pytest.raises(MalformedResponseError):
            InitialAssessment.from_dict(initial_response(questions=[{"question": "  ", "question_type": "safety"}]))

    def test_rejects_missing_questions(self):
        payload = initial_response()
        del payload["follow_up_questions"]
        with pytest.raises(MalformedResponseError) as exc_info:
            InitialAssessment.from_dict(payload)
        assert exc_info.value.context.details["missing_fields"] == ["follow_up_questions"]


class TestFinalAssessment:

    def test_parses_typed_fields(self):
        assessment = FinalAssessment.from_dict(final_response(severity_level="HIGH", total_estimate=4200))

        assert assessment.severity_level is Severity.HIGH
        assert assessment.routing_decision is Routing.JUNIOR_ADJUSTER
        assert assessment.to_dict()["total_estimate"] == 4200

    def test_rejects_unknown_routing(self):
        with pytest.raises(MalformedResponseError):
            FinalAssessment.from_dict(final_response(routing_decision="auto_approve"))

    @pytest.mark.parametrize("score", [1.5, -0.1, "high", True])
    def test_rejects_bad_confidence(self, score):
        with pytest.raises(MalformedResponseError):
            FinalAssessment.from_dict(final_response(confidence_score=score))

    def test_optional_sections_omitted_when_absent(self):
        payload = final_response()
        del payload["fraud_indicators"]
        assert "fraud_indicators" not in FinalAssessment.from_dict(payload).to_dict()


class TestClaimModels:

    def test_claim_number_format(self):
        assert re.fullmatch(r"CLM-[0-9A-F]{8}", generate_claim_number())

    def test_vehicle_from_dict(self):
        vehicle = VehicleDetails.from_dict({"make": " Honda ", "year": "2019", "ownership_status": "Leased", "vin": ""})

        assert vehicle.make == "Honda"
        assert vehicle.year == 2019
        assert vehicle.ownership_status == "leased"
        assert vehicle.vin is None

    def test_vehicle_rejects_unknown_ownership(self):
        with pytest.raises(ValidationError):
            VehicleDetails.from_dict({"ownership_status": "borrowed"})

    def test_vehicle_rejects_non_numeric_year(self):
        with pytest.raises(ValidationError):
            VehicleDetails.from_dict({"year": "twenty"})

    def test_fill_from_keeps_claimant_values(self):
        claimant = VehicleDetails(make="Toyota", model=None, year=2020)
        extracted = VehicleDetails(make="Honda", model="Civic", year=2018, vin="1HGCM82633A004352")

        merged = claimant.fill_from(extracted)

        assert (merged.make, merged.model, merged.year, merged.vin) == ("Toyota", "Civic", 2020, "1HGCM82633A004352")
        assert claimant.model is None

    def test_incident_date_without_timezone_is_utc(self):
        incident = IncidentDetails.from_dict({"incident_type": "theft", "incident_date": "2024-01-05T08:00:00"})

        assert incident.incident_type is IncidentType.THEFT
        assert incident.incident_date.tzinfo is timezone.utc

    def test_incident_date_in_future_rejected(self):
        tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
        with pytest.raises(ValidationError):
            IncidentDetails.from_dict({"incident_type": "collision", "incident_date": tomorrow})

    def test_unknown_incident_type_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            IncidentDetails.from_dict({"incident_type": "meteor", "incident_date": "2024-01-05"})
        assert exc_info.value.context.details["field"] == "incident_type"
