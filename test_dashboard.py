"""Tests for the insurer dashboard, its access gate and the PDF report."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import final_response
from fnol.insurer.access import AccessGate
from fnol.insurer.badges import LEGITIMATE, POTENTIAL_FRAUD, VERIFICATION_PENDING, format_confidence, legitimacy
from fnol.insurer.dashboard import InsurerDashboard
from fnol.insurer.report import render_claim_report
from fnol.models.assessment import FinalAssessment
from fnol.models.claim import Claim, ClaimQuestion, ClaimStatus, IncidentDetails, IncidentType, VehicleDetails
from fnol.utils.errors import AccessDeniedError, ErrorType, WorkflowError


def _claim(created_at=None):
    return Claim(
        policy_number="POL-123456",
        policy_status="active",
        incident=IncidentDetails(
            incident_type=IncidentType.COLLISION,
            incident_date=datetime(2024, 3, 1, 14, 30, tzinfo=timezone.utc),
            description="Rear-ended at a stop light",
            location="Main St & 5th Ave",
        ),
        vehicle=VehicleDetails(make="Toyota", model="Camry", year=2020),
        initial_assessment={"initial_severity": "medium", "visible_damage_analysis": {}, "follow_up_questions": []},
        created_at=created_at or datetime.now(timezone.utc),
    )


def _assessed(store, **overrides):
    claim = _claim()
    store.insert_claim(claim, [], [
        ClaimQuestion(claim_id=claim.id, question="Any injuries?", question_type="safety", answer="None"),
    ])
    return store.apply_final_assessment(claim.id, FinalAssessment.from_dict(final_response(**overrides)))


@pytest.fixture
def gate():
    return AccessGate("letmein", token_ttl_minutes=30)


@pytest.fixture
def dashboard(gate, service):
    return InsurerDashboard(gate.login("letmein"), gate, service)


class TestAccessGate:

    def test_wrong_code_rejected(self, gate):
        with pytest.raises(AccessDeniedError) as exc_info:
            gate.login("guess")
        assert exc_info.value.error_type is ErrorType.ACCESS_DENIED

    def test_unconfigured_gate_rejects_everything(self):
        gate = AccessGate("")
        assert not gate.enabled
        with pytest.raises(AccessDeniedError):
            gate.login("")

    def test_token_expires(self, gate):
        issued = datetime(2024, 1, 1, tzinfo=timezone.utc)
        token = gate.login("letmein", now=issued)

        gate.verify(token, now=issued + timedelta(minutes=29))
        with pytest.raises(AccessDeniedError):
            gate.verify(token, now=issued + timedelta(minutes=31))

    def test_logout_revokes_token(self, gate):
        token = gate.login("letmein")
        gate.logout(token)
        with pytest.raises(AccessDeniedError):
            gate.verify(token)

    def test_login_drops_expired_tokens(self, gate):
        issued = datetime(2024, 1, 1, tzinfo=timezone.utc)
        gate.login("letmein", now=issued)
        gate.login("letmein", now=issued + timedelta(minutes=10))
        assert len(gate) == 2

        fresh = gate.login("letmein", now=issued + timedelta(minutes=35))

        assert len(gate) == 2
        gate.verify(fresh, now=issued + timedelta(minutes=36))

    def test_dashboard_requires_valid_token(self, gate, service):
        with pytest.raises(AccessDeniedError):
            InsurerDashboard("forged", gate, service)


class TestBadges:

    def test_legitimacy_states(self, store):
        assert legitimacy(_assessed(store)) == LEGITIMATE
        assert legitimacy(_assessed(store, image_authenticity={"appears_authentic": False})) == POTENTIAL_FRAUD
        pending = _claim()
        assert legitimacy(pending) == VERIFICATION_PENDING

    @pytest.mark.parametrize("score, label", [(0.82, "82%"), (None, "N/A"), (0, "N/A"), (1.0, "100%")])
    def test_confidence_label(self, score, label):
        assert format_confidence(score) == label


class TestDashboard:

    def test_list_is_newest_first(self, dashboard, store):
        now = datetime.now(timezone.utc)
        older, newer = _claim(now - timedelta(days=1)), _claim(now)
        store.insert_claim(older, [], [])
        store.insert_claim(newer, [], [])

        listed = dashboard.list_claims()

        assert [c["id"] for c in listed] == [newer.id, older.id]
        assert dashboard.snapshot == listed
        assert listed[0]["severity_label"] == "Pending Assessment"
        assert listed[0]["vehicle"] == "2020 Toyota Camry"

    def test_fraud_routing_shows_fraud_panel_only(self, dashboard, store):
        claim = _assessed(
            store,
            severity_level="high",
            routing_decision="fraud_investigation",
            fraud_indicators={"has_red_flags": True, "concerns": ["Photos predate incident"]},
        )

        badges = dashboard.claim_detail(claim.id)["badges"]

        assert set(badges) == {"fraud_panel"}
        panel = badges["fraud_panel"]
        assert "severity" not in panel
        assert "routing" not in panel
        assert panel["fraud_indicators"]["concerns"] == ["Photos predate incident"]

    def test_legitimate_claim_badges(self, dashboard, store):
        claim = _assessed(store)

        detail = dashboard.claim_detail(claim.id)

        assert detail["badges"] == {
            "legitimacy": LEGITIMATE,
            "severity": "Medium Severity",
            "routing": "Junior Adjuster",
            "confidence": "82%",
        }
        assert detail["can_refinalize"] is False
        assert "vehicle_validation" not in detail["panels"]
        assert detail["questions"][0]["answer"] == "None"

    def test_inconsistent_vehicle_panel_shown(self, dashboard, store):
        claim = _assessed(store, vehicle_validation={"details_consistent": False, "discrepancies": ["Color"]})

        panels = dashboard.claim_detail(claim.id)["panels"]

        assert panels["vehicle_validation"]["discrepancies"] == ["Color"]

    @pytest.mark.asyncio
    async def test_refinalize_rejects_assessed_claim(self, dashboard, store, runtime):
        claim = _assessed(store)

        with pytest.raises(WorkflowError) as exc_info:
            await dashboard.refinalize(claim.id)

        assert exc_info.value.error_type is ErrorType.INVALID_TRANSITION
        assert runtime.calls == []

    @pytest.mark.asyncio
    async def test_refinalize_submitted_claim(self, dashboard, store, runtime):
        claim = _claim()
        store.insert_claim(claim, [], [])
        runtime.push(final_response(severity_level="low", routing_decision="straight_through"))

        summary = await dashboard.refinalize(claim.id)

        assert summary["status"] == ClaimStatus.ASSESSED.value
        assert summary["routing_label"] == "Straight Through"
        assert dashboard.snapshot[0]["id"] == claim.id

    def test_export_report(self, dashboard, store):
        claim = _assessed(store, fraud_indicators={"has_red_flags": True, "concerns": ["Mismatched plates"]})

        pdf = dashboard.export_report(claim.id)

        assert pdf.startswith(b"%PDF")
        assert dashboard.report_filename(claim.id) == f"claim-report-{claim.claim_number}.pdf"


def test_report_renders_unassessed_claim_with_markup_in_text():
    claim = _claim()
    claim.incident.description = "Hit a <b>pole</b> & a sign"
    question = ClaimQuestion(claim_id=claim.id, question="Speed?", question_type="incident_details")

    pdf = render_claim_report(claim, [question], generated_on=datetime(2024, 3, 2, tzinfo=timezone.utc))

    assert pdf.startswith(b"%PDF")
