"""HTTP-level tests for the FastAPI service."""

import pytest
from fastapi.testclient import TestClient

from conftest import final_response, initial_response, png_bytes
from fnol.insurer.access import AccessGate
from fnol.utils.config import Config
from fnol.utils.errors import ConfigurationError, StorageError, ValidationError, WorkflowError
from server import create_app, status_for

ACCESS_CODE = "adjusters-only"


@pytest.fixture
def client(service):
    config = Config.from_dict({
        "logging": {"level": "WARNING", "file": ""},
        "reconciliation": {"interval_minutes": 0},
    })
    app = create_app(service=service, config=config, gate=AccessGate(ACCESS_CODE))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth(client):
    response = client.post("/api/insurer/login", json={"access_code": ACCESS_CODE})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def _open_active_session(client):
    session_id = client.post("/api/intake/sessions").json()["session_id"]
    response = client.post(f"/api/intake/sessions/{session_id}/policy", json={"policy_number": "POL-123456"})
    assert response.json()["verdict"]["valid"] is True
    return session_id


def _submit(client, session_id):
    return client.post(
        f"/api/intake/sessions/{session_id}/submit",
        data={
            "incident_type": "collision",
            "incident_date": "2024-03-01T14:30:00Z",
            "description": "Rear-ended at a stop light",
            "vehicle_make": "Toyota",
            "vehicle_model": "Camry",
            "vehicle_year": "2020",
        },
        files=[("photos", ("rear.png", png_bytes(), "image/png"))],
    )


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_full_intake_flow(client, runtime, store):
    session_id = _open_active_session(client)
    runtime.push(initial_response(), final_response())

    submitted = _submit(client, session_id)
    assert submitted.status_code == 200
    body = submitted.json()
    assert body["phase"] == "questionnaire"
    assert body["claim"]["status"] == "submitted"
    assert runtime.image_count(0) == 1

    steps = body["questionnaire"]["steps"]
    answers = {q["id"]: "Yes" for step in steps for q in step["questions"]}
    saved = client.post(f"/api/intake/sessions/{session_id}/questionnaire/answers", json={"answers": answers})
    assert saved.json()["questionnaire"]["can_submit"] is True

    finished = client.post(f"/api/intake/sessions/{session_id}/questionnaire/submit")
    assert finished.status_code == 200
    assert finished.json()["phase"] == "completed"
    assert finished.json()["claim"]["routing_decision"] == "junior_adjuster"

    claim_id = body["claim"]["id"]
    photo_url = store.list_files(claim_id)[0].file_url
    served = client.get(photo_url.replace("http://testserver", ""))
    assert served.status_code == 200
    assert served.content == png_bytes()


def test_unknown_session_is_404(client):
    response = client.get("/api/intake/sessions/does-not-exist")

    assert response.status_code == 404
    assert response.json()["error"]["error_type"] == "RECORD_NOT_FOUND"


def test_lapsed_policy_submit_is_400(client, runtime):
    session_id = client.post("/api/intake/sessions").json()["session_id"]
    verdict = client.post(f"/api/intake/sessions/{session_id}/policy", json={"policy_number": "POL-000000"})
    assert verdict.json()["verdict"]["status"] == "lapsed"

    response = _submit(client, session_id)

    assert response.status_code == 400
    assert response.json()["error"]["error_type"] == "POLICY_NOT_ELIGIBLE"
    assert runtime.calls == []


def test_upstream_failure_is_502_and_retryable(client, runtime):
    session_id = _open_active_session(client)
    runtime.push("no json here")

    response = _submit(client, session_id)

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["error_type"] == "UPSTREAM_RESPONSE_MALFORMED"
    assert error["recoverable"] is True


def test_dashboard_requires_token(client):
    assert client.get("/api/insurer/claims").status_code == 401
    assert client.get("/api/insurer/claims", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_wrong_access_code(client):
    response = client.post("/api/insurer/login", json={"access_code": "guess"})

    assert response.status_code == 401
    assert response.json()["error"]["error_type"] == "ACCESS_DENIED"


def test_dashboard_list_detail_and_report(client, runtime, auth):
    session_id = _open_active_session(client)
    runtime.push(initial_response(questions=[]))
    claim_id = _submit(client, session_id).json()["claim"]["id"]

    listed = client.get("/api/insurer/claims", headers=auth).json()["claims"]
    assert [c["id"] for c in listed] == [claim_id]
    assert listed[0]["severity_label"] == "Pending Assessment"

    detail = client.get(f"/api/insurer/claims/{claim_id}", headers=auth).json()
    assert detail["can_refinalize"] is True
    assert len(detail["photos"]) == 1

    report = client.get(f"/api/insurer/claims/{claim_id}/report.pdf", headers=auth)
    assert report.status_code == 200
    assert report.headers["content-type"] == "application/pdf"
    assert report.content.startswith(b"%PDF")


def test_refinalize_from_dashboard(client, runtime, auth):
    session_id = _open_active_session(client)
    runtime.push(initial_response(questions=[]), final_response(routing_decision="senior_adjuster"))
    claim_id = _submit(client, session_id).json()["claim"]["id"]

    response = client.post(f"/api/insurer/claims/{claim_id}/finalize", headers=auth)

    assert response.status_code == 200
    assert response.json()["claim"]["routing_label"] == "Senior Adjuster"
    again = client.post(f"/api/insurer/claims/{claim_id}/finalize", headers=auth)
    assert again.status_code == 409


def test_reconcile_endpoint(client, auth):
    response = client.post("/api/insurer/reconcile", headers=auth)

    assert response.status_code == 200
    assert response.json()["checked"] == 0


@pytest.mark.parametrize("error, status", [
    (ValidationError.photo_required(), 400),
    (StorageError.not_found("Claim", "x"), 404),
    (StorageError.conflict("dup"), 409),
    (WorkflowError.invalid_transition("s", "a", "b", []), 409),
    (ConfigurationError.missing("AWS_REGION"), 503),
])
def test_status_mapping(error, status):
    assert status_for(error) == status
