"""End-to-end tests for the intake workflow with a scripted model."""

from datetime import timedelta

import pytest
from botocore.exceptions import ClientError, ConnectionClosedError, NoCredentialsError

from conftest import final_response, initial_response, png_bytes
from fnol.models.claim import ClaimStatus, FileStage, utcnow
from fnol.utils.errors import (
    BedrockAPIError,
    ConfigurationError,
    ErrorType,
    MalformedResponseError,
    StorageError,
    ValidationError,
    WorkflowError,
)
from fnol.workflow.session import IntakePhase, PendingUpload, SessionRegistry


def _photo(name="front.png", color=(200, 30, 30)):
    return PendingUpload(filename=name, content=png_bytes(color), content_type="image/png")


def _active_session(service):
    session = service.open_session()
    assert service.validate_policy(session, "POL-123456").valid
    return session


async def _submitted(service, runtime, incident, vehicle, response=None):
    session = _active_session(service)
    runtime.push(response or initial_response())
    claim = await service.submit_claim(session, incident, vehicle, [_photo()])
    return session, claim


def _answer_everything(service, session):
    controller = session.questionnaire
    answers = {}
    for step in controller.category_steps:
        for qid in step.question_ids:
            answers[qid] = f"Answer to {controller.questions[qid].question}"
    service.save_answers(session, answers)
    return answers


def _failing_upload(monkeypatch, storage, fail_on, error=None):
    """Make the ``fail_on``-th upload (1-based) raise; returns the attempted filenames."""
    attempted = []
    real_upload = storage.upload

    def upload(key_prefix, filename, content, content_type):
        attempted.append(filename)
        if len(attempted) == fail_on:
            raise error or StorageError.upload_failed(filename, OSError("No space left on device"))
        return real_upload(key_prefix, filename, content, content_type)

    monkeypatch.setattr(storage, "upload", upload)
    return attempted


def _three_photos():
    return [_photo("a.png", (10, 10, 10)), _photo("b.png", (20, 20, 20)), _photo("c.png", (30, 30, 30))]


def test_active_policy_unlocks_uploads(service):
    session = service.open_session()

    verdict = service.validate_policy(session, "POL-123456")

    assert verdict.valid
    assert session.phase is IntakePhase.UPLOADING


@pytest.mark.asyncio
async def test_lapsed_policy_blocks_submission(service, runtime, store, incident, vehicle):
    session = service.open_session()
    verdict = service.validate_policy(session, "POL-000000")
    assert not verdict.valid
    assert session.phase is IntakePhase.VALIDATING

    with pytest.raises(ValidationError) as exc_info:
        await service.submit_claim(session, incident, vehicle, [_photo()])

    assert exc_info.value.error_type is ErrorType.POLICY_NOT_ELIGIBLE
    assert "lapsed" in exc_info.value.context.message
    assert runtime.calls == []
    assert store.list_claims() == []


@pytest.mark.asyncio
async def test_revalidating_with_lapsed_policy_locks_uploads_again(service, incident, vehicle):
    session = _active_session(service)

    service.validate_policy(session, "POL-000000")

    assert session.phase is IntakePhase.VALIDATING
    with pytest.raises(ValidationError):
        await service.submit_claim(session, incident, vehicle, [_photo()])


@pytest.mark.asyncio
async def test_photo_required_before_model_call(service, runtime, incident, vehicle):
    session = _active_session(service)
    document = PendingUpload(filename="estimate.pdf", content=b"%PDF-1.4 estimate", content_type="application/pdf")

    with pytest.raises(ValidationError) as exc_info:
        await service.submit_claim(session, incident, vehicle, [document])

    assert exc_info.value.error_type is ErrorType.PHOTO_REQUIRED
    assert runtime.calls == []
    assert session.phase is IntakePhase.UPLOADING


@pytest.mark.asyncio
async def test_future_incident_date_rejected(service, runtime, incident, vehicle):
    session = _active_session(service)
    incident["incident_date"] = (utcnow() + timedelta(days=2)).isoformat()

    with pytest.raises(ValidationError):
        await service.submit_claim(session, incident, vehicle, [_photo()])
    assert runtime.calls == []


@pytest.mark.asyncio
async def test_submit_creates_claim_with_questions(service, runtime, store, incident, vehicle):
    session, claim = await _submitted(service, runtime, incident, vehicle)

    assert session.phase is IntakePhase.QUESTIONNAIRE
    assert claim.claim_number.startswith("CLM-")
    assert claim.status is ClaimStatus.SUBMITTED
    assert claim.severity_level is None
    assert claim.initial_assessment["initial_severity"] == "medium"

    stored = store.get_claim(claim.id)
    assert stored.claim_number == claim.claim_number
    assert len(store.list_questions(claim.id)) == 4
    files = store.list_files(claim.id)
    assert [f.stage for f in files] == [FileStage.INTAKE_PHOTO]
    assert runtime.image_count(0) == 1

    assert [s.title for s in session.questionnaire.steps] == [
        "Vehicle Verification", "Incident Details", "Safety Information", "Additional Photos"
    ]
    assert session.questionnaire.photo_requests == ["Please photograph the undercarriage"]


@pytest.mark.asyncio
async def test_failed_assessment_leaves_no_claim(service, runtime, store, incident, vehicle):
    session = _active_session(service)
    runtime.push("I could not analyze these images.")

    with pytest.raises(MalformedResponseError):
        await service.submit_claim(session, incident, vehicle, [_photo()])

    assert store.list_claims() == []
    assert session.phase is IntakePhase.UPLOADING
    assert session.last_error["error_type"] == ErrorType.UPSTREAM_RESPONSE_MALFORMED.value


@pytest.mark.asyncio
async def test_retry_after_failure_reuses_uploaded_photos(service, runtime, store, tmp_path, incident, vehicle):
    session = _active_session(service)
    runtime.push(ClientError({"Error": {"Code": "ValidationException", "Message": "bad input"}}, "Converse"))

    with pytest.raises(BedrockAPIError):
        await service.submit_claim(session, incident, vehicle, [_photo()])

    runtime.push(initial_response())
    claim = await service.submit_claim(session, incident, vehicle, [_photo()])

    assert len(list((tmp_path / "uploads").rglob("*.png"))) == 1
    assert len(store.list_files(claim.id)) == 1
    assert claim.id == session.claim_id


@pytest.mark.asyncio
async def test_missing_configuration_fails_session(service, runtime, incident, vehicle):
    session = _active_session(service)
    runtime.push(ConfigurationError.missing("AWS_BEARER_TOKEN_BEDROCK"))

    with pytest.raises(ConfigurationError):
        await service.submit_claim(session, incident, vehicle, [_photo()])

    assert session.phase is IntakePhase.FAILED
    with pytest.raises(WorkflowError):
        service.validate_policy(session, "POL-123456")


@pytest.mark.asyncio
async def test_policy_document_fills_only_empty_vehicle_fields(service, runtime, store, incident):
    session = _active_session(service)
    runtime.push({
        "vehicle_make": "Honda",
        "vehicle_model": "Civic",
        "vehicle_year": 2019,
        "vehicle_vin": "1HGCM82633A004352",
        "vehicle_license_plate": "null",
        "policy_number": "POL-123456",
        "extraction_confidence": 0.9,
        "notes": "Clear scan",
    })

    extraction = await service.upload_policy_document(session, "policy.png", png_bytes((10, 10, 200)), "image/png")

    assert extraction.fields == {"make": "Honda", "model": "Civic", "year": 2019, "vin": "1HGCM82633A004352"}
    assert session.vehicle.make == "Honda"

    runtime.push(initial_response())
    claim = await service.submit_claim(session, incident, {"make": "Toyota"}, [_photo()])

    assert claim.vehicle.make == "Toyota"
    assert claim.vehicle.model == "Civic"
    assert claim.vehicle.vin == "1HGCM82633A004352"
    assert claim.vehicle.license_plate is None
    stages = [f.stage for f in store.list_files(claim.id)]
    assert FileStage.POLICY_DOCUMENT in stages
    assert claim.policy_document_url == session.policy_document.url


@pytest.mark.asyncio
async def test_policy_document_extraction_failure_keeps_form_usable(service, runtime):
    session = _active_session(service)
    runtime.push("Sorry, I cannot read this.")

    extraction = await service.upload_policy_document(session, "policy.png", png_bytes(), "image/png")

    assert extraction.fields == {}
    assert "manually" in extraction.notes
    assert session.phase is IntakePhase.UPLOADING
    assert session.vehicle.make is None


@pytest.mark.asyncio
async def test_follow_up_without_photos_sends_no_images(service, runtime, store, incident, vehicle):
    session, claim = await _submitted(service, runtime, incident, vehicle)
    _answer_everything(service, session)
    service.go_to_step(session, session.questionnaire.step_count - 1)
    runtime.push(final_response())

    finalized = await service.submit_follow_up(session)

    assert runtime.image_count(1) == 0
    assert finalized.status is ClaimStatus.ASSESSED
    assert finalized.severity_level == "medium"
    assert finalized.routing_decision == "junior_adjuster"
    assert finalized.confidence_score == pytest.approx(0.82)
    assert session.phase is IntakePhase.COMPLETED
    assert session.questionnaire.completed


@pytest.mark.asyncio
async def test_answers_round_trip_by_question_text(service, runtime, store, incident, vehicle):
    session, claim = await _submitted(service, runtime, incident, vehicle)
    answers = _answer_everything(service, session)
    runtime.push(final_response())

    await service.submit_follow_up(session)

    by_text = {q.question: q for q in store.list_questions(claim.id)}
    for qid, text in answers.items():
        question = by_text[session.questionnaire.questions[qid].question]
        assert question.answer == text
        assert question.answered_at is not None
    unanswered = by_text["Please photograph the undercarriage"]
    assert unanswered.answer is None and unanswered.answered_at is None


@pytest.mark.asyncio
async def test_incomplete_questionnaire_blocks_submission(service, runtime, incident, vehicle):
    session, _ = await _submitted(service, runtime, incident, vehicle)

    with pytest.raises(ValidationError) as exc_info:
        await service.submit_follow_up(session)

    assert exc_info.value.error_type is ErrorType.QUESTIONNAIRE_INCOMPLETE
    assert session.phase is IntakePhase.QUESTIONNAIRE
    assert len(runtime.calls) == 1


@pytest.mark.asyncio
async def test_next_step_blocked_on_blank_required_answer(service, runtime, incident, vehicle):
    session, _ = await _submitted(service, runtime, incident, vehicle)

    assert service.next_step(session) is False
    assert 0 in session.questionnaire.attempted
    assert session.questionnaire.flagged_questions(0) == session.questionnaire.steps[0].question_ids


@pytest.mark.asyncio
async def test_finalization_failure_returns_to_questionnaire(service, runtime, store, incident, vehicle):
    session, claim = await _submitted(service, runtime, incident, vehicle)
    _answer_everything(service, session)
    service.add_follow_up_photos(session, [_photo("rear.png", (20, 200, 20))])
    runtime.push(ClientError({"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "Converse"))

    with pytest.raises(BedrockAPIError):
        await service.submit_follow_up(session)

    assert session.phase is IntakePhase.QUESTIONNAIRE
    assert store.get_claim(claim.id).status is ClaimStatus.SUBMITTED
    assert session.pending_photos == []
    assert session.questionnaire.current_index == 0

    runtime.push(final_response())
    finalized = await service.submit_follow_up(session)

    assert finalized.status is ClaimStatus.ASSESSED
    follow_ups = [f for f in store.list_files(claim.id) if f.stage is FileStage.FOLLOW_UP_PHOTO]
    assert len(follow_ups) == 1
    assert runtime.image_count(len(runtime.calls) - 1) == 1


@pytest.mark.asyncio
async def test_finalize_twice_replaces_previous_verdict(service, runtime, store, incident, vehicle):
    session, claim = await _submitted(service, runtime, incident, vehicle)
    _answer_everything(service, session)
    runtime.push(final_response())
    await service.submit_follow_up(session)

    second = final_response(severity_level="high", routing_decision="senior_adjuster", confidence_score=0.6)
    del second["fraud_indicators"]
    runtime.push(second)
    updated = await service.finalize_claim(claim.id)

    stored = store.get_claim(claim.id)
    assert stored.severity_level == "high"
    assert stored.routing_decision == "senior_adjuster"
    assert stored.confidence_score == pytest.approx(0.6)
    assert "fraud_indicators" not in stored.ai_assessment
    assert updated.claim_number == claim.claim_number


def test_follow_up_photos_must_be_images(service):
    session = service.open_session()
    session.phase = IntakePhase.QUESTIONNAIRE

    with pytest.raises(ValidationError):
        service.add_follow_up_photos(
            session, [PendingUpload(filename="notes.pdf", content=b"%PDF-1.4", content_type="application/pdf")]
        )


@pytest.mark.asyncio
async def test_remove_staged_photo(service, runtime, incident, vehicle):
    session, _ = await _submitted(service, runtime, incident, vehicle)
    staged = service.add_follow_up_photos(session, [_photo("a.png"), _photo("b.png", (1, 2, 3))])

    service.remove_follow_up_photo(session, staged[0].id)

    assert [p.filename for p in session.pending_photos] == ["b.png"]


def test_second_operation_rejected_while_one_is_in_flight(service):
    session = service.open_session()

    with session.operation("submit_claim"):
        with pytest.raises(WorkflowError) as exc_info:
            service.validate_policy(session, "POL-123456")

    assert exc_info.value.error_type is ErrorType.OPERATION_IN_PROGRESS
    assert session.phase is IntakePhase.VALIDATING
    service.validate_policy(session, "POL-123456")
    assert session.phase is IntakePhase.UPLOADING


def test_questionnaire_actions_require_questionnaire_phase(service):
    session = service.open_session()

    with pytest.raises(WorkflowError):
        service.next_step(session)


@pytest.mark.asyncio
async def test_dropped_connection_during_assessment_can_be_retried(service, runtime, store, incident, vehicle):
    session = _active_session(service)
    runtime.push(ConnectionClosedError(endpoint_url="https://bedrock-runtime.us-east-1.amazonaws.com"))

    with pytest.raises(BedrockAPIError) as exc_info:
        await service.submit_claim(session, incident, vehicle, [_photo()])

    assert exc_info.value.error_type is ErrorType.BEDROCK_SERVICE_ERROR
    assert session.phase is IntakePhase.UPLOADING
    assert session.last_error["error_type"] == ErrorType.BEDROCK_SERVICE_ERROR.value
    assert store.list_claims() == []

    runtime.push(initial_response())
    claim = await service.submit_claim(session, incident, vehicle, [_photo()])

    assert session.phase is IntakePhase.QUESTIONNAIRE
    assert store.get_claim(claim.id).status is ClaimStatus.SUBMITTED


@pytest.mark.asyncio
async def test_lost_credentials_during_finalization_can_be_retried(service, runtime, store, incident, vehicle):
    session, claim = await _submitted(service, runtime, incident, vehicle)
    _answer_everything(service, session)
    runtime.push(NoCredentialsError())

    with pytest.raises(BedrockAPIError):
        await service.submit_follow_up(session)

    assert session.phase is IntakePhase.QUESTIONNAIRE
    assert store.get_claim(claim.id).status is ClaimStatus.SUBMITTED

    runtime.push(final_response())
    finalized = await service.submit_follow_up(session)

    assert finalized.status is ClaimStatus.ASSESSED
    assert session.phase is IntakePhase.COMPLETED


@pytest.mark.asyncio
async def test_intake_upload_failure_stops_remaining_uploads(
    service, runtime, storage, store, monkeypatch, incident, vehicle
):
    session = _active_session(service)
    photos = _three_photos()
    attempted = _failing_upload(monkeypatch, storage, fail_on=2)

    with pytest.raises(StorageError) as exc_info:
        await service.submit_claim(session, incident, vehicle, photos)

    assert exc_info.value.error_type is ErrorType.STORAGE_UPLOAD_FAILED
    assert attempted == ["a.png", "b.png"]
    assert session.phase is IntakePhase.UPLOADING
    assert [row.file_name for row in session.intake_uploads.values()] == ["a.png"]
    assert runtime.calls == []
    assert store.list_claims() == []

    runtime.push(initial_response())
    claim = await service.submit_claim(session, incident, vehicle, photos)

    assert attempted == ["a.png", "b.png", "b.png", "c.png"]
    assert sorted(f.file_name for f in store.list_files(claim.id)) == ["a.png", "b.png", "c.png"]


@pytest.mark.asyncio
async def test_follow_up_upload_failure_keeps_earlier_photos(
    service, runtime, storage, store, monkeypatch, incident, vehicle
):
    session, claim = await _submitted(service, runtime, incident, vehicle)
    _answer_everything(service, session)
    service.add_follow_up_photos(session, _three_photos())
    attempted = _failing_upload(monkeypatch, storage, fail_on=2)

    with pytest.raises(StorageError):
        await service.submit_follow_up(session)

    assert attempted == ["a.png", "b.png"]
    assert session.phase is IntakePhase.QUESTIONNAIRE
    follow_ups = [f.file_name for f in store.list_files(claim.id) if f.stage is FileStage.FOLLOW_UP_PHOTO]
    assert follow_ups == ["a.png"]
    assert [p.filename for p in session.pending_photos] == ["b.png", "c.png"]
    assert len(runtime.calls) == 1
    assert store.get_claim(claim.id).status is ClaimStatus.SUBMITTED

    runtime.push(final_response())
    await service.submit_follow_up(session)

    assert attempted == ["a.png", "b.png", "b.png", "c.png"]
    follow_ups = [f.file_name for f in store.list_files(claim.id) if f.stage is FileStage.FOLLOW_UP_PHOTO]
    assert sorted(follow_ups) == ["a.png", "b.png", "c.png"]
    assert session.pending_photos == []


@pytest.mark.asyncio
async def test_unexpected_error_still_returns_session_to_questionnaire(
    service, runtime, storage, monkeypatch, incident, vehicle
):
    session, _ = await _submitted(service, runtime, incident, vehicle)
    _answer_everything(service, session)
    service.add_follow_up_photos(session, [_photo("a.png", (10, 10, 10))])
    _failing_upload(monkeypatch, storage, fail_on=1, error=RuntimeError("disk driver crashed"))

    with pytest.raises(RuntimeError):
        await service.submit_follow_up(session)

    assert session.phase is IntakePhase.QUESTIONNAIRE
    assert session.in_flight is None
    assert [p.filename for p in session.pending_photos] == ["a.png"]


def test_finished_session_drops_staged_photos(service):
    session = service.open_session()
    session.phase = IntakePhase.FINALIZING
    session.pending_photos.append(_photo())

    session.transition(IntakePhase.COMPLETED)

    assert session.pending_photos == []


def test_registry_evicts_idle_and_finished_sessions():
    registry = SessionRegistry(idle_ttl_minutes=60, terminal_ttl_minutes=5)
    now = utcnow()
    idle = registry.create()
    idle.last_active = now - timedelta(minutes=61)
    finished = registry.create()
    finished.phase = IntakePhase.COMPLETED
    finished.last_active = now - timedelta(minutes=6)
    just_finished = registry.create()
    just_finished.phase = IntakePhase.COMPLETED
    just_finished.last_active = now - timedelta(minutes=1)
    busy = registry.create()
    busy.in_flight = "submit_claim"
    busy.last_active = now - timedelta(minutes=90)
    working = registry.create()

    fresh = registry.create(now=now)

    assert len(registry) == 4
    for kept in (just_finished, busy, working, fresh):
        assert registry.get(kept.session_id) is kept
    for evicted in (idle, finished):
        with pytest.raises(StorageError) as exc_info:
            registry.get(evicted.session_id)
        assert exc_info.value.error_type is ErrorType.RECORD_NOT_FOUND
