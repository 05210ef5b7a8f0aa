"""
Intake orchestration.

Connects the intake session state machine to the stages and the stores:
policy check, policy document prefill, the atomic submit + initial
assessment, the follow-up questionnaire, and finalization (also used by the
dashboard and the reconciliation sweep).
"""

import hashlib
import logging
import time
from typing import Dict, List, Optional, Sequence

from dotenv import load_dotenv

from .models.claim import (
    Claim,
    ClaimFile,
    ClaimQuestion,
    ClaimStatus,
    FileStage,
    IncidentDetails,
    VehicleDetails,
    utcnow,
)
from .models.extraction import DocumentExtraction, PolicyVerdict
from .stages.document_extractor import DocumentExtractor
from .stages.finalization import FinalizationStage
from .stages.gateway import InlineDocument, VisionGateway
from .stages.initial_assessment import InitialAssessmentStage
from .stages.media import PHOTO, classify_upload, content_type_for
from .stages.policy_validator import PolicyValidator, build_policy_validator
from .storage.object_storage import ObjectStorage, build_object_storage
from .storage.record_store import ClaimRecordStore, build_record_store
from .utils.bedrock_client import BedrockClient
from .utils.config import Config
from .utils.errors import ConfigurationError, ValidationError
from .utils.logging import set_context
from .workflow.questionnaire import QuestionnaireController
from .workflow.session import IntakePhase, IntakeSession, PendingUpload, SessionRegistry

load_dotenv()

logger = logging.getLogger(__name__)


def _digest(upload: PendingUpload) -> str:
    return hashlib.sha256(upload.filename.encode("utf-8") + b"\0" + upload.content).hexdigest()


class IntakeService:
    """
    Claimant-facing workflow operations.

    Every mutating operation runs inside ``session.operation(...)``, so a
    session never has two of them in flight.
    """

    def __init__(
        self,
        validator: PolicyValidator,
        extractor: DocumentExtractor,
        initial_stage: InitialAssessmentStage,
        finalization: FinalizationStage,
        store: ClaimRecordStore,
        storage: ObjectStorage,
        sessions: Optional[SessionRegistry] = None,
        require_all_answers: bool = True
    ):
        self.validator = validator
        self.extractor = extractor
        self.initial_stage = initial_stage
        self.finalization = finalization
        self.store = store
        self.storage = storage
        self.sessions = sessions if sessions is not None else SessionRegistry()
        self.require_all_answers = require_all_answers

    # Sessions

    def open_session(self) -> IntakeSession:
        return self.sessions.create()

    def get_session(self, session_id: str) -> IntakeSession:
        session = self.sessions.get(session_id)
        set_context(session_id=session.session_id, claim_id=session.claim_id if session.claim_number else "-")
        return session

    @staticmethod
    def _fail_if_fatal(session: IntakeSession, error: Exception) -> None:
        if isinstance(error, ConfigurationError) and not session.is_terminal:
            logger.error(f"Fatal configuration error in session {session.session_id}: {error}")
            session.phase = IntakePhase.FAILED
            session.pending_photos.clear()

    # Policy

    def validate_policy(self, session: IntakeSession, policy_number: str) -> PolicyVerdict:
        """
        Check a policy number. Only an active verdict unlocks the upload phase;
        any other verdict leaves the session validating.
        """
        with session.operation("validate_policy"):
            session.require_phase(IntakePhase.VALIDATING, IntakePhase.UPLOADING)
            verdict = self.validator.validate(policy_number)
            session.verdict = verdict
            session.transition(IntakePhase.UPLOADING if verdict.valid else IntakePhase.VALIDATING)
            return verdict

    async def upload_policy_document(
        self,
        session: IntakeSession,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None
    ) -> DocumentExtraction:
        """
        Store a policy document and fill the session's empty vehicle fields from it.

        Extraction failures are logged and yield an empty extraction so the
        claimant can type the details in; the storage upload itself must succeed.
        """
        with session.operation("upload_policy_document"):
            session.require_phase(IntakePhase.UPLOADING)
            if not content:
                raise ValidationError.invalid_input("Policy document is empty", field="document")

            stored = self.storage.upload(
                f"{session.claim_id}/policy", filename, content, content_type_for(content, content_type)
            )
            session.policy_document = stored
            session.policy_document_name = filename

            extraction = await self.extractor.extract_or_empty(
                InlineDocument(name=filename, content=content), document_url=stored.url
            )
            session.extraction = extraction
            session.vehicle = extraction.merge_into(session.vehicle)
            return extraction

    # Submit + initial assessment

    def _upload_intake_files(self, session: IntakeSession, uploads: Sequence[PendingUpload]) -> List[ClaimFile]:
        """Upload sequentially in submission order; the first failure aborts the rest."""
        rows = []
        for upload in uploads:
            key = _digest(upload)
            row = session.intake_uploads.get(key)
            if row is None:
                is_photo = classify_upload(upload.content) == PHOTO
                stored = self.storage.upload(
                    f"{session.claim_id}/intake",
                    upload.filename,
                    upload.content,
                    content_type_for(upload.content, upload.content_type),
                )
                row = ClaimFile(
                    claim_id=session.claim_id,
                    file_name=upload.filename,
                    file_type=stored.content_type,
                    file_url=stored.url,
                    file_size=stored.size,
                    stage=FileStage.INTAKE_PHOTO if is_photo else FileStage.INTAKE_DOCUMENT,
                )
                session.intake_uploads[key] = row
            else:
                logger.debug(f"Reusing earlier upload of {upload.filename}")
            rows.append(row)
        return rows

    async def submit_claim(
        self,
        session: IntakeSession,
        incident_data: Dict,
        vehicle_data: Optional[Dict],
        uploads: Sequence[PendingUpload]
    ) -> Claim:
        """
        Create the claim and run the initial assessment as one unit.

        Photos are uploaded, the assessment is obtained, and only then are the
        claim, its file rows and its question rows written in one store
        transaction. On failure no claim row exists and the session is back in
        the upload phase with the error recorded.

        Raises:
            ValidationError: Policy not active, bad incident data, or no photo
            BedrockAPIError, MalformedResponseError, StorageError: Assessment or upload failure
        """
        with session.operation("submit_claim"):
            if session.verdict is None or not session.verdict.valid:
                raise ValidationError.policy_not_eligible(
                    session.verdict.policy_number if session.verdict else "",
                    session.verdict.status.value if session.verdict else None,
                )
            session.require_phase(IntakePhase.UPLOADING)

            incident = IncidentDetails.from_dict(incident_data)
            # Values the claimant submitted win over the document prefill
            merged = VehicleDetails.from_dict(vehicle_data).fill_from(session.vehicle)

            if not any(classify_upload(u.content) == PHOTO for u in uploads):
                raise ValidationError.photo_required()

            session.incident = incident
            session.vehicle = merged
            session.transition(IntakePhase.AWAITING_INITIAL_ASSESSMENT)
            start = time.time()

            try:
                files = self._upload_intake_files(session, uploads)
                photo_urls = [f.file_url for f in files if f.stage is FileStage.INTAKE_PHOTO]

                assessment = await self.initial_stage.assess_initial(
                    session.verdict.policy_number, incident, merged, photo_urls
                )

                claim = Claim(
                    id=session.claim_id,
                    policy_number=session.verdict.policy_number,
                    policy_status=session.verdict.status.value,
                    incident=incident,
                    vehicle=merged,
                    initial_assessment=assessment.to_dict(),
                    policy_document_url=session.policy_document.url if session.policy_document else None,
                )
                if session.policy_document is not None:
                    files = files + [ClaimFile(
                        claim_id=claim.id,
                        file_name=session.policy_document_name or "policy-document",
                        file_type=session.policy_document.content_type,
                        file_url=session.policy_document.url,
                        file_size=session.policy_document.size,
                        stage=FileStage.POLICY_DOCUMENT,
                    )]
                asked_at = utcnow()
                questions = [
                    ClaimQuestion(
                        claim_id=claim.id,
                        question=q.question,
                        question_type=q.question_type,
                        is_required=q.is_required,
                        asked_at=asked_at,
                    )
                    for q in assessment.follow_up_questions
                ]
                self.store.insert_claim(claim, files, questions)
            except Exception as e:
                logger.warning(f"Intake submission failed for session {session.session_id}: {e}")
                session.transition(IntakePhase.UPLOADING)
                self._fail_if_fatal(session, e)
                raise

            session.claim_number = claim.claim_number
            session.questionnaire = QuestionnaireController(questions, require_all_answers=self.require_all_answers)
            session.transition(IntakePhase.QUESTIONNAIRE)
            set_context(claim_id=claim.id)

            logger.info(
                f"Claim {claim.claim_number} created in {time.time() - start:.2f}s "
                f"with {len(files)} files and {len(questions)} follow-up questions"
            )
            return claim

    # Questionnaire

    def _questionnaire(self, session: IntakeSession) -> QuestionnaireController:
        session.require_phase(IntakePhase.QUESTIONNAIRE)
        return session.questionnaire

    def save_answers(self, session: IntakeSession, answers: Dict[str, Optional[str]]) -> QuestionnaireController:
        with session.operation("save_answers"):
            controller = self._questionnaire(session)
            controller.answer_many(answers)
            return controller

    def next_step(self, session: IntakeSession) -> bool:
        with session.operation("next_step"):
            return self._questionnaire(session).next()

    def previous_step(self, session: IntakeSession) -> bool:
        with session.operation("previous_step"):
            return self._questionnaire(session).back()

    def go_to_step(self, session: IntakeSession, index: int) -> None:
        with session.operation("go_to_step"):
            self._questionnaire(session).go_to(index)

    def add_follow_up_photos(self, session: IntakeSession, uploads: Sequence[PendingUpload]) -> List[PendingUpload]:
        """Stage extra photos; they are uploaded on submission."""
        with session.operation("add_follow_up_photos"):
            self._questionnaire(session)
            for upload in uploads:
                if classify_upload(upload.content) != PHOTO:
                    raise ValidationError.invalid_input(
                        f"'{upload.filename}' is not a supported image (JPEG, PNG, GIF, WEBP)", field="photos"
                    )
            session.pending_photos.extend(uploads)
            return list(session.pending_photos)

    def remove_follow_up_photo(self, session: IntakeSession, photo_id: str) -> None:
        with session.operation("remove_follow_up_photo"):
            self._questionnaire(session)
            session.pending_photos = [p for p in session.pending_photos if p.id != photo_id]

    def _upload_follow_up_photos(self, session: IntakeSession) -> None:
        """Upload staged photos in order, dropping each from the queue once stored."""
        while session.pending_photos:
            upload = session.pending_photos[0]
            stored = self.storage.upload(
                f"{session.claim_id}/follow-up",
                upload.filename,
                upload.content,
                content_type_for(upload.content, upload.content_type),
            )
            self.store.add_file(ClaimFile(
                claim_id=session.claim_id,
                file_name=upload.filename,
                file_type=stored.content_type,
                file_url=stored.url,
                file_size=stored.size,
                stage=FileStage.FOLLOW_UP_PHOTO,
            ))
            session.pending_photos.pop(0)

    async def submit_follow_up(self, session: IntakeSession) -> Claim:
        """
        Upload extra photos, store answers and finalize.

        On failure the session returns to the questionnaire with its answers
        and current step intact; photos already uploaded stay attached and are
        not uploaded again on retry.
        """
        with session.operation("submit_follow_up"):
            controller = self._questionnaire(session)
            controller.validate_for_submit()
            session.transition(IntakePhase.FINALIZING)

            try:
                self._upload_follow_up_photos(session)
                for question_id, answer in controller.answered_pairs().items():
                    self.store.answer_question(question_id, answer)
                claim = await self.finalize_claim(session.claim_id)
            except Exception as e:
                logger.warning(f"Follow-up submission failed for claim {session.claim_number}: {e}")
                session.transition(IntakePhase.QUESTIONNAIRE)
                self._fail_if_fatal(session, e)
                raise

            controller.mark_completed()
            session.transition(IntakePhase.COMPLETED)
            return claim

    # Finalization

    async def finalize_claim(self, claim_id: str) -> Claim:
        """
        Run finalization from stored state and replace the claim's verdict.

        Safe to repeat: each run overwrites severity, routing, confidence and
        payload. On failure nothing is written and the status is unchanged.
        """
        claim = self.store.get_claim(claim_id)
        questions = self.store.list_questions(claim_id)
        extra_photos = [f.file_url for f in self.store.list_files(claim_id) if f.stage is FileStage.FOLLOW_UP_PHOTO]

        assessment = await self.finalization.finalize(
            claim,
            claim.initial_assessment or {},
            [q for q in questions if q.is_answered],
            extra_photos,
        )
        return self.store.apply_final_assessment(claim_id, assessment)


def build_intake_service(config: Config, bedrock: Optional[BedrockClient] = None) -> IntakeService:
    """Wire every collaborator from configuration."""
    storage = build_object_storage(config)
    bedrock = bedrock or BedrockClient(
        region=config.aws_region,
        model_id=config.bedrock.model_id,
        timeout=config.bedrock.timeout,
        max_retries=config.bedrock.max_retries,
    )
    gateway = VisionGateway(bedrock, storage=storage)
    return IntakeService(
        validator=build_policy_validator(config.policy_oracle),
        extractor=DocumentExtractor(gateway),
        initial_stage=InitialAssessmentStage(gateway),
        finalization=FinalizationStage(gateway),
        store=build_record_store(config),
        storage=storage,
        sessions=SessionRegistry(
            idle_ttl_minutes=config.sessions.idle_ttl_minutes,
            terminal_ttl_minutes=config.sessions.terminal_ttl_minutes,
        ),
        require_all_answers=config.require_all_answers,
    )
