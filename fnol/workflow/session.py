"""
Intake session lifecycle.

    VALIDATING -> UPLOADING -> AWAITING_INITIAL_ASSESSMENT -> QUESTIONNAIRE
        -> FINALIZING -> COMPLETED

Recoverable failures step back (assessment failure returns to UPLOADING,
finalization failure returns to QUESTIONNAIRE); FAILED is reserved for
fatal errors such as missing configuration. The transition table is pure
logic; ``IntakeService`` drives it.
"""

import enum
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

from ..models.claim import ClaimFile, IncidentDetails, VehicleDetails, new_id, utcnow
from ..models.extraction import DocumentExtraction, PolicyVerdict
from ..storage.object_storage import StoredObject
from ..utils.errors import ClaimsProcessingError, StorageError, WorkflowError
from .questionnaire import QuestionnaireController

logger = logging.getLogger(__name__)


class IntakePhase(str, enum.Enum):
    VALIDATING = "validating"
    UPLOADING = "uploading"
    AWAITING_INITIAL_ASSESSMENT = "awaiting_initial_assessment"
    QUESTIONNAIRE = "questionnaire"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: Dict[IntakePhase, set] = {
    IntakePhase.VALIDATING: {IntakePhase.VALIDATING, IntakePhase.UPLOADING, IntakePhase.FAILED},
    IntakePhase.UPLOADING: {
        IntakePhase.VALIDATING,
        IntakePhase.UPLOADING,
        IntakePhase.AWAITING_INITIAL_ASSESSMENT,
        IntakePhase.FAILED,
    },
    IntakePhase.AWAITING_INITIAL_ASSESSMENT: {IntakePhase.QUESTIONNAIRE, IntakePhase.UPLOADING, IntakePhase.FAILED},
    IntakePhase.QUESTIONNAIRE: {IntakePhase.FINALIZING, IntakePhase.FAILED},
    IntakePhase.FINALIZING: {IntakePhase.COMPLETED, IntakePhase.QUESTIONNAIRE, IntakePhase.FAILED},
}

TERMINAL_PHASES = {IntakePhase.COMPLETED, IntakePhase.FAILED}


@dataclass
class PendingUpload:
    """A file received from the claimant but not yet in object storage."""
    filename: str
    content: bytes
    content_type: str
    id: str = field(default_factory=new_id)

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class IntakeSession:
    """
    One claimant's pass through the intake workflow.

    ``claim_id`` is reserved when the session opens so that uploads made
    before the claim row exists are already keyed by it.
    """
    session_id: str = field(default_factory=new_id)
    claim_id: str = field(default_factory=new_id)
    phase: IntakePhase = IntakePhase.VALIDATING
    verdict: Optional[PolicyVerdict] = None
    incident: Optional[IncidentDetails] = None
    vehicle: VehicleDetails = field(default_factory=VehicleDetails)
    policy_document: Optional[StoredObject] = None
    policy_document_name: Optional[str] = None
    extraction: Optional[DocumentExtraction] = None
    # sha256 of intake upload -> stored file row, so retries skip re-uploading
    intake_uploads: Dict[str, ClaimFile] = field(default_factory=dict)
    pending_photos: List[PendingUpload] = field(default_factory=list)
    claim_number: Optional[str] = None
    questionnaire: Optional[QuestionnaireController] = None
    last_error: Optional[Dict[str, Any]] = None
    in_flight: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_active: datetime = field(default_factory=utcnow)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def transition(self, to: IntakePhase) -> None:
        """
        Enforce the intake state machine.

        Raises:
            WorkflowError: If the transition is not allowed
        """
        allowed = _TRANSITIONS.get(self.phase, set())
        if to not in allowed:
            raise WorkflowError.invalid_transition(
                self.session_id, self.phase.value, to.value, [p.value for p in allowed]
            )
        logger.debug(f"Session {self.session_id}: {self.phase.value} -> {to.value}")
        self.phase = to
        if to in TERMINAL_PHASES:
            self.pending_photos.clear()

    def require_phase(self, *phases: IntakePhase) -> None:
        if self.phase not in phases:
            raise WorkflowError.invalid_transition(
                self.session_id, self.phase.value, "/".join(p.value for p in phases), [p.value for p in phases]
            )

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @contextmanager
    def operation(self, name: str) -> Iterator["IntakeSession"]:
        """
        Hold the session's single mutating-operation slot.

        Raises:
            WorkflowError: If another operation is already running
        """
        if not self._lock.acquire(blocking=False):
            raise WorkflowError.operation_in_progress(self.session_id, self.in_flight or "unknown")
        self.in_flight = name
        try:
            yield self
            self.last_error = None
        except ClaimsProcessingError as e:
            self.last_error = e.to_dict()
            raise
        finally:
            self.in_flight = None
            self.last_active = utcnow()
            self._lock.release()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "claim_id": self.claim_id if self.claim_number else None,
            "claim_number": self.claim_number,
            "phase": self.phase.value,
            "in_flight": self.in_flight,
            "policy": self.verdict.to_dict() if self.verdict else None,
            "incident": self.incident.to_dict() if self.incident else None,
            "vehicle": self.vehicle.to_dict(),
            "policy_document_url": self.policy_document.url if self.policy_document else None,
            "extraction": self.extraction.to_dict() if self.extraction else None,
            "pending_photos": [{"id": p.id, "filename": p.filename, "size": p.size} for p in self.pending_photos],
            "questionnaire": self.questionnaire.to_dict() if self.questionnaire else None,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
        }


class SessionRegistry:
    """
    In-process registry of intake sessions.

    Sessions idle longer than ``idle_ttl_minutes``, and finished sessions
    idle longer than ``terminal_ttl_minutes``, are evicted whenever a new
    session is opened. A session with an operation in flight is never
    evicted.
    """

    def __init__(self, idle_ttl_minutes: int = 240, terminal_ttl_minutes: int = 30):
        self._sessions: Dict[str, IntakeSession] = {}
        self._lock = threading.Lock()
        self.idle_ttl = timedelta(minutes=idle_ttl_minutes)
        self.terminal_ttl = timedelta(minutes=terminal_ttl_minutes)

    def _is_expired(self, session: IntakeSession, now: datetime) -> bool:
        if session.in_flight is not None:
            return False
        ttl = self.terminal_ttl if session.is_terminal else self.idle_ttl
        return now - session.last_active > ttl

    def _evict_expired(self, now: datetime) -> int:
        expired = [sid for sid, s in self._sessions.items() if self._is_expired(s, now)]
        for session_id in expired:
            del self._sessions[session_id]
        return len(expired)

    def create(self, now: Optional[datetime] = None) -> IntakeSession:
        session = IntakeSession()
        with self._lock:
            evicted = self._evict_expired(now or utcnow())
            self._sessions[session.session_id] = session
        if evicted:
            logger.info(f"Evicted {evicted} expired intake sessions")
        logger.info(f"Opened intake session {session.session_id}")
        return session

    def get(self, session_id: str) -> IntakeSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise StorageError.not_found("Session", session_id)
        session.last_active = utcnow()
        return session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
