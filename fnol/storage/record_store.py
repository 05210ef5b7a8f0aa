"""
Claim record store.

Holds claims, their files and their follow-up questions. Two backends share
one interface: an in-memory store for tests and single-process demos, and a
SQLite store for persistence.

Usage:
    store = build_record_store(config)
    store.insert_claim(claim, files, questions)   # one transaction
    store.answer_question(question_id, "Yes, both airbags deployed")
    store.apply_final_assessment(claim.id, final_assessment)
"""

import copy
import json
import logging
import sqlite3
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models.assessment import FinalAssessment
from ..models.claim import (
    Claim,
    ClaimFile,
    ClaimQuestion,
    ClaimStatus,
    FileStage,
    IncidentDetails,
    IncidentType,
    VehicleDetails,
    utcnow,
)
from ..utils.config import Config
from ..utils.errors import StorageError

logger = logging.getLogger(__name__)


def _normalize_answer(answer: Optional[str]) -> Optional[str]:
    if answer is None:
        return None
    text = str(answer).strip()
    return text or None


class ClaimRecordStore:
    """Abstract claim record store."""

    def insert_claim(self, claim: Claim, files: List[ClaimFile], questions: List[ClaimQuestion]) -> Claim:
        """Insert a claim with its files and questions atomically."""
        raise NotImplementedError

    def insert_questions(self, claim_id: str, questions: List[ClaimQuestion]) -> List[ClaimQuestion]:
        raise NotImplementedError

    def add_file(self, claim_file: ClaimFile) -> ClaimFile:
        raise NotImplementedError

    def get_claim(self, claim_id: str) -> Claim:
        raise NotImplementedError

    def list_claims(self) -> List[Claim]:
        """All claims, newest first."""
        raise NotImplementedError

    def list_files(self, claim_id: str) -> List[ClaimFile]:
        raise NotImplementedError

    def list_questions(self, claim_id: str) -> List[ClaimQuestion]:
        raise NotImplementedError

    def answer_question(self, question_id: str, answer: Optional[str]) -> ClaimQuestion:
        """Set (or clear) one answer; ``answered_at`` moves with it."""
        raise NotImplementedError

    def answer_question_by_text(self, claim_id: str, question_text: str, answer: Optional[str]) -> int:
        """
        Answer by exact question text.

        Every question of the claim with that text receives the answer, so
        duplicate texts cannot be told apart. Prefer ``answer_question``.

        Returns:
            Number of rows updated
        """
        raise NotImplementedError

    def apply_final_assessment(self, claim_id: str, assessment: FinalAssessment) -> Claim:
        """Replace severity, routing, confidence and payload, and mark the claim assessed."""
        raise NotImplementedError

    def list_submitted_before(self, cutoff: datetime) -> List[Claim]:
        """Submitted claims created before ``cutoff``, oldest first."""
        stale = [c for c in self.list_claims() if c.status is ClaimStatus.SUBMITTED and c.created_at < cutoff]
        return sorted(stale, key=lambda c: c.created_at)

    def close(self) -> None:
        pass


class InMemoryRecordStore(ClaimRecordStore):
    """Dict-backed store guarded by a single lock. Returns copies, never live records."""

    def __init__(self):
        self._lock = threading.RLock()
        self._claims: Dict[str, Claim] = {}
        self._files: Dict[str, ClaimFile] = {}
        self._questions: Dict[str, ClaimQuestion] = {}
        logger.info("Initialized in-memory claim record store")

    def _require_claim(self, claim_id: str) -> Claim:
        claim = self._claims.get(claim_id)
        if claim is None:
            raise StorageError.not_found("Claim", claim_id)
        return claim

    def insert_claim(self, claim: Claim, files: List[ClaimFile], questions: List[ClaimQuestion]) -> Claim:
        with self._lock:
            if claim.id in self._claims:
                raise StorageError.conflict(f"Claim {claim.id} already exists", {"claim_id": claim.id})
            if any(c.claim_number == claim.claim_number for c in self._claims.values()):
                raise StorageError.conflict(
                    f"Claim number {claim.claim_number} already exists", {"claim_number": claim.claim_number}
                )
            for row in list(files) + list(questions):
                if row.claim_id != claim.id:
                    raise StorageError.conflict("Child row belongs to a different claim", {"claim_id": row.claim_id})

            self._claims[claim.id] = copy.deepcopy(claim)
            for claim_file in files:
                self._files[claim_file.id] = copy.deepcopy(claim_file)
            for question in questions:
                self._questions[question.id] = copy.deepcopy(question)

        logger.info(f"Inserted claim {claim.claim_number} with {len(files)} files and {len(questions)} questions")
        return copy.deepcopy(claim)

    def insert_questions(self, claim_id: str, questions: List[ClaimQuestion]) -> List[ClaimQuestion]:
        with self._lock:
            self._require_claim(claim_id)
            stored = [replace(q, claim_id=claim_id) for q in questions]
            for question in stored:
                self._questions[question.id] = copy.deepcopy(question)
        return stored

    def add_file(self, claim_file: ClaimFile) -> ClaimFile:
        with self._lock:
            self._require_claim(claim_file.claim_id)
            self._files[claim_file.id] = copy.deepcopy(claim_file)
        return claim_file

    def get_claim(self, claim_id: str) -> Claim:
        with self._lock:
            return copy.deepcopy(self._require_claim(claim_id))

    def list_claims(self) -> List[Claim]:
        with self._lock:
            claims = [copy.deepcopy(c) for c in self._claims.values()]
        return sorted(claims, key=lambda c: c.created_at, reverse=True)

    def list_files(self, claim_id: str) -> List[ClaimFile]:
        with self._lock:
            files = [copy.deepcopy(f) for f in self._files.values() if f.claim_id == claim_id]
        return sorted(files, key=lambda f: f.created_at)

    def list_questions(self, claim_id: str) -> List[ClaimQuestion]:
        with self._lock:
            questions = [copy.deepcopy(q) for q in self._questions.values() if q.claim_id == claim_id]
        return sorted(questions, key=lambda q: q.asked_at)

    def answer_question(self, question_id: str, answer: Optional[str]) -> ClaimQuestion:
        text = _normalize_answer(answer)
        with self._lock:
            question = self._questions.get(question_id)
            if question is None:
                raise StorageError.not_found("Question", question_id)
            question.answer = text
            question.answered_at = utcnow() if text is not None else None
            return copy.deepcopy(question)

    def answer_question_by_text(self, claim_id: str, question_text: str, answer: Optional[str]) -> int:
        text = _normalize_answer(answer)
        updated = 0
        with self._lock:
            for question in self._questions.values():
                if question.claim_id == claim_id and question.question == question_text:
                    question.answer = text
                    question.answered_at = utcnow() if text is not None else None
                    updated += 1
        return updated

    def apply_final_assessment(self, claim_id: str, assessment: FinalAssessment) -> Claim:
        with self._lock:
            claim = self._require_claim(claim_id)
            claim.severity_level = assessment.severity_level.value
            claim.routing_decision = assessment.routing_decision.value
            claim.confidence_score = assessment.confidence_score
            claim.ai_assessment = assessment.to_dict()
            claim.status = ClaimStatus.ASSESSED
            claim.updated_at = utcnow()
            return copy.deepcopy(claim)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS claims (
    id TEXT PRIMARY KEY,
    claim_number TEXT NOT NULL UNIQUE,
    policy_number TEXT NOT NULL,
    policy_status TEXT NOT NULL,
    incident_type TEXT NOT NULL,
    incident_date TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    location TEXT NOT NULL DEFAULT '',
    vehicle TEXT NOT NULL,
    status TEXT NOT NULL,
    severity_level TEXT,
    confidence_score REAL,
    routing_decision TEXT,
    ai_assessment TEXT,
    initial_assessment TEXT,
    policy_document_url TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS claim_files (
    id TEXT PRIMARY KEY,
    claim_id TEXT NOT NULL REFERENCES claims(id),
    file_name TEXT NOT NULL,
    file_type TEXT NOT NULL,
    file_url TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    stage TEXT NOT NULL,
    damage_tags TEXT NOT NULL DEFAULT '[]',
    ai_analysis TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS claim_questions (
    id TEXT PRIMARY KEY,
    claim_id TEXT NOT NULL REFERENCES claims(id),
    question TEXT NOT NULL,
    question_type TEXT NOT NULL,
    is_required INTEGER NOT NULL DEFAULT 0,
    answer TEXT,
    asked_at TEXT NOT NULL,
    answered_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_claims_created ON claims(created_at);
CREATE INDEX IF NOT EXISTS idx_files_claim ON claim_files(claim_id);
CREATE INDEX IF NOT EXISTS idx_questions_claim ON claim_questions(claim_id);
"""


def _dumps(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value)


def _loads(value: Optional[str]) -> Any:
    return None if value is None else json.loads(value)


def _ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteRecordStore(ClaimRecordStore):
    """SQLite-backed store. One connection shared across threads behind a lock."""

    def __init__(self, path: str = "data/claims.db"):
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._path = path
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON")
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._lock = threading.RLock()
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        logger.info(f"SQLite claim record store initialized: {path}")

    # Row mapping

    @staticmethod
    def _claim_from_row(row: sqlite3.Row) -> Claim:
        return Claim(
            id=row["id"],
            claim_number=row["claim_number"],
            policy_number=row["policy_number"],
            policy_status=row["policy_status"],
            incident=IncidentDetails(
                incident_type=IncidentType(row["incident_type"]),
                incident_date=datetime.fromisoformat(row["incident_date"]),
                description=row["description"],
                location=row["location"],
            ),
            vehicle=VehicleDetails(**json.loads(row["vehicle"])),
            status=ClaimStatus(row["status"]),
            severity_level=row["severity_level"],
            confidence_score=row["confidence_score"],
            routing_decision=row["routing_decision"],
            ai_assessment=_loads(row["ai_assessment"]),
            initial_assessment=_loads(row["initial_assessment"]),
            policy_document_url=row["policy_document_url"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _file_from_row(row: sqlite3.Row) -> ClaimFile:
        return ClaimFile(
            id=row["id"],
            claim_id=row["claim_id"],
            file_name=row["file_name"],
            file_type=row["file_type"],
            file_url=row["file_url"],
            file_size=row["file_size"],
            stage=FileStage(row["stage"]),
            damage_tags=json.loads(row["damage_tags"]),
            ai_analysis=_loads(row["ai_analysis"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _question_from_row(row: sqlite3.Row) -> ClaimQuestion:
        return ClaimQuestion(
            id=row["id"],
            claim_id=row["claim_id"],
            question=row["question"],
            question_type=row["question_type"],
            is_required=bool(row["is_required"]),
            answer=row["answer"],
            asked_at=datetime.fromisoformat(row["asked_at"]),
            answered_at=_ts(row["answered_at"]),
        )

    def _insert_file_row(self, f: ClaimFile) -> None:
        self._conn.execute(
            "INSERT INTO claim_files (id, claim_id, file_name, file_type, file_url, file_size, stage, "
            "damage_tags, ai_analysis, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (f.id, f.claim_id, f.file_name, f.file_type, f.file_url, f.file_size, f.stage.value,
             json.dumps(f.damage_tags), _dumps(f.ai_analysis), f.created_at.isoformat()),
        )

    def _insert_question_row(self, q: ClaimQuestion) -> None:
        self._conn.execute(
            "INSERT INTO claim_questions (id, claim_id, question, question_type, is_required, answer, "
            "asked_at, answered_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (q.id, q.claim_id, q.question, q.question_type, int(q.is_required), q.answer,
             q.asked_at.isoformat(), q.answered_at.isoformat() if q.answered_at else None),
        )

    def _fetch_claim(self, claim_id: str) -> Claim:
        row = self._conn.execute("SELECT * FROM claims WHERE id = ?", (claim_id,)).fetchone()
        if row is None:
            raise StorageError.not_found("Claim", claim_id)
        return self._claim_from_row(row)

    # Interface

    def insert_claim(self, claim: Claim, files: List[ClaimFile], questions: List[ClaimQuestion]) -> Claim:
        incident = claim.incident
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO claims (id, claim_number, policy_number, policy_status, incident_type, "
                        "incident_date, description, location, vehicle, status, severity_level, confidence_score, "
                        "routing_decision, ai_assessment, initial_assessment, policy_document_url, created_at, "
                        "updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (claim.id, claim.claim_number, claim.policy_number, claim.policy_status,
                         incident.incident_type.value, incident.incident_date.isoformat(), incident.description,
                         incident.location, json.dumps(claim.vehicle.to_dict()), claim.status.value,
                         claim.severity_level, claim.confidence_score, claim.routing_decision,
                         _dumps(claim.ai_assessment), _dumps(claim.initial_assessment),
                         claim.policy_document_url, claim.created_at.isoformat(), claim.updated_at.isoformat()),
                    )
                    for claim_file in files:
                        self._insert_file_row(claim_file)
                    for question in questions:
                        self._insert_question_row(question)
            except sqlite3.IntegrityError as e:
                raise StorageError.conflict(f"Could not insert claim {claim.claim_number}: {e}",
                                            {"claim_id": claim.id}) from e

        logger.info(f"Inserted claim {claim.claim_number} with {len(files)} files and {len(questions)} questions")
        return claim

    def insert_questions(self, claim_id: str, questions: List[ClaimQuestion]) -> List[ClaimQuestion]:
        stored = [replace(q, claim_id=claim_id) for q in questions]
        with self._lock:
            self._fetch_claim(claim_id)
            with self._conn:
                for question in stored:
                    self._insert_question_row(question)
        return stored

    def add_file(self, claim_file: ClaimFile) -> ClaimFile:
        with self._lock:
            self._fetch_claim(claim_file.claim_id)
            with self._conn:
                self._insert_file_row(claim_file)
        return claim_file

    def get_claim(self, claim_id: str) -> Claim:
        with self._lock:
            return self._fetch_claim(claim_id)

    def list_claims(self) -> List[Claim]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM claims ORDER BY created_at DESC").fetchall()
        return [self._claim_from_row(r) for r in rows]

    def list_files(self, claim_id: str) -> List[ClaimFile]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM claim_files WHERE claim_id = ? ORDER BY created_at, rowid", (claim_id,)
            ).fetchall()
        return [self._file_from_row(r) for r in rows]

    def list_questions(self, claim_id: str) -> List[ClaimQuestion]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM claim_questions WHERE claim_id = ? ORDER BY asked_at, rowid", (claim_id,)
            ).fetchall()
        return [self._question_from_row(r) for r in rows]

    def answer_question(self, question_id: str, answer: Optional[str]) -> ClaimQuestion:
        text = _normalize_answer(answer)
        answered_at = utcnow().isoformat() if text is not None else None
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "UPDATE claim_questions SET answer = ?, answered_at = ? WHERE id = ?",
                    (text, answered_at, question_id),
                )
            if cursor.rowcount == 0:
                raise StorageError.not_found("Question", question_id)
            row = self._conn.execute("SELECT * FROM claim_questions WHERE id = ?", (question_id,)).fetchone()
        return self._question_from_row(row)

    def answer_question_by_text(self, claim_id: str, question_text: str, answer: Optional[str]) -> int:
        text = _normalize_answer(answer)
        answered_at = utcnow().isoformat() if text is not None else None
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "UPDATE claim_questions SET answer = ?, answered_at = ? WHERE claim_id = ? AND question = ?",
                    (text, answered_at, claim_id, question_text),
                )
        return cursor.rowcount

    def apply_final_assessment(self, claim_id: str, assessment: FinalAssessment) -> Claim:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "UPDATE claims SET severity_level = ?, routing_decision = ?, confidence_score = ?, "
                    "ai_assessment = ?, status = ?, updated_at = ? WHERE id = ?",
                    (assessment.severity_level.value, assessment.routing_decision.value,
                     assessment.confidence_score, json.dumps(assessment.to_dict()),
                     ClaimStatus.ASSESSED.value, utcnow().isoformat(), claim_id),
                )
            if cursor.rowcount == 0:
                raise StorageError.not_found("Claim", claim_id)
            return self._fetch_claim(claim_id)

    def list_submitted_before(self, cutoff: datetime) -> List[Claim]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM claims WHERE status = ? AND created_at < ? ORDER BY created_at",
                (ClaimStatus.SUBMITTED.value, cutoff.isoformat()),
            ).fetchall()
        return [self._claim_from_row(r) for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def build_record_store(config: Config) -> ClaimRecordStore:
    if config.database.backend == "memory":
        return InMemoryRecordStore()
    return SQLiteRecordStore(config.database.path)
