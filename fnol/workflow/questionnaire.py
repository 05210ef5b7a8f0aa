"""
Follow-up questionnaire controller.

Groups the initial assessment's follow-up questions into thematic steps and
drives a paginated wizard over them:

    Step_0 .. Step_{N-1}   one per non-empty category, in CATEGORY_ORDER
    Photos                 always last, always satisfiable
    Completed              after a successful submission

The controller is pure state; it performs no I/O. Answers are keyed by the
question's stable id.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from ..models.claim import ClaimQuestion
from ..utils.errors import ValidationError

logger = logging.getLogger(__name__)

VEHICLE_VERIFICATION = "vehicle_verification"
INCIDENT_DETAILS = "incident_details"
SAFETY_INFORMATION = "safety_information"
DAMAGE_DOCUMENTATION = "damage_documentation"

CATEGORY_ORDER = (VEHICLE_VERIFICATION, INCIDENT_DETAILS, SAFETY_INFORMATION, DAMAGE_DOCUMENTATION)

CATEGORY_TITLES = {
    VEHICLE_VERIFICATION: "Vehicle Verification",
    INCIDENT_DETAILS: "Incident Details",
    SAFETY_INFORMATION: "Safety Information",
    DAMAGE_DOCUMENTATION: "Damage Documentation",
}

ADDITIONAL_IMAGES = "additional_images"
PHOTOS_STEP_TITLE = "Additional Photos"

# Checked in order; first hit wins
_CATEGORY_KEYWORDS = (
    (VEHICLE_VERIFICATION, ("vehicle", "verif", "vin", "ownership", "coverage", "policy")),
    (SAFETY_INFORMATION, ("safety", "injur", "airbag", "medical")),
    (DAMAGE_DOCUMENTATION, ("damage", "photo", "image", "document", "repair")),
)


def is_photo_request(question: ClaimQuestion) -> bool:
    return question.question_type.strip().lower() == ADDITIONAL_IMAGES


def classify(question_type: str) -> str:
    """Map a free-form question_type tag onto one of the four categories."""
    tag = (question_type or "").strip().lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in tag for keyword in keywords):
            return category
    return INCIDENT_DETAILS


@dataclass
class QuestionnaireStep:
    """
    One page of the wizard.

    Attributes:
        index: Position in the step sequence
        title: Display title
        category: Category name, or None for the photos step
        question_ids: Ids of the questions shown on this step, in asked order
    """
    index: int
    title: str
    category: Optional[str] = None
    question_ids: List[str] = field(default_factory=list)

    @property
    def is_photos(self) -> bool:
        return self.category is None


class QuestionnaireController:
    """
    Stepper state machine over one claim's follow-up questions.

    Completeness of a category step means every question on it has a
    non-blank trimmed answer, or only the required ones when
    ``require_all_answers`` is False.
    """

    def __init__(self, questions: Sequence[ClaimQuestion], require_all_answers: bool = True):
        self.require_all_answers = require_all_answers
        self.questions: Dict[str, ClaimQuestion] = {q.id: q for q in questions}
        self.answers: Dict[str, str] = {q.id: q.answer for q in questions if q.answer}
        self.photo_requests: List[str] = [q.question for q in questions if is_photo_request(q)]
        self.steps: List[QuestionnaireStep] = self._build_steps(questions)
        self.current_index = 0
        self.attempted: Set[int] = set()
        self.completed = False

    @staticmethod
    def _build_steps(questions: Sequence[ClaimQuestion]) -> List[QuestionnaireStep]:
        grouped: Dict[str, List[str]] = {category: [] for category in CATEGORY_ORDER}
        for question in questions:
            if is_photo_request(question):
                continue
            grouped[classify(question.question_type)].append(question.id)

        steps = []
        for category in CATEGORY_ORDER:
            if grouped[category]:
                steps.append(QuestionnaireStep(
                    index=len(steps),
                    title=CATEGORY_TITLES[category],
                    category=category,
                    question_ids=grouped[category],
                ))
        steps.append(QuestionnaireStep(index=len(steps), title=PHOTOS_STEP_TITLE))
        return steps

    # Queries

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def current_step(self) -> QuestionnaireStep:
        return self.steps[self.current_index]

    @property
    def category_steps(self) -> List[QuestionnaireStep]:
        return [step for step in self.steps if not step.is_photos]

    def _gates(self, question_id: str) -> bool:
        return self.require_all_answers or self.questions[question_id].is_required

    def _has_answer(self, question_id: str) -> bool:
        return bool(self.answers.get(question_id, "").strip())

    def blank_questions(self, index: int) -> List[str]:
        """Ids of questions on step ``index`` that block completion."""
        step = self.steps[index]
        return [qid for qid in step.question_ids if self._gates(qid) and not self._has_answer(qid)]

    def is_step_complete(self, index: int) -> bool:
        return self.steps[index].is_photos or not self.blank_questions(index)

    def flagged_questions(self, index: int) -> List[str]:
        """Blank questions to highlight; only once the step has been attempted."""
        return self.blank_questions(index) if index in self.attempted else []

    def incomplete_categories(self) -> List[str]:
        return [step.category for step in self.category_steps if not self.is_step_complete(step.index)]

    @property
    def can_submit(self) -> bool:
        return not self.completed and not self.incomplete_categories()

    # Answers

    def answer(self, question_id: str, text: Optional[str]) -> None:
        if self.completed:
            raise ValidationError.invalid_input("Questionnaire has already been submitted")
        if question_id not in self.questions:
            raise ValidationError.invalid_input(f"Unknown question id '{question_id}'", field="question_id")
        value = (text or "").strip()
        if value:
            self.answers[question_id] = value
        else:
            self.answers.pop(question_id, None)

    def answer_many(self, answers: Dict[str, Optional[str]]) -> None:
        for question_id in answers:
            if question_id not in self.questions:
                raise ValidationError.invalid_input(f"Unknown question id '{question_id}'", field="question_id")
        for question_id, text in answers.items():
            self.answer(question_id, text)

    def answered_pairs(self) -> Dict[str, str]:
        return {qid: text for qid, text in self.answers.items() if text.strip()}

    # Navigation

    def next(self) -> bool:
        """
        Advance one step if the current step is complete.

        Returns:
            True if the step changed; False if blocked (the step is then
            marked attempted) or already on the last step
        """
        index = self.current_index
        if not self.is_step_complete(index):
            self.attempted.add(index)
            logger.debug(f"Step {index} blocked: {len(self.blank_questions(index))} blank questions")
            return False
        if index >= self.step_count - 1:
            return False
        self.current_index = index + 1
        return True

    def back(self) -> bool:
        if self.current_index == 0:
            return False
        self.current_index -= 1
        return True

    def go_to(self, index: int) -> None:
        """Jump to any step; the step being left is marked attempted."""
        if not 0 <= index < self.step_count:
            raise ValidationError.invalid_input(
                f"Step {index} does not exist (0-{self.step_count - 1})", field="step"
            )
        self.attempted.add(self.current_index)
        self.current_index = index

    def validate_for_submit(self) -> None:
        """
        Re-validate every category step.

        Submission is accepted from any step, not only the photos step: the
        whole questionnaire is checked here, so the current position does not
        matter.

        Raises:
            ValidationError: Listing every category that still has blank questions;
                those steps are marked attempted
        """
        incomplete = self.incomplete_categories()
        if incomplete:
            for step in self.category_steps:
                if step.category in incomplete:
                    self.attempted.add(step.index)
            raise ValidationError.questionnaire_incomplete(incomplete)

    def mark_completed(self) -> None:
        self.completed = True

    def to_dict(self) -> Dict:
        return {
            "current_step": self.current_index,
            "step_count": self.step_count,
            "completed": self.completed,
            "can_submit": self.can_submit,
            "incomplete_categories": self.incomplete_categories(),
            "photo_requests": list(self.photo_requests),
            "steps": [
                {
                    "index": step.index,
                    "title": step.title,
                    "category": step.category,
                    "complete": self.is_step_complete(step.index),
                    "attempted": step.index in self.attempted,
                    "questions": [
                        {
                            "id": qid,
                            "question": self.questions[qid].question,
                            "question_type": self.questions[qid].question_type,
                            "is_required": self.questions[qid].is_required,
                            "answer": self.answers.get(qid),
                            "flagged": qid in self.flagged_questions(step.index),
                        }
                        for qid in step.question_ids
                    ],
                }
                for step in self.steps
            ],
        }
