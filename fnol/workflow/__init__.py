"""Intake workflow state machines."""

from .questionnaire import QuestionnaireController, classify
from .session import IntakePhase, IntakeSession, SessionRegistry

__all__ = ["QuestionnaireController", "classify", "IntakePhase", "IntakeSession", "SessionRegistry"]
