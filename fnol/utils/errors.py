"""Error handling utilities for the FNOL intake and triage service."""

from dataclasses import dataclass
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorType(Enum):
    """Enumeration of error types in the FNOL service."""

    # Bedrock API Errors
    BEDROCK_RATE_LIMIT = "BEDROCK_RATE_LIMIT"
    BEDROCK_TIMEOUT = "BEDROCK_TIMEOUT"
    BEDROCK_AUTH_ERROR = "BEDROCK_AUTH_ERROR"
    BEDROCK_MODEL_ERROR = "BEDROCK_MODEL_ERROR"
    BEDROCK_INVALID_REQUEST = "BEDROCK_INVALID_REQUEST"
    BEDROCK_SERVICE_ERROR = "BEDROCK_SERVICE_ERROR"

    # Upstream payload errors
    UPSTREAM_RESPONSE_MALFORMED = "UPSTREAM_RESPONSE_MALFORMED"
    IMAGE_FETCH_FAILED = "IMAGE_FETCH_FAILED"

    # Policy oracle errors
    POLICY_CHECK_FAILED = "POLICY_CHECK_FAILED"

    # Input validation errors
    INPUT_VALIDATION_FAILED = "INPUT_VALIDATION_FAILED"
    POLICY_NOT_ELIGIBLE = "POLICY_NOT_ELIGIBLE"
    PHOTO_REQUIRED = "PHOTO_REQUIRED"
    QUESTIONNAIRE_INCOMPLETE = "QUESTIONNAIRE_INCOMPLETE"

    # Storage errors
    STORAGE_UPLOAD_FAILED = "STORAGE_UPLOAD_FAILED"
    STORAGE_READ_FAILED = "STORAGE_READ_FAILED"
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    RECORD_CONFLICT = "RECORD_CONFLICT"

    # Workflow errors
    INVALID_TRANSITION = "INVALID_TRANSITION"
    OPERATION_IN_PROGRESS = "OPERATION_IN_PROGRESS"

    # Dashboard access
    ACCESS_DENIED = "ACCESS_DENIED"

    # Configuration Errors
    CONFIG_MISSING = "CONFIG_MISSING"
    CONFIG_INVALID = "CONFIG_INVALID"


@dataclass
class ErrorContext:
    """
    Context information for errors in the FNOL service.

    Attributes:
        error_type: Type of error from ErrorType enum
        message: Human-readable error message
        recoverable: Whether the error can be recovered from by retrying
        fallback_action: Optional description of what the caller should do next
        details: Optional additional error details
        original_exception: Optional original exception that caused this error
    """

    error_type: ErrorType
    message: str
    recoverable: bool
    fallback_action: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    original_exception: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error context to dictionary for logging/serialization.

        Returns:
            Dictionary representation of error context
        """
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "fallback_action": self.fallback_action,
            "details": self.details or {},
            "original_exception": str(self.original_exception) if self.original_exception else None
        }


class ClaimsProcessingError(Exception):
    """
    Base exception for all FNOL processing errors.

    Wraps errors with an ErrorContext so the web layer can translate them
    into user-visible messages without inspecting exception classes.

    Attributes:
        context: ErrorContext with detailed error information
    """

    def __init__(self, context: ErrorContext):
        """
        Initialize claims processing error.

        Args:
            context: ErrorContext with error details
        """
        self.context = context
        super().__init__(context.message)

    @property
    def error_type(self) -> ErrorType:
        return self.context.error_type

    @property
    def recoverable(self) -> bool:
        return self.context.recoverable

    def __str__(self) -> str:
        """String representation of the error."""
        base = f"{self.context.error_type.value}: {self.context.message}"
        if self.context.fallback_action:
            base += f" (Fallback: {self.context.fallback_action})"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of error
        """
        return self.context.to_dict()


class BedrockAPIError(ClaimsProcessingError):
    """Exception for AWS Bedrock API errors."""

    @classmethod
    def from_client_error(
        cls,
        error: Exception,
        operation: str,
        recoverable: bool = False,
        fallback_action: Optional[str] = None
    ) -> "BedrockAPIError":
        """
        Create BedrockAPIError from boto3 ClientError.

        Args:
            error: Original boto3 ClientError
            operation: Description of operation that failed
            recoverable: Whether error is recoverable
            fallback_action: Optional fallback action description

        Returns:
            BedrockAPIError instance
        """
        error_code = "Unknown"
        error_message = str(error)

        if hasattr(error, 'response'):
            error_info = error.response.get("Error", {})
            error_code = error_info.get("Code", "Unknown")
            error_message = error_info.get("Message", str(error))

        error_type_map = {
            "ThrottlingException": ErrorType.BEDROCK_RATE_LIMIT,
            "TooManyRequestsException": ErrorType.BEDROCK_RATE_LIMIT,
            "RequestTimeout": ErrorType.BEDROCK_TIMEOUT,
            "RequestTimeoutException": ErrorType.BEDROCK_TIMEOUT,
            "UnauthorizedException": ErrorType.BEDROCK_AUTH_ERROR,
            "AccessDeniedException": ErrorType.BEDROCK_AUTH_ERROR,
            "ValidationException": ErrorType.BEDROCK_INVALID_REQUEST,
            "ModelNotReadyException": ErrorType.BEDROCK_MODEL_ERROR,
            "ModelTimeoutException": ErrorType.BEDROCK_TIMEOUT,
            "ServiceUnavailableException": ErrorType.BEDROCK_SERVICE_ERROR,
            "InternalServerException": ErrorType.BEDROCK_SERVICE_ERROR,
        }

        error_type = error_type_map.get(error_code, ErrorType.BEDROCK_SERVICE_ERROR)

        context = ErrorContext(
            error_type=error_type,
            message=f"Bedrock API error during {operation}: {error_message}",
            recoverable=recoverable,
            fallback_action=fallback_action,
            details={
                "error_code": error_code,
                "operation": operation
            },
            original_exception=error
        )

        return cls(context)

    @classmethod
    def timeout(cls, operation: str, timeout_seconds: int, error: Exception) -> "BedrockAPIError":
        """Create a retryable error for a call that exceeded the gateway timeout."""
        context = ErrorContext(
            error_type=ErrorType.BEDROCK_TIMEOUT,
            message=f"Bedrock call for {operation} timed out after {timeout_seconds}s",
            recoverable=True,
            fallback_action="Retry the operation",
            details={"operation": operation, "timeout_seconds": timeout_seconds},
            original_exception=error
        )
        return cls(context)


class MalformedResponseError(ClaimsProcessingError):
    """Exception for LLM responses that are not well-formed or miss required keys."""

    @classmethod
    def for_stage(
        cls,
        stage: str,
        reason: str,
        missing_fields: Optional[List[str]] = None,
        preview: Optional[str] = None
    ) -> "MalformedResponseError":
        """
        Create error for an unparseable upstream response.

        Args:
            stage: Assessment stage that received the response
            reason: Why the response was rejected
            missing_fields: Required keys absent from the payload
            preview: Leading characters of the raw response

        Returns:
            MalformedResponseError instance
        """
        context = ErrorContext(
            error_type=ErrorType.UPSTREAM_RESPONSE_MALFORMED,
            message=f"Unparseable upstream response from {stage}: {reason}",
            recoverable=True,
            fallback_action="Retry the operation",
            details={
                "stage": stage,
                "missing_fields": missing_fields or [],
                "preview": (preview or "")[:200]
            }
        )
        return cls(context)


class PolicyCheckError(ClaimsProcessingError):
    """Exception raised when the policy oracle could not be consulted."""

    @classmethod
    def unavailable(cls, policy_number: str, error: Exception) -> "PolicyCheckError":
        context = ErrorContext(
            error_type=ErrorType.POLICY_CHECK_FAILED,
            message=f"Could not validate policy {policy_number}: {str(error)}",
            recoverable=True,
            fallback_action="Try validating the policy again",
            details={"policy_number": policy_number},
            original_exception=error
        )
        return cls(context)


class ValidationError(ClaimsProcessingError):
    """Exception for input rejected before any network call."""

    @classmethod
    def invalid_input(
        cls,
        message: str,
        field: Optional[str] = None,
        error_type: ErrorType = ErrorType.INPUT_VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ) -> "ValidationError":
        """
        Create error for a rejected input value.

        Args:
            message: Message to show next to the offending input
            field: Name of the offending field, if any
            error_type: Specific validation error type
            details: Extra details for the response body

        Returns:
            ValidationError instance
        """
        payload = dict(details or {})
        if field:
            payload["field"] = field
        context = ErrorContext(
            error_type=error_type,
            message=message,
            recoverable=True,
            fallback_action="Correct the input and resubmit",
            details=payload
        )
        return cls(context)

    @classmethod
    def policy_not_eligible(cls, policy_number: str, status: Optional[str]) -> "ValidationError":
        if status == "lapsed":
            message = "This policy has lapsed. Please renew before filing a claim."
        elif status is None:
            message = "Please validate an active policy before submitting."
        else:
            message = f"Policy {policy_number} is not active (status: {status})."
        return cls.invalid_input(
            message,
            field="policy_number",
            error_type=ErrorType.POLICY_NOT_ELIGIBLE,
            details={"policy_status": status}
        )

    @classmethod
    def photo_required(cls) -> "ValidationError":
        return cls.invalid_input(
            "At least one damage photo is required before the claim can be assessed.",
            field="photos",
            error_type=ErrorType.PHOTO_REQUIRED
        )

    @classmethod
    def questionnaire_incomplete(cls, categories: List[str]) -> "ValidationError":
        listed = ", ".join(categories)
        return cls.invalid_input(
            f"Please answer all questions in: {listed}",
            error_type=ErrorType.QUESTIONNAIRE_INCOMPLETE,
            details={"incomplete_categories": categories}
        )


class StorageError(ClaimsProcessingError):
    """Exception for object storage and record store errors."""

    @classmethod
    def upload_failed(cls, filename: str, error: Exception) -> "StorageError":
        context = ErrorContext(
            error_type=ErrorType.STORAGE_UPLOAD_FAILED,
            message=f"Failed to upload '{filename}': {str(error)}",
            recoverable=True,
            fallback_action="Retry the upload",
            details={"filename": filename},
            original_exception=error
        )
        return cls(context)

    @classmethod
    def read_failed(cls, url: str, error: Exception) -> "StorageError":
        context = ErrorContext(
            error_type=ErrorType.STORAGE_READ_FAILED,
            message=f"Failed to read stored object '{url}': {str(error)}",
            recoverable=True,
            details={"url": url},
            original_exception=error
        )
        return cls(context)

    @classmethod
    def fetch_failed(cls, url: str, error: Exception) -> "StorageError":
        context = ErrorContext(
            error_type=ErrorType.IMAGE_FETCH_FAILED,
            message=f"Failed to fetch image '{url}': {str(error)}",
            recoverable=True,
            fallback_action="Retry the operation",
            details={"url": url},
            original_exception=error
        )
        return cls(context)

    @classmethod
    def not_found(cls, entity: str, identifier: str) -> "StorageError":
        context = ErrorContext(
            error_type=ErrorType.RECORD_NOT_FOUND,
            message=f"{entity} '{identifier}' not found",
            recoverable=False,
            details={"entity": entity, "id": identifier}
        )
        return cls(context)

    @classmethod
    def conflict(cls, message: str, details: Optional[Dict[str, Any]] = None) -> "StorageError":
        context = ErrorContext(
            error_type=ErrorType.RECORD_CONFLICT,
            message=message,
            recoverable=False,
            details=details
        )
        return cls(context)


class WorkflowError(ClaimsProcessingError):
    """Exception for intake session state machine violations."""

    @classmethod
    def invalid_transition(cls, session_id: str, current: str, target: str, allowed: List[str]) -> "WorkflowError":
        context = ErrorContext(
            error_type=ErrorType.INVALID_TRANSITION,
            message=(
                f"Session {session_id}: {current} -> {target} is not allowed. "
                f"Valid transitions: {sorted(allowed)}"
            ),
            recoverable=False,
            details={"current": current, "target": target, "allowed": sorted(allowed)}
        )
        return cls(context)

    @classmethod
    def operation_in_progress(cls, session_id: str, operation: str) -> "WorkflowError":
        context = ErrorContext(
            error_type=ErrorType.OPERATION_IN_PROGRESS,
            message=f"Session {session_id} is already running '{operation}'",
            recoverable=True,
            fallback_action="Wait for the current operation to finish",
            details={"operation": operation}
        )
        return cls(context)


class AccessDeniedError(ClaimsProcessingError):
    """Exception for rejected dashboard access."""

    @classmethod
    def denied(cls, reason: str) -> "AccessDeniedError":
        return cls(ErrorContext(
            error_type=ErrorType.ACCESS_DENIED,
            message=reason,
            recoverable=True
        ))


class ConfigurationError(ClaimsProcessingError):
    """Exception for missing or invalid configuration. Never recoverable."""

    @classmethod
    def missing(cls, setting: str, hint: Optional[str] = None) -> "ConfigurationError":
        return cls(ErrorContext(
            error_type=ErrorType.CONFIG_MISSING,
            message=f"Required configuration '{setting}' is not set" + (f". {hint}" if hint else ""),
            recoverable=False,
            details={"setting": setting}
        ))

    @classmethod
    def invalid(cls, setting: str, value: Any, expected: str) -> "ConfigurationError":
        return cls(ErrorContext(
            error_type=ErrorType.CONFIG_INVALID,
            message=f"Invalid value {value!r} for '{setting}'; expected {expected}",
            recoverable=False,
            details={"setting": setting}
        ))
