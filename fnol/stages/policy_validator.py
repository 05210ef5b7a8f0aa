"""Policy number validation against a pluggable oracle."""

import logging
import re
from typing import Any, Dict, Optional

import httpx

from ..models.extraction import PolicyStatus, PolicyVerdict
from ..utils.config import PolicyOracleConfig
from ..utils.errors import PolicyCheckError, ValidationError

logger = logging.getLogger(__name__)

POLICY_NUMBER_PATTERN = re.compile(r"^POL-\d{6,8}$")
INVALID_FORMAT_MESSAGE = "Policy number format invalid. Expected format: POL-XXXXXX"

STATUS_MESSAGES = {
    PolicyStatus.ACTIVE: "Policy is active.",
    PolicyStatus.LAPSED: "This policy has lapsed. Please renew before filing a claim.",
    PolicyStatus.PENDING: "Policy verification is pending. Please contact your insurer.",
    PolicyStatus.INVALID: "Policy not found.",
}


class PolicyOracle:
    """Looks up the status of a well-formed policy number."""

    def lookup(self, policy_number: str) -> PolicyVerdict:
        raise NotImplementedError


class LocalPolicyOracle(PolicyOracle):
    """Deterministic registry: configured numbers map to their status, all others to the default."""

    def __init__(self, policies: Optional[Dict[str, str]] = None, default_status: str = "pending"):
        self.policies = {k.upper(): PolicyStatus(v.lower()) for k, v in (policies or {}).items()}
        self.default_status = PolicyStatus(default_status.lower())

    def lookup(self, policy_number: str) -> PolicyVerdict:
        status = self.policies.get(policy_number, self.default_status)
        return PolicyVerdict(
            policy_number=policy_number,
            status=status,
            metadata={"source": "local"},
            message=STATUS_MESSAGES[status],
        )


class HttpPolicyOracle(PolicyOracle):
    """
    Remote oracle.

    Request:  POST {"policyNumber": "POL-123456"}
    Response: {"valid": bool, "status": "active|lapsed|invalid|pending", "metadata": {...}}
    """

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(self.url, json=payload, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.url, json=payload)

    def lookup(self, policy_number: str) -> PolicyVerdict:
        try:
            response = self._post({"policyNumber": policy_number})
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Policy oracle request failed for {policy_number}: {str(e)}")
            raise PolicyCheckError.unavailable(policy_number, e) from e

        if not isinstance(body, dict):
            raise PolicyCheckError.unavailable(policy_number, ValueError("oracle response is not an object"))
        try:
            status = PolicyStatus(str(body.get("status", "")).lower())
        except ValueError as e:
            raise PolicyCheckError.unavailable(policy_number, e) from e

        metadata = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}
        return PolicyVerdict(
            policy_number=policy_number,
            status=status,
            metadata=metadata,
            message=body.get("message") or STATUS_MESSAGES[status],
        )


class PolicyValidator:
    """
    Validates a claimant-entered policy number.

    Format is checked locally; only well-formed numbers reach the oracle.
    ``PolicyCheckError`` ("could not check") is kept apart from an
    ``invalid`` verdict ("checked and failed").
    """

    def __init__(self, oracle: PolicyOracle):
        self.oracle = oracle

    @staticmethod
    def normalize(policy_number: Optional[str]) -> str:
        return (policy_number or "").strip().upper()

    def validate(self, policy_number: Optional[str]) -> PolicyVerdict:
        normalized = self.normalize(policy_number)
        if not normalized:
            raise ValidationError.invalid_input("Please enter a policy number", field="policy_number")

        if not POLICY_NUMBER_PATTERN.match(normalized):
            logger.info(f"Rejected malformed policy number without oracle call: {normalized!r}")
            return PolicyVerdict(policy_number=normalized, status=PolicyStatus.INVALID, message=INVALID_FORMAT_MESSAGE)

        verdict = self.oracle.lookup(normalized)
        logger.info(f"Policy {normalized} checked: status={verdict.status.value}")
        return verdict


def build_policy_validator(config: PolicyOracleConfig) -> PolicyValidator:
    if config.mode == "http":
        return PolicyValidator(HttpPolicyOracle(config.url, timeout=config.timeout))
    return PolicyValidator(LocalPolicyOracle(config.policies, default_status=config.default_status))
