"""Vehicle and policy details extraction from an uploaded policy document."""

import logging
from typing import Any, Dict, Optional

from ..models.claim import OWNERSHIP_STATUSES
from ..models.extraction import EXTRACTED_VEHICLE_FIELDS, DocumentExtraction
from ..utils.errors import ClaimsProcessingError
from .gateway import InlineDocument, VisionGateway

logger = logging.getLogger(__name__)

STAGE = "document_extraction"

SYSTEM_PROMPT = """You are an expert insurance policy analyzer. Extract VEHICLE information from the provided auto insurance policy document (image or PDF).

Extract the following fields if present:
- Vehicle Make
- Vehicle Model
- Vehicle Year
- VIN (Vehicle Identification Number)
- License Plate
- Ownership Status (owned, leased, financed)
- Policy Number
- Coverage Details (brief summary)

Use null for anything you cannot read with confidence. Never guess.

Respond with a single JSON object:
{
  "vehicle_make": "string or null",
  "vehicle_model": "string or null",
  "vehicle_year": number or null,
  "vehicle_vin": "string or null",
  "vehicle_license_plate": "string or null",
  "vehicle_ownership_status": "owned|leased|financed or null",
  "policy_number": "string or null",
  "coverage_summary": "string or null",
  "extraction_confidence": 0.0-1.0,
  "notes": "any relevant notes about extraction quality"
}"""

USER_TEXT = "Please extract the vehicle and policy details from this document."

_PLACEHOLDERS = {"", "null", "none", "unknown", "n/a", "na", "not available", "not found"}


def _clean(value: Any) -> Optional[Any]:
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return None if text.lower() in _PLACEHOLDERS else text
    return value


def _parse_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for response_key, attribute in EXTRACTED_VEHICLE_FIELDS.items():
        value = _clean(data.get(response_key))
        if value is None:
            continue
        if attribute == "year":
            try:
                value = int(value)
            except (TypeError, ValueError):
                continue
        elif attribute == "ownership_status":
            value = str(value).lower()
            if value not in OWNERSHIP_STATUSES:
                continue
        else:
            value = str(value)
        fields[attribute] = value
    return fields


class DocumentExtractor:
    """Reads a policy document and proposes vehicle fields for the intake form."""

    def __init__(self, gateway: VisionGateway):
        self.gateway = gateway

    async def extract(self, document: InlineDocument, document_url: Optional[str] = None) -> DocumentExtraction:
        """
        Raises:
            BedrockAPIError, MalformedResponseError, ValidationError
        """
        data = await self.gateway.invoke_json(STAGE, SYSTEM_PROMPT, USER_TEXT, document=document, max_tokens=1024)

        try:
            confidence = float(data.get("extraction_confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0

        extraction = DocumentExtraction(
            fields=_parse_fields(data),
            confidence=min(max(confidence, 0.0), 1.0),
            notes=str(_clean(data.get("notes")) or ""),
            policy_number=_clean(data.get("policy_number")),
            coverage_summary=_clean(data.get("coverage_summary")),
            document_url=document_url,
        )
        logger.info(
            f"Extracted {len(extraction.fields)} vehicle fields from {document.name} "
            f"(confidence={extraction.confidence:.2f})"
        )
        return extraction

    async def extract_or_empty(self, document: InlineDocument, document_url: Optional[str] = None) -> DocumentExtraction:
        """Like ``extract`` but never fails; the claimant can always type the details in."""
        try:
            return await self.extract(document, document_url)
        except ClaimsProcessingError as e:
            logger.warning(f"Policy document extraction failed for {document.name}: {e}")
            return DocumentExtraction.empty(
                notes=f"Automatic extraction failed: {e.context.message}. Please enter the vehicle details manually.",
                document_url=document_url,
            )
