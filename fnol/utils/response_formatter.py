"""JSON extraction and boundary checks for model responses."""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from .errors import MalformedResponseError

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)


class ResponseFormatter:
    """
    Utility class for extracting JSON objects from model text.

    Models are asked for a bare JSON object but regularly wrap it in a
    markdown fence or surround it with prose, so extraction tries, in order:
    1. Raw JSON (entire response)
    2. Markdown code blocks (```json ... ```)
    3. The first decodable JSON object embedded in text
    """

    @staticmethod
    def extract_json_from_response(response_text: str) -> Optional[Dict[str, Any]]:
        """
        Extract a JSON object from a model response.

        Args:
            response_text: Raw response text that may contain JSON

        Returns:
            Parsed JSON dictionary, or None if no JSON object was found
        """
        if not response_text or not response_text.strip():
            logger.warning("Empty response text provided")
            return None

        text = response_text.strip()

        for extractor in (
            ResponseFormatter._extract_raw_json,
            ResponseFormatter._extract_markdown_json,
            ResponseFormatter._extract_embedded_json,
        ):
            data = extractor(text)
            if isinstance(data, dict):
                logger.debug(f"Extracted JSON via {extractor.__name__}")
                return data

        logger.warning(f"Failed to extract JSON from response: {text[:200]}...")
        return None

    @staticmethod
    def _extract_raw_json(text: str) -> Optional[Any]:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return None

    @staticmethod
    def _extract_markdown_json(text: str) -> Optional[Any]:
        for match in _FENCE_PATTERN.finditer(text):
            try:
                return json.loads(match.group(1).strip())
            except json.JSONDecodeError:
                continue
        return None

    @staticmethod
    def _extract_embedded_json(text: str) -> Optional[Any]:
        """Decode from each '{' until one yields a complete object."""
        decoder = json.JSONDecoder()
        start = text.find("{")
        while start != -1:
            try:
                obj, _ = decoder.raw_decode(text, start)
                if isinstance(obj, dict):
                    return obj
            except json.JSONDecodeError:
                pass
            start = text.find("{", start + 1)
        return None

    @staticmethod
    def missing_fields(data: Dict[str, Any], required_fields: List[str]) -> List[str]:
        return [name for name in required_fields if data.get(name) is None]

    @staticmethod
    def parse_model_json(
        response_text: str,
        stage: str,
        required_fields: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        Extract a JSON object and check its required top-level keys.

        Args:
            response_text: Model output text
            stage: Stage name, reported in the error
            required_fields: Keys that must be present and non-null

        Returns:
            Parsed JSON dictionary

        Raises:
            MalformedResponseError: If no JSON object is found or keys are missing
        """
        data = ResponseFormatter.extract_json_from_response(response_text)
        if data is None:
            raise MalformedResponseError.for_stage(stage, "no JSON object in response", preview=response_text)

        missing = ResponseFormatter.missing_fields(data, required_fields or [])
        if missing:
            logger.warning(f"{stage} response missing required fields: {missing}")
            raise MalformedResponseError.for_stage(
                stage,
                f"missing required fields {missing}",
                missing_fields=missing,
                preview=response_text
            )

        return data
