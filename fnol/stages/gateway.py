"""LLM vision gateway: prompt + images (+ document) in, validated JSON object out."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..storage.object_storage import ObjectStorage
from ..utils.bedrock_client import BedrockClient
from ..utils.errors import StorageError, ValidationError
from ..utils.response_formatter import ResponseFormatter
from .media import detect_image_format, is_pdf

logger = logging.getLogger(__name__)


@dataclass
class InlineDocument:
    """A document sent alongside the prompt (policy PDF or photo of a policy card)."""
    name: str
    content: bytes


class VisionGateway:
    """
    Sends one multimodal request per stage call and parses the JSON reply.

    Bedrock Converse only takes inline image bytes, so image URLs are
    resolved first: URLs served by our object storage are read directly,
    anything else is fetched over HTTP.
    """

    def __init__(
        self,
        bedrock: BedrockClient,
        storage: Optional[ObjectStorage] = None,
        fetch_timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.bedrock = bedrock
        self.storage = storage
        self.fetch_timeout = fetch_timeout
        self._http_client = http_client

    async def fetch_image(self, url: str) -> bytes:
        if self.storage is not None and self.storage.owns(url):
            return self.storage.read(url)

        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, timeout=self.fetch_timeout)
            else:
                async with httpx.AsyncClient(timeout=self.fetch_timeout, follow_redirects=True) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch image {url}: {str(e)}")
            raise StorageError.fetch_failed(url, e) from e
        return response.content

    async def _image_blocks(self, image_urls: Sequence[str]) -> List[Dict[str, Any]]:
        blocks = []
        for url in image_urls:
            content = await self.fetch_image(url)
            image_format = detect_image_format(content)
            if image_format is None:
                raise ValidationError.invalid_input(f"Stored file is not a supported image: {url}", field="photos")
            blocks.append({"image": {"format": image_format, "source": {"bytes": content}}})
        return blocks

    @staticmethod
    def _document_block(document: InlineDocument) -> Dict[str, Any]:
        image_format = detect_image_format(document.content)
        if image_format:
            return {"image": {"format": image_format, "source": {"bytes": document.content}}}
        if is_pdf(document.content):
            # Converse document names allow only alphanumerics, spaces, hyphens, parentheses and brackets
            name = "".join(ch if ch.isalnum() or ch in " -()[]" else "-" for ch in document.name)[:100] or "document"
            return {"document": {"format": "pdf", "name": name, "source": {"bytes": document.content}}}
        raise ValidationError.invalid_input(
            "Policy document must be a PDF or an image (JPEG, PNG, GIF, WEBP)", field="document"
        )

    async def invoke_json(
        self,
        stage: str,
        system_prompt: str,
        user_text: str,
        image_urls: Sequence[str] = (),
        document: Optional[InlineDocument] = None,
        required_fields: Optional[List[str]] = None,
        max_tokens: int = 4096
    ) -> Dict[str, Any]:
        """
        Run one model call and return the parsed JSON object.

        Raises:
            BedrockAPIError: Upstream failure or timeout
            MalformedResponseError: No JSON object or missing required keys
            StorageError: An image could not be loaded
        """
        start = time.time()
        content: List[Dict[str, Any]] = [{"text": user_text}]
        content.extend(await self._image_blocks(image_urls))
        if document is not None:
            content.append(self._document_block(document))

        logger.info(f"Calling model for {stage}: images={len(image_urls)}, document={document is not None}")
        logger.debug(f"{stage} prompt: {user_text[:500]}")

        response = await self.bedrock.converse(
            messages=[{"role": "user", "content": content}],
            system_prompts=[{"text": system_prompt}],
            temperature=0.0,
            max_tokens=max_tokens,
            operation=stage
        )

        text = response.get("text", "")
        logger.debug(f"{stage} raw response: {text[:500]}")
        data = ResponseFormatter.parse_model_json(text, stage, required_fields)

        logger.info(f"{stage} completed in {time.time() - start:.2f}s")
        return data
