"""AWS Bedrock client wrapper with retry logic and error handling."""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from dotenv import load_dotenv

from .errors import BedrockAPIError, ClaimsProcessingError, ConfigurationError, ErrorContext, ErrorType

load_dotenv()

logger = logging.getLogger(__name__)


class BedrockClient:
    """
    Wrapper for the Bedrock Runtime Converse API.

    Provides:
    - Bearer-token (Bedrock API key) or IAM (SigV4) authentication
    - Connect/read timeouts that surface as retryable timeout errors
    - Automatic retry with exponential backoff for throttling and 5xx codes

    A pre-built ``runtime`` may be injected; it only needs a ``converse(**params)``
    method, which is how tests substitute an in-process fake.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        model_id: str = "amazon.nova-pro-v1:0",
        timeout: int = 60,
        max_retries: int = 3,
        runtime: Any = None
    ):
        """
        Initialize Bedrock client.

        Args:
            region: AWS region for Bedrock service
            model_id: Converse model ID
            timeout: Connect and read timeout in seconds
            max_retries: Maximum number of attempts for retryable errors
            runtime: Optional pre-built bedrock-runtime client

        Raises:
            ConfigurationError: If no Bedrock API key and no AWS credentials are available
        """
        self.region = region
        self.model_id = model_id
        self.timeout = timeout
        self.max_retries = max(1, max_retries)

        if runtime is not None:
            self.runtime = runtime
            logger.info(f"BedrockClient using injected runtime: model={model_id}")
            return

        bearer_token = self._resolve_bearer_token()
        if bearer_token and not os.getenv("AWS_BEARER_TOKEN_BEDROCK"):
            # botocore picks the bearer token up from this variable
            os.environ["AWS_BEARER_TOKEN_BEDROCK"] = bearer_token

        if bearer_token:
            logger.info("BedrockClient configured to use Amazon Bedrock API key authentication")
        elif boto3.session.Session().get_credentials() is not None:
            logger.info("BedrockClient configured to use AWS IAM credentials (SigV4)")
        else:
            raise ConfigurationError.missing(
                "AWS_BEARER_TOKEN_BEDROCK",
                "Set a Bedrock API key (AWS_BEARER_TOKEN_BEDROCK or BEDROCK_API_KEY) or configure AWS credentials"
            )

        config_kwargs: Dict[str, Any] = {
            "region_name": region,
            "connect_timeout": timeout,
            "read_timeout": timeout,
            "retries": {"max_attempts": 0},  # retries are handled in converse()
        }
        if bearer_token:
            config_kwargs["signature_version"] = "bearer"

        self.runtime = boto3.client("bedrock-runtime", config=Config(**config_kwargs))

        logger.info(
            f"Initialized BedrockClient: region={region}, "
            f"model={model_id}, timeout={timeout}s, max_retries={self.max_retries}"
        )

    @staticmethod
    def _resolve_bearer_token() -> Optional[str]:
        token = os.getenv("AWS_BEARER_TOKEN_BEDROCK") or os.getenv("BEDROCK_API_KEY")
        return token.strip() if token and token.strip() else None

    async def converse(
        self,
        messages: List[Dict[str, Any]],
        system_prompts: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        operation: str = "converse"
    ) -> Dict[str, Any]:
        """
        Invoke the model via the Converse API with retry logic.

        Args:
            messages: List of message dicts with 'role' and 'content'
            system_prompts: Optional system prompts
            temperature: Sampling temperature (0.0 = deterministic)
            max_tokens: Maximum tokens to generate
            operation: Name of the calling stage, used in logs and errors

        Returns:
            Dict containing 'text', 'content', 'stop_reason' and 'usage'

        Raises:
            BedrockAPIError: On timeout, on a non-retryable error, or when retries run out
        """
        params: Dict[str, Any] = {
            "modelId": self.model_id,
            "messages": messages,
            "inferenceConfig": {
                "temperature": temperature,
                "maxTokens": max_tokens
            }
        }
        if system_prompts:
            params["system"] = system_prompts

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Invoking {self.model_id} for {operation} (attempt {attempt + 1}/{self.max_retries})")

                response = await asyncio.to_thread(self.runtime.converse, **params)

                logger.info(
                    f"{operation} invocation successful: "
                    f"stop_reason={response.get('stopReason')}, "
                    f"usage={response.get('usage')}"
                )
                return self._parse_converse_response(response)

            except (ReadTimeoutError, ConnectTimeoutError) as e:
                logger.warning(f"Bedrock call for {operation} timed out after {self.timeout}s")
                raise BedrockAPIError.timeout(operation, self.timeout, e)

            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")
                error_message = e.response.get("Error", {}).get("Message", str(e))
                retryable = self._is_retryable_error(error_code)

                logger.warning(
                    f"Bedrock API error (attempt {attempt + 1}/{self.max_retries}): "
                    f"code={error_code}, message={error_message}"
                )

                if retryable and attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt
                    logger.info(f"Retrying in {wait_time} seconds...")
                    await asyncio.sleep(wait_time)
                    continue

                logger.error(
                    f"Bedrock API call failed after {attempt + 1} attempts: "
                    f"{error_code} - {error_message}"
                )
                raise BedrockAPIError.from_client_error(
                    error=e,
                    operation=operation,
                    recoverable=retryable,
                    fallback_action="Retry the operation" if retryable else None
                )

            except EndpointConnectionError as e:
                logger.error(f"Could not reach Bedrock endpoint: {str(e)}")
                raise BedrockAPIError(ErrorContext(
                    error_type=ErrorType.BEDROCK_SERVICE_ERROR,
                    message=f"Could not reach Bedrock endpoint during {operation}: {str(e)}",
                    recoverable=True,
                    fallback_action="Retry the operation",
                    original_exception=e
                ))

            except ClaimsProcessingError:
                raise

            except Exception as e:
                logger.error(f"Unexpected error invoking {self.model_id} for {operation}: {str(e)}")
                raise BedrockAPIError(ErrorContext(
                    error_type=ErrorType.BEDROCK_SERVICE_ERROR,
                    message=f"Unexpected error invoking {self.model_id} during {operation}: {str(e)}",
                    recoverable=True,
                    fallback_action="Retry the operation",
                    original_exception=e
                ))

        raise BedrockAPIError(ErrorContext(
            error_type=ErrorType.BEDROCK_SERVICE_ERROR,
            message=f"Failed to invoke {self.model_id} after {self.max_retries} attempts",
            recoverable=True
        ))

    def _parse_converse_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten a Converse API response into text plus metadata."""
        message = response.get("output", {}).get("message", {})
        content = message.get("content", []) or []

        text_parts = [block["text"] for block in content if "text" in block]

        return {
            "content": content,
            "role": message.get("role", "assistant"),
            "stop_reason": response.get("stopReason", "unknown"),
            "usage": response.get("usage", {}),
            "text": "\n".join(text_parts),
        }

    def _is_retryable_error(self, error_code: str) -> bool:
        retryable_errors = {
            "ThrottlingException",
            "TooManyRequestsException",
            "ServiceUnavailableException",
            "InternalServerException",
            "ModelNotReadyException",
        }
        return error_code in retryable_errors
