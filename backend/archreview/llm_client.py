from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
import time
from typing import Any, Protocol, Sequence, TypedDict

import httpx

from archreview.config import Settings

logger = logging.getLogger("archreview.llm")


class HealthErrorCode(str, Enum):
    INSUFFICIENT_QUOTA = "INSUFFICIENT_QUOTA"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    SERVER_ERROR = "SERVER_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    CONFIG_ERROR = "CONFIG_ERROR"
    NO_API_ENDPOINT = "NO_API_ENDPOINT"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    API_ERROR = "API_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class LLMInvocationError(RuntimeError):
    """Raised when a model call fails. Carries the HTTP status and a reason code when known."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        reason: HealthErrorCode | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason


class LLMMessage(TypedDict):
    role: str
    content: str


@dataclass
class LLMResponse:
    content: str
    model: str = ""


class LLMClient(Protocol):
    async def invoke(
        self,
        messages: Sequence[LLMMessage],
        *,
        model: str,
        temperature: float = 0.7,
        thinking: str | None = None,
    ) -> LLMResponse: ...


def error_code_for_status(status_code: int) -> HealthErrorCode:
    if status_code in (401, 403):
        return HealthErrorCode.AUTH_ERROR
    if status_code == 404:
        return HealthErrorCode.MODEL_NOT_FOUND
    if status_code == 429:
        return HealthErrorCode.RATE_LIMIT
    if status_code >= 500:
        return HealthErrorCode.SERVER_ERROR
    return HealthErrorCode.API_ERROR


def custom_endpoint_error_code(status_code: int) -> HealthErrorCode:
    """Status mapping for caller-configured endpoints, where only 401 counts as an auth failure."""
    if status_code == 401:
        return HealthErrorCode.AUTH_ERROR
    if status_code == 404:
        return HealthErrorCode.MODEL_NOT_FOUND
    if status_code == 429:
        return HealthErrorCode.RATE_LIMIT
    if status_code >= 500:
        return HealthErrorCode.SERVER_ERROR
    return HealthErrorCode.API_ERROR


def _error_from_transport(exc: httpx.HTTPError, target: str) -> LLMInvocationError:
    if isinstance(exc, httpx.TimeoutException):
        return LLMInvocationError(f"Request to {target} timed out: {exc}", reason=HealthErrorCode.TIMEOUT_ERROR)
    if isinstance(exc, httpx.NetworkError):
        return LLMInvocationError(f"Connection to {target} failed: {exc}", reason=HealthErrorCode.NETWORK_ERROR)
    return LLMInvocationError(f"Request to {target} failed: {exc}")


def _error_from_response(response: httpx.Response, target: str) -> LLMInvocationError:
    body = response.text[:500]
    reason = error_code_for_status(response.status_code)
    lowered = body.lower()
    if "insufficient_quota" in lowered or ("quota" in lowered and response.status_code in (402, 429)):
        reason = HealthErrorCode.INSUFFICIENT_QUOTA
    return LLMInvocationError(
        f"{target} returned HTTP {response.status_code}: {body}",
        status_code=response.status_code,
        reason=reason,
    )


def extract_chat_content(payload: Any) -> str:
    """Pull the assistant text out of a chat-completions style payload."""
    if not isinstance(payload, dict):
        raise LLMInvocationError("Chat response must be a JSON object.", reason=HealthErrorCode.INVALID_RESPONSE)
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]
    content = payload.get("content")
    if isinstance(content, str):
        return content
    raise LLMInvocationError("Chat response did not include message content.", reason=HealthErrorCode.INVALID_RESPONSE)


class OpenAICompatibleLLMClient:
    """Chat-completions client for the provider gateway that serves the built-in models."""

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    async def invoke(
        self,
        messages: Sequence[LLMMessage],
        *,
        model: str,
        temperature: float = 0.7,
        thinking: str | None = None,
    ) -> LLMResponse:
        if not self._settings.llm_api_key:
            raise LLMInvocationError("LLM API key is not configured.", reason=HealthErrorCode.CONFIG_ERROR)
        base_url = self._settings.llm_base_url.rstrip("/")
        if not base_url:
            raise LLMInvocationError("LLM base URL is not configured.", reason=HealthErrorCode.CONFIG_ERROR)

        payload: dict[str, Any] = {
            "model": model,
            "messages": list(messages),
            "temperature": temperature,
        }
        if thinking:
            payload["thinking"] = {"type": thinking}

        started = time.perf_counter()
        target = f"model '{model}'"
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=None) as client:
                response = await client.post(
                    f"{base_url}/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self._settings.llm_api_key}"},
                )
        except httpx.HTTPError as exc:
            raise _error_from_transport(exc, target) from exc

        if response.status_code >= 400:
            raise _error_from_response(response, target)
        try:
            body = response.json()
        except ValueError as exc:
            raise LLMInvocationError(
                f"{target} returned a non-JSON body.", reason=HealthErrorCode.INVALID_RESPONSE
            ) from exc

        content = extract_chat_content(body)
        logger.info(
            "llm_invoke_completed",
            extra={
                "event": "llm_invoke_completed",
                "model": model,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "response_chars": len(content),
            },
        )
        return LLMResponse(content=content, model=model)


class BedrockLLMClient:
    """Bedrock ``converse`` backend; the boto3 call runs on a worker thread."""

    _REASONS_BY_AWS_CODE = {
        "ThrottlingException": HealthErrorCode.RATE_LIMIT,
        "AccessDeniedException": HealthErrorCode.AUTH_ERROR,
        "UnrecognizedClientException": HealthErrorCode.AUTH_ERROR,
        "ResourceNotFoundException": HealthErrorCode.MODEL_NOT_FOUND,
        "ServiceUnavailableException": HealthErrorCode.SERVER_ERROR,
        "InternalServerException": HealthErrorCode.SERVER_ERROR,
        "ModelTimeoutException": HealthErrorCode.TIMEOUT_ERROR,
        "ServiceQuotaExceededException": HealthErrorCode.INSUFFICIENT_QUOTA,
    }

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client or self._create_bedrock_client()

    def _create_bedrock_client(self) -> Any:
        try:
            import boto3  # type: ignore
        except ImportError as exc:
            raise LLMInvocationError(
                "boto3 is required for the Bedrock backend.", reason=HealthErrorCode.CONFIG_ERROR
            ) from exc

        return boto3.client("bedrock-runtime", region_name=self._settings.aws_region)

    async def invoke(
        self,
        messages: Sequence[LLMMessage],
        *,
        model: str,
        temperature: float = 0.7,
        thinking: str | None = None,
    ) -> LLMResponse:
        system = [{"text": message["content"]} for message in messages if message["role"] == "system"]
        turns = [
            {"role": message["role"], "content": [{"text": message["content"]}]}
            for message in messages
            if message["role"] != "system"
        ]
        request: dict[str, Any] = {
            "modelId": model,
            "messages": turns,
            "inferenceConfig": {"temperature": temperature},
        }
        if system:
            request["system"] = system

        try:
            response = await asyncio.to_thread(self._client.converse, **request)
        except Exception as exc:
            raise self._wrap_error(exc, model) from exc
        return LLMResponse(content=self._extract_text(response), model=model)

    def _wrap_error(self, exc: Exception, model: str) -> LLMInvocationError:
        error_info = getattr(exc, "response", None) or {}
        aws_code = str(error_info.get("Error", {}).get("Code", ""))
        status_code = error_info.get("ResponseMetadata", {}).get("HTTPStatusCode")
        reason = self._REASONS_BY_AWS_CODE.get(aws_code)
        if reason is None and "model identifier is invalid" in str(exc).lower():
            reason = HealthErrorCode.MODEL_NOT_FOUND
        if reason is None and isinstance(status_code, int):
            reason = error_code_for_status(status_code)
        return LLMInvocationError(
            f"Bedrock invocation failed for model '{model}': {exc}",
            status_code=status_code if isinstance(status_code, int) else None,
            reason=reason,
        )

    @staticmethod
    def _extract_text(response: Any) -> str:
        outputs = response.get("output", {}).get("message", {}).get("content", [])
        parts = [item["text"] for item in outputs if isinstance(item.get("text"), str) and item["text"].strip()]
        if not parts:
            raise LLMInvocationError(
                "Bedrock response did not include textual output.", reason=HealthErrorCode.INVALID_RESPONSE
            )
        return "\n".join(parts).strip()


class CustomEndpointClient:
    """Raw chat POST to a caller-configured endpoint (custom models)."""

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def chat(
        self,
        *,
        endpoint: str,
        model: str,
        messages: Sequence[LLMMessage],
        max_tokens: int,
        api_key: str | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        if api_version:
            headers["API-Version"] = api_version

        target = f"endpoint '{endpoint}'"
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await client.post(
                    endpoint,
                    json={"model": model, "messages": list(messages), "max_tokens": max_tokens},
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise _error_from_transport(exc, target) from exc

        if not response.is_success:
            raise _error_from_response(response, target)
        try:
            payload = response.json()
        except ValueError as exc:
            raise LLMInvocationError(
                f"{target} returned a non-JSON body.",
                status_code=response.status_code,
                reason=HealthErrorCode.INVALID_RESPONSE,
            ) from exc
        if not isinstance(payload, dict):
            raise LLMInvocationError(
                f"{target} returned JSON that is not an object.",
                status_code=response.status_code,
                reason=HealthErrorCode.INVALID_RESPONSE,
            )
        return payload


def build_llm_client(settings: Settings) -> LLMClient:
    backend = (settings.llm_backend or "").strip().lower()
    if backend == "bedrock":
        return BedrockLLMClient(settings)
    if backend in {"", "openai"}:
        return OpenAICompatibleLLMClient(settings)
    raise ValueError(f"Unsupported LLM backend: {settings.llm_backend!r}")
