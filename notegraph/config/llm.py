"""
Centralized LLM task-to-model routing and the gateway-backed AI client.

Requests go to an OpenAI-compatible chat completions endpoint
(``LLM_GATEWAY_URL``). Provider failures are mapped onto the typed errors in
``notegraph.errors`` so callers can tell retryable failures from the rest.
"""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

import httpx
from dotenv import load_dotenv

from ..errors import (
    AIError,
    APIError,
    AuthenticationError,
    BadRequestError,
    ModelNotFoundError,
    NetworkError,
    RateLimitError,
    ResponseValidationError,
)

load_dotenv()

logger = logging.getLogger(__name__)

# Single source of truth for model selection per task
TASK_MODEL_MAP: Dict[str, str] = {
    "generateSuggestions": "openai/gpt-4o-mini",
}
DEFAULT_MODEL = "openai/gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 60.0

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def get_model_for_task(task_name: str) -> str:
    # Per-task override via env: LLM_MODEL_<TASK_NAME>, e.g. LLM_MODEL_generateSuggestions
    normalized = re.sub(r"[^A-Za-z0-9]+", "_", task_name).upper()
    return (
        os.getenv(f"LLM_MODEL_{task_name}")
        or os.getenv(f"LLM_MODEL_{normalized}")
        or TASK_MODEL_MAP.get(task_name, DEFAULT_MODEL)
    )


def get_timeout_seconds() -> float:
    raw = os.getenv("LLM_TIMEOUT_SECONDS")
    try:
        return float(raw) if raw else DEFAULT_TIMEOUT_SECONDS
    except ValueError:
        logger.warning("Ignoring invalid LLM_TIMEOUT_SECONDS=%r", raw)
        return DEFAULT_TIMEOUT_SECONDS


def parse_json_content(text: str) -> Any:
    """Parses a model reply as JSON, tolerating surrounding code fences."""
    candidates = [text, _FENCE_RE.sub("", text.strip())]
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except (TypeError, ValueError):
            continue
    raise ResponseValidationError("AI response is not valid JSON")


def error_for_status(status_code: int, body: str) -> AIError:
    message = f"AI provider returned HTTP {status_code}"
    details = {"status": status_code, "body": body[:500]} if body else {"status": status_code}
    if status_code in (401, 403):
        return AuthenticationError(message, details)
    if status_code == 404:
        return ModelNotFoundError(message, details)
    if status_code == 429:
        return RateLimitError(message, details)
    if status_code in (400, 422):
        return BadRequestError(message, details)
    return APIError(message, details)


class GatewayAIClient:
    """Structured-output client for an OpenAI-compatible gateway."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        task_name: str = "generateSuggestions",
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        base_url = (base_url if base_url is not None else os.getenv("LLM_GATEWAY_URL", "")).rstrip("/")
        # Allow the base URL with or without '/v1'
        if base_url.endswith("/v1"):
            base_url = base_url[:-3]
        self.base_url = base_url
        self.token = token if token is not None else os.getenv("LLM_GATEWAY_TOKEN")
        self.task_name = task_name
        self.timeout = timeout if timeout is not None else get_timeout_seconds()
        self._transport = transport

    @property
    def model_name(self) -> str:
        return get_model_for_task(self.task_name)

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if not self.base_url or not self.token:
            raise AIError("AI gateway is not configured")
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.post(f"{self.base_url}/v1/chat/completions", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"AI request timed out after {self.timeout:g}s") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"AI provider unreachable: {exc.__class__.__name__}") from exc

    async def get_structured_response(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        schema: Dict[str, Any],
        temperature: Optional[float] = None,
    ) -> Any:
        """Returns the model's reply parsed as JSON. Schema conformance is checked by the caller."""
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        payload: Dict[str, Any] = {
            "model": self.model_name,
            "messages": messages,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "structured_response", "schema": schema},
            },
        }
        if temperature is not None:
            payload["temperature"] = temperature

        resp = await self._post(payload)
        if resp.status_code >= 400:
            raise error_for_status(resp.status_code, resp.text)

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ResponseValidationError("AI response has no message content") from exc
        if not isinstance(content, str):
            raise ResponseValidationError("AI response has no message content")
        return parse_json_content(content)
