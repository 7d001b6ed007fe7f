"""HTTP completion client for the OpenAI chat completions endpoint."""

import json
import logging
from collections.abc import Sequence
from copy import deepcopy
from time import perf_counter
from typing import Any, cast

import httpx
from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validate
from pydantic import ValidationError

from app.conversation.prompts import RECOMMENDATION_SCHEMA, RESPONSE_FORMAT
from app.models.recommendations import BookRecommendations, Message
from app.providers.base import (
    CompletionFailure,
    CompletionOutcome,
    CompletionSuccess,
    ParseError,
    TransportError,
    UpstreamError,
)

logger = logging.getLogger("bookmatch.completion")

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"


class OpenAICompletionClient:
    """Sends one structured-output chat completion per call. No retries."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com",
        model: str = "gpt-4o-mini",
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout_s
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    def build_body(self, messages: Sequence[Message]) -> dict[str, Any]:
        return {
            "model": self._model,
            "response_format": deepcopy(dict(RESPONSE_FORMAT)),
            "messages": [message.model_dump() for message in messages],
        }

    async def complete(self, messages: Sequence[Message]) -> CompletionOutcome:
        url = f"{self._base_url}{CHAT_COMPLETIONS_PATH}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            content = json.dumps(self.build_body(messages), ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            return CompletionFailure(TransportError(exc))

        started = perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(url, content=content, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(
                "completion_transport_failed",
                extra={
                    "model": self._model,
                    "outcome": type(exc).__name__,
                    "latency_ms": int((perf_counter() - started) * 1000),
                },
            )
            return CompletionFailure(TransportError(exc))

        latency_ms = int((perf_counter() - started) * 1000)
        logger.info(
            "completion_response",
            extra={
                "model": self._model,
                "status_code": resp.status_code,
                "latency_ms": latency_ms,
                "message_count": len(messages),
            },
        )

        if not 200 <= resp.status_code <= 299:
            return CompletionFailure(UpstreamError(resp.status_code, resp.text))

        try:
            return CompletionSuccess(self.parse_response(resp))
        except ParseError as exc:
            return CompletionFailure(exc)

    @staticmethod
    def parse_response(resp: httpx.Response) -> BookRecommendations:
        try:
            body = resp.json()
        except ValueError as exc:
            raise ParseError(f"Completion body is not JSON: {exc}") from exc

        message = _first_choice_message(body)
        refusal = message.get("refusal")
        if isinstance(refusal, str) and refusal:
            raise ParseError(f"Completion refused: {refusal}")

        content = message.get("content")
        if not isinstance(content, str):
            raise ParseError("Completion message has no content")

        try:
            structured = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Completion content is not JSON: {exc}") from exc

        try:
            validate(instance=structured, schema=RECOMMENDATION_SCHEMA)
        except SchemaValidationError as exc:
            raise ParseError(f"Completion content does not match schema: {exc.message}") from exc

        try:
            return BookRecommendations.model_validate(structured)
        except ValidationError as exc:
            raise ParseError(f"Completion content does not match schema: {exc}") from exc


def _first_choice_message(body: object) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise ParseError("Completion body must be an object")
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ParseError("Completion body has no choices")
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    if not isinstance(message, dict):
        raise ParseError("Completion choice has no message")
    return cast(dict[str, Any], message)
