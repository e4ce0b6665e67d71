"""Async generation engine built around OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence

import httpx
from openai import (
    APIConnectionError,
    APIError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
)
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .ai_types import (
    Availability,
    AvailabilityStatus,
    EngineGenerationError,
    GenerationErrorKind,
    GenerationOptions,
    SamplingMode,
    StructuredContent,
)
from .schema import SchemaNode
from .tools.errors import ToolError
from .tools.registry import ToolDefinition

LOGGER = logging.getLogger(__name__)

_CONTEXT_WINDOW_CODES = frozenset({"context_length_exceeded", "string_above_max_length"})


@dataclass(slots=True)
class ClientSettings:
    """Endpoint, retry and tool-loop knobs for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    max_tool_iterations: int = 8
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """Generation engine backed by an OpenAI-compatible chat endpoint."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._served_models: tuple[str, ...] | None = None
        self._probe_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Model ids served by the endpoint, fetched once unless refreshed."""

        async with self._probe_lock:
            if self._served_models is None or force_refresh:
                listing = await self._client.models.list()
                self._served_models = tuple(
                    model_id for model_id in (getattr(item, "id", None) for item in listing.data) if model_id
                )
        return list(self._served_models)

    async def availability(self) -> Availability:
        """Probe the endpoint and report whether the configured model is usable."""

        try:
            models = await self.list_models(force_refresh=True)
        except (AuthenticationError, PermissionDeniedError) as exc:
            LOGGER.debug("Engine rejected credentials: %s", exc)
            return Availability(AvailabilityStatus.NOT_ENABLED, str(exc))
        except (APIError, httpx.HTTPError) as exc:
            LOGGER.debug("Engine availability probe failed: %s", exc)
            return Availability.unavailable(str(exc))

        # Some compatible servers do not enumerate models at all.
        if not models or self._settings.model in models:
            return Availability.available()
        return Availability(
            AvailabilityStatus.MODEL_NOT_READY,
            f"Model {self._settings.model} is not served by {self._settings.base_url}",
        )

    def start_session(self, tools: Sequence[ToolDefinition], instructions: str) -> "ChatSession":
        return ChatSession(self, tools, instructions)

    async def complete(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[ToolDefinition] | None = None,
        response_format: Mapping[str, Any] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Any:
        """Run one chat completion, mapping endpoint failures onto engine errors."""

        payload = self._build_chat_payload(
            messages=messages,
            tools=tools,
            response_format=response_format,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        LOGGER.debug(
            "Starting chat completion via %s with %s message(s)",
            self._settings.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            async for attempt in self._retrying():
                with attempt:
                    completion = await self._client.chat.completions.create(**payload)
        except RateLimitError as exc:
            raise EngineGenerationError(
                GenerationErrorKind.RATE_LIMITED,
                "The endpoint is rate limiting requests",
                failure_reason=str(exc),
                recovery_suggestion="Wait before sending another request",
            ) from exc
        except BadRequestError as exc:
            raise _bad_request_error(exc) from exc
        except NotFoundError as exc:
            raise EngineGenerationError(
                GenerationErrorKind.ASSETS_UNAVAILABLE,
                f"Model {self._settings.model} is unavailable",
                failure_reason=str(exc),
                recovery_suggestion="Check the configured model name",
            ) from exc
        except (APIError, httpx.HTTPError) as exc:
            raise EngineGenerationError(GenerationErrorKind.UNKNOWN, str(exc)) from exc
        return completion

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIConnectionError,
                    httpx.TimeoutException,
                )
            ),
        )

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[Mapping[str, Any]],
        tools: Sequence[ToolDefinition] | None,
        response_format: Mapping[str, Any] | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> Dict[str, Any]:
        if not messages:
            raise ValueError("A chat completion needs at least one message")
        optional: Dict[str, Any] = {
            "metadata": dict(self._settings.metadata) if self._settings.metadata else None,
            "tools": [tool.to_openai_tool() for tool in tools] if tools else None,
            "response_format": dict(response_format) if response_format is not None else None,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": [dict(message) for message in messages],
        }
        payload.update((key, value) for key, value in optional.items() if value is not None)
        return payload

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        LOGGER.debug("Chat payload:\n%s", json.dumps(payload, ensure_ascii=False, indent=2, default=repr))

    async def aclose(self) -> None:
        """Release the HTTP connections held by the OpenAI client."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        outcome = close()
        if inspect.isawaitable(outcome):
            await outcome


class ChatSession:
    """Conversation with a fixed tool set and system instructions.

    Tool calls requested by the model are forwarded to
    :meth:`ToolDefinition.call`; tool failures are reported back to the
    model as the tool's output rather than aborting the turn.
    """

    def __init__(self, client: AIClient, tools: Sequence[ToolDefinition], instructions: str) -> None:
        self._client = client
        self._tools = tuple(tools)
        self._tools_by_name = {tool.name: tool for tool in self._tools}
        self._transcript: List[Dict[str, Any]] = [{"role": "system", "content": instructions}]

    @property
    def tools(self) -> tuple[ToolDefinition, ...]:
        return self._tools

    @property
    def transcript(self) -> List[Dict[str, Any]]:
        return [dict(message) for message in self._transcript]

    async def respond(
        self,
        prompt: str,
        *,
        schema: SchemaNode | None = None,
        options: GenerationOptions | None = None,
    ) -> StructuredContent:
        options = options or GenerationOptions()
        messages = list(self._transcript)
        messages.append({"role": "user", "content": prompt})
        response_format = _response_format(schema) if schema is not None else None
        temperature = options.temperature
        if temperature is None and options.sampling is SamplingMode.GREEDY:
            temperature = 0.0

        limit = max(1, self._client.settings.max_tool_iterations)
        for _ in range(limit):
            completion = await self._client.complete(
                messages,
                tools=self._tools,
                response_format=response_format,
                temperature=temperature,
                max_tokens=options.max_tokens,
            )
            choice = completion.choices[0]
            message = choice.message
            if getattr(choice, "finish_reason", None) == "content_filter" or getattr(message, "refusal", None):
                raise EngineGenerationError(
                    GenerationErrorKind.GUARDRAIL_VIOLATION,
                    "The response was blocked by a content guardrail",
                    failure_reason=getattr(message, "refusal", None) or "content_filter",
                    recovery_suggestion="Rephrase the prompt",
                )

            tool_calls = list(getattr(message, "tool_calls", None) or [])
            if tool_calls:
                messages.append(_assistant_tool_message(message, tool_calls))
                for call in tool_calls:
                    output = await self._run_tool(call)
                    messages.append({"role": "tool", "tool_call_id": call.id, "content": output})
                continue

            text = message.content or ""
            messages.append({"role": "assistant", "content": text})
            self._transcript = messages
            if schema is None:
                return StructuredContent(text)
            try:
                return StructuredContent(json.loads(text), json_string=text)
            except ValueError as exc:
                raise EngineGenerationError(
                    GenerationErrorKind.DECODING_FAILURE,
                    "The response did not match the requested schema",
                    failure_reason=str(exc),
                    recovery_suggestion="Simplify the schema or retry the request",
                ) from exc

        raise EngineGenerationError(
            GenerationErrorKind.UNKNOWN,
            f"Exceeded {limit} tool iteration(s) without a final answer",
        )

    async def _run_tool(self, call: Any) -> str:
        name = call.function.name
        tool = self._tools_by_name.get(name)
        if tool is None:
            LOGGER.warning("Model requested unknown tool %s", name)
            return json.dumps({"error": "tool_not_found", "message": f"Tool '{name}' not found"})
        arguments = StructuredContent.from_json(call.function.arguments or "{}")
        try:
            return await tool.call(arguments)
        except ToolError as exc:
            LOGGER.warning("Tool %s failed: %s", name, exc)
            return json.dumps(exc.to_dict())


def _assistant_tool_message(message: Any, tool_calls: Sequence[Any]) -> Dict[str, Any]:
    return {
        "role": "assistant",
        "content": message.content,
        "tool_calls": [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.function.name, "arguments": call.function.arguments},
            }
            for call in tool_calls
        ],
    }


def _response_format(schema: SchemaNode) -> Dict[str, Any]:
    return {
        "type": "json_schema",
        "json_schema": {
            "name": getattr(schema, "name", None) or "Root",
            "schema": schema.to_json_schema(),
            "strict": True,
        },
    }


def _bad_request_error(exc: BadRequestError) -> EngineGenerationError:
    code = getattr(exc, "code", None)
    if code in _CONTEXT_WINDOW_CODES:
        return EngineGenerationError(
            GenerationErrorKind.EXCEEDED_CONTEXT_WINDOW,
            "The conversation exceeds the model's context window",
            failure_reason=str(exc),
            recovery_suggestion="Reset the session or shorten the prompt",
        )
    param = str(getattr(exc, "param", "") or "")
    if param.startswith("response_format"):
        return EngineGenerationError(
            GenerationErrorKind.UNSUPPORTED_GUIDE,
            "The endpoint rejected the requested output schema",
            failure_reason=str(exc),
            recovery_suggestion="Simplify the structure description",
        )
    return EngineGenerationError(GenerationErrorKind.UNKNOWN, str(exc))
