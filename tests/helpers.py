"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Awaitable, Callable, Iterable, Sequence

from toolbridge.ai.ai_types import Availability, GenerationOptions, StructuredContent

Responder = Callable[["FakeEngineSession", str, Any, GenerationOptions | None], Awaitable[Any]]


class FakeEngineSession:
    """Engine session stub that records calls and returns scripted content.

    When ``responder`` is given it is awaited for every call and its return
    value is wrapped in :class:`StructuredContent` unless it already is one.
    """

    def __init__(
        self,
        tools: Sequence[Any],
        instructions: str,
        *,
        reply: Any = "ok",
        responder: Responder | None = None,
        error: Exception | None = None,
    ) -> None:
        self.tools = list(tools)
        self.instructions = instructions
        self.reply = reply
        self.responder = responder
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def tool(self, name: str) -> Any:
        return next(tool for tool in self.tools if tool.name == name)

    async def respond(
        self,
        prompt: str,
        *,
        schema: Any = None,
        options: GenerationOptions | None = None,
    ) -> StructuredContent:
        self.calls.append({"prompt": prompt, "schema": schema, "options": options})
        if self.error is not None:
            raise self.error
        value = self.reply
        if self.responder is not None:
            value = await self.responder(self, prompt, schema, options)
        if isinstance(value, StructuredContent):
            return value
        return StructuredContent(value)


class FakeEngine:
    """Language engine stub with a configurable availability."""

    def __init__(
        self,
        *,
        availability: Availability | None = None,
        reply: Any = "ok",
        responder: Responder | None = None,
        error: Exception | None = None,
    ) -> None:
        self.availability_result = availability or Availability.available()
        self.reply = reply
        self.responder = responder
        self.error = error
        self.sessions: list[FakeEngineSession] = []
        self.closed = False

    @property
    def last_session(self) -> FakeEngineSession:
        return self.sessions[-1]

    async def availability(self) -> Availability:
        return self.availability_result

    def start_session(self, tools: Sequence[Any], instructions: str) -> FakeEngineSession:
        session = FakeEngineSession(
            tools,
            instructions,
            reply=self.reply,
            responder=self.responder,
            error=self.error,
        )
        self.sessions.append(session)
        return session

    async def aclose(self) -> None:
        self.closed = True


# -----------------------------------------------------------------------------
# OpenAI client fakes
# -----------------------------------------------------------------------------


def make_completion(
    content: str | None = None,
    *,
    tool_calls: Iterable[Any] | None = None,
    finish_reason: str = "stop",
    refusal: str | None = None,
) -> SimpleNamespace:
    message = SimpleNamespace(
        content=content,
        tool_calls=list(tool_calls) if tool_calls is not None else None,
        refusal=refusal,
    )
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason=finish_reason)])


def make_tool_call(call_id: str, name: str, arguments: str) -> SimpleNamespace:
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class FakeCompletions:
    """Replays scripted completions; exceptions in the script are raised."""

    def __init__(self, responses: Iterable[Any]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if not self._responses:
            raise AssertionError("No scripted completion left")
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, BaseException):
            raise response
        return response


class FakeModels:
    def __init__(self, model_ids: Iterable[str] = (), *, error: Exception | None = None) -> None:
        self._payload = [SimpleNamespace(id=model_id) for model_id in model_ids]
        self._error = error
        self.calls = 0

    async def list(self) -> SimpleNamespace:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return SimpleNamespace(data=self._payload)


def make_openai_client(
    responses: Iterable[Any] = (),
    *,
    model_ids: Iterable[str] = ("test-model",),
    models_error: Exception | None = None,
) -> SimpleNamespace:
    completions = FakeCompletions(responses)
    models = FakeModels(model_ids, error=models_error)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions), models=models)
