"""Streaming assistant session over the dashboard data."""

from __future__ import annotations

import asyncio
import dataclasses
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Protocol, Sequence

import logfire
from pydantic_ai import Agent
from pydantic_ai.models import Model

from .config import DEFAULT_MODEL
from .errors import BusyError, SessionClosed
from .models import ChatMessage, Snapshot
from .utils import to_model_messages

FALLBACK_TEXT = "Unable to generate insights at this time. Please check API configuration."

INSIGHTS_PROMPT = (
    "Provide a concise 3-bullet executive summary with trends and one key observation. "
    "Keep it professional and analytical."
)


class StreamTransport(Protocol):
    """Streaming connection to the assistant, bound to one system prompt."""

    def stream(self, history: Sequence[ChatMessage], text: str) -> AsyncGenerator[str, None]: ...

    async def aclose(self) -> None: ...


TransportFactory = Callable[[str], StreamTransport]


class AgentTransport:
    """StreamTransport backed by a pydantic_ai agent."""

    def __init__(self, system_prompt: str, model: Model | str = DEFAULT_MODEL):
        self.system_prompt = system_prompt
        self.agent = Agent(model)

    async def stream(self, history: Sequence[ChatMessage], text: str) -> AsyncGenerator[str, None]:
        messages = to_model_messages(history, self.system_prompt)
        async with self.agent.run_stream(text, message_history=messages) as result:
            async for delta in result.stream_text(delta=True, debounce_by=None):
                yield delta

    async def aclose(self) -> None:
        pass


def build_system_prompt(snapshot: Snapshot | None) -> str:
    """Describe the data the assistant may talk about, as of ``snapshot``."""
    if snapshot is None:
        return (
            "You are an analyst assistant for a global health dashboard. "
            "No data has been loaded yet, so say so if asked about figures."
        )

    stats = snapshot.global_stats
    leaders = sorted(snapshot.countries, key=lambda c: c.cases, reverse=True)[:5]
    leader_lines = "\n".join(f"        {c.name}: {c.cases} cases, {c.deaths} deaths" for c in leaders)
    return f"""You are an analyst assistant for a global health dashboard.
    Analyze the following global health data (updated {stats.updated_at.isoformat()}):
        Total Cases: {stats.cases}
        Active: {stats.active}
        Recovered: {stats.recovered}
        Deaths: {stats.deaths}
        Total Population: {stats.population}
    Countries with the most cases:
{leader_lines}
    Answer questions about these figures. Be concise, professional and analytical."""


@dataclass
class _Exchange:
    on_update: Callable[[ChatMessage], object] | None = None
    abandoned: bool = False
    task: asyncio.Task | None = None


class ChatSession:
    """Ordered conversation log with at most one streaming exchange at a time.

    The system prompt is built from the snapshot current when the transport is
    first created and is not refreshed per message.
    """

    def __init__(
        self,
        snapshot_provider: Callable[[], Snapshot | None],
        transport_factory: TransportFactory,
        timeout: float = 60.0,
    ):
        self.snapshot_provider = snapshot_provider
        self.transport_factory = transport_factory
        self.timeout = timeout
        self.system_prompt: str | None = None
        self._messages: list[ChatMessage] = []
        self._transport: StreamTransport | None = None
        self._exchange: _Exchange | None = None
        self._closed = False

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def busy(self) -> bool:
        return bool(self._messages) and self._messages[-1].streaming

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure_session(self) -> StreamTransport:
        if self._closed:
            raise SessionClosed("chat session is closed")
        if self._transport is None:
            self.system_prompt = build_system_prompt(self.snapshot_provider())
            self._transport = self.transport_factory(self.system_prompt)
            logfire.info("Chat transport created")
        return self._transport

    def start_exchange(
        self, text: str, on_update: Callable[[ChatMessage], object] | None = None
    ) -> asyncio.Task:
        """Append the user message and assistant placeholder, then start streaming.

        Returns the task that resolves to the finalized assistant message.
        """
        if self._closed:
            raise SessionClosed("chat session is closed")
        if self.busy:
            raise BusyError("the assistant is still answering")
        if not text.strip():
            raise ValueError("message text is empty")

        transport = self.ensure_session()
        history = tuple(self._messages)
        self._messages.append(ChatMessage(role="user", text=text))
        self._messages.append(ChatMessage(role="assistant", text="", streaming=True))

        exchange = _Exchange(on_update=on_update)
        self._exchange = exchange
        exchange.task = asyncio.create_task(self._pump(exchange, transport, history, text))
        return exchange.task

    async def send(
        self, text: str, on_update: Callable[[ChatMessage], object] | None = None
    ) -> ChatMessage:
        task = self.start_exchange(text, on_update)
        exchange = self._exchange
        try:
            return await task
        except asyncio.CancelledError:
            if exchange is not None and exchange.abandoned:
                raise SessionClosed("chat session closed mid-stream") from None
            raise

    async def _pump(
        self,
        exchange: _Exchange,
        transport: StreamTransport,
        history: Sequence[ChatMessage],
        text: str,
    ) -> ChatMessage:
        buffer: list[str] = []
        with logfire.span("assistant exchange", history_length=len(history)):
            try:
                await asyncio.wait_for(
                    self._drain(exchange, transport.stream(history, text), buffer),
                    self.timeout,
                )
            except asyncio.CancelledError:
                if not exchange.abandoned:
                    self._fail(exchange)
                raise
            except asyncio.TimeoutError:
                logfire.warn("Assistant stream timed out after {timeout}s", timeout=self.timeout)
                return self._fail(exchange)
            except Exception:
                logfire.exception("Assistant stream failed")
                return self._fail(exchange)
            return self._merge(exchange, "".join(buffer), streaming=False)

    async def _drain(
        self, exchange: _Exchange, stream: AsyncGenerator[str, None], buffer: list[str]
    ) -> None:
        async with aclosing(stream) as chunks:
            async for chunk in chunks:
                if exchange.abandoned:
                    return
                buffer.append(chunk)
                self._merge(exchange, "".join(buffer), streaming=True)

    def _merge(
        self, exchange: _Exchange, text: str, *, streaming: bool, failed: bool = False
    ) -> ChatMessage:
        """Write the in-flight buffer into the log's last entry."""
        current = self._messages[-1]
        if exchange.abandoned or exchange is not self._exchange or not current.streaming:
            return current
        merged = dataclasses.replace(current, text=text, streaming=streaming, failed=failed)
        self._messages[-1] = merged
        if exchange.on_update is not None:
            exchange.on_update(merged)
        return merged

    def _fail(self, exchange: _Exchange) -> ChatMessage:
        return self._merge(exchange, FALLBACK_TEXT, streaming=False, failed=True)

    async def close(self) -> None:
        """Tear down: abandon the in-flight exchange and release the transport."""
        self._closed = True
        exchange = self._exchange
        if exchange is not None and exchange.task is not None and not exchange.task.done():
            exchange.abandoned = True
            exchange.task.cancel()
            await asyncio.gather(exchange.task, return_exceptions=True)
        if self._transport is not None:
            await self._transport.aclose()
            self._transport = None
