from __future__ import annotations
import asyncio
import json
import logging
import re
from typing import AsyncIterator, Callable, Iterable, Optional

from rich.console import Console
from rich.panel import Panel

from .blueprints import action_tags
from .errors import LLMError, StreamCancelled
from .tags import validate_structure

logger = logging.getLogger(__name__)

MAX_BUFFER_SIZE = 10 * 1024 * 1024
CHUNK_SIZE = 1024 * 1024
KEEP_TAIL_SIZE = CHUNK_SIZE
STREAM_TIMEOUT = 10.0

ERROR_MESSAGES = {
    "CONTEXT_LENGTH_EXCEEDED": {
        "title": "Context Length Exceeded",
        "details": "The conversation is longer than the model's context window.",
        "suggestion": "Older messages were trimmed; if this persists, start a new task.",
    },
    "RATE_LIMIT_EXCEEDED": {
        "title": "Rate Limit Exceeded",
        "details": "The provider is rejecting requests because too many were sent.",
        "suggestion": "Wait a moment and try again.",
    },
    "MODEL_ERROR": {
        "title": "Model Error",
        "details": "The model returned an error instead of a response.",
        "suggestion": "Try again or choose a different model in crkdrc.json.",
    },
    "INSUFFICIENT_QUOTA": {
        "title": "Insufficient Quota",
        "details": "The account has run out of credits for this provider.",
        "suggestion": "Add credits or switch to another provider.",
    },
    "NETWORK_ERROR": {
        "title": "Network Error",
        "details": "The provider could not be reached.",
        "suggestion": "Check your connection and the configured base URL.",
    },
    "STREAM_TIMEOUT": {
        "title": "Stream Timeout",
        "details": "No data arrived from the model within the inactivity timeout.",
        "suggestion": "Try again; raise stream_timeout if the model is slow to start.",
    },
    "STREAM_ERROR": {
        "title": "Stream Error",
        "details": "The response stream could not be read.",
        "suggestion": "Try again.",
    },
    "BUFFER_OVERFLOW": {
        "title": "Buffer Overflow",
        "details": "The response exceeded the stream buffer; only the most recent part was kept.",
        "suggestion": "Ask for smaller steps.",
    },
}

# an unterminated "<..." at the end of the buffer may be the start of an action tag
_DANGLING_TAG_RE = re.compile(r"<[^<>]*$")


def classify_error_payload(raw: str) -> LLMError:
    """Turn an in-band {"error": ...} chunk into an LLMError."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return LLMError("STREAM_ERROR", raw.strip()[:500])
    err = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(err, dict):
        message = str(err.get("message", ""))
        code = err.get("code")
    else:
        message, code = str(err), None
    lowered = message.lower()
    if "context length" in lowered or "context_length" in lowered or "maximum context" in lowered:
        error_type = "CONTEXT_LENGTH_EXCEEDED"
    elif code == 429 or "rate limit" in lowered:
        error_type = "RATE_LIMIT_EXCEEDED"
    elif code == 402 or "quota" in lowered or "credits" in lowered:
        error_type = "INSUFFICIENT_QUOTA"
    else:
        error_type = "MODEL_ERROR"
    return LLMError(error_type, message, details={"code": code})


def display_error(error: LLMError, console: Optional[Console] = None) -> None:
    console = console or Console()
    info = ERROR_MESSAGES.get(error.error_type, ERROR_MESSAGES["STREAM_ERROR"])
    body = f"{info['details']}\n\n[dim]{error}[/dim]\n\n[yellow]Suggestion:[/yellow] {info['suggestion']}"
    console.print(Panel(body, title=f"[red]{info['title']}[/red]", border_style="red"))


class StreamAssembler:
    """Accumulates streamed model text and decides when it holds complete actions.

    consume() reads until the transport ends the stream, so the agent loop
    never acts on a partial response. feed() reports whether the buffer already
    holds a finished action (balanced tags with at least one action closed and
    no half-written tag at the tail). Callers may use that as a hint only.
    """

    def __init__(self, max_buffer_size: int = MAX_BUFFER_SIZE, keep_size: int = KEEP_TAIL_SIZE,
                 chunk_size: int = CHUNK_SIZE, inactivity_timeout: float = STREAM_TIMEOUT,
                 tags: Optional[Iterable[str]] = None):
        self.max_buffer_size = max_buffer_size
        self.keep_size = keep_size
        self.chunk_size = chunk_size
        self.inactivity_timeout = inactivity_timeout
        self.tags = list(tags) if tags is not None else action_tags()
        alternation = "|".join(re.escape(t) for t in self.tags)
        self._action_re = re.compile(rf"<({alternation})>.*?</\1>", re.DOTALL)
        self.reset()

    def reset(self) -> None:
        self.buffer = ""
        self.overflowed = False
        self.complete = False
        self.ended = False

    def feed(self, chunk: str) -> bool:
        if not chunk:
            return self.complete
        if chunk.lstrip().startswith('{"error":'):
            raise classify_error_payload(chunk)
        for i in range(0, len(chunk), self.chunk_size):
            self._append(chunk[i:i + self.chunk_size])
        self.complete = self._is_complete(self.buffer)
        return self.complete

    def _append(self, piece: str) -> None:
        if len(self.buffer) + len(piece) > self.max_buffer_size:
            self.buffer = (self.buffer + piece)[-self.keep_size:]
            if not self.overflowed:
                logger.warning(f"Stream buffer exceeded {self.max_buffer_size:,} chars, keeping last {self.keep_size:,}")
            self.overflowed = True
            return
        self.buffer += piece

    def _is_complete(self, text: str) -> bool:
        if validate_structure(text):
            return False
        if _DANGLING_TAG_RE.search(text):
            return False
        return self._action_re.search(text) is not None

    def finish(self) -> str:
        self.ended = True
        self.complete = True
        return self.buffer

    async def consume(self, chunks: AsyncIterator[str], cancel_event: Optional[asyncio.Event] = None,
                      on_chunk: Optional[Callable[[str], None]] = None) -> str:
        """Drain a chunk stream into the buffer. The inactivity timer restarts on every chunk."""
        self.reset()
        it = chunks.__aiter__()
        while True:
            next_task = asyncio.ensure_future(it.__anext__())
            waiters = {next_task}
            cancel_task = None
            if cancel_event is not None:
                cancel_task = asyncio.ensure_future(cancel_event.wait())
                waiters.add(cancel_task)
            done, _ = await asyncio.wait(waiters, timeout=self.inactivity_timeout,
                                         return_when=asyncio.FIRST_COMPLETED)
            if cancel_task is not None and cancel_task not in done:
                cancel_task.cancel()

            if cancel_event is not None and cancel_event.is_set():
                await self._abandon(next_task, it)
                self.reset()
                logger.info("Stream cancelled, partial response discarded")
                raise StreamCancelled("stream cancelled by user")
            if next_task not in done:
                await self._abandon(next_task, it)
                self.reset()
                raise LLMError("STREAM_TIMEOUT", f"no data for {self.inactivity_timeout}s")

            try:
                chunk = next_task.result()
            except StopAsyncIteration:
                break
            self.feed(chunk)
            if on_chunk is not None:
                on_chunk(chunk)
        return self.finish()

    @staticmethod
    async def _abandon(task: asyncio.Future, it) -> None:
        if not task.done():
            task.cancel()
        try:
            await task
        except (asyncio.CancelledError, StopAsyncIteration):
            # the pending read was cancelled on purpose
            pass
        aclose = getattr(it, "aclose", None)
        if aclose is not None:
            await aclose()
