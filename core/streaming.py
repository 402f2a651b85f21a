# core/streaming.py
"""Incremental parsing of server-sent-event chat completion streams."""

from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator, Callable
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

DeltaCallback = Callable[[str, str, bool], None]


@dataclass(frozen=True)
class StreamDelta:
    """One token of a stream plus the text aggregated so far."""

    delta: str
    aggregate: str
    is_final: bool


@dataclass
class StreamState:
    """Mutable state for exactly one in-flight stream."""

    pending: str = ""
    aggregate: str = ""
    done: bool = False
    decoder: codecs.IncrementalDecoder = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")("replace")
    )


class StreamAggregator:
    """Turns raw response chunks into ordered ``StreamDelta`` values.

    Chunk boundaries do not line up with frame boundaries, so undecoded bytes
    and partial lines are carried over to the next ``feed`` call.
    """

    def __init__(self) -> None:
        self.state = StreamState()

    @property
    def aggregate(self) -> str:
        return self.state.aggregate

    @property
    def done(self) -> bool:
        return self.state.done

    def feed(self, chunk: bytes | str) -> list[StreamDelta]:
        """Consume one chunk and return the deltas it completed."""
        if self.state.done:
            return []
        if isinstance(chunk, bytes):
            text = self.state.decoder.decode(chunk)
        else:
            text = chunk
        buffered = self.state.pending + text
        *lines, self.state.pending = buffered.split("\n")

        deltas: list[StreamDelta] = []
        for line in lines:
            delta = self._process_line(line)
            if delta is not None:
                deltas.append(delta)
            if self.state.done:
                break
        return deltas

    def close(self) -> list[StreamDelta]:
        """Flush buffered input at connection close and emit the final delta."""
        if self.state.done:
            return []
        deltas: list[StreamDelta] = []
        tail = self.state.pending + self.state.decoder.decode(b"", final=True)
        self.state.pending = ""
        if tail:
            delta = self._process_line(tail)
            if delta is not None:
                deltas.append(delta)
        if not self.state.done:
            self.state.done = True
            deltas.append(StreamDelta("", self.state.aggregate, True))
        return deltas

    def _process_line(self, raw_line: str) -> StreamDelta | None:
        line = raw_line.strip()
        if not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX) :].lstrip()
        if data == DONE_SENTINEL:
            self.state.done = True
            return StreamDelta("", self.state.aggregate, True)
        try:
            payload = json.loads(data)
            token = payload["choices"][0]["delta"].get("content") or ""
        except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
            logger.debug("Skipping malformed stream frame.", frame=data[:120])
            return None
        if not isinstance(token, str) or not token:
            return None
        self.state.aggregate += token
        return StreamDelta(token, self.state.aggregate, False)


async def iter_stream_deltas(
    chunks: AsyncIterable[bytes | str],
) -> AsyncIterator[StreamDelta]:
    """Yield deltas lazily; ends on the sentinel or when ``chunks`` is exhausted."""
    aggregator = StreamAggregator()
    async for chunk in chunks:
        for delta in aggregator.feed(chunk):
            yield delta
        if aggregator.done:
            return
    for delta in aggregator.close():
        yield delta


async def collect_stream(
    chunks: AsyncIterable[bytes | str],
    on_delta: DeltaCallback | None = None,
) -> str:
    """Drain a stream, echoing each delta to ``on_delta``; return the final text."""
    aggregate = ""
    async for item in iter_stream_deltas(chunks):
        aggregate = item.aggregate
        if on_delta is not None:
            on_delta(item.delta, item.aggregate, item.is_final)
    return aggregate
