import json

import pytest

from core.streaming import StreamAggregator, collect_stream


async def _chunks(*items):
    for item in items:
        yield item


def _frame(token: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": token}}]}) + "\n"


@pytest.mark.asyncio
async def test_single_token_then_done():
    calls = []
    result = await collect_stream(
        _chunks(
            'data: {"choices":[{"delta":{"content":"Hi"}}]}\n',
            "data: [DONE]\n",
        ),
        on_delta=lambda d, a, f: calls.append((d, a, f)),
    )
    assert result == "Hi"
    assert calls[0] == ("Hi", "Hi", False)
    assert calls[-1][1:] == ("Hi", True)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_frames_split_across_chunks_and_utf8_boundaries():
    raw = (_frame("héllo") + _frame(" wörld") + "data: [DONE]\n").encode("utf-8")
    pieces = [raw[i : i + 7] for i in range(0, len(raw), 7)]
    calls = []
    result = await collect_stream(
        _chunks(*pieces), on_delta=lambda d, a, f: calls.append((d, a, f))
    )
    assert result == "héllo wörld"
    assert [c[0] for c in calls if not c[2]] == ["héllo", " wörld"]


def test_malformed_and_empty_frames_are_skipped():
    agg = StreamAggregator()
    deltas = agg.feed(
        "data: {not json}\n"
        ": keep-alive\n"
        'data: {"choices":[{"delta":{}}]}\n'
        'data: {"choices":[{"delta":{"content":"ok"}}]}\n'
    )
    assert [d.delta for d in deltas] == ["ok"]
    assert agg.aggregate == "ok"


def test_nothing_is_emitted_after_done():
    agg = StreamAggregator()
    deltas = agg.feed("data: [DONE]\n" + _frame("late"))
    assert len(deltas) == 1 and deltas[0].is_final
    assert agg.feed(_frame("later")) == []
    assert agg.close() == []


@pytest.mark.asyncio
async def test_connection_close_without_sentinel_emits_final():
    calls = []
    result = await collect_stream(
        _chunks(_frame("a"), 'data: {"choices":[{"delta":{"content":"b"}}]}'),
        on_delta=lambda d, a, f: calls.append((d, a, f)),
    )
    assert result == "ab"
    assert calls[-1] == ("", "ab", True)


@pytest.mark.asyncio
async def test_callback_is_optional():
    assert await collect_stream(_chunks(_frame("x"), "data: [DONE]\n")) == "x"
