import json
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import TEST_KEY, chat_body, sse_body

import config
from core.errors import (
    CredentialMissingError,
    InvalidCredentialError,
    MalformedUpstreamResponseError,
    RateLimitedError,
    ServiceUnavailableError,
    UpstreamError,
)
from core.llm_interface import LLMService, classify_error_response
from core.requests import GenerationRequest


def _request(model="gpt-4o-mini", **overrides):
    values = dict(system="sys", prompt="hi", model=model, temperature=0.7, max_tokens=50)
    values.update(overrides)
    return GenerationRequest(**values)


def _response(status, body=None, headers=None):
    return httpx.Response(
        status,
        json=body if body is not None else {},
        headers=headers,
        request=httpx.Request("POST", "https://example.test"),
    )


def test_classify_error_statuses():
    assert isinstance(classify_error_response(_response(401)), InvalidCredentialError)
    assert isinstance(classify_error_response(_response(503)), ServiceUnavailableError)
    assert isinstance(classify_error_response(_response(502)), ServiceUnavailableError)

    limited = classify_error_response(_response(429, headers={"retry-after": "12"}))
    assert isinstance(limited, RateLimitedError)
    assert limited.retry_after == 12

    default_wait = classify_error_response(_response(429))
    assert default_wait.retry_after == config.settings.DEFAULT_RETRY_AFTER_SECONDS

    other = classify_error_response(_response(400, {"error": {"message": "bad things"}}))
    assert isinstance(other, UpstreamError)
    assert other.message == "bad things"
    assert other.status_code == 400

    bare = classify_error_response(_response(418))
    assert bare.message == "API request failed with status 418"


def test_only_rate_limit_and_unavailable_are_retryable():
    assert RateLimitedError(1).retryable
    assert ServiceUnavailableError().retryable
    assert not InvalidCredentialError().retryable
    assert not UpstreamError("x").retryable
    assert not MalformedUpstreamResponseError("x").retryable


def test_set_api_key_validates_format():
    service = LLMService()
    service.set_api_key(TEST_KEY)
    assert service.api_key == TEST_KEY
    service.set_api_key("  custom-proxy-token-1234567  ")
    assert service.api_key == "custom-proxy-token-1234567"
    with pytest.raises(InvalidCredentialError):
        service.set_api_key("short")


@pytest.mark.asyncio
async def test_missing_credential_fails_before_network():
    handler_calls = []

    def handler(request):
        handler_calls.append(request)
        return httpx.Response(200, json=chat_body("x"))

    service = LLMService(transport=httpx.MockTransport(handler))
    with pytest.raises(CredentialMissingError):
        await service.send(_request())
    assert handler_calls == []


@pytest.mark.asyncio
async def test_send_routes_by_model(make_service):
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        if request.url.path.endswith("/responses"):
            return httpx.Response(200, json={"output_text": "from responses"})
        return httpx.Response(
            200,
            json=chat_body("from chat"),
            headers={
                "x-ratelimit-remaining-requests": "42",
                "x-ratelimit-reset-requests": "1s",
            },
        )

    service = make_service(handler)
    assert await service.send(_request()) == "from chat"
    assert service.rate_limit.remaining_as_int() == 42
    assert service.rate_limit.reset_time == "1s"
    assert await service.send(_request(model="gpt-5", json_mode=True)) == "from responses"

    assert seen[0][0].endswith("/chat/completions")
    assert seen[1][0].endswith("/responses")
    assert seen[1][1]["text"] == {"format": {"type": "json_object"}}
    assert seen[0][1]["messages"][1]["content"] == "hi"


@pytest.mark.asyncio
async def test_send_raises_classified_error(make_service):
    service = make_service(lambda r: httpx.Response(401, json={}))
    with pytest.raises(InvalidCredentialError):
        await service.send(_request())


@pytest.mark.asyncio
async def test_transport_failure_maps_to_unavailable(make_service):
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    service = make_service(handler)
    with pytest.raises(ServiceUnavailableError):
        await service.send(_request())


@pytest.mark.asyncio
async def test_rate_limit_retry_waits_exponentially(monkeypatch):
    monkeypatch.setattr(config.settings, "LLM_RETRY_ATTEMPTS", 3)
    monkeypatch.setattr(config.settings, "LLM_RETRY_DELAY_SECONDS", 1.0)
    service = LLMService(api_key=TEST_KEY)
    service._sleep = AsyncMock()
    fn = AsyncMock(side_effect=RateLimitedError(60))

    with pytest.raises(RateLimitedError):
        await service.generate_with_retry(fn)

    assert fn.await_count == 3
    waits = [call.args[0] for call in service._sleep.await_args_list]
    assert waits == [2, 4]
    assert sum(waits) == sum(2**k for k in range(1, 3))


@pytest.mark.asyncio
async def test_other_retryable_errors_wait_linearly():
    service = LLMService(api_key=TEST_KEY)
    service._sleep = AsyncMock()
    fn = AsyncMock(side_effect=[ServiceUnavailableError(), ServiceUnavailableError(), "ok"])
    progress = []

    assert await service.generate_with_retry(fn, max_retries=3, progress=progress.append) == "ok"
    assert [c.args[0] for c in service._sleep.await_args_list] == [1.0, 2.0]
    assert progress[0] == "Generating content (attempt 1/3)..."
    assert "Generating content (attempt 3/3)..." in progress


@pytest.mark.asyncio
async def test_non_retryable_errors_propagate_immediately():
    service = LLMService(api_key=TEST_KEY)
    service._sleep = AsyncMock()
    fn = AsyncMock(side_effect=InvalidCredentialError())
    with pytest.raises(InvalidCredentialError):
        await service.generate_with_retry(fn, max_retries=5)
    assert fn.await_count == 1
    service._sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_send_streaming_reports_deltas(make_service):
    service = make_service(lambda r: httpx.Response(200, content=sse_body("Hel", "lo")))
    calls = []
    text = await service.send_streaming(
        _request(stream=True), on_delta=lambda d, a, f: calls.append((d, a, f))
    )
    assert text == "Hello"
    assert calls[:2] == [("Hel", "Hel", False), ("lo", "Hello", False)]
    assert calls[-1][1:] == ("Hello", True)


@pytest.mark.asyncio
async def test_streaming_error_status_is_classified(make_service):
    service = make_service(
        lambda r: httpx.Response(429, json={}, headers={"retry-after": "3"})
    )
    with pytest.raises(RateLimitedError) as exc_info:
        await service.send_streaming(_request(stream=True))
    assert exc_info.value.retry_after == 3


@pytest.mark.asyncio
async def test_streaming_refuses_responses_models(make_service):
    service = make_service(lambda r: httpx.Response(200))
    with pytest.raises(ValueError):
        await service.send_streaming(_request(model="gpt-5"))


@pytest.mark.asyncio
async def test_api_key_probe_tries_next_model(make_service):
    tried = []

    def handler(request):
        model = json.loads(request.content)["model"]
        tried.append(model)
        if model == "gpt-4o-mini":
            return httpx.Response(404, json={"error": {"message": "no such model"}})
        return httpx.Response(200, json={"output_text": "API key is valid"})

    service = make_service(handler)
    assert await service.test_api_key() is True
    assert tried == ["gpt-4o-mini", "gpt-5-mini"]


@pytest.mark.asyncio
async def test_api_key_probe_fails_when_every_model_fails(make_service):
    service = make_service(lambda r: httpx.Response(401, json={}))
    with pytest.raises(InvalidCredentialError) as exc_info:
        await service.test_api_key()
    assert "API test failed" in exc_info.value.message


@pytest.mark.asyncio
async def test_image_generation_retries_without_response_format(make_service):
    payloads = []

    def handler(request):
        payload = json.loads(request.content)
        payloads.append(payload)
        if "response_format" in payload:
            return httpx.Response(
                400, json={"error": {"message": "Unknown parameter: 'response_format'."}}
            )
        return httpx.Response(200, json={"data": [{"b64_json": "QUJD"}]})

    service = make_service(handler)
    data_url = await service.generate_image("a cover", size="1024x1024")
    assert data_url == "data:image/png;base64,QUJD"
    assert len(payloads) == 2
    assert "response_format" not in payloads[1]
    assert payloads[1]["size"] == "1024x1024"


@pytest.mark.asyncio
async def test_image_generation_without_data_is_malformed(make_service):
    service = make_service(lambda r: httpx.Response(200, json={"data": []}))
    with pytest.raises(MalformedUpstreamResponseError):
        await service.generate_image("a cover")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 400])
async def test_send_refreshes_rate_limit_on_error(make_service, status):
    service = make_service(
        lambda r: httpx.Response(
            status, json={}, headers={"x-ratelimit-remaining-requests": "7"}
        )
    )
    with pytest.raises((RateLimitedError, UpstreamError)):
        await service.send(_request())
    assert service.rate_limit.remaining == "7"


@pytest.mark.asyncio
async def test_streaming_refreshes_rate_limit_on_error(make_service):
    service = make_service(
        lambda r: httpx.Response(
            429,
            json={},
            headers={"x-ratelimit-remaining-requests": "0", "x-ratelimit-reset-requests": "20s"},
        )
    )
    with pytest.raises(RateLimitedError):
        await service.send_streaming(_request(stream=True))
    assert service.rate_limit.remaining == "0"
    assert service.rate_limit.reset_time == "20s"


@pytest.mark.asyncio
async def test_send_streams_when_request_asks_for_it(make_service):
    payloads = []

    def handler(request):
        payloads.append(json.loads(request.content))
        return httpx.Response(200, content=sse_body("Hel", "lo"))

    service = make_service(handler)
    assert await service.send(_request(stream=True)) == "Hello"
    assert payloads[0]["stream"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "model, body",
    [
        ("gpt-4o-mini", {"choices": [{"message": "hi"}]}),
        ("gpt-4o-mini", {"choices": {"a": 1}}),
        ("gpt-5", {"output": 5}),
    ],
)
async def test_send_rejects_odd_body_shapes(make_service, model, body):
    service = make_service(lambda r: httpx.Response(200, json=body))
    with pytest.raises(MalformedUpstreamResponseError):
        await service.send(_request(model=model))
