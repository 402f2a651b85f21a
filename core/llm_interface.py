# core/llm_interface.py
"""
Handles all direct interactions with the remote completion service:
endpoint selection, request dispatch, streaming, failure classification
and retry with backoff. Also includes cover image generation.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.

Copyright 2025 Dennis Lewis
"""

# Standard library imports
import asyncio
import dataclasses
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

# Third-party imports
import httpx
import structlog

# Local imports
from config import settings

from core.endpoints import ENDPOINTS, EndpointChoice, endpoint_choice
from core.errors import (
    BookForgeError,
    CredentialMissingError,
    InvalidCredentialError,
    MalformedUpstreamResponseError,
    RateLimitedError,
    ServiceUnavailableError,
    UpstreamError,
)
from core.rate_limit import RateLimitSnapshot
from core.requests import GenerationRequest
from core.streaming import DeltaCallback, StreamDelta, collect_stream, iter_stream_deltas

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[str], None]

API_KEY_PATTERN = re.compile(r"^sk-[A-Za-z0-9_\-]{16,}$", re.IGNORECASE)
MIN_KEY_LENGTH = 16
PROBE_MODELS = ("gpt-4o-mini", "gpt-5-mini", "gpt-4o", "gpt-4-turbo", "gpt-3.5-turbo")
PROBE_PROMPT = "Reply with exactly: API key is valid"
PROBE_REPLY = re.compile(r"api key is valid", re.IGNORECASE)
SERVICE_UNAVAILABLE_STATUSES = {500, 502, 503}


def _error_message_from_body(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return ""
    if not isinstance(body, dict):
        return ""
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if body.get("message"):
        return str(body["message"])
    return ""


def classify_error_response(response: httpx.Response) -> BookForgeError:
    """Map a non-success response onto the error taxonomy."""
    status = response.status_code
    if status == 401:
        return InvalidCredentialError()
    if status == 429:
        raw_retry_after = response.headers.get("retry-after")
        try:
            retry_after = (
                float(raw_retry_after)
                if raw_retry_after is not None
                else float(settings.DEFAULT_RETRY_AFTER_SECONDS)
            )
        except ValueError:
            retry_after = float(settings.DEFAULT_RETRY_AFTER_SECONDS)
        return RateLimitedError(retry_after)
    if status in SERVICE_UNAVAILABLE_STATUSES:
        return ServiceUnavailableError()
    message = _error_message_from_body(response)
    return UpstreamError(
        message or f"API request failed with status {status}", status_code=status
    )


class LLMService:
    """Dispatches completion requests to the chat or responses endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float = settings.HTTPX_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        # Use a single async client for all requests to reuse connections
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._api_key: str | None = None
        self._rate_limit = RateLimitSnapshot()
        if api_key:
            self.set_api_key(api_key)
        logger.info("LLMService initialized.", api_base=settings.OPENAI_API_BASE)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # --- Credential -------------------------------------------------------

    def set_api_key(self, key: str) -> None:
        """Store ``key`` if it looks like an API key; raise otherwise."""
        if isinstance(key, str) and API_KEY_PATTERN.match(key):
            self._api_key = key
            return
        if isinstance(key, str) and len(key.strip()) >= MIN_KEY_LENGTH:
            self._api_key = key.strip()
            return
        raise InvalidCredentialError("Invalid API key format")

    @property
    def api_key(self) -> str | None:
        return self._api_key

    @property
    def rate_limit(self) -> RateLimitSnapshot:
        """A copy of the latest quota information."""
        return dataclasses.replace(self._rate_limit)

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise CredentialMissingError()
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    # --- Single requests --------------------------------------------------

    async def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        headers = self._headers()
        try:
            response = await self._client.post(url, json=payload, headers=headers)
        except httpx.TransportError as exc:
            logger.warning("Transport failure talking to the service.", url=url, error=str(exc))
            raise ServiceUnavailableError(
                f"Could not reach the service: {exc}"
            ) from exc
        self._rate_limit.refresh(response.headers)
        return response

    async def send(
        self, request: GenerationRequest, endpoint: EndpointChoice | None = None
    ) -> str:
        """Send a request and return the completion text.

        A request with ``stream`` set is streamed and its text aggregated.
        """
        if request.stream:
            return await self.send_streaming(request)
        choice = endpoint or endpoint_choice(request.model)
        adapter = ENDPOINTS[choice]
        payload = adapter.build_payload(request)
        logger.debug(
            "Sending completion request.",
            model=request.model,
            endpoint=choice.value,
            json_mode=request.json_mode,
            max_tokens=request.max_tokens,
        )
        response = await self._post(adapter.url, payload)
        if response.is_error:
            error = classify_error_response(response)
            logger.warning(
                "Completion request failed.",
                model=request.model,
                status=response.status_code,
                error=error.message,
            )
            raise error
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedUpstreamResponseError(
                f"Response body was not JSON: {response.text[:200]}"
            ) from exc
        text = adapter.extract_text(data)
        if not text:
            logger.warning(
                "Completion response contained no text.", model=request.model
            )
        return text

    async def _stream_chunks(self, request: GenerationRequest) -> AsyncIterator[bytes]:
        """Raw body chunks of a streamed chat completion."""
        if endpoint_choice(request.model) is not EndpointChoice.CHAT:
            raise ValueError(
                f"Model '{request.model}' uses the responses endpoint, which does not stream."
            )
        adapter = ENDPOINTS[EndpointChoice.CHAT]
        payload = adapter.build_payload(dataclasses.replace(request, stream=True))
        headers = self._headers()
        logger.debug("Opening completion stream.", model=request.model)
        try:
            async with self._client.stream(
                "POST", adapter.url, json=payload, headers=headers
            ) as response:
                self._rate_limit.refresh(response.headers)
                if response.is_error:
                    await response.aread()
                    error = classify_error_response(response)
                    logger.warning(
                        "Streaming request failed.",
                        model=request.model,
                        status=response.status_code,
                        error=error.message,
                    )
                    raise error
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.TransportError as exc:
            logger.warning("Stream interrupted.", model=request.model, error=str(exc))
            raise ServiceUnavailableError(f"Stream interrupted: {exc}") from exc

    async def iter_streaming(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamDelta]:
        """Stream a chat completion, yielding deltas as frames arrive."""
        chunks = self._stream_chunks(request)
        try:
            async for delta in iter_stream_deltas(chunks):
                yield delta
        finally:
            await chunks.aclose()

    async def send_streaming(
        self, request: GenerationRequest, on_delta: DeltaCallback | None = None
    ) -> str:
        """Stream a chat completion and return the aggregated text."""
        chunks = self._stream_chunks(request)
        try:
            return await collect_stream(chunks, on_delta)
        finally:
            await chunks.aclose()

    # --- Retry orchestration ----------------------------------------------

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def generate_with_retry(
        self,
        fn: Callable[[], Awaitable[T]],
        max_retries: int | None = None,
        progress: ProgressCallback | None = None,
    ) -> T:
        """Call ``fn`` up to ``max_retries`` times.

        Rate limits back off exponentially by attempt number; other retryable
        failures back off linearly. Non-retryable errors propagate at once and
        the last error is re-raised unchanged when attempts run out.
        """
        attempts = max_retries if max_retries is not None else settings.LLM_RETRY_ATTEMPTS
        unit = settings.LLM_RETRY_DELAY_SECONDS

        def report(text: str) -> None:
            if progress is not None:
                progress(text)

        for attempt in range(1, attempts + 1):
            report(f"Generating content (attempt {attempt}/{attempts})...")
            try:
                return await fn()
            except BookForgeError as exc:
                if not exc.retryable or attempt >= attempts:
                    if exc.retryable:
                        logger.error(
                            "All retry attempts failed.",
                            attempts=attempts,
                            error=exc.message,
                        )
                    raise
                if isinstance(exc, RateLimitedError):
                    wait = (2**attempt) * unit
                    report(f"Rate limited. Waiting {wait:g}s before retry...")
                else:
                    wait = attempt * unit
                    report(f"{exc.message} Retrying in {wait:g}s...")
                logger.info(
                    "Retrying after failure.",
                    attempt=attempt,
                    attempts=attempts,
                    wait_seconds=wait,
                    reason=type(exc).__name__,
                )
                await self._sleep(wait)
        raise RuntimeError("generate_with_retry requires at least one attempt")

    # --- Credential probe -------------------------------------------------

    async def test_api_key(self) -> bool:
        """Probe candidate models until one echoes the expected reply."""
        self._headers()
        last_error: BookForgeError | None = None
        for model in PROBE_MODELS:
            request = GenerationRequest(
                system="You are a connectivity check.",
                prompt=PROBE_PROMPT,
                model=model,
                temperature=0,
                max_tokens=5,
            )
            try:
                reply = await self.send(request)
            except BookForgeError as exc:
                last_error = exc
                logger.debug("API key probe failed.", model=model, error=exc.message)
                continue
            if PROBE_REPLY.search(reply):
                logger.info("API key verified.", model=model)
                return True
        detail = f" Last error: {last_error.message}" if last_error else ""
        raise InvalidCredentialError(f"API test failed for all tried models.{detail}")

    # --- Images -----------------------------------------------------------

    async def generate_image(
        self,
        prompt: str,
        size: str = settings.IMAGE_SIZE,
        model: str = settings.IMAGE_MODEL,
    ) -> str:
        """Generate an image and return it as a base64 ``data:`` URL."""
        url = f"{settings.OPENAI_API_BASE}{settings.IMAGES_PATH}"
        payload: dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "size": size,
            "n": 1,
            "response_format": "b64_json",
        }
        response = await self._post(url, payload)
        if response.is_error:
            message = _error_message_from_body(response).lower()
            if "unknown parameter" in message and "response_format" in message:
                logger.info("Image endpoint rejected response_format. Retrying without it.")
                payload.pop("response_format")
                response = await self._post(url, payload)
        if response.is_error:
            raise classify_error_response(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedUpstreamResponseError(
                "Image response body was not JSON"
            ) from exc
        b64 = _extract_image_b64(data)
        if not b64:
            raise MalformedUpstreamResponseError("Image generation returned no data")
        return f"data:image/png;base64,{b64}"


def _extract_image_b64(data: Any) -> str | None:
    candidates: list[Any] = []
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        candidates = data["data"]
    elif isinstance(data, list):
        candidates = data
    if not candidates or not isinstance(candidates[0], dict):
        return None
    first = candidates[0]
    return first.get("b64_json") or first.get("b64")
