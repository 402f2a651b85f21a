# tests/conftest.py
import json
import os
import sys
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

# Ensure repository root is on PYTHONPATH for tests
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

# Keep the console quiet and never fall back to a real key during tests
os.environ.setdefault("ENABLE_RICH_PROGRESS", "false")
os.environ["OPENAI_API_KEY"] = ""

from core.llm_interface import LLMService  # noqa: E402
from models import PipelineState, UserPreferences  # noqa: E402

TEST_KEY = "sk-test0123456789abcdefghij"


class InMemoryGateway:
    """PersistenceGateway that keeps JSON snapshots in memory."""

    def __init__(self) -> None:
        self.saved: list[dict[str, Any]] = []
        self.credential: str | None = None
        self.prefs = UserPreferences()

    async def save_project(self, state: PipelineState) -> None:
        self.saved.append(state.model_dump(mode="json"))

    async def load_last_project(self) -> PipelineState | None:
        if not self.saved:
            return None
        return PipelineState.model_validate(self.saved[-1])

    async def save_credential(self, secret: str) -> None:
        self.credential = secret

    async def load_credential(self) -> str | None:
        return self.credential

    async def save_settings(self, prefs: Any) -> UserPreferences:
        updates = prefs.model_dump() if isinstance(prefs, UserPreferences) else prefs
        self.prefs = self.prefs.model_copy(update=updates)
        return self.prefs

    async def load_settings(self) -> UserPreferences:
        return self.prefs


def chat_body(content: str) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def sse_body(*tokens: str, done: bool = True) -> bytes:
    frames = [
        "data: " + json.dumps({"choices": [{"delta": {"content": token}}]}) + "\n\n"
        for token in tokens
    ]
    if done:
        frames.append("data: [DONE]\n\n")
    return "".join(frames).encode("utf-8")


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def make_service() -> Callable[..., LLMService]:
    """Build an ``LLMService`` whose HTTP traffic goes to ``handler``."""

    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        api_key: str | None = TEST_KEY,
    ) -> LLMService:
        service = LLMService(api_key=api_key, transport=httpx.MockTransport(handler))
        service._sleep = AsyncMock()
        return service

    return _make
