from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class GenerationRequest:
    """A single completion request. Built fresh per call."""

    system: str
    prompt: str
    model: str
    temperature: float
    max_tokens: int
    seed: int | None = None
    json_mode: bool = False
    stream: bool = False

    def messages(self) -> list[dict[str, str]]:
        """Return the ordered role/content pairs for this request."""
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.prompt},
        ]
