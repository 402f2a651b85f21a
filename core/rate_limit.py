# core/rate_limit.py
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

REMAINING_HEADER = "x-ratelimit-remaining-requests"
RESET_HEADER = "x-ratelimit-reset-requests"


@dataclass
class RateLimitSnapshot:
    """Request quota as last reported by the service."""

    remaining: str | None = None
    reset_time: str | None = None

    def refresh(self, headers: Mapping[str, str]) -> None:
        """Overwrite both values from response headers; absent headers clear them."""
        self.remaining = headers.get(REMAINING_HEADER)
        self.reset_time = headers.get(RESET_HEADER)

    def remaining_as_int(self) -> int | None:
        if self.remaining is None:
            return None
        try:
            return int(self.remaining)
        except ValueError:
            return None
