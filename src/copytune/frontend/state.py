"""State container for the review panel's status line."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ReviewState:
    message: str = ""
    error: str | None = None
