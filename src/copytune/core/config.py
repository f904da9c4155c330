"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DispatchConfig:
    """Generation and transport settings shared by every provider call."""

    temperature: float = 0.7
    max_tokens: int = 500
    timeout_seconds: float = 60.0


@dataclass(frozen=True)
class BatchConfig:
    """Pacing for sequential batch runs."""

    delay_seconds: float = 0.5
