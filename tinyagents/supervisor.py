"""Restart strategies applied when an actor's receive handler fails.

A strategy is pure: given the failure count and the start of the current
failure window it returns a :class:`Decision`. The runtime is responsible
for honouring that decision.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum, auto
from typing import Any

__all__ = [
    "Directive",
    "Decision",
    "Strategy",
    "RestartStrategy",
    "StopStrategy",
    "default_strategy",
]


class Directive(Enum):
    """What the runtime should do with a failed actor."""

    RESUME = auto()
    RESTART = auto()
    STOP = auto()
    # Reserved for parent escalation; runtimes treat it as STOP for now.
    ESCALATE = auto()


@dataclass(frozen=True)
class Decision:
    """Result of consulting a strategy; ``delay`` only matters for RESTART."""

    directive: Directive
    delay: timedelta = timedelta(0)


class Strategy(ABC):
    """Decides how to react to an actor failure."""

    @abstractmethod
    def decide(self, cause: Any, failure_count: int, window_start: datetime) -> Decision:
        """Return the decision for a failure."""


class RestartStrategy(Strategy):
    """Bounded restarts with exponential backoff.

    ``max_restarts <= 0`` means the actor is always restarted.
    """

    def __init__(
        self,
        max_restarts: int,
        window: timedelta,
        base_delay: timedelta,
        max_delay: timedelta,
    ) -> None:
        if base_delay <= timedelta(0):
            base_delay = timedelta(milliseconds=10)
        if max_delay < base_delay:
            max_delay = base_delay
        self.max_restarts = max_restarts
        self.window = window
        self.base_delay = base_delay
        self.max_delay = max_delay

    def __repr__(self) -> str:
        return (
            f"RestartStrategy(max_restarts={self.max_restarts}, window={self.window!r}, "
            f"base_delay={self.base_delay!r}, max_delay={self.max_delay!r})"
        )

    def decide(self, cause: Any, failure_count: int, window_start: datetime) -> Decision:
        elapsed = datetime.now(window_start.tzinfo) - window_start
        if (
            self.max_restarts > 0
            and failure_count > self.max_restarts
            and elapsed <= self.window
        ):
            return Decision(Directive.STOP)
        return Decision(Directive.RESTART, self._backoff(failure_count))

    def _backoff(self, attempt: int) -> timedelta:
        if attempt <= 1:
            return self.base_delay
        delay = self.base_delay
        for _ in range(1, attempt):
            if delay >= self.max_delay:
                break
            delay *= 2
        return min(delay, self.max_delay)


class StopStrategy(Strategy):
    """Always stops the failed actor."""

    def decide(self, cause: Any, failure_count: int, window_start: datetime) -> Decision:
        return Decision(Directive.STOP)

    def __repr__(self) -> str:
        return "StopStrategy()"


def default_strategy() -> Strategy:
    """Restart up to 5 times per minute, backing off from 50 ms to 1 s."""
    return RestartStrategy(
        5,
        timedelta(minutes=1),
        timedelta(milliseconds=50),
        timedelta(seconds=1),
    )