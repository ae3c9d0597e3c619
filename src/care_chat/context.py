"""Per-session engine context: repetition guard, phrase rotation and AI retry state."""

import random
from dataclasses import dataclass
from typing import Optional, Sequence, TypeVar

from .models import ChatConfig, ChatMode

T = TypeVar("T")


@dataclass(frozen=True)
class RetryState:
    """Consecutive AI failures for one session.

    Values are immutable; every AI attempt produces the next state.
    """
    count: int = 0
    last_error: Optional[str] = None

    def record_failure(self, error: str) -> "RetryState":
        return RetryState(count=self.count + 1, last_error=error)

    def record_success(self) -> "RetryState":
        return RetryState()

    def should_degrade(self, config: ChatConfig) -> bool:
        return config.mode == ChatMode.HYBRID and self.count > config.fallback_threshold


class SessionContext:
    """Mutable engine state scoped to a single session id."""

    def __init__(self, session_id: str, rng: Optional[random.Random] = None):
        self.session_id = session_id
        self.rng = rng or random.Random()
        self.last_message: Optional[str] = None
        self.retry = RetryState()
        self._last_picks: dict[str, object] = {}

    def is_repeat_message(self, message: str) -> bool:
        return self.last_message is not None and self.last_message == message

    def set_last_message(self, message: str) -> None:
        self.last_message = message

    def pick(self, pool_name: str, pool: Sequence[T]) -> T:
        """Random choice from ``pool`` that differs from the previous pick of the same pool."""
        if not pool:
            raise ValueError(f"phrase pool '{pool_name}' is empty")
        previous = self._last_picks.get(pool_name)
        candidates = [item for item in pool if item != previous] or list(pool)
        choice = self.rng.choice(candidates)
        self._last_picks[pool_name] = choice
        return choice

    def reset_retry(self) -> None:
        self.retry = RetryState()

    def reset(self) -> None:
        # phrase rotation survives a reset so a restarted chat never reopens with the same intro
        self.last_message = None
        self.retry = RetryState()
