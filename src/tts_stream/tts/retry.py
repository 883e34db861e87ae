"""
Retry policy and state machine for synthesis requests.

One request moves through these states:

    ATTEMPTING ──ok──────────────> SUCCESS
        │  ├──auth──────────────> AUTH_ERROR        (terminal)
        │  ├──invalid───────────> INVALID_REQUEST   (terminal)
        │  ├──rate_limited──────> RATE_LIMITED ──> COOLDOWN ──> ATTEMPTING
        │  └──transient─────────> TRANSIENT_ERROR ──> BACKOFF ──> ATTEMPTING
        └──budget spent─────────> EXHAUSTED         (terminal)

The pure pieces live here (wait arithmetic, hint parsing, transitions)
so they can be tested without a network or an event loop; the
SynthesisClient drives them.
"""
from __future__ import annotations

import random
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tts_stream.core.config import Defaults, RetryConfig


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    AUTH_ERROR = "auth_error"
    INVALID_REQUEST = "invalid_request"
    RATE_LIMITED = "rate_limited"
    COOLDOWN = "cooldown"
    TRANSIENT_ERROR = "transient_error"
    BACKOFF = "backoff"
    EXHAUSTED = "exhausted"


class RetryEvent(str, Enum):
    OK = "ok"
    AUTH = "auth"
    INVALID = "invalid"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    WAIT_DONE = "wait_done"
    BUDGET_SPENT = "budget_spent"


TERMINAL_STATES = frozenset({
    RetryState.SUCCESS,
    RetryState.AUTH_ERROR,
    RetryState.INVALID_REQUEST,
    RetryState.EXHAUSTED,
})

_TRANSITIONS = {
    (RetryState.ATTEMPTING, RetryEvent.OK): RetryState.SUCCESS,
    (RetryState.ATTEMPTING, RetryEvent.AUTH): RetryState.AUTH_ERROR,
    (RetryState.ATTEMPTING, RetryEvent.INVALID): RetryState.INVALID_REQUEST,
    (RetryState.ATTEMPTING, RetryEvent.RATE_LIMITED): RetryState.RATE_LIMITED,
    (RetryState.ATTEMPTING, RetryEvent.TRANSIENT): RetryState.TRANSIENT_ERROR,
    (RetryState.RATE_LIMITED, RetryEvent.WAIT_DONE): RetryState.COOLDOWN,
    (RetryState.RATE_LIMITED, RetryEvent.BUDGET_SPENT): RetryState.EXHAUSTED,
    (RetryState.COOLDOWN, RetryEvent.WAIT_DONE): RetryState.ATTEMPTING,
    (RetryState.TRANSIENT_ERROR, RetryEvent.WAIT_DONE): RetryState.BACKOFF,
    (RetryState.TRANSIENT_ERROR, RetryEvent.BUDGET_SPENT): RetryState.EXHAUSTED,
    (RetryState.BACKOFF, RetryEvent.WAIT_DONE): RetryState.ATTEMPTING,
}


def transition(state: RetryState, event: RetryEvent) -> RetryState:
    """
    Next state for ``event`` in ``state``.

    Raises:
        ValueError: For a transition the machine does not allow, such as
            any event in a terminal state.
    """
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"invalid retry transition: {state.value} --{event.value}-->") from None


# =============================================================================
# Retry hints
# =============================================================================

# "Please retry in 5.2s", "retry in 12s"
_RETRY_IN = re.compile(r"retry in (\d+(?:\.\d+)?)\s*s", re.IGNORECASE)

# RetryInfo detail in JSON error bodies: "retryDelay": "5s"
_RETRY_DELAY = re.compile(r"\"?retryDelay\"?\s*[:=]\s*\"(\d+(?:\.\d+)?)s\"", re.IGNORECASE)


def parse_retry_after(detail: Optional[str]) -> Optional[float]:
    """
    Suggested wait in seconds from an endpoint error message, if any.

    >>> parse_retry_after("Quota exceeded. Please retry in 5s.")
    5.0
    >>> parse_retry_after("Resource exhausted") is None
    True
    """
    if not detail:
        return None
    for pattern in (_RETRY_IN, _RETRY_DELAY):
        m = pattern.search(detail)
        if m:
            return float(m.group(1))
    return None


# =============================================================================
# Policy
# =============================================================================

@dataclass
class RetryPolicy:
    """
    Timing rules for recoverable failures.

    Attributes mirror RetryConfig; see core/config.py for defaults.
    """
    max_attempts: int = Defaults.RETRY_MAX_ATTEMPTS
    backoff_base_s: float = Defaults.RETRY_BACKOFF_BASE_S
    rate_limit_floor_s: float = Defaults.RETRY_RATE_LIMIT_FLOOR_S
    rate_limit_pad_s: float = Defaults.RETRY_RATE_LIMIT_PAD_S
    rate_limit_pad_ratio: float = Defaults.RETRY_RATE_LIMIT_PAD_RATIO
    jitter_s: float = Defaults.RETRY_JITTER_S
    max_rate_limit_retries: int = Defaults.RETRY_MAX_RATE_LIMIT_RETRIES
    countdown_tick_s: float = Defaults.RETRY_COUNTDOWN_TICK_S

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            backoff_base_s=config.backoff_base_s,
            rate_limit_floor_s=config.rate_limit_floor_s,
            rate_limit_pad_s=config.rate_limit_pad_s,
            rate_limit_pad_ratio=config.rate_limit_pad_ratio,
            jitter_s=config.jitter_s,
            max_rate_limit_retries=config.max_rate_limit_retries,
            countdown_tick_s=config.countdown_tick_s,
        )

    def suggested_wait(self, detail: Optional[str]) -> float:
        """The endpoint's hint, or the floor when it gives none."""
        hint = parse_retry_after(detail)
        return hint if hint is not None else self.rate_limit_floor_s

    def rate_limit_wait(
        self,
        detail: Optional[str],
        consecutive: int = 1,
        rng: Optional[random.Random] = None,
    ) -> float:
        """
        Cooldown after a rate-limit failure.

        ``suggested + pad + suggested * pad_ratio + jitter``, doubled from
        the second consecutive rate-limit hit onward.

        Args:
            detail: Endpoint error text, searched for a retry hint.
            consecutive: 1 for the first hit in a row, 2 for the next...
            rng: Random source for the jitter.
        """
        suggested = self.suggested_wait(detail)
        jitter = (rng or random).uniform(0.0, self.jitter_s) if self.jitter_s > 0 else 0.0
        wait = suggested + self.rate_limit_pad_s + suggested * self.rate_limit_pad_ratio + jitter
        if consecutive >= 2:
            wait *= 2
        return wait

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after ``attempt`` consecutive transient failures."""
        return self.backoff_base_s * (2 ** attempt)
