"""
Credential Pool with Per-Credential Sliding-Window Rate Limiting.

The remote endpoint allows each API credential a fixed number of
requests in any trailing window (9 per 60s by default). The pool keeps a
private ledger of send timestamps per credential and answers one
question before every request: which credential should be used, and how
long must we wait before using it?

Key Concepts:
    - load: number of ledger timestamps inside the trailing window
    - wait_s: 0 while load < limit, otherwise the time until the oldest
      timestamp leaves the window, plus a safety margin
    - hold: a deadline set after the endpoint rate-limits a credential;
      until it passes, the credential's wait_s is at least the time left
    - best credential: minimal wait_s, then minimal load, then least
      recently used, then configuration order. Spreading load this way
      makes an unsaturated pool round-robin.

Ledgers are purged lazily whenever they are read; no background timer
is needed.

Usage:
    pool = CredentialPool(["key-a", "key-b"], limit=9)

    choice = pool.peek_best()            # read-only
    if choice.wait_s > 0:
        await asyncio.sleep(choice.wait_s)
    choice = pool.select_and_record()    # exactly once per sent request

    pool.force_cooldown("key-a")         # operator: skip a stuck key
    pool.hold("key-b", 12.5)             # endpoint answered 429

Thread Safety:
    All operations hold a threading.Lock, so HTTP handlers and the CLI
    may read ``stats()`` while the pipeline task records uses.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Sequence

from tts_stream.core.logging import debug, get_logger, info, verbose, warn
from tts_stream.tts.errors import NoCredentialsAvailable

_LOG = get_logger("tts-stream.credentials")


def mask_credential(credential: str) -> str:
    """Log-safe form of a credential: only its last four characters."""
    if len(credential) <= 4:
        return "..." + "*" * len(credential)
    return "..." + credential[-4:]


@dataclass
class CredentialChoice:
    """The pool's answer: which credential, how long to wait, its load."""
    credential: str
    wait_s: float
    load: int

    @property
    def masked(self) -> str:
        return mask_credential(self.credential)


@dataclass
class CredentialStats:
    """Per-credential snapshot for status displays."""
    credential: str          # masked
    load: int
    limit: int
    wait_s: float
    last_used_s: Optional[float]


class CredentialPool:
    """
    Chooses credentials and computes waits under a per-credential limit.

    Args:
        credentials: API credentials in preference order.
        limit: Requests allowed per credential per window.
        window_s: Sliding window length in seconds.
        safety_margin_s: Added to every non-zero wait.
        clock: Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        credentials: Sequence[str],
        limit: int = 9,
        window_s: float = 60.0,
        safety_margin_s: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        self.window_s = window_s
        self.safety_margin_s = safety_margin_s
        self._clock = clock
        self._limit = limit
        self._lock = threading.Lock()
        self._credentials: List[str] = []
        self._ledgers: Dict[str, Deque[float]] = {}
        self._holds: Dict[str, float] = {}
        self._set_credentials_locked(credentials)

    # =========================================================================
    # Configuration
    # =========================================================================

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def credentials(self) -> List[str]:
        with self._lock:
            return list(self._credentials)

    def __len__(self) -> int:
        with self._lock:
            return len(self._credentials)

    def set_limit(self, limit: int) -> None:
        """Change the per-window limit; existing ledgers are kept."""
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        with self._lock:
            self._limit = limit
        info(_LOG, "credential_limit_changed", limit=limit)

    def set_credentials(self, credentials: Sequence[str]) -> None:
        """
        Replace the configured credentials.

        Credentials present before and after keep their ledgers and
        holds, so a swap cannot be used to bypass a limit already reached.
        """
        with self._lock:
            self._set_credentials_locked(credentials)
            count = len(self._credentials)
        info(_LOG, "credentials_updated", count=count)

    def _set_credentials_locked(self, credentials: Sequence[str]) -> None:
        ordered: List[str] = []
        for c in credentials:
            if c and c not in ordered:
                ordered.append(c)
        self._credentials = ordered
        self._ledgers = {c: self._ledgers.get(c, deque()) for c in ordered}
        self._holds = {c: t for c, t in self._holds.items() if c in self._ledgers}

    # =========================================================================
    # Ledger helpers (caller holds the lock)
    # =========================================================================

    def _purge(self, ledger: Deque[float], now: float) -> None:
        horizon = now - self.window_s
        while ledger and ledger[0] <= horizon:
            ledger.popleft()

    def _wait_for(self, credential: str, ledger: Deque[float], now: float) -> float:
        wait = 0.0
        if len(ledger) >= self._limit:
            # The entry that must expire for load to drop below the limit
            blocking = ledger[len(ledger) - self._limit]
            wait = max(0.0, blocking + self.window_s - now + self.safety_margin_s)
        held_until = self._holds.get(credential)
        if held_until is not None:
            if held_until <= now:
                del self._holds[credential]
            else:
                wait = max(wait, held_until - now)
        return wait

    def _best_locked(self) -> CredentialChoice:
        if not self._credentials:
            raise NoCredentialsAvailable()

        now = self._clock()
        best: Optional[tuple] = None
        for order, cred in enumerate(self._credentials):
            ledger = self._ledgers[cred]
            self._purge(ledger, now)
            wait = self._wait_for(cred, ledger, now)
            last = ledger[-1] if ledger else float("-inf")
            key = (wait, len(ledger), last, order)
            if best is None or key < best[0]:
                best = (key, CredentialChoice(credential=cred, wait_s=wait, load=len(ledger)))

        assert best is not None
        return best[1]

    # =========================================================================
    # Public API
    # =========================================================================

    def peek_best(self) -> CredentialChoice:
        """
        Best credential right now and how long until it may be used.

        Does not record a use.

        Raises:
            NoCredentialsAvailable: If the pool is empty.
        """
        with self._lock:
            return self._best_locked()

    def select_and_record(self) -> CredentialChoice:
        """
        Choose the best credential and record a use of it atomically.

        Call only when about to send; the returned ``wait_s`` is the wait
        that was due at selection time (0 when the caller waited first).

        Raises:
            NoCredentialsAvailable: If the pool is empty.
        """
        with self._lock:
            choice = self._best_locked()
            self._ledgers[choice.credential].append(self._clock())
            load = len(self._ledgers[choice.credential])
        debug(_LOG, "credential_selected", credential=choice.masked, load=load, wait_s=round(choice.wait_s, 3))
        return choice

    def record_use(self, credential: str) -> None:
        """Append a use of ``credential`` at the current time."""
        with self._lock:
            ledger = self._ledgers.get(credential)
            if ledger is None:
                raise KeyError(f"unknown credential {mask_credential(credential)}")
            ledger.append(self._clock())

    def force_cooldown(self, credential: str) -> None:
        """
        Fill the credential's ledger up to the limit with "now".

        The credential is then unusable for a full window. Used when an
        operator skips a stuck credential.
        """
        with self._lock:
            ledger = self._ledgers.get(credential)
            if ledger is None:
                raise KeyError(f"unknown credential {mask_credential(credential)}")
            now = self._clock()
            self._purge(ledger, now)
            while len(ledger) < self._limit:
                ledger.append(now)
        warn(_LOG, "credential_cooldown_forced", credential=mask_credential(credential), wait_s=self.window_s)

    def hold(self, credential: str, seconds: float) -> None:
        """
        Keep ``credential`` from being selected for ``seconds``.

        Used when the endpoint rate-limits a credential whose ledger
        still shows spare capacity. A shorter hold never cuts an
        existing one short.
        """
        with self._lock:
            if credential not in self._ledgers:
                raise KeyError(f"unknown credential {mask_credential(credential)}")
            until = self._clock() + max(0.0, seconds)
            self._holds[credential] = max(until, self._holds.get(credential, until))
        verbose(_LOG, "credential_held", credential=mask_credential(credential), wait_s=round(seconds, 2))

    def load_of(self, credential: str) -> int:
        """Number of uses of ``credential`` inside the current window."""
        with self._lock:
            ledger = self._ledgers[credential]
            self._purge(ledger, self._clock())
            return len(ledger)

    def stats(self) -> List[CredentialStats]:
        """Masked per-credential load and wait."""
        with self._lock:
            now = self._clock()
            out: List[CredentialStats] = []
            for cred in self._credentials:
                ledger = self._ledgers[cred]
                self._purge(ledger, now)
                out.append(CredentialStats(
                    credential=mask_credential(cred),
                    load=len(ledger),
                    limit=self._limit,
                    wait_s=round(self._wait_for(cred, ledger, now), 3),
                    last_used_s=round(now - ledger[-1], 3) if ledger else None,
                ))
            return out
