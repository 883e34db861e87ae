"""
Synthesis Client: credential-aware retrying wrapper around an endpoint.

``SynthesisClient.synthesize`` drives one segment request through the
retry state machine (tts/retry.py) until it succeeds or fails for good:

    1. Ask the CredentialPool for the best credential. If every credential
       is saturated, count down the pool's wait first.
    2. Record the use and send the request (exactly one record per send).
    3. On RateLimited: hold the credential in the pool and cool down for
       the hinted wait (padded, jittered, doubled on repeat hits),
       emitting countdown events. The cooldown ends early only when the
       pool is changed during it (credential skipped or replaced) and a
       credential is free as a result.
    4. On TransientError: back off exponentially, up to max_attempts.
    5. On AuthError / InvalidRequestError: give up immediately.

Every attempt takes its credential fresh from the pool. The held
credential is passed over until its cooldown ends, so the retry after a
429 lands on another key whenever one is available.

Cancellation is cooperative: an ``asyncio.Event`` is checked before each
send, on every countdown tick and after each response. A response that
arrives after cancellation is discarded.
"""
from __future__ import annotations

import asyncio
import math
import random
from dataclasses import dataclass
from typing import Callable, Optional

from tts_stream.core.logging import get_logger, info, success, verbose, warn
from tts_stream.tts.credentials import CredentialChoice, CredentialPool, mask_credential
from tts_stream.tts.endpoint import SpeechEndpoint, SynthesisRequest
from tts_stream.tts.errors import (
    AuthError,
    ExhaustedRetries,
    InvalidRequestError,
    PipelineCancelled,
    RateLimited,
    TransientError,
)
from tts_stream.tts.retry import RetryEvent, RetryPolicy, RetryState, transition
from tts_stream.utils.timeit import timeit

_LOG = get_logger("tts-stream.client")


@dataclass
class ClientEvent:
    """
    Progress notification emitted while a request waits or retries.

    Attributes:
        kind: "waiting" (all credentials busy), "cooldown" (after a rate
            limit), "backoff" (after a transient error) or "resumed"
            (a wait ended early).
        message: Human-readable status line.
        remaining_s: Seconds left in the current wait.
        attempt: Attempt number of the request (1-based).
        credential: Masked credential concerned.
    """
    kind: str
    message: str
    remaining_s: float = 0.0
    attempt: int = 0
    credential: str = ""


EventCallback = Callable[[ClientEvent], None]


class SynthesisClient:
    """
    Sends synthesis requests through a CredentialPool with retries.

    Args:
        endpoint: Remote endpoint adapter.
        pool: Credential pool shared with the pipeline.
        policy: Retry timing rules.
        on_event: Called with a ClientEvent on every countdown tick.
        rng: Random source for rate-limit jitter.
    """

    def __init__(
        self,
        endpoint: SpeechEndpoint,
        pool: CredentialPool,
        policy: Optional[RetryPolicy] = None,
        on_event: Optional[EventCallback] = None,
        rng: Optional[random.Random] = None,
    ):
        self.endpoint = endpoint
        self.pool = pool
        self.policy = policy or RetryPolicy()
        self.on_event = on_event
        self._rng = rng or random.Random()
        self._wake: Optional[asyncio.Event] = None
        self._pool_version = 0
        self.current_credential: Optional[str] = None
        self.state: RetryState = RetryState.ATTEMPTING

    # =========================================================================
    # Public API
    # =========================================================================

    def notify_pool_changed(self) -> None:
        """
        Re-evaluate any wait in progress immediately.

        Call from the event loop thread after changing the pool (credential
        skipped, credentials replaced) so a countdown does not sleep out
        its tick before noticing. A rate-limit cooldown only ends early
        after such a change.
        """
        self._pool_version += 1
        if self._wake is not None:
            self._wake.set()

    async def synthesize(
        self,
        request: SynthesisRequest,
        cancel: Optional[asyncio.Event] = None,
    ) -> bytes:
        """
        Synthesize one request, retrying recoverable failures.

        Returns:
            Raw PCM16 mono audio bytes.

        Raises:
            AuthError: Credential rejected.
            InvalidRequestError: Request rejected.
            ExhaustedRetries: Retry budget spent.
            NoCredentialsAvailable: Pool is empty.
            PipelineCancelled: ``cancel`` was set.
        """
        if self._wake is None:
            self._wake = asyncio.Event()

        self.state = RetryState.ATTEMPTING
        attempt = 0
        transient_failures = 0
        consecutive_rate_limits = 0

        while True:
            self._check_cancel(cancel)
            choice = await self._acquire_credential(cancel, attempt + 1)
            self._check_cancel(cancel)
            attempt += 1
            self.current_credential = choice.credential
            masked = mask_credential(choice.credential)

            try:
                with timeit("request", meta={"attempt": attempt}) as t:
                    pcm = await self.endpoint.synthesize(request, choice.credential)

            except (AuthError, InvalidRequestError) as e:
                event = RetryEvent.AUTH if isinstance(e, AuthError) else RetryEvent.INVALID
                self.state = transition(self.state, event)
                warn(_LOG, "request_rejected", code=e.code, attempt=attempt, credential=masked,
                     message=e.message, seconds=round(t.seconds, 3))
                raise

            except RateLimited as e:
                self.state = transition(self.state, RetryEvent.RATE_LIMITED)
                consecutive_rate_limits += 1
                transient_failures = 0
                if consecutive_rate_limits > self.policy.max_rate_limit_retries:
                    self.state = transition(self.state, RetryEvent.BUDGET_SPENT)
                    raise ExhaustedRetries(
                        f"Still rate limited after {consecutive_rate_limits} attempts: {e.message}",
                        last_error=e,
                        details={"attempts": attempt},
                    ) from e

                wait = self.policy.rate_limit_wait(e.detail, consecutive_rate_limits, self._rng)
                warn(_LOG, "rate_limited", attempt=attempt, credential=masked,
                     consecutive=consecutive_rate_limits, wait_s=round(wait, 2))
                if choice.credential in self.pool.credentials:
                    self.pool.hold(choice.credential, wait)
                self.state = transition(self.state, RetryEvent.WAIT_DONE)
                await self._countdown(
                    wait,
                    cancel,
                    kind="cooldown",
                    template="Rate limit hit. Cooling down for {s}s...",
                    attempt=attempt,
                    credential=masked,
                    release=lambda version=self._pool_version: self._pool_changed_since(version),
                )
                self.state = transition(self.state, RetryEvent.WAIT_DONE)
                continue

            except TransientError as e:
                self.state = transition(self.state, RetryEvent.TRANSIENT)
                consecutive_rate_limits = 0
                transient_failures += 1
                if transient_failures >= self.policy.max_attempts:
                    self.state = transition(self.state, RetryEvent.BUDGET_SPENT)
                    raise ExhaustedRetries(
                        f"Giving up after {transient_failures} failed attempts: {e.message}",
                        last_error=e,
                        details={"attempts": attempt},
                    ) from e

                delay = self.policy.backoff_delay(transient_failures)
                warn(_LOG, "transient_failure", attempt=attempt, credential=masked,
                     message=e.message, wait_s=round(delay, 2))
                self.state = transition(self.state, RetryEvent.WAIT_DONE)
                await self._countdown(
                    delay,
                    cancel,
                    kind="backoff",
                    template=(
                        f"Request failed ({e.message}). Retrying in {{s}}s "
                        f"(attempt {transient_failures + 1}/{self.policy.max_attempts})..."
                    ),
                    attempt=attempt,
                    credential=masked,
                )
                self.state = transition(self.state, RetryEvent.WAIT_DONE)
                continue

            # A response that raced a cancellation is dropped
            self._check_cancel(cancel)
            self.state = transition(self.state, RetryEvent.OK)
            success(_LOG, "request_ok", attempt=attempt, credential=masked,
                    bytes=len(pcm), seconds=round(t.seconds, 3))
            return pcm

    # =========================================================================
    # Internals
    # =========================================================================

    async def _acquire_credential(self, cancel: Optional[asyncio.Event], attempt: int) -> CredentialChoice:
        """Wait until some credential is free, then record a use of it."""
        choice = self.pool.peek_best()
        if choice.wait_s > 0:
            info(_LOG, "credentials_busy", wait_s=round(choice.wait_s, 2), load=choice.load)
            await self._countdown(
                choice.wait_s,
                cancel,
                kind="waiting",
                template="All credentials busy. Waiting {s}s...",
                attempt=attempt,
                credential=choice.masked,
                release=lambda: self.pool.peek_best().wait_s <= 0,
            )
        choice = self.pool.select_and_record()
        verbose(_LOG, "credential_acquired", credential=choice.masked, load=choice.load + 1)
        return choice

    def _pool_changed_since(self, version: int) -> bool:
        if self._pool_version == version:
            return False
        return self.pool.peek_best().wait_s <= 0

    async def _countdown(
        self,
        total_s: float,
        cancel: Optional[asyncio.Event],
        kind: str,
        template: str,
        attempt: int,
        credential: str,
        release: Optional[Callable[[], bool]] = None,
    ) -> None:
        """
        Wait ``total_s`` seconds, emitting an event every tick.

        Returns early when ``release()`` turns true; raises
        PipelineCancelled if ``cancel`` is set.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + total_s
        tick = self.policy.countdown_tick_s

        while True:
            self._check_cancel(cancel)
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            if release is not None and release():
                info(_LOG, "wait_released", kind=kind, remaining_s=round(remaining, 2))
                self._emit(ClientEvent(
                    kind="resumed",
                    message="Credential available, resuming...",
                    remaining_s=0.0,
                    attempt=attempt,
                    credential=credential,
                ))
                return

            self._emit(ClientEvent(
                kind=kind,
                message=template.format(s=math.ceil(remaining)),
                remaining_s=remaining,
                attempt=attempt,
                credential=credential,
            ))
            await self._sleep(min(tick, remaining), cancel)

    async def _sleep(self, delay: float, cancel: Optional[asyncio.Event]) -> None:
        """Sleep up to ``delay``; wakes early on cancel or pool change."""
        assert self._wake is not None
        waiters = [asyncio.ensure_future(self._wake.wait())]
        if cancel is not None:
            waiters.append(asyncio.ensure_future(cancel.wait()))
        try:
            await asyncio.wait(waiters, timeout=delay, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for w in waiters:
                w.cancel()
        self._wake.clear()

    def _check_cancel(self, cancel: Optional[asyncio.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise PipelineCancelled("Synthesis cancelled")

    def _emit(self, event: ClientEvent) -> None:
        if self.on_event is not None:
            self.on_event(event)
