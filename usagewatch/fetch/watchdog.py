"""Supervision of in-flight web probes: timeout, liveness extension, cancellation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict

from usagewatch.core.exceptions import AlreadyRunningError

logger = logging.getLogger("usagewatch.watchdog")

DEFAULT_CEILING_FACTOR = 2.0


class CancellationToken:
    """One-way cancellation flag that tasks check at their suspension points."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError()


class ProbeState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class ProbeContext:
    token: CancellationToken
    bytes_received: int = 0

    def report_progress(self, nbytes: int) -> None:
        self.bytes_received += nbytes

    @property
    def progressed(self) -> bool:
        return self.bytes_received > 0


@dataclass(frozen=True)
class ProbeResult:
    state: ProbeState
    value: Any = None
    error: BaseException | None = field(default=None, repr=False)
    elapsed: float = 0.0
    extended: bool = False


ProbeTask = Callable[[ProbeContext], Awaitable[Any]]


def _discard_late_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class WebProbeWatchdog:
    """Runs at most one probe per provider and always returns within the ceiling.

    ``timeout`` is a soft deadline: if the probe reported progress by then it
    is extended once to ``ceiling_factor * timeout``.
    """

    def __init__(
        self,
        ceiling_factor: float = DEFAULT_CEILING_FACTOR,
        shutdown_token: CancellationToken | None = None,
    ) -> None:
        self._ceiling_factor = max(1.0, ceiling_factor)
        self.shutdown_token = shutdown_token or CancellationToken()
        self._running: Dict[str, asyncio.Future] = {}
        self._states: Dict[str, ProbeState] = {}

    def state(self, provider_id: str) -> ProbeState:
        return self._states.get(provider_id, ProbeState.IDLE)

    def is_running(self, provider_id: str) -> bool:
        return provider_id in self._running

    def shutdown(self) -> None:
        self.shutdown_token.cancel()

    async def start(self, provider_id: str, timeout: float, task: ProbeTask) -> ProbeResult:
        if provider_id in self._running:
            raise AlreadyRunningError(provider_id)
        if self.shutdown_token.cancelled:
            self._states[provider_id] = ProbeState.CANCELLED
            return ProbeResult(state=ProbeState.CANCELLED)

        loop = asyncio.get_running_loop()
        started = loop.time()
        context = ProbeContext(token=CancellationToken())
        probe = asyncio.ensure_future(task(context))
        shutdown_waiter = asyncio.ensure_future(self.shutdown_token.wait())
        self._running[provider_id] = probe
        self._states[provider_id] = ProbeState.RUNNING

        deadline = started + timeout
        ceiling = started + timeout * self._ceiling_factor
        extended = False
        try:
            while True:
                remaining = max(0.0, deadline - loop.time())
                done, _ = await asyncio.wait(
                    {probe, shutdown_waiter},
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                elapsed = loop.time() - started
                if probe in done:
                    if probe.cancelled():
                        return self._finish(provider_id, ProbeState.CANCELLED, elapsed, extended)
                    self._states[provider_id] = ProbeState.COMPLETED
                    return ProbeResult(
                        state=ProbeState.COMPLETED,
                        value=None if probe.exception() else probe.result(),
                        error=probe.exception(),
                        elapsed=elapsed,
                        extended=extended,
                    )
                if shutdown_waiter in done:
                    self._abandon(probe, context)
                    return self._finish(provider_id, ProbeState.CANCELLED, elapsed, extended)
                if not extended and context.progressed and ceiling > deadline:
                    extended = True
                    deadline = ceiling
                    logger.info(
                        "Web probe slow but alive, extending deadline",
                        extra={
                            "event": "probe_extended",
                            "provider": provider_id,
                            "bytes_received": context.bytes_received,
                        },
                    )
                    continue
                self._abandon(probe, context)
                logger.warning(
                    "Web probe timed out",
                    extra={
                        "event": "probe_timeout",
                        "provider": provider_id,
                        "elapsed": round(elapsed, 3),
                        "extended": extended,
                    },
                )
                return self._finish(provider_id, ProbeState.TIMED_OUT, elapsed, extended)
        except asyncio.CancelledError:
            self._abandon(probe, context)
            self._states[provider_id] = ProbeState.CANCELLED
            raise
        finally:
            shutdown_waiter.cancel()
            self._running.pop(provider_id, None)

    def _abandon(self, probe: asyncio.Future, context: ProbeContext) -> None:
        context.token.cancel()
        probe.cancel()
        probe.add_done_callback(_discard_late_result)

    def _finish(
        self, provider_id: str, state: ProbeState, elapsed: float, extended: bool
    ) -> ProbeResult:
        self._states[provider_id] = state
        return ProbeResult(state=state, elapsed=elapsed, extended=extended)


__all__ = [
    "CancellationToken",
    "ProbeContext",
    "ProbeResult",
    "ProbeState",
    "WebProbeWatchdog",
]
