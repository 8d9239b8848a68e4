# Copyright 2025 iGenius S.p.A
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tiered readiness waiting.

A wait walks an ordered list of probes, cheapest first. Each probe is polled
until it reports READY, its own timeout elapses, or the global budget runs
out. Soft probes that time out are skipped with a warning; hard probes abort
the wait.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
import threading
import time
from typing import Any

from vm_orchestrator.exceptions import VmOrchestratorError
from vm_orchestrator.helpers.logger import setup_logger
from vm_orchestrator.platform.protocols import ProbeOutcome, ProbeStatus

logger = setup_logger(__name__)

CANCELLED = "cancelled"
CANCEL_CHECK_S = 0.1

CheckFn = Callable[[Any], "ProbeOutcome | bool"]


class CancellationToken:
    """Cooperative cancellation flag shared with signal handlers."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, waking as soon as the token is cancelled."""
        return self._event.wait(timeout)


@dataclass(frozen=True)
class Probe:
    """A named readiness check.

    Attributes
    ----------
    name: str
        Label used in logs and results.
    check: Callable
        Called with the wait target; returns a ProbeOutcome (or a bool).
    interval_s: float
        Pause between two attempts.
    timeout_s: float
        Ceiling for this tier, measured from its first attempt.
    soft: bool
        If True a timeout degrades the result instead of aborting the wait.
    attempt_timeout_s: float | None
        Ceiling for a single attempt; falls back to the waiter's default.
    """

    name: str
    check: CheckFn
    interval_s: float = 3.0
    timeout_s: float = 60.0
    soft: bool = False
    attempt_timeout_s: float | None = None

    def __post_init__(self) -> None:
        if self.interval_s <= 0:
            raise ValueError(f"Probe '{self.name}': interval_s must be > 0")
        if self.timeout_s <= 0:
            raise ValueError(f"Probe '{self.name}': timeout_s must be > 0")
        if self.attempt_timeout_s is not None and self.attempt_timeout_s <= 0:
            raise ValueError(f"Probe '{self.name}': attempt_timeout_s must be > 0")


@dataclass(frozen=True)
class WaitResult:
    elapsed: float

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class Ready(WaitResult):
    degraded: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class TimedOut(WaitResult):
    probe: str
    last_outcome: ProbeOutcome | None = None
    scope: str = "global"  # "global" or "probe"


@dataclass(frozen=True)
class Failed(WaitResult):
    reason: str
    probe: str | None = None

    @property
    def cancelled(self) -> bool:
        return self.reason == CANCELLED


def _coerce(value: "ProbeOutcome | bool") -> ProbeOutcome:
    if isinstance(value, ProbeOutcome):
        return value
    return ProbeOutcome.ready() if value else ProbeOutcome.not_yet()


class ReadinessWaiter:
    """Poll an ordered list of probes under per-attempt, per-probe and global ceilings.

    ``now`` and ``sleep`` are injectable for tests. When ``sleep`` is not
    given, pauses wait on the cancellation token so a cancel wakes the loop
    immediately.
    """

    def __init__(
        self,
        *,
        attempt_timeout_s: float = 5.0,
        now: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] | None = None,
    ):
        if attempt_timeout_s <= 0:
            raise ValueError("attempt_timeout_s must be > 0")
        self.attempt_timeout_s = attempt_timeout_s
        self._now = now
        self._sleep = sleep

    def wait(
        self,
        target: Any,
        probes: Sequence[Probe],
        global_timeout_s: float,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> WaitResult:
        probes = list(probes)
        if not probes:
            raise ValueError("At least one probe is required")
        if global_timeout_s <= 0:
            raise ValueError("global_timeout_s must be > 0")

        token = cancel_token or CancellationToken()
        sleep = self._sleep or token.wait
        start = self._now()
        global_deadline = start + global_timeout_s
        degraded: list[str] = []

        for probe in probes:
            result = self._poll(probe, target, start, global_deadline, token, sleep, degraded)
            if result is not None:
                return result

        elapsed = self._now() - start
        if degraded:
            logger.warning(f"Ready with degraded confidence after {elapsed:.1f}s (skipped: {', '.join(degraded)})")
        return Ready(elapsed=elapsed, degraded=tuple(degraded))

    def _poll(
        self,
        probe: Probe,
        target: Any,
        start: float,
        global_deadline: float,
        token: CancellationToken,
        sleep: Callable[[float], Any],
        degraded: list[str],
    ) -> WaitResult | None:
        """Poll one tier. Returns a terminal result, or None to move on."""
        probe_start = self._now()
        probe_deadline = min(probe_start + probe.timeout_s, global_deadline)
        last: ProbeOutcome | None = None
        logger.debug(f"→ Probing '{probe.name}' (timeout {probe.timeout_s:g}s, soft={probe.soft})")

        while True:
            if token.cancelled:
                return Failed(elapsed=self._now() - start, reason=CANCELLED, probe=probe.name)

            remaining = global_deadline - self._now()
            if remaining <= 0:
                return TimedOut(elapsed=self._now() - start, probe=probe.name, last_outcome=last)

            ceiling = min(probe.attempt_timeout_s or self.attempt_timeout_s, remaining)
            last = self._attempt(probe, target, ceiling, token)

            if token.cancelled:
                return Failed(elapsed=self._now() - start, reason=CANCELLED, probe=probe.name)
            if last.status is ProbeStatus.READY:
                took = self._now() - probe_start
                suffix = f": {last.detail}" if last.detail else ""
                logger.info(f"✓ {probe.name} ready (took {took:.1f}s){suffix}")
                return None
            if last.status is ProbeStatus.ERROR:
                reason = last.detail or f"probe '{probe.name}' reported an error"
                return Failed(elapsed=self._now() - start, reason=reason, probe=probe.name)

            t = self._now()
            if t >= global_deadline:
                return TimedOut(elapsed=t - start, probe=probe.name, last_outcome=last)
            if t >= probe_deadline:
                if probe.soft:
                    logger.warning(
                        f"{probe.name} timed out after {t - probe_start:.1f}s - proceeding to the next check"
                    )
                    degraded.append(probe.name)
                    return None
                return TimedOut(elapsed=t - start, probe=probe.name, last_outcome=last, scope="probe")

            if last.detail:
                logger.debug(f"{probe.name}: {last.detail}")
            sleep(min(probe.interval_s, probe_deadline - t))

    def _attempt(self, probe: Probe, target: Any, ceiling: float, token: CancellationToken) -> ProbeOutcome:
        """Run a single check on a daemon thread, giving up after ``ceiling`` seconds.

        The wait for the worker is sliced so a cancel is noticed within
        ``CANCEL_CHECK_S`` even while a check hangs.
        """
        box: dict[str, ProbeOutcome] = {}
        done = threading.Event()

        def _run() -> None:
            try:
                box["outcome"] = _coerce(probe.check(target))
            except VmOrchestratorError as e:
                box["outcome"] = ProbeOutcome.error(str(e))
            except Exception as e:
                logger.debug(f"{probe.name} check raised {type(e).__name__}: {e}")
                box["outcome"] = ProbeOutcome.not_yet(f"{type(e).__name__}: {e}")
            finally:
                done.set()

        worker = threading.Thread(target=_run, name=f"probe-{probe.name}", daemon=True)
        worker.start()
        attempt_deadline = time.monotonic() + ceiling
        while not done.is_set():
            left = attempt_deadline - time.monotonic()
            if left <= 0:
                # The thread is abandoned; it cannot be interrupted.
                return ProbeOutcome.not_yet(f"attempt exceeded {ceiling:.1f}s")
            if token.cancelled:
                return ProbeOutcome.not_yet(CANCELLED)
            done.wait(min(left, CANCEL_CHECK_S))
        return box["outcome"]
