"""Adaptive sampling controller.

Drives a :class:`MeasurementSource` round by round.  A round measures
every spec once, in a fixed order, sequentially.  A session goes through
these phases:

    warmup   one discarded round to absorb cold-start costs
    minimum  ``sample_size`` rounds, every sample kept, no early exit
    auto     batches of ``batch_size`` rounds until every pairwise
             difference clears every horizon, or the timeout elapses
    done

The timeout is measured from the start of the auto phase and checked
once per batch, so a session can overrun it by up to one batch.
Cancellation is only honoured between rounds; a started measurement
always completes.
"""

from __future__ import annotations

import itertools
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from pacer.errors import MeasurementError
from pacer.results import SampleSet, SessionResult, make_session_result
from pacer.specs import BenchmarkSpec
from pacer.stats import Horizons

log = logging.getLogger("pacer")

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_ATTEMPTS = 3


class MeasurementSource(Protocol):
    """Produces one millisecond sample for a spec per call."""

    def measure(self, spec: BenchmarkSpec) -> float:
        """Raises MeasurementError when no sample could be obtained."""
        ...


@dataclass
class SamplerConfig:
    """Sampling parameters for one session."""

    sample_size: int
    timeout_minutes: float
    horizons: Horizons
    batch_size: int = DEFAULT_BATCH_SIZE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS


@dataclass
class SamplerProgress:
    """Progress info passed to the callback after every measurement."""

    phase: str  # "warmup", "minimum", "auto", "done"
    spec: str
    round: int  # 1-based within the session, 0 for warmup
    total_rounds: int  # 0 when unknown (auto phase)
    millis: float | None = None
    status: str = ""
    elapsed_s: float = 0.0


ProgressCallback = Callable[[SamplerProgress], None]


# ---------------------------------------------------------------------------
# AutoSampler
# ---------------------------------------------------------------------------


class AutoSampler:
    """Runs a benchmarking session against a measurement source.

    Usage::

        sampler = AutoSampler(specs, source, SamplerConfig(50, 3.0, horizons))
        session = sampler.run()
    """

    def __init__(
        self,
        specs: Sequence[BenchmarkSpec],
        source: MeasurementSource,
        config: SamplerConfig,
        *,
        progress_callback: ProgressCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if config.sample_size < 2:
            raise ValueError(f"sample_size must be at least 2, got {config.sample_size}")
        if config.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {config.batch_size}")
        if config.max_attempts < 1:
            raise ValueError(f"max_attempts must be positive, got {config.max_attempts}")
        self.specs = list(specs)
        self.source = source
        self.config = config
        self.progress: ProgressCallback = progress_callback or self._default_progress
        self._clock = clock
        self._cancel = threading.Event()
        self.phase = "warmup"
        self.rounds = 0
        self.hit_timeout = False
        self.interrupted = False
        self.sample_sets = [SampleSet(name=spec.name, spec=spec) for spec in self.specs]

    def cancel(self) -> None:
        """Stop the session at the next round boundary.

        Safe to call from a signal handler or another thread.
        """
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self) -> SessionResult:
        """Run warmup, minimum and auto phases and return the results.

        Raises:
            MeasurementError: If any spec ended up with no samples at all.
        """
        start = self._clock()

        self.phase = "warmup"
        if not self._check_cancelled():
            self._run_round(0, keep=False)

        self.phase = "minimum"
        for _ in range(self.config.sample_size):
            if self._check_cancelled():
                break
            self.rounds += 1
            self._run_round(self.rounds, keep=True)

        if self.config.timeout_minutes > 0 and not self.cancelled:
            self._run_auto()

        self.phase = "done"
        session = self.make_results()
        log.info(
            "Session finished after %d rounds in %.1fs (%s)",
            self.rounds,
            self._clock() - start,
            _outcome(session),
        )
        return session

    def make_results(self) -> SessionResult:
        """Build the session result from the samples gathered so far.

        Raises:
            MeasurementError: If any spec has no samples.
        """
        empty = [s.name for s in self.sample_sets if not s.samples]
        if empty and self.rounds > 0:
            raise MeasurementError(
                "No samples could be measured for: " + ", ".join(empty)
            )
        return make_session_result(
            self.sample_sets,
            self.config.horizons,
            hit_timeout=self.hit_timeout,
            interrupted=self.interrupted,
            rounds=self.rounds,
            timeout_minutes=self.config.timeout_minutes,
        )

    # -- phases --------------------------------------------------------------

    def _run_auto(self) -> None:
        self.phase = "auto"
        timeout_s = self.config.timeout_minutes * 60.0
        auto_start = self._clock()
        while True:
            if self._resolved():
                log.info("All differences resolved after %d rounds", self.rounds)
                return
            if self._clock() - auto_start >= timeout_s:
                self.hit_timeout = True
                log.warning(
                    "Timed out after %.1f minutes without resolving all differences",
                    self.config.timeout_minutes,
                )
                return
            for _ in range(self.config.batch_size):
                if self._check_cancelled():
                    return
                self.rounds += 1
                self._run_round(self.rounds, keep=True)

    def _resolved(self) -> bool:
        return make_session_result(self.sample_sets, self.config.horizons).resolved

    def _check_cancelled(self) -> bool:
        if self._cancel.is_set() and not self.interrupted:
            self.interrupted = True
            log.warning("Interrupted after %d rounds; reporting partial results", self.rounds)
        return self.interrupted

    # -- rounds --------------------------------------------------------------

    def _run_round(self, round_index: int, *, keep: bool) -> None:
        total = self.config.sample_size if self.phase == "minimum" else 0
        for spec, sample_set in zip(self.specs, self.sample_sets):
            started = self._clock()
            millis = self._measure_with_retries(spec)
            elapsed = self._clock() - started
            if millis is None:
                if keep:
                    sample_set.dropped += 1
                status = "dropped"
            else:
                if keep:
                    sample_set.append(millis, round_index)
                status = "ok" if keep else "discarded"
            self.progress(
                SamplerProgress(
                    phase=self.phase,
                    spec=spec.one_liner(),
                    round=round_index,
                    total_rounds=total,
                    millis=millis,
                    status=status,
                    elapsed_s=elapsed,
                )
            )

    def _measure_with_retries(self, spec: BenchmarkSpec) -> float | None:
        last_error: MeasurementError | None = None
        for attempt in range(1, self.config.max_attempts + 1):
            try:
                millis = self.source.measure(spec)
            except MeasurementError as exc:
                last_error = exc
                log.debug("Measurement of %s failed (attempt %d): %s", spec.name, attempt, exc)
                continue
            if not math.isfinite(millis) or millis < 0:
                last_error = MeasurementError(f"invalid sample {millis}")
                continue
            return float(millis)
        log.warning(
            "Dropping sample for %s after %d attempts: %s",
            spec.name,
            self.config.max_attempts,
            last_error,
        )
        return None

    @staticmethod
    def _default_progress(progress: SamplerProgress) -> None:
        """Default progress callback: debug log line per measurement."""
        marker = {"warmup": "W", "minimum": "M", "auto": "A"}.get(progress.phase, " ")
        if progress.total_rounds:
            counter = f"{marker}{progress.round}/{progress.total_rounds}"
        else:
            counter = f"{marker}{progress.round}"
        line = f"  {counter:>9s} {progress.spec:40s} "
        if progress.millis is not None:
            line += f"{progress.millis:10.2f}ms "
        if progress.status:
            line += f"[{progress.status}]"
        log.debug(line)


def _outcome(session: SessionResult) -> str:
    if session.interrupted:
        return "interrupted"
    if session.hit_timeout:
        return "timed out"
    if session.resolved:
        return "resolved"
    return "fixed sample size"


# ---------------------------------------------------------------------------
# Pending result handshake
# ---------------------------------------------------------------------------


class PendingResult:
    """Single-slot request/response handshake for asynchronous measurements.

    The requester calls :meth:`begin` before triggering a measurement and
    then blocks in :meth:`wait`; whoever receives the result (for example
    an HTTP callback handler) calls :meth:`fulfill` with the run id.  Only
    one measurement may be outstanding at a time.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._ids = itertools.count(1)
        self._run_id: int | None = None
        self._spec: BenchmarkSpec | None = None
        self._value: float | None = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._run_id is not None

    @property
    def spec(self) -> BenchmarkSpec | None:
        return self._spec

    def begin(self, spec: BenchmarkSpec) -> int:
        """Open the slot for ``spec`` and return its run id.

        Raises:
            MeasurementError: If another measurement is still pending.
        """
        with self._lock:
            if self._run_id is not None:
                raise MeasurementError(
                    f"Measurement {self._run_id} is still pending; "
                    f"cannot start another for {spec.name}"
                )
            self._run_id = next(self._ids)
            self._spec = spec
            self._value = None
            self._ready.clear()
            return self._run_id

    def fulfill(self, run_id: int, millis: float) -> None:
        """Deliver the result for ``run_id``.

        Raises:
            MeasurementError: If ``run_id`` is not the pending run.
        """
        with self._lock:
            if run_id != self._run_id:
                raise MeasurementError(
                    f"Unexpected result for run {run_id} "
                    f"(pending: {self._run_id if self._run_id is not None else 'none'})"
                )
            if self._ready.is_set():
                raise MeasurementError(f"Run {run_id} was already fulfilled")
            self._value = float(millis)
            self._ready.set()

    def abandon(self) -> None:
        """Clear the slot without a result."""
        with self._lock:
            self._run_id = None
            self._spec = None
            self._value = None
            self._ready.clear()

    def wait(self, timeout: float) -> float:
        """Block until the pending run is fulfilled, then clear the slot.

        Raises:
            MeasurementError: If nothing is pending or ``timeout`` seconds
                pass first.  The slot is cleared either way.
        """
        with self._lock:
            run_id = self._run_id
        if run_id is None:
            raise MeasurementError("No measurement is pending")
        fulfilled = self._ready.wait(timeout)
        with self._lock:
            value = self._value
            self._run_id = None
            self._spec = None
            self._value = None
            self._ready.clear()
        if not fulfilled or value is None:
            raise MeasurementError(f"Timed out after {timeout}s waiting for run {run_id}")
        return value
