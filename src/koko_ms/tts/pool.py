"""
Instance Pool.

Owns a fixed set of inference sessions, one per worker, and hands them
out one job at a time.

Loading:
    ``InstancePool(factory, instances=N)`` calls ``factory(worker_id)`` N
    times. Loading is all-or-nothing: if any session fails, the sessions
    already loaded are closed and LoadError is raised. A pool object
    always has exactly N ready workers.

Leasing:
    ``acquire()`` blocks until a worker is idle and returns a WorkerLease.
    Waiters are served strictly in arrival order across every caller, so
    concurrent HTTP requests interleave their chunk jobs fairly instead
    of one request starving the others. ``release()`` checks the lease
    token, so a lease can be returned exactly once.

    Workers live in a fixed arena indexed by worker id; a lease is the
    id plus a token that is invalidated on release.

Locking:
    One Condition guards the idle list and the waiter queue. Inference
    never runs under it.

Usage:
    pool = InstancePool(kokoro_session_factory(cfg.model), instances=2)
    with pool.lease() as lease:
        pcm = lease.session.infer("Hello", "af_sky", 1.0)
"""
from __future__ import annotations

import itertools
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Deque, Iterator, List, Optional, Sequence

from koko_ms.core.config import ConfigError
from koko_ms.core.logging import debug, error, get_logger, info, success, trace
from koko_ms.core.metrics import KokoMetrics
from koko_ms.services.errors import AcquireCancelled, LoadError, StaleLeaseError
from koko_ms.tts.engine import InferenceSession, SessionFactory
from koko_ms.utils.timeit import timeit

_LOG = get_logger("koko-ms.pool")


@dataclass(frozen=True)
class WorkerLease:
    """
    Exclusive use of one worker until released.

    Attributes:
        index: Worker id (arena slot).
        token: Lease token; stale once the lease is released.
        session: The worker's inference session.
    """
    index: int
    token: int
    session: InferenceSession


@dataclass
class PoolStats:
    instances: int
    busy: int
    waiting: int
    total_jobs: int


class _WorkerSlot:
    __slots__ = ("index", "session", "token")

    def __init__(self, index: int, session: InferenceSession):
        self.index = index
        self.session = session
        self.token: Optional[int] = None


class InstancePool:
    """
    Fixed-size pool of inference workers with FIFO leasing.

    Args:
        factory: Called once per worker with its id; returns a loaded session.
        instances: Number of workers (>= 1).
        metrics: Collector for this pool's gauges and jobs; a new one when omitted.

    Raises:
        ConfigError: If ``instances`` < 1.
        LoadError: If any session fails to load.
    """

    def __init__(self, factory: SessionFactory, instances: int = 2, metrics: Optional[KokoMetrics] = None):
        if instances < 1:
            raise ConfigError(f"instances must be at least 1, got {instances}")

        self._slots: List[_WorkerSlot] = []
        with timeit("pool_load") as t:
            for worker_id in range(instances):
                info(_LOG, f"Initializing instance [{worker_id:02d}] ({worker_id + 1}/{instances})")
                try:
                    session = factory(worker_id)
                except Exception as exc:
                    error(_LOG, "instance_load_failed", worker=worker_id, error=str(exc))
                    self._close_slots()
                    if isinstance(exc, LoadError):
                        raise
                    raise LoadError(f"instance {worker_id} failed to load: {exc}") from exc
                self._slots.append(_WorkerSlot(worker_id, session))

        rates = {slot.session.sample_rate for slot in self._slots}
        if len(rates) != 1:
            self._close_slots()
            raise LoadError(f"sessions disagree on sample rate: {sorted(rates)}")
        self._sample_rate = rates.pop()

        self._cond = threading.Condition(threading.Lock())
        self._idle: Deque[int] = deque(range(instances))
        self._waiters: Deque[object] = deque()
        self._tokens = itertools.count(1)
        self._total_jobs = 0
        self._closed = False

        self._metrics = metrics or KokoMetrics()
        self._metrics.set_pool_instances(instances)
        self._metrics.set_pool_state(0, 0)
        success(_LOG, "pool_ready", instances=instances, sample_rate=self._sample_rate, seconds=t.timing.seconds)

    def _close_slots(self) -> None:
        for slot in self._slots:
            slot.session.close()
        self._slots = []

    @property
    def size(self) -> int:
        return len(self._slots)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def metrics(self) -> KokoMetrics:
        return self._metrics

    def voices(self) -> Sequence[str]:
        """Voice names of the loaded pack (identical for every worker)."""
        return self._slots[0].session.voices()

    def resolve_voice(self, voice: str) -> str:
        """
        Check that a voice spec exists in the loaded pack.

        Voice data is immutable after load, so this reads worker 0's pack
        without leasing it.

        Raises:
            UnknownVoiceError: If the voice (or a blend component) is unknown.
        """
        self._slots[0].session.resolve_voice(voice)
        return voice

    def _publish(self) -> None:
        self._metrics.set_pool_state(self.size - len(self._idle), len(self._waiters))

    def acquire(self, cancel: Optional[threading.Event] = None) -> WorkerLease:
        """
        Block until a worker is free and lease it.

        Args:
            cancel: When set, the caller stops waiting.

        Raises:
            AcquireCancelled: If ``cancel`` is set before a worker is granted.
            RuntimeError: If the pool is closed.
        """
        ticket = object()
        with self._cond:
            if self._closed:
                raise RuntimeError("pool is closed")
            self._waiters.append(ticket)
            self._publish()
            try:
                while not (self._waiters[0] is ticket and self._idle):
                    if cancel is not None and cancel.is_set():
                        raise AcquireCancelled()
                    if self._closed:
                        raise RuntimeError("pool is closed")
                    # short wait so a cancel event is noticed promptly
                    self._cond.wait(timeout=0.1)
            except BaseException:
                self._waiters.remove(ticket)
                self._publish()
                self._cond.notify_all()
                raise

            self._waiters.popleft()
            slot = self._slots[self._idle.popleft()]
            slot.token = next(self._tokens)
            self._total_jobs += 1
            self._publish()
            # the next waiter may now be at the head with a worker idle
            self._cond.notify_all()

        trace(_LOG, "lease_granted", worker=slot.index, token=slot.token)
        return WorkerLease(index=slot.index, token=slot.token, session=slot.session)

    def release(self, lease: WorkerLease) -> None:
        """
        Return a leased worker to the idle set.

        Raises:
            StaleLeaseError: If the lease was already released or is foreign.
        """
        with self._cond:
            if not 0 <= lease.index < len(self._slots):
                raise StaleLeaseError("lease refers to no worker", {"worker": lease.index})
            slot = self._slots[lease.index]
            if slot.token is None or slot.token != lease.token or slot.session is not lease.session:
                raise StaleLeaseError(
                    f"stale lease for worker {lease.index}",
                    {"worker": lease.index, "token": lease.token},
                )
            slot.token = None
            self._idle.append(slot.index)
            self._publish()
            self._cond.notify_all()
        trace(_LOG, "lease_released", worker=lease.index, token=lease.token)

    @contextmanager
    def lease(self, cancel: Optional[threading.Event] = None) -> Iterator[WorkerLease]:
        """Acquire a worker for the duration of a ``with`` block."""
        lease = self.acquire(cancel)
        try:
            yield lease
        finally:
            self.release(lease)

    def stats(self) -> PoolStats:
        with self._cond:
            return PoolStats(
                instances=self.size,
                busy=self.size - len(self._idle),
                waiting=len(self._waiters),
                total_jobs=self._total_jobs,
            )

    def close(self) -> None:
        """
        Close every session.

        Waiting callers are woken with RuntimeError. Call only once no job
        is running.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        for slot in self._slots:
            slot.session.close()
        debug(_LOG, "pool_closed", instances=self.size)

    def __enter__(self) -> "InstancePool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
