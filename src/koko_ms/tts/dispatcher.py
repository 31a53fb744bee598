"""
Dispatcher.

Turns a stream of TextChunks into InferenceResults using the workers of
an InstancePool.

A feeder thread consumes the chunk source (which may still be producing,
e.g. stdin), leases a worker for each chunk in FIFO order and submits the
job to a thread pool sized to the InstancePool. Results come back in
completion order, each tagged with its chunk index; reordering is the
assembler's job.

    with Dispatcher(pool, voice="af_sky", speed=1.0) as dispatcher:
        for result in dispatcher.dispatch(chunks):
            ...

Failures:
    A job that raises produces a result with ``error`` set; sibling jobs
    are unaffected. If the chunk source itself raises, the error is
    re-raised to the consumer after in-flight results have drained.

Backpressure:
    With ``max_outstanding`` set, at most that many results may be
    dispatched without the consumer calling ``ack()``. Ordered assembly
    acks on emit, which caps its reorder buffer.

Cancellation:
    ``cancel()`` (or leaving the ``with`` block) stops submission. Jobs
    already running finish and release their workers; their results are
    discarded.
"""
from __future__ import annotations

import contextvars
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

import numpy as np

from koko_ms.core.logging import get_logger, set_worker_id, verbose, warn
from koko_ms.services.errors import AcquireCancelled, InferenceError
from koko_ms.tts.pool import InstancePool, WorkerLease
from koko_ms.tts.segmenter import TextChunk
from koko_ms.utils.timeit import timeit

_LOG = get_logger("koko-ms.dispatcher")


@dataclass
class InferenceResult:
    """
    Outcome of one inference job.

    Attributes:
        chunk_index: Index of the originating TextChunk.
        pcm: Float32 mono samples, or None on failure.
        sample_rate: Sample rate of ``pcm``.
        error: Set when inference failed.
        seconds: Inference time.
    """
    chunk_index: int
    pcm: Optional[np.ndarray]
    sample_rate: int
    error: Optional[InferenceError] = None
    seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _Done:
    submitted: int
    error: Optional[BaseException] = None


class Dispatcher:
    """
    Runs chunk jobs on pool workers.

    Args:
        pool: Shared InstancePool.
        voice: Voice spec passed to every job.
        speed: Speaking rate passed to every job.
        max_outstanding: Results allowed in flight before ``ack()``; None
            for no limit.
    """

    def __init__(
        self,
        pool: InstancePool,
        voice: str,
        speed: float,
        max_outstanding: Optional[int] = None,
    ):
        self.pool = pool
        self.voice = voice
        self.speed = speed
        self._cancel = threading.Event()
        self._window = threading.Semaphore(max_outstanding) if max_outstanding else None
        self._results: "queue.Queue[object]" = queue.Queue()
        self._executor = ThreadPoolExecutor(max_workers=pool.size, thread_name_prefix="koko-infer")
        self._feeder: Optional[threading.Thread] = None
        self._closed = False

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop submitting chunks; running jobs finish and are discarded."""
        self._cancel.set()

    def ack(self, result: Optional[InferenceResult] = None) -> None:
        """Tell the dispatcher one result has been consumed."""
        if self._window is not None:
            self._window.release()

    def _wait_window(self) -> bool:
        if self._window is None:
            return True
        while not self._cancel.is_set():
            if self._window.acquire(timeout=0.1):
                return True
        return False

    def _execute(self, chunk: TextChunk, lease: WorkerLease) -> None:
        set_worker_id(lease.index)
        try:
            with timeit("inference") as t:
                pcm = lease.session.infer(chunk.content, self.voice, self.speed)
            result = InferenceResult(chunk.index, pcm, self.pool.sample_rate, seconds=t.timing.seconds)
            verbose(_LOG, "chunk_done", chunk=chunk.index, samples=len(pcm), seconds=result.seconds)
        except Exception as exc:
            warn(_LOG, "chunk_failed", chunk=chunk.index, error=str(exc))
            result = InferenceResult(
                chunk.index,
                None,
                self.pool.sample_rate,
                error=InferenceError(f"chunk {chunk.index} failed: {exc}", chunk.index),
            )
        finally:
            self.pool.release(lease)
            set_worker_id(None)

        if self._cancel.is_set():
            self.pool.metrics.record_job("discarded", result.seconds)
        elif result.ok:
            self.pool.metrics.record_job("ok", result.seconds, len(result.pcm) / result.sample_rate)
        else:
            self.pool.metrics.record_job("error")
        self._results.put(result)

    def _feed(self, chunks: Iterable[TextChunk]) -> None:
        submitted = 0
        failure: Optional[BaseException] = None
        source = iter(chunks)
        try:
            for chunk in source:
                if not self._wait_window():
                    break
                try:
                    lease = self.pool.acquire(self._cancel)
                except AcquireCancelled:
                    break
                # copied context carries the request id onto the worker thread
                ctx = contextvars.copy_context()
                try:
                    self._executor.submit(ctx.run, self._execute, chunk, lease)
                except RuntimeError:
                    # executor shut down by close() after the lease was granted
                    self.pool.release(lease)
                    break
                submitted += 1
        except Exception as exc:
            failure = exc
        finally:
            close = getattr(source, "close", None)
            if close is not None:
                close()
            self._results.put(_Done(submitted, failure))

    def dispatch(self, chunks: Iterable[TextChunk]) -> Iterator[InferenceResult]:
        """
        Dispatch ``chunks`` and yield results in completion order.

        May be called once per Dispatcher.

        Raises:
            Exception: Whatever the chunk source raised, after in-flight
                results have been yielded.
        """
        if self._feeder is not None:
            raise RuntimeError("dispatch() already called")

        ctx = contextvars.copy_context()
        self._feeder = threading.Thread(
            target=ctx.run, args=(self._feed, chunks), name="koko-feeder", daemon=True
        )
        self._feeder.start()
        return self._drain()

    def _drain(self) -> Iterator[InferenceResult]:
        done: Optional[_Done] = None
        received = 0
        while done is None or received < done.submitted:
            item = self._results.get()
            if isinstance(item, _Done):
                done = item
                continue
            received += 1
            if self._cancel.is_set():
                self.ack()
                continue
            yield item  # type: ignore[misc]

        if done.error is not None and not self._cancel.is_set():
            raise done.error

    def close(self) -> None:
        """
        Cancel and wait for running jobs to release their workers.

        A feeder blocked on a slow chunk source (stdin) is not joined; it
        exits without submitting once the source yields or ends.
        """
        if self._closed:
            return
        self._closed = True
        self.cancel()
        self._executor.shutdown(wait=True)
        if self._feeder is not None:
            self._feeder.join(timeout=0.1)

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
