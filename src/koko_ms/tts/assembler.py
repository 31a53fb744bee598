"""
Audio Assembler.

Consumes InferenceResults in completion order and releases them to the
output side under one of two policies.

Ordered (single text, stream, HTTP):
    Result *i* is released only once results 0..i are all available, so
    audio plays back in input order whatever order workers finish in.
    The first failure in index order aborts the operation with
    InferenceError; buffered later results are dropped.

Independent (file batch):
    Every result is handed to the writer the moment it arrives. A failed
    chunk, or a failed write, is recorded in the BatchReport and never
    holds back its siblings.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from koko_ms.core.logging import debug, get_logger, warn
from koko_ms.services.errors import InferenceError, KokoError
from koko_ms.tts.dispatcher import InferenceResult

_LOG = get_logger("koko-ms.assembler")


def assemble_ordered(
    results: Iterable[InferenceResult],
    on_release: Optional[Callable[[InferenceResult], None]] = None,
) -> Iterator[InferenceResult]:
    """
    Yield results in chunk index order.

    Args:
        results: Results in any order; indices must be dense from 0.
        on_release: Called for each result as it leaves the buffer
            (e.g. ``Dispatcher.ack``).

    Raises:
        InferenceError: For the lowest-index failed chunk, once every
            chunk before it has been released.
    """
    pending: Dict[int, InferenceResult] = {}
    next_index = 0

    for result in results:
        pending[result.chunk_index] = result
        debug(_LOG, "buffered", chunk=result.chunk_index, waiting_for=next_index, buffered=len(pending))

        while next_index in pending:
            ready = pending.pop(next_index)
            if not ready.ok:
                if pending:
                    debug(_LOG, "discarded", chunks=sorted(pending))
                pending.clear()
                raise ready.error or InferenceError(f"chunk {next_index} failed", next_index)
            if on_release is not None:
                on_release(ready)
            yield ready
            next_index += 1

    if pending:
        # a gap means the source stopped early (cancelled); nothing past it is valid
        warn(_LOG, "incomplete_sequence", next=next_index, dropped=sorted(pending))


@dataclass
class BatchReport:
    """
    Outcome of an independent emission.

    Attributes:
        written: ``(chunk_index, destination)`` for each chunk written.
        failed: Error message per failed chunk index.
    """
    written: List[Tuple[int, str]] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def total(self) -> int:
        return len(self.written) + len(self.failed)


def emit_independent(
    results: Iterable[InferenceResult],
    write: Callable[[InferenceResult], str],
) -> BatchReport:
    """
    Forward each result to ``write`` as soon as it arrives.

    Args:
        results: Results in completion order.
        write: Writes one result and returns its destination. A
            KokoError or OSError marks only that chunk as failed.

    Returns:
        BatchReport with written and failed chunks.
    """
    report = BatchReport()
    for result in results:
        if not result.ok:
            report.failed[result.chunk_index] = result.error.message if result.error else "inference failed"
            continue
        try:
            destination = write(result)
        except (KokoError, OSError) as exc:
            message = exc.message if isinstance(exc, KokoError) else str(exc)
            warn(_LOG, "write_failed", chunk=result.chunk_index, error=message)
            report.failed[result.chunk_index] = message
            continue
        report.written.append((result.chunk_index, destination))

    report.written.sort()
    return report
