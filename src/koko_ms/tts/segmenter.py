"""
Text Segmentation.

Splits input into TextChunks, the unit of work for one inference call.
Indices start at 0, are dense and follow input order under every policy.

Policies:
    segment_text()        single-text mode: whole input is one chunk unless
                          it exceeds ``max_chars``, then split at sentence
                          boundaries
    segment_lines()       file mode: one chunk per non-empty line
    iter_stream_chunks()  stream mode: one chunk per non-empty line, yielded
                          as soon as the line is read

``prefetch()`` moves a (possibly blocking) chunk source onto its own
reader thread connected to the consumer by a bounded queue, so reading
stdin overlaps with inference.

Example:
    >>> [c.content for c in segment_lines("Hello\\n\\n  world  \\n")]
    ['Hello', 'world']
    >>> [c.index for c in segment_lines("a\\n\\nb\\nc")]
    [0, 1, 2]
"""
from __future__ import annotations

import queue
import re
import threading
from dataclasses import dataclass
from typing import IO, Iterable, Iterator, List

from koko_ms.core.logging import debug, get_logger, verbose

_LOG = get_logger("koko-ms.segmenter")

# Sentence end followed by whitespace; the match end is the cut point.
_SENTENCE_END = re.compile(r"[.!?;…]+[\"')\]]*\s+", re.UNICODE)
_WHITESPACE = re.compile(r"\s+", re.UNICODE)


@dataclass(frozen=True)
class TextChunk:
    """
    A contiguous piece of input text bound for one inference call.

    Attributes:
        index: Position in arrival order, starting at 0.
        content: Text to synthesize (never empty).
    """
    index: int
    content: str


def _split_point(window: str) -> int:
    """Cut position inside ``window``: last sentence end, else last space, else its length."""
    cut = 0
    for m in _SENTENCE_END.finditer(window):
        cut = m.end()
    if cut:
        return cut
    for m in _WHITESPACE.finditer(window):
        if m.start() > 0:
            cut = m.start()
    return cut or len(window)


def split_text(text: str, max_chars: int) -> List[str]:
    """
    Split text into pieces no longer than ``max_chars``.

    Text that fits is returned as a single piece. Longer text is cut at
    the last sentence boundary (``. ! ? ; …``) inside the limit, falling
    back to the last whitespace and finally to a hard cut.
    """
    if max_chars <= 0:
        raise ValueError(f"max_chars must be positive, got {max_chars}")

    rest = text.strip()
    pieces: List[str] = []
    while len(rest) > max_chars:
        # one extra char so a boundary right at the limit still counts
        cut = min(_split_point(rest[:max_chars + 1]), max_chars)
        piece = rest[:cut].strip()
        if piece:
            pieces.append(piece)
        rest = rest[cut:].strip()
    if rest:
        pieces.append(rest)
    return pieces


def segment_text(text: str, max_chars: int) -> List[TextChunk]:
    """Single-text policy. Empty or whitespace-only input yields no chunks."""
    chunks = [TextChunk(i, piece) for i, piece in enumerate(split_text(text, max_chars))]
    verbose(_LOG, "segmented", policy="text", chunks=len(chunks), chars=len(text))
    return chunks


def segment_lines(text: str) -> List[TextChunk]:
    """File policy: one chunk per non-empty line, indices dense over kept lines."""
    chunks = list(_chunks_from_lines(text.splitlines()))
    verbose(_LOG, "segmented", policy="lines", chunks=len(chunks))
    return chunks


def iter_stream_chunks(stream: IO[str]) -> Iterator[TextChunk]:
    """
    Stream policy: yield a chunk for each non-empty line as it is read.

    Reading the next line is the only side effect; the generator blocks
    while the stream has no complete line available.
    """
    return _chunks_from_lines(iter(stream.readline, ""))


def _chunks_from_lines(lines: Iterable[str]) -> Iterator[TextChunk]:
    index = 0
    for line in lines:
        content = line.strip()
        if not content:
            continue
        yield TextChunk(index, content)
        index += 1


_DONE = object()


class _ReaderFailure:
    def __init__(self, exc: BaseException):
        self.exc = exc


class Prefetcher:
    """
    Iterator over chunks read ahead by a background thread.

    The consumer may run on a different thread than the one that calls
    ``close()``: closing only sets a flag, which both the reader and
    ``__next__`` poll, so it never interrupts a blocked ``next()``.
    """

    def __init__(self, chunks: Iterable[TextChunk], maxsize: int = 8):
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._read, args=(chunks,), name="koko-reader", daemon=True)
        self._thread.start()

    def _put(self, item: object) -> bool:
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _read(self, chunks: Iterable[TextChunk]) -> None:
        try:
            for chunk in chunks:
                if not self._put(chunk):
                    return
        except Exception as e:
            self._put(_ReaderFailure(e))
            return
        self._put(_DONE)

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def __iter__(self) -> "Prefetcher":
        return self

    def __next__(self) -> TextChunk:
        while True:
            if self._stop.is_set():
                raise StopIteration
            try:
                item = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            if item is _DONE:
                self._stop.set()
                raise StopIteration
            if isinstance(item, _ReaderFailure):
                self._stop.set()
                raise item.exc
            debug(_LOG, "chunk_read", chunk=item.index, queued=self._queue.qsize())  # type: ignore[attr-defined]
            return item  # type: ignore[return-value]

    def close(self) -> None:
        """Stop reading. Safe to call from any thread, any number of times."""
        self._stop.set()


def prefetch(chunks: Iterable[TextChunk], maxsize: int = 8) -> Prefetcher:
    """
    Read ``chunks`` on a background thread into a bounded queue.

    The reader blocks once ``maxsize`` chunks are waiting. An exception
    raised by the source is re-raised in the consumer after the chunks
    read before it. ``close()`` stops both the reader and the consumer;
    a reader blocked on a line that never comes (open stdin) is a daemon
    thread and does not keep the process alive.
    """
    return Prefetcher(chunks, maxsize)
