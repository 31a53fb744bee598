"""
Output Router.

An OutputTarget says where finished audio goes; the router turns a
target (plus a chunk index for per-chunk targets) into an open container
writer.

Targets:
    SinglePath(path)          one file for the whole operation
    IndexedPaths(base)        one file per chunk: ``out.wav`` -> ``out_00.wav``
    TemplatePath(template)    one file per chunk: ``{line}`` replaced by the index
    RawStream(stream)         a binary stream such as stdout
    HttpBody(sink)            an in-memory sink drained into an HTTP response

Indices are zero padded to the number of digits in the chunk count, so
file names sort lexically in numeric order (3 chunks -> ``output_0``..
``output_2``, 10 chunks -> ``output_00``..``output_09``).

Missing parent directories of path targets are created before the first
write.
"""
from __future__ import annotations

import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional, Union

from koko_ms.core.config import Defaults
from koko_ms.core.logging import debug, get_logger
from koko_ms.services.errors import OutputError
from koko_ms.utils.audio import WavFileWriter, WavStreamWriter

_LOG = get_logger("koko-ms.router")


class ByteSink:
    """
    Thread-safe byte buffer used as the body of an HTTP response.

    The synthesis thread writes; the response iterator drains.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buf = bytearray()

    def write(self, data: bytes) -> int:
        with self._lock:
            self._buf.extend(data)
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        """Return everything written since the last drain."""
        with self._lock:
            data = bytes(self._buf)
            self._buf.clear()
        return data


@dataclass(frozen=True)
class SinglePath:
    path: str


@dataclass(frozen=True)
class IndexedPaths:
    base: str


@dataclass(frozen=True)
class TemplatePath:
    template: str
    placeholder: str = Defaults.OUTPUT_PLACEHOLDER


@dataclass(frozen=True)
class RawStream:
    stream: BinaryIO
    name: str = "<stdout>"
    header: bool = True


@dataclass(frozen=True)
class HttpBody:
    sink: ByteSink = field(default_factory=ByteSink)
    header: bool = True


OutputTarget = Union[SinglePath, IndexedPaths, TemplatePath, RawStream, HttpBody]


def is_per_chunk(target: OutputTarget) -> bool:
    """True for targets that produce one file per chunk."""
    return isinstance(target, (IndexedPaths, TemplatePath))


def pad_width(count: int) -> int:
    """Digits used to zero pad chunk indices for ``count`` chunks."""
    return max(1, len(str(count)))


def path_for(target: OutputTarget, index: Optional[int] = None, count: Optional[int] = None) -> Path:
    """
    File path for a path target.

    Raises:
        ValueError: For stream targets, or when a per-chunk target is
            given no index/count.
    """
    if isinstance(target, SinglePath):
        return Path(target.path)

    if not isinstance(target, (IndexedPaths, TemplatePath)):
        raise ValueError(f"{type(target).__name__} has no file path")
    if index is None or count is None:
        raise ValueError("per-chunk targets need index and count")

    padded = str(index).zfill(pad_width(count))
    if isinstance(target, TemplatePath):
        return Path(target.template.replace(target.placeholder, padded))

    base = Path(target.base)
    return base.with_name(f"{base.stem}_{padded}{base.suffix or '.wav'}")


def open_writer(
    target: OutputTarget,
    sample_rate: int,
    index: Optional[int] = None,
    count: Optional[int] = None,
) -> Union[WavFileWriter, WavStreamWriter]:
    """
    Open a container writer for ``target``.

    Raises:
        OutputError: If the destination directory or file cannot be created.
    """
    if isinstance(target, RawStream):
        return WavStreamWriter(target.stream, sample_rate, name=target.name, header=target.header)
    if isinstance(target, HttpBody):
        return WavStreamWriter(target.sink, sample_rate, name="<http>", header=target.header)

    path = path_for(target, index, count)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise OutputError(f"cannot create {path.parent}: {exc}", target=str(path)) from exc
    debug(_LOG, "open_file", path=str(path), chunk=index)
    return WavFileWriter(path, sample_rate)


def resolve_target(output: str, mode: str, placeholder: str = Defaults.OUTPUT_PLACEHOLDER) -> OutputTarget:
    """
    Map a command line ``-o`` value to a target.

    ``-`` means stdout; a value containing the placeholder is a template;
    otherwise file mode indexes the path and other modes write it as is.
    """
    if output == "-":
        return RawStream(sys.stdout.buffer)
    if placeholder in output:
        return TemplatePath(output, placeholder)
    if mode == "file":
        return IndexedPaths(output)
    return SinglePath(output)
