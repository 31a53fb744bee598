"""
Log formatters for JSONL files and colored console output.

Output Examples:
    JSONL (file):
        {"ts":"2026-01-15T14:30:05+03:00","level":2,"tag":"INFO","message":"chunk_done","request_id":"abc123","worker":1,"extra":{"chunk":3}}

    Console:
        14:30:05 [ INFO  ] (abc123) [w01] chunk_done chunk=3 0.412s

Timing values are colored green below 0.1s, yellow below 1s and red
above. Chunk and worker fields are highlighted so interleaved jobs from
different requests stay readable.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict

from .colors import Colors, get_tag_color


class JsonlFormatter(logging.Formatter):
    """
    Format log records as one JSON object per line.

    Fields: ts, level, tag, message, request_id, and when present:
    worker, event, seconds, extra.
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).astimezone().isoformat()

        payload: Dict[str, Any] = {
            "ts": ts,
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }

        worker = getattr(record, "worker_id", None)
        if worker is not None:
            payload["worker"] = worker

        event = getattr(record, "event", None)
        if event:
            payload["event"] = event

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Human readable console lines.

    Format:
        HH:MM:SS [ TAG   ] (rid) [wNN] message key=value 0.123s
    """

    def __init__(self, use_colors: bool = False) -> None:
        super().__init__()
        self.use_colors = use_colors

    def _c(self, text: str, color: str) -> str:
        if not self.use_colors:
            return text
        return f"{color}{text}{Colors.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        rid = getattr(record, "request_id", "-")
        worker = getattr(record, "worker_id", None)

        parts = [
            self._c(ts, Colors.DIM),
            self._c(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if rid != "-":
            parts.append(self._c(f"({rid})", Colors.DIM + Colors.CYAN))
        if worker is not None:
            parts.append(self._c(f"[w{worker:02d}]", Colors.MAGENTA))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(self._c(f"event={event}", Colors.BLUE))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            if seconds < 0.1:
                time_color = Colors.GREEN
            elif seconds < 1.0:
                time_color = Colors.YELLOW
            else:
                time_color = Colors.RED
            parts.append(self._c(f"{seconds:.3f}s", time_color))

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for k, v in extra_data.items():
                parts.append(self._c(f"{k}={v}", self._field_color(k)))

        text = " ".join(parts)
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text

    @staticmethod
    def _field_color(key: str) -> str:
        if key in ("chunk", "chunks", "index"):
            return Colors.CYAN
        if key in ("busy", "waiting", "instances"):
            return Colors.YELLOW
        if key in ("error", "code"):
            return Colors.RED
        return Colors.DIM
