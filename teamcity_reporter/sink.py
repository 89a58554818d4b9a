# Where: teamcity_reporter/sink.py
# What: Append-only output sinks for service messages.
# Why: Keep stream/file plumbing out of the reporter and scope the sink to one run.
from __future__ import annotations

import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO


class MessageSink:
    def open(self) -> None:
        return None

    def write(self, message: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


class StreamSink(MessageSink):
    """Writes to a text stream it does not own.

    Without an explicit stream, `sys.stdout` is looked up on every write so
    capture layers installed after construction still see the output.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    def write(self, message: str) -> None:
        with self._lock:
            stream = self.stream
            stream.write(message)
            stream.flush()


class FileSink(MessageSink):
    def __init__(self, path: Path) -> None:
        self.path = path
        self._file: TextIO | None = None
        self._lock = threading.Lock()

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.path.open("w", encoding="utf-8", newline="\n")

    def close(self) -> None:
        if self._file:
            self._file.close()
            self._file = None

    def write(self, message: str) -> None:
        if self._file is None:
            raise RuntimeError("FileSink is not open")
        with self._lock:
            self._file.write(message)
            self._file.flush()


def make_sink(output_path: str | Path | None = None, stream: TextIO | None = None) -> MessageSink:
    if output_path:
        return FileSink(Path(output_path))
    return StreamSink(stream)


@contextmanager
def open_sink(sink: MessageSink) -> Iterator[MessageSink]:
    """Hold `sink` open for one run and release it even if the run aborts."""
    sink.open()
    try:
        yield sink
    finally:
        sink.close()
