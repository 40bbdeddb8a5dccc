# src/conglue/io/reader.py
from __future__ import annotations

import logging
import weakref
from pathlib import Path
from typing import Iterator, List, Optional

from conglue.engine import EngineError, OpenError, api
from conglue.errors import ConDecodeError, ConError, ConOpenError, IteratorExhaustedError
from conglue.frame import Frame

LOG = logging.getLogger("cgl.reader")


def _translate(exc: EngineError, operation: str, path: Optional[str | Path]) -> ConError:
    if isinstance(exc, OpenError):
        return ConOpenError(str(exc), operation=operation, path=path)
    return ConDecodeError(str(exc), operation=operation, path=path)


def read_first_frame(path: str | Path) -> Frame:
    """
    Decode only the first frame of a CON/CONVEL file.

    Frames after the first are never parsed. Raises ConOpenError when the file
    cannot be opened and ConDecodeError when it holds no (valid) first frame.
    """
    try:
        handle = api.decode_first_frame(path)
    except EngineError as exc:
        raise _translate(exc, "read_first_frame", path) from exc
    if handle is None:
        raise ConDecodeError("file contains no frame", operation="read_first_frame", path=path)
    return Frame(handle)


def read_all_frames(path: str | Path) -> List[Frame]:
    """All frames of the file in on-disk order. An empty file gives an empty list."""
    try:
        handles = api.decode_all_frames(path)
    except EngineError as exc:
        raise _translate(exc, "read_all_frames", path) from exc
    LOG.debug("read %d frame(s) from %s", len(handles), path)
    return [Frame(h) for h in handles]


def read_con_string(text: str) -> List[Frame]:
    """Parse frames from in-memory CON text."""
    try:
        handles = api.decode_text(text)
    except EngineError as exc:
        raise ConDecodeError(str(exc), operation="read_con_string") from exc
    return [Frame(h) for h in handles]


class FrameIterator:
    """
    Lazy, forward-only reader over the frames of one file.

    The file is opened once and the first frame is fetched right away, so
    ``at_end`` is already meaningful for an empty file. Every following advance
    decodes exactly one more frame. Once the end is reached (or a frame fails
    to decode) the iterator stays exhausted; there is no way to rewind.

    Usage::

        with FrameIterator("traj.con") as it:
            for frame in it:
                print(len(frame))
    """

    def __init__(self, path: str | Path):
        self._path = str(path)
        try:
            handle = api.iterator_open(path)
        except EngineError as exc:
            raise _translate(exc, "FrameIterator", path) from exc

        self._handle: Optional[api.IteratorHandle] = handle
        self._finalizer = weakref.finalize(self, api.release_iterator, handle)
        self._current: Optional[Frame] = None
        self._index = 0
        LOG.debug("opened %s for iteration", self._path)

        self._advance()
        # the prefetched frame is handed out by the first __next__
        self._pending = self._current is not None

    def _advance(self) -> None:
        if self._handle is None:
            self._current = None
            return
        try:
            frame_handle = api.iterator_next(self._handle)
        except EngineError as exc:
            raise self._decode_failed(exc, "FrameIterator") from exc
        if frame_handle is None:
            self.close()
            return
        self._current = Frame(frame_handle)
        self._index += 1

    def _decode_failed(self, exc: EngineError, operation: str) -> ConDecodeError:
        # the stream cannot be resynchronized after a bad frame
        index = self._index
        self.close()
        return ConDecodeError(f"frame {index}: {exc}", operation=operation, path=self._path)

    def skip(self, n: int = 1) -> int:
        """
        Step over the next ``n`` frames without decoding their atoms and return
        how many were skipped (fewer than ``n`` when the file ends first). The
        held frame is dropped and the frame after the skipped ones is fetched,
        so ``current`` and ``at_end`` stay meaningful.
        """
        if isinstance(n, bool) or not isinstance(n, int) or n < 0:
            raise ValueError(f"n must be a non-negative integer, got {n!r}")
        if n == 0:
            return 0

        skipped = 0
        if self._pending:
            # already decoded but never handed out
            self._pending = False
            self._current = None
            skipped = 1
        while skipped < n and self._handle is not None:
            try:
                moved = api.iterator_skip(self._handle)
            except EngineError as exc:
                raise self._decode_failed(exc, "skip") from exc
            if not moved:
                self.close()
                break
            self._index += 1
            skipped += 1

        self._advance()
        self._pending = self._current is not None
        LOG.debug("skipped %d frame(s) of %s", skipped, self._path)
        return skipped

    def __iter__(self) -> "FrameIterator":
        return self

    def __next__(self) -> Frame:
        if self._pending:
            self._pending = False
            return self._current
        self._advance()
        if self._current is None:
            raise StopIteration
        return self._current

    @property
    def current(self) -> Frame:
        """The frame the iterator currently holds."""
        if self._current is None:
            raise IteratorExhaustedError("iterator is past the last frame", operation="current", path=self._path)
        return self._current

    @property
    def at_end(self) -> bool:
        return self._current is None

    @property
    def path(self) -> str:
        return self._path

    def close(self) -> None:
        """Release the underlying file. The iterator is exhausted afterwards."""
        self._finalizer()
        self._handle = None
        self._current = None
        self._pending = False

    def __enter__(self) -> "FrameIterator":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "at_end" if self.at_end else f"frame={self._index - 1}"
        return f"FrameIterator({self._path!r}, {state})"


def iter_frames(path: str | Path) -> Iterator[Frame]:
    """Generator over the frames of ``path``; the file is closed when the generator finishes."""
    with FrameIterator(path) as it:
        yield from it
