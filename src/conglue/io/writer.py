# src/conglue/io/writer.py
from __future__ import annotations

import io
import logging
import weakref
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, TextIO

from conglue._constants import DEFAULT_PRECISION
from conglue.engine import EngineError, OpenError, api
from conglue.errors import ConOpenError, UsageError, WriteError
from conglue.frame import Frame

if TYPE_CHECKING:
    from conglue.config import Config

LOG = logging.getLogger("cgl.writer")


def _check_precision(precision) -> int:
    if isinstance(precision, bool) or not isinstance(precision, int) or precision < 0:
        raise ValueError(f"precision must be a non-negative integer, got {precision!r}")
    return precision


class FrameWriter:
    """
    Append batches of frames to a CON file.

    The target is created (or truncated) on construction. Real-valued fields
    are written with ``precision`` decimal places, fixed for the lifetime of
    the writer. Frames handed to :meth:`extend` are only read: they stay valid
    and may be written again, here or elsewhere.
    """

    def __init__(self, path: str | Path, precision: int = DEFAULT_PRECISION):
        precision = _check_precision(precision)
        try:
            handle = api.writer_open(path, precision)
        except OpenError as exc:
            raise ConOpenError(str(exc), operation="FrameWriter", path=path) from exc
        except EngineError as exc:
            raise WriteError(str(exc), operation="FrameWriter", path=path) from exc
        self._attach(handle, str(path), precision)

    @classmethod
    def from_config(cls, path: str | Path, config: "Config") -> "FrameWriter":
        return cls(path, precision=config.precision)

    @classmethod
    def _for_stream(cls, stream: TextIO, precision: int) -> "FrameWriter":
        """Writer over a caller-owned text stream, which is flushed but not closed."""
        precision = _check_precision(precision)
        writer = cls.__new__(cls)
        writer._attach(api.writer_open_stream(stream, precision), None, precision)
        return writer

    def _attach(self, handle: api.WriterHandle, path: Optional[str], precision: int) -> None:
        self._handle: Optional[api.WriterHandle] = handle
        self._finalizer = weakref.finalize(self, api.release_writer, handle)
        self._path = path
        self._precision = precision
        self._frames_written = 0

    @property
    def precision(self) -> int:
        return self._precision

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def frames_written(self) -> int:
        return self._frames_written

    @property
    def closed(self) -> bool:
        return self._handle is None

    def extend(self, frames: Iterable[Frame]) -> None:
        """
        Write ``frames`` in order. An empty batch writes nothing.

        A frame that cannot be rendered leaves the output untouched and raises
        WriteError; a closed frame raises UsageError before anything is written.
        """
        if self._handle is None:
            raise UsageError("writer has been closed", operation="extend", path=self._path)

        batch = list(frames)
        if not batch:
            return
        for frame in batch:
            if not isinstance(frame, Frame):
                raise TypeError(f"expected Frame objects, got {type(frame).__name__}")
        handles = [frame._borrow_handle() for frame in batch]

        try:
            api.writer_extend(self._handle, handles)
        except EngineError as exc:
            raise WriteError(str(exc), operation="extend", path=self._path) from exc
        self._frames_written += len(handles)
        LOG.debug("appended %d frame(s) to %s", len(handles), self._path or "<stream>")

    def write(self, frame: Frame) -> None:
        self.extend([frame])

    def close(self) -> None:
        """Flush and release the output. Further ``extend`` calls raise UsageError."""
        self._finalizer()
        self._handle = None

    def __enter__(self) -> "FrameWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"FrameWriter({self._path!r}, precision={self._precision}, {state})"


def write_con(path: str | Path, frames: Frame | Iterable[Frame], precision: int = DEFAULT_PRECISION) -> None:
    """Write one frame or a sequence of frames to ``path``, replacing its content."""
    if isinstance(frames, Frame):
        frames = [frames]
    with FrameWriter(path, precision) as writer:
        writer.extend(frames)


def write_con_string(frames: Frame | Iterable[Frame], precision: int = DEFAULT_PRECISION) -> str:
    """Render frames to CON text."""
    if isinstance(frames, Frame):
        frames = [frames]
    buf = io.StringIO()
    with FrameWriter._for_stream(buf, precision) as writer:
        writer.extend(frames)
    return buf.getvalue()
