# src/conglue/engine/api.py
"""
Handle-level API of the CON parse/format engine.

Every object handed out here (frame, builder, writer and iterator handles, as
well as the transient snapshot and text buffers) must be passed to its
matching ``release_*`` function exactly once. Using a handle after release, or
releasing it twice, raises EngineError.

Conventions:
  - "nothing there" (no frame, end of iteration, absent header line) -> None
  - failures -> EngineError (ParseError for bad content, OpenError for paths)
"""
from __future__ import annotations

import logging
import math
import mmap
import os
from collections import Counter
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, TextIO

from conglue.elements import symbol_to_atomic_number
from conglue.engine import grammar, render
from conglue.engine.records import (
    AtomDatum,
    AtomRecord,
    ConFrame,
    EngineError,
    FrameHeader,
    OpenError,
    SnapshotRecord,
)

LOG = logging.getLogger("cgl.engine")

_LIVE: Counter = Counter()


# ----------------------------
# Handles
# ----------------------------
class _Handle:
    __slots__ = ("_payload", "_released")
    kind = "handle"

    def __init__(self, payload):
        self._payload = payload
        self._released = False
        _LIVE[self.kind] += 1

    @property
    def released(self) -> bool:
        return self._released

    def _get(self):
        if self._released:
            raise EngineError(f"{self.kind} handle used after release")
        return self._payload

    def _release(self):
        if self._released:
            raise EngineError(f"{self.kind} handle released twice")
        payload = self._payload
        self._released = True
        self._payload = None
        _LIVE[self.kind] -= 1
        return payload

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"<{type(self).__name__} {state} at 0x{id(self):x}>"


class FrameHandle(_Handle):
    __slots__ = ()
    kind = "frame"


class BuilderHandle(_Handle):
    __slots__ = ()
    kind = "builder"


class WriterHandle(_Handle):
    __slots__ = ()
    kind = "writer"


class IteratorHandle(_Handle):
    __slots__ = ()
    kind = "iterator"


class Snapshot(_Handle):
    """Transient numeric copy of a frame. Read ``record``, then release."""

    __slots__ = ()
    kind = "snapshot"

    @property
    def record(self) -> SnapshotRecord:
        return self._get()


class TextBuffer(_Handle):
    """Transient copy of one header line. Read ``text``, then release."""

    __slots__ = ()
    kind = "text"

    @property
    def text(self) -> str:
        return self._get()


def live_handles() -> Dict[str, int]:
    """Number of unreleased handles per kind (kinds with none are omitted)."""
    return {kind: n for kind, n in _LIVE.items() if n}


# ----------------------------
# Sessions behind reader/iterator/writer handles
# ----------------------------
class _MappedFile:
    """Read-only memory map of a file, served line by line."""

    def __init__(self, path: str | Path):
        try:
            self._fh = open(path, "rb")
        except OSError as exc:
            raise OpenError(f"cannot open {str(path)!r} for reading: {exc}") from exc
        try:
            size = os.fstat(self._fh.fileno()).st_size
            # mmap refuses empty files
            self._mm = mmap.mmap(self._fh.fileno(), 0, access=mmap.ACCESS_READ) if size else None
        except (OSError, ValueError) as exc:
            self._fh.close()
            raise OpenError(f"cannot map {str(path)!r}: {exc}") from exc

    def lines(self) -> Iterator[str]:
        if self._mm is None:
            return iter(())
        return grammar.iter_buffer_lines(self._mm.readline)

    def close(self) -> None:
        if self._mm is not None:
            self._mm.close()
            self._mm = None
        self._fh.close()

    def __enter__(self) -> "_MappedFile":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class _IteratorSession:
    def __init__(self, path: str | Path):
        self.mapped = _MappedFile(path)
        self.cursor = grammar.LineCursor(self.mapped.lines())
        self.frames_read = 0
        self.frames_skipped = 0

    def close(self) -> None:
        self.mapped.close()


class _WriterSession:
    def __init__(self, stream: TextIO, precision: int, owns_stream: bool):
        self.stream = stream
        self.precision = precision
        self.owns_stream = owns_stream

    def close(self) -> None:
        if self.owns_stream:
            self.stream.close()
        else:
            self.stream.flush()


class _BuilderState:
    def __init__(self, header: FrameHeader):
        self.header = header
        self.atoms: List[AtomDatum] = []
        self.masses: List[float] = []


# ----------------------------
# Reading
# ----------------------------
def decode_first_frame(path: str | Path) -> Optional[FrameHandle]:
    """Decode only the first frame of ``path``; None if the file holds no frame."""
    with _MappedFile(path) as mapped:
        frame = grammar.parse_next_frame(grammar.LineCursor(mapped.lines()))
    if frame is None:
        return None
    return FrameHandle(frame)


def decode_all_frames(path: str | Path) -> List[FrameHandle]:
    with _MappedFile(path) as mapped:
        frames = list(grammar.iter_frames(grammar.LineCursor(mapped.lines())))
    LOG.debug("decoded %d frame(s) from %s", len(frames), path)
    return [FrameHandle(f) for f in frames]


def decode_text(text: str) -> List[FrameHandle]:
    frames = list(grammar.iter_frames(grammar.LineCursor(grammar.iter_text_lines(text))))
    return [FrameHandle(f) for f in frames]


def iterator_open(path: str | Path) -> IteratorHandle:
    return IteratorHandle(_IteratorSession(path))


def iterator_next(handle: IteratorHandle) -> Optional[FrameHandle]:
    """Decode the next frame of the session; None at end of input."""
    session: _IteratorSession = handle._get()
    frame = grammar.parse_next_frame(session.cursor)
    if frame is None:
        return None
    session.frames_read += 1
    return FrameHandle(frame)


def iterator_skip(handle: IteratorHandle) -> bool:
    """Step over the next frame without decoding it; False at end of input."""
    session: _IteratorSession = handle._get()
    if not grammar.skip_frame(session.cursor):
        return False
    session.frames_skipped += 1
    return True


def release_iterator(handle: IteratorHandle) -> None:
    session: _IteratorSession = handle._release()
    session.close()
    LOG.debug(
        "iterator released after %d frame(s) read, %d skipped", session.frames_read, session.frames_skipped
    )


# ----------------------------
# Frame access
# ----------------------------
def frame_to_snapshot(handle: FrameHandle) -> Snapshot:
    frame: ConFrame = handle._get()
    atoms: List[AtomRecord] = []
    for (symbol, block), mass in zip(frame.components(), frame.header.masses_per_type):
        atomic_number = symbol_to_atomic_number(symbol)
        for a in block:
            has_velocity = a.has_velocity
            atoms.append(AtomRecord(
                symbol=a.symbol,
                atomic_number=atomic_number,
                x=a.x,
                y=a.y,
                z=a.z,
                atom_id=a.atom_id,
                mass=mass,
                is_fixed=a.is_fixed,
                vx=a.vx if has_velocity else 0.0,
                vy=a.vy if has_velocity else 0.0,
                vz=a.vz if has_velocity else 0.0,
                has_velocity=has_velocity,
            ))
    if len(atoms) != len(frame.atom_data):
        raise EngineError("frame header does not match its atom list")
    return Snapshot(SnapshotRecord(
        cell=frame.header.boxl,
        angles=frame.header.angles,
        has_velocities=frame.has_velocities,
        atoms=atoms,
    ))


def release_snapshot(snapshot: Snapshot) -> None:
    snapshot._release()


def frame_header_line(handle: FrameHandle, prebox: bool, index: int) -> Optional[TextBuffer]:
    """One of the four free-form header lines; None if ``index`` is out of range."""
    frame: ConFrame = handle._get()
    lines = frame.header.prebox_header if prebox else frame.header.postbox_header
    if not 0 <= index < len(lines):
        return None
    return TextBuffer(lines[index])


def release_buffer(buffer: TextBuffer) -> None:
    buffer._release()


def release_frame(handle: FrameHandle) -> None:
    handle._release()


# ----------------------------
# Writing
# ----------------------------
def _check_precision(precision: int) -> int:
    if isinstance(precision, bool) or not isinstance(precision, int) or precision < 0:
        raise EngineError(f"precision must be a non-negative integer, got {precision!r}")
    return precision


def writer_open(path: str | Path, precision: int) -> WriterHandle:
    """Create/truncate ``path`` for writing."""
    precision = _check_precision(precision)
    try:
        stream = open(path, "w", encoding="utf-8", newline="\n")
    except OSError as exc:
        raise OpenError(f"cannot open {str(path)!r} for writing: {exc}") from exc
    return WriterHandle(_WriterSession(stream, precision, owns_stream=True))


def writer_open_stream(stream: TextIO, precision: int) -> WriterHandle:
    """Writer over a caller-owned text stream (flushed, not closed, on release)."""
    return WriterHandle(_WriterSession(stream, _check_precision(precision), owns_stream=False))


def writer_extend(handle: WriterHandle, frames: Sequence[FrameHandle]) -> None:
    """
    Serialize ``frames`` in order. The whole batch is rendered before anything
    is written, so a frame that cannot be rendered leaves the output untouched.
    """
    session: _WriterSession = handle._get()
    records = [h._get() for h in frames]
    text = "".join(render.render_frame(f, session.precision) for f in records)
    try:
        session.stream.write(text)
    except (OSError, ValueError) as exc:
        raise EngineError(f"write failed: {exc}") from exc
    LOG.debug("wrote %d frame(s) at precision %d", len(records), session.precision)


def release_writer(handle: WriterHandle) -> None:
    session: _WriterSession = handle._release()
    session.close()


# ----------------------------
# Building
# ----------------------------
def _triple(values: Sequence[float], name: str) -> tuple[float, float, float]:
    vals = tuple(float(v) for v in values)
    if len(vals) != 3 or not all(math.isfinite(v) for v in vals):
        raise EngineError(f"{name} must be three finite numbers, got {values!r}")
    return vals  # type: ignore[return-value]


def _header_line(line: str) -> str:
    if not isinstance(line, str):
        raise EngineError(f"header lines must be strings, got {type(line).__name__}")
    if "\n" in line or "\r" in line:
        raise EngineError(f"header line must not contain a line break: {line!r}")
    return line


def builder_new(
    cell: Sequence[float],
    angles: Sequence[float],
    prebox0: str = "",
    prebox1: str = "",
    postbox0: str = "",
    postbox1: str = "",
) -> BuilderHandle:
    try:
        boxl = _triple(cell, "cell")
        angs = _triple(angles, "angles")
    except (TypeError, ValueError) as exc:
        raise EngineError(f"invalid cell/angles: {exc}") from exc
    header = FrameHeader(
        prebox_header=(_header_line(prebox0), _header_line(prebox1)),
        boxl=boxl,
        angles=angs,
        postbox_header=(_header_line(postbox0), _header_line(postbox1)),
    )
    return BuilderHandle(_BuilderState(header))


def _check_symbol(symbol: str) -> str:
    if not isinstance(symbol, str) or not symbol or symbol.split() != [symbol]:
        raise EngineError(f"species symbol must be a single non-empty token, got {symbol!r}")
    return symbol


def builder_add_atom(
    handle: BuilderHandle,
    symbol: str,
    x: float,
    y: float,
    z: float,
    is_fixed: bool,
    atom_id: int,
    mass: float,
) -> None:
    state: _BuilderState = handle._get()
    state.atoms.append(AtomDatum(
        symbol=_check_symbol(symbol),
        x=float(x),
        y=float(y),
        z=float(z),
        is_fixed=bool(is_fixed),
        atom_id=int(atom_id),
    ))
    state.masses.append(float(mass))


def builder_add_atom_with_velocity(
    handle: BuilderHandle,
    symbol: str,
    x: float,
    y: float,
    z: float,
    is_fixed: bool,
    atom_id: int,
    mass: float,
    vx: float,
    vy: float,
    vz: float,
) -> None:
    state: _BuilderState = handle._get()
    state.atoms.append(AtomDatum(
        symbol=_check_symbol(symbol),
        x=float(x),
        y=float(y),
        z=float(z),
        is_fixed=bool(is_fixed),
        atom_id=int(atom_id),
        vx=float(vx),
        vy=float(vy),
        vz=float(vz),
    ))
    state.masses.append(float(mass))


def builder_build(handle: BuilderHandle) -> FrameHandle:
    """
    Consume the builder and assemble a frame. Components are the runs of equal
    consecutive symbols, in the order the atoms were added; each run takes the
    mass of its first atom.
    """
    state: _BuilderState = handle._release()
    header = state.header

    if not state.atoms:
        raise EngineError("cannot build a frame without atoms")
    if any(a.has_velocity != state.atoms[0].has_velocity for a in state.atoms):
        raise EngineError("cannot build a frame that mixes atoms with and without velocities")

    previous = None
    for atom, mass in zip(state.atoms, state.masses):
        if atom.symbol != previous:
            header.symbols_per_type.append(atom.symbol)
            header.natms_per_type.append(0)
            header.masses_per_type.append(mass)
            previous = atom.symbol
        header.natms_per_type[-1] += 1

    return FrameHandle(ConFrame(header=header, atom_data=state.atoms))


def release_builder(handle: BuilderHandle) -> None:
    handle._release()
