# src/conglue/engine/grammar.py
"""
Line-level grammar of CON / CONVEL frames.

A frame is a 9-line header (two free-form lines, cell lengths, cell angles,
two free-form lines, number of components, atoms per component, mass per
component) followed by one coordinate block per component. A ``.convel`` frame
adds a blank separator line and one velocity block per component.
"""
from __future__ import annotations

import math
from collections import deque
from typing import Callable, Iterable, Iterator, List, Optional, TypeVar

from conglue._constants import VELOCITIES_LABEL
from conglue.engine.records import AtomDatum, ConFrame, FrameHeader, ParseError

T = TypeVar("T")

INCOMPLETE_HEADER = "file ended unexpectedly while parsing frame header"
INCOMPLETE_FRAME = "file ended unexpectedly while reading atom data"
INCOMPLETE_VELOCITIES = "file ended unexpectedly while reading velocity section"


def _strip_eol(line: str) -> str:
    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


def iter_text_lines(text: str) -> Iterator[str]:
    """Split text into lines the way the file readers do (no line terminators)."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    for line in lines:
        yield _strip_eol(line)


def iter_buffer_lines(readline: Callable[[], bytes]) -> Iterator[str]:
    """Yield decoded lines from a bytes ``readline`` callable (e.g. ``mmap.readline``)."""
    for raw in iter(readline, b""):
        try:
            yield _strip_eol(raw.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise ParseError(f"invalid UTF-8 in input: {exc}") from exc


class LineCursor:
    """Forward-only cursor over lines with arbitrary lookahead."""

    def __init__(self, lines: Iterable[str]):
        self._it = iter(lines)
        self._ahead: deque[str] = deque()
        self.lineno = 0

    def peek(self, offset: int = 0) -> Optional[str]:
        while len(self._ahead) <= offset:
            line = next(self._it, None)
            if line is None:
                return None
            self._ahead.append(line)
        return self._ahead[offset]

    def next(self) -> Optional[str]:
        if self._ahead:
            line = self._ahead.popleft()
        else:
            line = next(self._it, None)
        if line is not None:
            self.lineno += 1
        return line

    def at_end(self) -> bool:
        return self.peek() is None


def _require(cursor: LineCursor, message: str) -> str:
    line = cursor.next()
    if line is None:
        raise ParseError(message)
    return line


def parse_line_of_n(line: str, n: int, kind: Callable[[str], T] = float) -> List[T]:
    """
    Parse exactly ``n`` whitespace-separated values of type ``kind`` from ``line``.

    >>> parse_line_of_n("10.5 20.0 30.5", 3)
    [10.5, 20.0, 30.5]
    """
    try:
        values = [kind(tok) for tok in line.split()]
    except ValueError as exc:
        raise ParseError(f"invalid number format: {exc}") from exc
    if len(values) != n:
        raise ParseError(f"expected {n} values on line, found {len(values)}")
    return values


def _parse_counts(cursor: LineCursor) -> List[int]:
    """Consume the component-count and atoms-per-component lines."""
    natm_types = parse_line_of_n(_require(cursor, INCOMPLETE_HEADER), 1, int)[0]
    if natm_types < 0:
        raise ParseError(f"number of components must be >= 0, got {natm_types}")
    natms_per_type = parse_line_of_n(_require(cursor, INCOMPLETE_HEADER), natm_types, int)
    if any(n < 0 for n in natms_per_type):
        raise ParseError(f"atom counts must be >= 0, got {natms_per_type}")
    return natms_per_type


def parse_frame_header(cursor: LineCursor) -> FrameHeader:
    """Consume the 9 header lines of one frame."""
    prebox = (_require(cursor, INCOMPLETE_HEADER), _require(cursor, INCOMPLETE_HEADER))
    boxl = parse_line_of_n(_require(cursor, INCOMPLETE_HEADER), 3)
    angles = parse_line_of_n(_require(cursor, INCOMPLETE_HEADER), 3)
    postbox = (_require(cursor, INCOMPLETE_HEADER), _require(cursor, INCOMPLETE_HEADER))

    natms_per_type = _parse_counts(cursor)
    natm_types = len(natms_per_type)
    masses_per_type = parse_line_of_n(_require(cursor, INCOMPLETE_HEADER), natm_types)

    return FrameHeader(
        prebox_header=prebox,
        boxl=(boxl[0], boxl[1], boxl[2]),
        angles=(angles[0], angles[1], angles[2]),
        postbox_header=postbox,
        natms_per_type=natms_per_type,
        masses_per_type=masses_per_type,
    )


def _atom_id(token: str) -> int:
    """Exact integer id; tokens such as ``3.0`` are accepted when integral."""
    try:
        value = int(token)
    except ValueError:
        real = parse_line_of_n(token, 1)[0]
        if not math.isfinite(real) or real != int(real):
            raise ParseError(f"atom id must be a non-negative integer, got {token}")
        value = int(real)
    if value < 0:
        raise ParseError(f"atom id must be a non-negative integer, got {token}")
    return value


def parse_atom_line(line: str) -> AtomDatum:
    """``x y z fixed id`` of one coordinate line (symbol left empty)."""
    tokens = parse_line_of_n(line, 5, str)
    x, y, z, fixed = parse_line_of_n(" ".join(tokens[:4]), 4)
    return AtomDatum(symbol="", x=x, y=y, z=z, is_fixed=fixed != 0.0, atom_id=_atom_id(tokens[4]))


def parse_single_frame(cursor: LineCursor) -> ConFrame:
    """Consume the header and coordinate blocks of one frame."""
    header = parse_frame_header(cursor)
    atom_data: List[AtomDatum] = []

    for count in header.natms_per_type:
        symbol = _require(cursor, INCOMPLETE_FRAME).strip()
        header.symbols_per_type.append(symbol)
        _require(cursor, INCOMPLETE_FRAME)  # "Coordinates of Component N"
        for _ in range(count):
            atom = parse_atom_line(_require(cursor, INCOMPLETE_FRAME))
            atom.symbol = symbol
            atom_data.append(atom)

    return ConFrame(header=header, atom_data=atom_data)


def has_velocity_section(cursor: LineCursor) -> bool:
    """
    True when the next lines open a velocity section: a blank separator, a
    symbol line, then a "Velocities of Component" line. A following frame whose
    first header line is empty does not match.
    """
    blank = cursor.peek(0)
    if blank is None or blank.strip():
        return False
    label = cursor.peek(2)
    return label is not None and VELOCITIES_LABEL in label


def parse_velocity_section(cursor: LineCursor, header: FrameHeader, atom_data: List[AtomDatum]) -> bool:
    """Fill velocities into ``atom_data`` if a velocity section follows. Returns True if one was read."""
    if not has_velocity_section(cursor):
        return False
    cursor.next()  # blank separator

    idx = 0
    for count in header.natms_per_type:
        _require(cursor, INCOMPLETE_VELOCITIES)  # symbol
        label = _require(cursor, INCOMPLETE_VELOCITIES)
        if VELOCITIES_LABEL not in label:
            raise ParseError(f"expected '{VELOCITIES_LABEL} N', got {label!r}")
        for _ in range(count):
            vals = parse_line_of_n(_require(cursor, INCOMPLETE_VELOCITIES), 5)
            atom = atom_data[idx]
            atom.vx, atom.vy, atom.vz = vals[0], vals[1], vals[2]
            idx += 1
    return True


def parse_next_frame(cursor: LineCursor) -> Optional[ConFrame]:
    """Parse the next complete frame, or return None when the input is exhausted."""
    if cursor.at_end():
        return None
    frame = parse_single_frame(cursor)
    parse_velocity_section(cursor, frame.header, frame.atom_data)
    return frame


def skip_frame(cursor: LineCursor) -> bool:
    """
    Step over the next frame without decoding its atoms. Only the component
    counts are parsed; coordinate and velocity lines are counted off.
    Returns False when the input is exhausted.
    """
    if cursor.at_end():
        return False
    for _ in range(6):
        _require(cursor, INCOMPLETE_HEADER)
    natms_per_type = _parse_counts(cursor)
    _require(cursor, INCOMPLETE_HEADER)  # masses

    block_lines = sum(natms_per_type) + 2 * len(natms_per_type)
    for _ in range(block_lines):
        _require(cursor, INCOMPLETE_FRAME)
    if has_velocity_section(cursor):
        cursor.next()
        for _ in range(block_lines):
            _require(cursor, INCOMPLETE_VELOCITIES)
    return True


def iter_frames(cursor: LineCursor) -> Iterator[ConFrame]:
    while True:
        frame = parse_next_frame(cursor)
        if frame is None:
            return
        yield frame
