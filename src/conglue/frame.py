# src/conglue/frame.py
from __future__ import annotations

import itertools
import logging
import weakref
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from conglue.engine import EngineError, api
from conglue.errors import MaterializationError, UsageError

LOG = logging.getLogger("cgl.frame")

Vec3 = Tuple[float, float, float]


@dataclass(frozen=True, slots=True)
class Atom:
    """
    One atom of a frame.

    ``mass`` is the mass of the atom's species group. ``vx, vy, vz`` are only
    meaningful when ``has_velocity`` is true (they are 0.0 otherwise).
    ``atomic_number`` is 0 for species labels that are not chemical elements.
    """

    atomic_number: int
    x: float
    y: float
    z: float
    atom_id: int
    mass: float
    is_fixed: bool
    vx: float = 0.0
    vy: float = 0.0
    vz: float = 0.0
    has_velocity: bool = False
    symbol: str = ""

    @property
    def position(self) -> Vec3:
        return (self.x, self.y, self.z)

    @property
    def velocity(self) -> Optional[Vec3]:
        if not self.has_velocity:
            return None
        return (self.vx, self.vy, self.vz)


@dataclass(slots=True)
class _FrameCache:
    cell: Vec3
    angles: Vec3
    atoms: Tuple[Atom, ...]
    prebox_header: Tuple[str, str]
    postbox_header: Tuple[str, str]
    has_velocities: bool


class Frame:
    """
    One CON frame: cell, angles, two pairs of header lines and the atoms.

    Frames are produced by :class:`~conglue.builder.FrameBuilder` and by the
    readers in :mod:`conglue.io.reader`; they are not created directly. A frame
    owns an engine handle which is released exactly once, on :meth:`close`, on
    leaving a ``with`` block, or when the frame is garbage collected. Frames
    cannot be copied or pickled, so no two frames ever share a handle.

    Nothing is decoded until the first accessor is used; the data are then
    copied out of the engine once and cached for the lifetime of the frame.
    """

    __slots__ = ("_handle", "_finalizer", "_cache", "__weakref__")

    def __init__(self, handle: api.FrameHandle):
        self._handle: Optional[api.FrameHandle] = handle
        self._finalizer = weakref.finalize(self, api.release_frame, handle)
        self._cache: Optional[_FrameCache] = None

    # ----------------------------
    # Ownership
    # ----------------------------
    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        """Release the engine handle. Cached data stay readable."""
        self._finalizer()
        self._handle = None

    def __enter__(self) -> "Frame":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _borrow_handle(self) -> api.FrameHandle:
        """Read-only view of the handle for the writer; ownership stays here."""
        if self._handle is None or self.closed:
            raise UsageError("frame has been closed", operation="borrow frame")
        return self._handle

    def __copy__(self):
        raise TypeError("Frame objects own an engine handle and cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("Frame objects own an engine handle and cannot be copied")

    def __reduce_ex__(self, protocol):
        raise TypeError("Frame objects own an engine handle and cannot be pickled")

    # ----------------------------
    # Materialization
    # ----------------------------
    def _materialize(self) -> _FrameCache:
        if self._cache is not None:
            return self._cache
        if self._handle is None:
            raise MaterializationError("frame handle has been released", operation="materialize frame")

        try:
            snapshot = api.frame_to_snapshot(self._handle)
        except EngineError as exc:
            raise MaterializationError(str(exc), operation="materialize frame") from exc
        if snapshot is None:
            raise MaterializationError("engine returned no data", operation="materialize frame")

        try:
            record = snapshot.record
            atoms = tuple(
                Atom(
                    atomic_number=a.atomic_number,
                    x=a.x,
                    y=a.y,
                    z=a.z,
                    atom_id=a.atom_id,
                    mass=a.mass,
                    is_fixed=a.is_fixed,
                    vx=a.vx,
                    vy=a.vy,
                    vz=a.vz,
                    has_velocity=a.has_velocity,
                    symbol=a.symbol,
                )
                for a in record.atoms
            )
            cell = tuple(record.cell)
            angles = tuple(record.angles)
            has_velocities = bool(record.has_velocities)
        finally:
            api.release_snapshot(snapshot)

        cache = _FrameCache(
            cell=cell,
            angles=angles,
            atoms=atoms,
            prebox_header=(self._header_line(True, 0), self._header_line(True, 1)),
            postbox_header=(self._header_line(False, 0), self._header_line(False, 1)),
            has_velocities=has_velocities,
        )
        self._cache = cache
        LOG.debug("materialized frame with %d atoms", len(atoms))
        return cache

    def _header_line(self, prebox: bool, index: int) -> str:
        try:
            buffer = api.frame_header_line(self._handle, prebox, index)
        except EngineError as exc:
            raise MaterializationError(str(exc), operation="materialize frame") from exc
        # headers are annotations: an absent line reads as empty
        if buffer is None:
            return ""
        try:
            return buffer.text
        finally:
            api.release_buffer(buffer)

    # ----------------------------
    # Accessors
    # ----------------------------
    @property
    def cell(self) -> Vec3:
        return self._materialize().cell

    @property
    def angles(self) -> Vec3:
        return self._materialize().angles

    @property
    def atoms(self) -> Tuple[Atom, ...]:
        return self._materialize().atoms

    @property
    def prebox_header(self) -> Tuple[str, str]:
        return self._materialize().prebox_header

    @property
    def postbox_header(self) -> Tuple[str, str]:
        return self._materialize().postbox_header

    @property
    def has_velocities(self) -> bool:
        return self._materialize().has_velocities

    @property
    def symbols(self) -> List[str]:
        return [a.symbol for a in self.atoms]

    def positions(self) -> np.ndarray:
        """Cartesian positions as an ``(n_atoms, 3)`` array."""
        return np.array([a.position for a in self.atoms], dtype=float).reshape(-1, 3)

    def velocities(self) -> Optional[np.ndarray]:
        """Velocities as an ``(n_atoms, 3)`` array, or None for frames without velocities."""
        if not self.has_velocities:
            return None
        return np.array([(a.vx, a.vy, a.vz) for a in self.atoms], dtype=float).reshape(-1, 3)

    def species(self) -> List[Tuple[str, int, float]]:
        """(symbol, count, mass) for each contiguous species run, in storage order."""
        runs = []
        for symbol, group in itertools.groupby(self.atoms, key=lambda a: a.symbol):
            group = list(group)
            runs.append((symbol, len(group), group[0].mass))
        return runs

    def __len__(self) -> int:
        return len(self.atoms)

    def __eq__(self, other):
        if not isinstance(other, Frame):
            return NotImplemented
        a, b = self._materialize(), other._materialize()
        return (
            a.cell == b.cell
            and a.angles == b.angles
            and a.prebox_header == b.prebox_header
            and a.postbox_header == b.postbox_header
            and a.has_velocities == b.has_velocities
            and a.atoms == b.atoms
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        if self._cache is None and self.closed:
            return "ConFrame(<closed>)"
        c = self._materialize()
        return (
            f"ConFrame(cell={list(c.cell)}, angles={list(c.angles)}, "
            f"natoms={len(c.atoms)}, has_velocities={c.has_velocities})"
        )
