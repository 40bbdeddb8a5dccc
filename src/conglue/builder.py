# src/conglue/builder.py
from __future__ import annotations

import logging
import math
import operator
import weakref
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from conglue._constants import EMPTY_HEADER, HEADER_LINES
from conglue.config import Config, check_masses
from conglue.elements import is_known_symbol, standard_mass
from conglue.engine import EngineError, api
from conglue.errors import BuildError, BuilderConsumedError
from conglue.frame import Frame

LOG = logging.getLogger("cgl.builder")

Vec3 = Tuple[float, float, float]


@dataclass(slots=True)
class _PendingAtom:
    position: Vec3
    is_fixed: bool
    atom_id: int
    velocity: Optional[Vec3] = None


@dataclass(slots=True)
class _SpeciesGroup:
    """Atoms added under one symbol, in insertion order, with the group mass."""

    symbol: str
    mass: float
    atoms: List[_PendingAtom] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.atoms)


def _header_pair(lines: Sequence[str], name: str) -> Tuple[str, str]:
    """Accept up to two header lines; missing ones become empty strings."""
    if isinstance(lines, str):
        raise BuildError(f"{name} must be a sequence of lines, not a string", operation="FrameBuilder")
    lines = list(lines)
    if len(lines) > HEADER_LINES:
        raise BuildError(
            f"{name} holds at most {HEADER_LINES} lines, got {len(lines)}", operation="FrameBuilder"
        )
    lines += [""] * (HEADER_LINES - len(lines))
    return (lines[0], lines[1])


def _finite_triple(values: Sequence[float], what: str, operation: str) -> Vec3:
    try:
        x, y, z = (float(v) for v in values)
    except (TypeError, ValueError) as exc:
        raise BuildError(f"{what} must be three numbers: {exc}", operation=operation) from exc
    if not all(math.isfinite(v) for v in (x, y, z)):
        raise BuildError(f"{what} must be finite, got {(x, y, z)}", operation=operation)
    return (x, y, z)


def _mass_value(mass, operation: str) -> float:
    try:
        value = float(mass)
    except (TypeError, ValueError) as exc:
        raise BuildError(f"mass must be a number, got {mass!r}", operation=operation) from exc
    if not math.isfinite(value) or value < 0:
        raise BuildError(f"mass must be finite and non-negative, got {value}", operation=operation)
    return value


class FrameBuilder:
    """
    Incrementally assemble a :class:`~conglue.frame.Frame` from atoms.

    Atoms may be added in any order. On :meth:`build` they are grouped by
    species: groups appear in the order their symbol was first seen and, inside
    a group, atoms keep their insertion order. The per-group counts and masses
    that the CON header needs are derived from the groups.

    All atoms of one builder either carry velocities (``add_atom_with_velocity``)
    or none do (``add_atom``); mixing the two raises BuildError at the offending
    call. A builder is consumed by ``build()``: any later call raises
    BuilderConsumedError.

    Example::

        b = FrameBuilder([10.0, 10.0, 10.0], [90.0, 90.0, 90.0])
        b.add_atom("Cu", 0.0, 0.0, 0.0, is_fixed=True, atom_id=0, mass=63.546)
        b.add_atom("H", 1.0, 1.0, 1.0, atom_id=1)
        frame = b.build()
    """

    def __init__(
        self,
        cell: Sequence[float],
        angles: Sequence[float],
        prebox_header: Sequence[str] = EMPTY_HEADER,
        postbox_header: Sequence[str] = EMPTY_HEADER,
        *,
        default_masses: Optional[Mapping[str, float]] = None,
    ):
        try:
            fallback_masses = check_masses(default_masses)
        except ValueError as exc:
            raise BuildError(str(exc), operation="FrameBuilder") from exc
        prebox = _header_pair(prebox_header, "prebox_header")
        postbox = _header_pair(postbox_header, "postbox_header")
        try:
            handle = api.builder_new(cell, angles, prebox[0], prebox[1], postbox[0], postbox[1])
        except EngineError as exc:
            raise BuildError(str(exc), operation="FrameBuilder") from exc

        self._handle: Optional[api.BuilderHandle] = handle
        self._finalizer = weakref.finalize(self, api.release_builder, handle)
        self._groups: Dict[str, _SpeciesGroup] = {}
        self._with_velocity: Optional[bool] = None
        self._natoms = 0
        self._default_masses = fallback_masses

    @classmethod
    def from_config(cls, cell: Sequence[float], angles: Sequence[float], config: Config) -> "FrameBuilder":
        """Builder whose headers and fallback masses come from ``config``."""
        return cls(
            cell,
            angles,
            config.prebox_header,
            config.postbox_header,
            default_masses=config.default_masses,
        )

    # ----------------------------
    # Adding atoms
    # ----------------------------
    def add_atom(
        self,
        symbol: str,
        x: float,
        y: float,
        z: float,
        is_fixed: bool = False,
        atom_id: Optional[int] = None,
        mass: Optional[float] = None,
    ) -> None:
        """
        Add an atom without velocity.

        ``atom_id`` defaults to the number of atoms added so far. ``mass``
        defaults to the mass already recorded for ``symbol``, then to the
        builder's ``default_masses``, then to the standard atomic mass.
        """
        self._add("add_atom", symbol, (x, y, z), None, is_fixed, atom_id, mass)

    def add_atom_with_velocity(
        self,
        symbol: str,
        x: float,
        y: float,
        z: float,
        vx: float,
        vy: float,
        vz: float,
        is_fixed: bool = False,
        atom_id: Optional[int] = None,
        mass: Optional[float] = None,
    ) -> None:
        """Add an atom carrying a velocity. See :meth:`add_atom` for defaults."""
        self._add("add_atom_with_velocity", symbol, (x, y, z), (vx, vy, vz), is_fixed, atom_id, mass)

    def _add(self, op, symbol, position, velocity, is_fixed, atom_id, mass) -> None:
        self._check_open(op)

        if not isinstance(symbol, str) or not is_known_symbol(symbol):
            raise BuildError(f"unknown species symbol {symbol!r}", operation=op)

        with_velocity = velocity is not None
        if self._with_velocity is not None and with_velocity != self._with_velocity:
            raise BuildError(
                "cannot mix atoms with and without velocities in one frame", operation=op
            )

        pos = _finite_triple(position, "position", op)
        vel = _finite_triple(velocity, "velocity", op) if with_velocity else None

        if atom_id is None:
            atom_id = self._natoms
        else:
            try:
                atom_id = operator.index(atom_id)
            except TypeError as exc:
                raise BuildError(f"atom_id must be an integer, got {atom_id!r}", operation=op) from exc
            if isinstance(atom_id, bool) or atom_id < 0:
                raise BuildError(f"atom_id must be a non-negative integer, got {atom_id!r}", operation=op)

        group = self._groups.get(symbol)
        if group is None:
            group_mass = self._resolve_mass(symbol, mass, op)
        else:
            group_mass = group.mass
            if mass is not None and _mass_value(mass, op) != group.mass:
                raise BuildError(
                    f"mass {float(mass)} for {symbol!r} differs from {group.mass} given earlier",
                    operation=op,
                )

        # all checks passed
        if group is None:
            group = self._groups[symbol] = _SpeciesGroup(symbol=symbol, mass=group_mass)
        group.atoms.append(_PendingAtom(position=pos, is_fixed=bool(is_fixed), atom_id=atom_id, velocity=vel))
        self._with_velocity = with_velocity
        self._natoms += 1

    def _resolve_mass(self, symbol: str, mass: Optional[float], op: str) -> float:
        if mass is None:
            if symbol in self._default_masses:
                return self._default_masses[symbol]
            return standard_mass(symbol)
        return _mass_value(mass, op)

    # ----------------------------
    # State
    # ----------------------------
    def _check_open(self, op: str) -> None:
        if self._handle is None:
            raise BuilderConsumedError("builder has already been built or closed", operation=op)

    def species(self) -> List[Tuple[str, int, float]]:
        """(symbol, count, mass) per species group, in first-occurrence order."""
        return [(g.symbol, g.count, g.mass) for g in self._groups.values()]

    @property
    def has_velocities(self) -> bool:
        return bool(self._with_velocity)

    def __len__(self) -> int:
        return self._natoms

    def close(self) -> None:
        """Discard the builder without building."""
        self._finalizer()
        self._handle = None
        self._groups = {}

    # ----------------------------
    # Finalization
    # ----------------------------
    def build(self) -> Frame:
        """Group the atoms by species and hand them to a new Frame. Consumes the builder."""
        self._check_open("build")
        if self._natoms == 0:
            raise BuildError("no atoms were added", operation="build")

        # ownership of the handle moves into the engine's build call
        handle = self._handle
        self._finalizer.detach()
        self._handle = None
        groups, self._groups = self._groups, {}

        try:
            for group in groups.values():
                for atom in group.atoms:
                    if atom.velocity is None:
                        api.builder_add_atom(
                            handle, group.symbol, *atom.position, atom.is_fixed, atom.atom_id, group.mass
                        )
                    else:
                        api.builder_add_atom_with_velocity(
                            handle, group.symbol, *atom.position, atom.is_fixed, atom.atom_id, group.mass,
                            *atom.velocity,
                        )
            frame_handle = api.builder_build(handle)
        except EngineError as exc:
            if not handle.released:
                api.release_builder(handle)
            raise BuildError(str(exc), operation="build") from exc

        LOG.debug(
            "built frame: %d atoms in %d species group(s)",
            sum(g.count for g in groups.values()),
            len(groups),
        )
        return Frame(frame_handle)
