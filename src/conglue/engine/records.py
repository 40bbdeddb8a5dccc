# src/conglue/engine/records.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class EngineError(Exception):
    """Failure reported by the parse/format engine."""


class ParseError(EngineError, ValueError):
    """Content could not be decoded into a frame."""


class OpenError(EngineError, OSError):
    """A path could not be opened for reading or writing."""


@dataclass(slots=True)
class FrameHeader:
    """
    Metadata of the 9-line frame header.

      - prebox_header / postbox_header: the free-form lines around the box block
      - boxl, angles: cell lengths and angles (degrees)
      - natms_per_type / masses_per_type / symbols_per_type: one entry per
        contiguous component (symbols come from the component blocks)
    """

    prebox_header: Tuple[str, str]
    boxl: Tuple[float, float, float]
    angles: Tuple[float, float, float]
    postbox_header: Tuple[str, str]
    natms_per_type: List[int] = field(default_factory=list)
    masses_per_type: List[float] = field(default_factory=list)
    symbols_per_type: List[str] = field(default_factory=list)

    @property
    def natm_types(self) -> int:
        return len(self.natms_per_type)


@dataclass(slots=True)
class AtomDatum:
    symbol: str
    x: float
    y: float
    z: float
    is_fixed: bool
    atom_id: int
    vx: Optional[float] = None
    vy: Optional[float] = None
    vz: Optional[float] = None

    @property
    def has_velocity(self) -> bool:
        return self.vx is not None and self.vy is not None and self.vz is not None


@dataclass(slots=True)
class ConFrame:
    """Engine-side frame: header plus atoms in storage (component) order."""

    header: FrameHeader
    atom_data: List[AtomDatum] = field(default_factory=list)

    @property
    def has_velocities(self) -> bool:
        return bool(self.atom_data) and self.atom_data[0].has_velocity

    def components(self):
        """Yield (symbol, atoms) per component, following ``natms_per_type``."""
        start = 0
        symbols = self.header.symbols_per_type
        for i, count in enumerate(self.header.natms_per_type):
            block = self.atom_data[start:start + count]
            if i < len(symbols):
                symbol = symbols[i]
            else:
                symbol = block[0].symbol if block else ""
            yield symbol, block
            start += count


# ----------------------------
# Transient records handed out through the handle API
# ----------------------------
@dataclass(slots=True)
class AtomRecord:
    symbol: str
    atomic_number: int
    x: float
    y: float
    z: float
    atom_id: int
    mass: float
    is_fixed: bool
    vx: float
    vy: float
    vz: float
    has_velocity: bool


@dataclass(slots=True)
class SnapshotRecord:
    cell: Tuple[float, float, float]
    angles: Tuple[float, float, float]
    has_velocities: bool
    atoms: List[AtomRecord]
