# src/conglue/engine/render.py
from __future__ import annotations

import math
from typing import Iterable, List

from conglue._constants import COORDINATES_LABEL, VELOCITIES_LABEL
from conglue.engine.records import ConFrame, EngineError


def format_real(value: float, precision: int) -> str:
    """Fixed-point rendering with ``precision`` decimals; avoid '-0.000'."""
    text = f"{value:.{precision}f}"
    if text.startswith("-") and math.isfinite(value) and float(text) == 0.0:
        text = text[1:]
    return text


def _reals(values: Iterable[float], precision: int) -> str:
    return " ".join(format_real(v, precision) for v in values)


def _check_header_line(line: str) -> str:
    if "\n" in line or "\r" in line:
        raise EngineError(f"header line must not contain a line break: {line!r}")
    return line


def render_frame(frame: ConFrame, precision: int) -> str:
    """
    Render one frame as CON text (CONVEL when the frame carries velocities).

    Raises EngineError if the frame is internally inconsistent (component
    counts not matching the atom list, mixed velocity presence, ...).
    """
    header = frame.header
    atoms = frame.atom_data

    if sum(header.natms_per_type) != len(atoms):
        raise EngineError(
            f"component counts {header.natms_per_type} do not add up to {len(atoms)} atoms"
        )
    if len(header.masses_per_type) != header.natm_types:
        raise EngineError("one mass per component is required")

    with_velocities = frame.has_velocities
    if any(a.has_velocity != with_velocities for a in atoms):
        raise EngineError("frame mixes atoms with and without velocities")

    out: List[str] = [
        _check_header_line(header.prebox_header[0]),
        _check_header_line(header.prebox_header[1]),
        _reals(header.boxl, precision),
        _reals(header.angles, precision),
        _check_header_line(header.postbox_header[0]),
        _check_header_line(header.postbox_header[1]),
        str(header.natm_types),
        " ".join(str(n) for n in header.natms_per_type),
        _reals(header.masses_per_type, precision),
    ]

    components = list(frame.components())
    for i, (symbol, block) in enumerate(components, start=1):
        out.append(symbol)
        out.append(f"{COORDINATES_LABEL} {i}")
        for a in block:
            out.append(f"{_reals((a.x, a.y, a.z), precision)} {int(a.is_fixed)} {a.atom_id}")

    if with_velocities:
        out.append("")
        for i, (symbol, block) in enumerate(components, start=1):
            out.append(symbol)
            out.append(f"{VELOCITIES_LABEL} {i}")
            for a in block:
                out.append(f"{_reals((a.vx, a.vy, a.vz), precision)} {int(a.is_fixed)} {a.atom_id}")

    return "\n".join(out) + "\n"
