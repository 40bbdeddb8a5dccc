#!/usr/bin/env python3
from types import MappingProxyType

# decimal places used for real-valued fields on write
DEFAULT_PRECISION: int = 6

HEADER_LINES: int = 2
EMPTY_HEADER: tuple[str, str] = ("", "")

COORDINATES_LABEL: str = "Coordinates of Component"
VELOCITIES_LABEL: str = "Velocities of Component"

CUBIC_ANGLES: tuple[float, float, float] = (90.0, 90.0, 90.0)

# keys used when a frame is carried on an ase.Atoms object
ASE_KEYS = MappingProxyType({
    "atom_id": "con_atom_id",
    "velocities": "con_velocities",
    "prebox_header": "con_prebox_header",
    "postbox_header": "con_postbox_header",
})
