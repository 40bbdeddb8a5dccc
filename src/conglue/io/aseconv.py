from __future__ import annotations
from pathlib import Path
from typing import Iterable, List, Optional
import logging

import numpy as np
from ase import Atoms
from ase.constraints import FixAtoms
from ase.geometry import cellpar_to_cell
from ase.io import read, write

from conglue._constants import ASE_KEYS, CUBIC_ANGLES
from conglue.builder import FrameBuilder
from conglue.config import Config
from conglue.frame import Frame
from conglue.io.reader import iter_frames
from conglue.io.writer import write_con

LOG = logging.getLogger("cgl.aseconv")

CON_FORMAT = "con"

SUPPORTED_FORMATS = {
    CON_FORMAT,
    "extxyz",
    "traj",
}


def _infer_format_from_suffix(path: Path) -> str | None:
    suf = path.suffix.lower()
    if suf in {".con", ".convel"}:
        return CON_FORMAT
    if suf == ".xyz":
        return "extxyz"
    if suf == ".traj":
        return "traj"
    return None


def _to_atoms_list(obj) -> List[Atoms]:
    """Normalize a single Atoms or an iterable of them to List[Atoms]."""
    if isinstance(obj, Atoms):
        return [obj]
    return list(obj)


def _fixed_indices(atoms: Atoms) -> set:
    fixed = set()
    for c in atoms.constraints:
        if isinstance(c, FixAtoms):
            fixed.update(int(i) for i in c.get_indices())
    return fixed


# ---------- Frame <-> Atoms ----------

def frame_to_atoms(frame: Frame) -> Atoms:
    """
    Convert a frame to ``ase.Atoms`` (periodic in all directions).

    Atom ids, raw velocities and header lines travel in ``arrays``/``info``
    under the ``con_*`` keys; fixed atoms become a FixAtoms constraint.
    Species labels that are not chemical elements become ASE's dummy 'X'
    and the label is lost, so such an Atoms object cannot be turned back
    into a frame (:func:`atoms_to_frame` raises BuildError).
    """
    unknown = sorted({a.symbol for a in frame.atoms if a.atomic_number == 0})
    if unknown:
        LOG.warning("species %s are not chemical elements; stored as 'X'", unknown)

    atoms = Atoms(
        numbers=[a.atomic_number for a in frame.atoms],
        positions=frame.positions(),
        cell=cellpar_to_cell([*frame.cell, *frame.angles]),
        pbc=True,
    )
    atoms.set_masses([a.mass for a in frame.atoms])
    atoms.new_array(ASE_KEYS["atom_id"], np.array([a.atom_id for a in frame.atoms], dtype=int))
    if frame.has_velocities:
        atoms.new_array(ASE_KEYS["velocities"], frame.velocities())

    fixed = [i for i, a in enumerate(frame.atoms) if a.is_fixed]
    if fixed:
        atoms.set_constraint(FixAtoms(indices=fixed))

    atoms.info[ASE_KEYS["prebox_header"]] = list(frame.prebox_header)
    atoms.info[ASE_KEYS["postbox_header"]] = list(frame.postbox_header)
    return atoms


def atoms_to_frame(atoms: Atoms, config: Optional[Config] = None) -> Frame:
    """
    Build a frame from ``ase.Atoms``.

    Species are regrouped in first-occurrence order. Without a ``con_atom_id``
    array the atom index is used as id; masses are taken from the Atoms object
    only when it carries explicit masses.
    """
    config = config or Config()

    if not atoms.pbc.all():
        LOG.warning("Atoms object is not periodic in all directions; writing its cell as is")
    if atoms.cell.rank == 3:
        cellpar = atoms.cell.cellpar()
        cell, angles = cellpar[:3], cellpar[3:]
    else:
        LOG.warning("Atoms object has a degenerate cell; using its lengths with cubic angles")
        cell, angles = atoms.cell.lengths(), CUBIC_ANGLES

    builder = FrameBuilder(
        cell,
        angles,
        atoms.info.get(ASE_KEYS["prebox_header"], config.prebox_header),
        atoms.info.get(ASE_KEYS["postbox_header"], config.postbox_header),
        default_masses=config.default_masses,
    )

    ids = atoms.arrays.get(ASE_KEYS["atom_id"])
    velocities = atoms.arrays.get(ASE_KEYS["velocities"])
    masses = atoms.get_masses() if atoms.has("masses") else None
    fixed = _fixed_indices(atoms)
    positions = atoms.get_positions()

    for i, symbol in enumerate(atoms.get_chemical_symbols()):
        x, y, z = positions[i]
        kwargs = dict(
            is_fixed=i in fixed,
            atom_id=int(ids[i]) if ids is not None else i,
            mass=float(masses[i]) if masses is not None else None,
        )
        if velocities is None:
            builder.add_atom(symbol, x, y, z, **kwargs)
        else:
            vx, vy, vz = velocities[i]
            builder.add_atom_with_velocity(symbol, x, y, z, vx, vy, vz, **kwargs)

    return builder.build()


# ---------- file level ----------

def read_atoms(path: str | Path) -> List[Atoms]:
    """All frames of a CON file as ``ase.Atoms``."""
    images = []
    for frame in iter_frames(path):
        with frame:
            images.append(frame_to_atoms(frame))
    LOG.debug("read %d image(s) from %s", len(images), path)
    return images


def write_atoms(path: str | Path, images: Atoms | Iterable[Atoms], config: Optional[Config] = None) -> None:
    """Write one or more ``ase.Atoms`` to a CON file."""
    config = config or Config()
    frames = [atoms_to_frame(a, config) for a in _to_atoms_list(images)]
    try:
        write_con(path, frames, precision=config.precision)
    finally:
        for f in frames:
            f.close()


def convert(
    input_path: str,
    output_path: str,
    iformat: str = "auto",
    oformat: str | None = None,
    config: Optional[Config] = None,
    overwrite: bool = False,
) -> None:
    """
    Convert between CON and a format ASE reads/writes. One side must be CON.

    A CON file whose species labels are not chemical elements converts to
    the other format with those atoms as 'X'; that output cannot be converted
    back to CON.
    """
    # ---- resolve formats ----
    if iformat == "auto":
        inf = _infer_format_from_suffix(Path(input_path))
        if inf is None:
            raise ValueError("Could not infer input format from extension; please set iformat.")
        iformat = inf
    if oformat is None:
        outf = _infer_format_from_suffix(Path(output_path))
        if outf is None:
            raise ValueError("Could not infer output format from extension; please set oformat.")
        oformat = outf

    for fmt in (iformat, oformat):
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported format: {fmt}")
    if CON_FORMAT not in (iformat, oformat):
        raise ValueError("One of the two formats must be 'con'.")

    # ---- overwrite safety ----
    if Path(output_path).exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing file: {output_path} "
            f"(use overwrite=True to allow)."
        )

    # ---- perform conversion ----
    if iformat == CON_FORMAT:
        images = read_atoms(input_path)
    else:
        images = _to_atoms_list(read(input_path, format=iformat, index=":"))

    if oformat == CON_FORMAT:
        write_atoms(output_path, images, config)
    else:
        # header lines only mean something in CON
        for atoms in images:
            atoms.info.pop(ASE_KEYS["prebox_header"], None)
            atoms.info.pop(ASE_KEYS["postbox_header"], None)
        write(output_path, images, format=oformat)
