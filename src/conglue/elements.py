# src/conglue/elements.py
from __future__ import annotations

from ase.data import atomic_masses, atomic_numbers


def is_known_symbol(symbol: str) -> bool:
    """True for real chemical elements (``X``, the ASE dummy, is rejected)."""
    return atomic_numbers.get(symbol, 0) > 0


def symbol_to_atomic_number(symbol: str) -> int:
    """Atomic number of ``symbol``; 0 for labels that are not chemical elements."""
    return atomic_numbers.get(symbol.strip(), 0)


def standard_mass(symbol: str) -> float:
    """Standard atomic mass (amu) of ``symbol`` from ase.data."""
    if not is_known_symbol(symbol):
        raise ValueError(f"Unknown chemical symbol: {symbol!r}")
    return float(atomic_masses[atomic_numbers[symbol]])
