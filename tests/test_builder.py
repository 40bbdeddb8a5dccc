from __future__ import annotations

import pytest

from conglue import BuildError, BuilderConsumedError, Config, FrameBuilder
from conglue.engine import api

CUBE = [10.0, 10.0, 10.0]
ORTHO = [90.0, 90.0, 90.0]


def test_species_grouping_is_stable():
    b = FrameBuilder(CUBE, ORTHO)
    for i, symbol in enumerate(["O", "H", "H", "O", "H"]):
        b.add_atom(symbol, float(i), 0.0, 0.0, atom_id=i)
    frame = b.build()

    assert frame.symbols == ["O", "O", "H", "H", "H"]
    assert [a.atom_id for a in frame.atoms] == [0, 3, 1, 2, 4]
    assert [(s, n) for s, n, _ in frame.species()] == [("O", 2), ("H", 3)]
    assert [a.x for a in frame.atoms] == [0.0, 3.0, 1.0, 2.0, 4.0]


def test_builder_species_before_build():
    b = FrameBuilder(CUBE, ORTHO)
    b.add_atom("Cu", 0.0, 0.0, 0.0, mass=63.546)
    b.add_atom("H", 1.0, 0.0, 0.0, mass=1.008)
    b.add_atom("Cu", 2.0, 0.0, 0.0)
    assert b.species() == [("Cu", 2, 63.546), ("H", 1, 1.008)]
    assert len(b) == 3
    b.close()


def test_defaults_for_mass_and_id():
    b = FrameBuilder(CUBE, ORTHO)
    b.add_atom("H", 0.0, 0.0, 0.0)
    b.add_atom("He", 1.0, 0.0, 0.0)
    frame = b.build()
    assert [a.atom_id for a in frame.atoms] == [0, 1]
    assert frame.atoms[0].mass == pytest.approx(1.008, abs=1e-3)
    assert frame.atoms[1].mass == pytest.approx(4.0026, abs=1e-3)


def test_fields_carry_through():
    b = FrameBuilder(CUBE, [80.0, 90.0, 100.0], ("pre", ""), ("", "post"))
    b.add_atom_with_velocity("Cu", 1.0, 2.0, 3.0, 0.1, 0.2, 0.3, is_fixed=True, atom_id=7, mass=63.5)
    frame = b.build()

    assert frame.cell == (10.0, 10.0, 10.0)
    assert frame.angles == (80.0, 90.0, 100.0)
    assert frame.prebox_header == ("pre", "")
    assert frame.postbox_header == ("", "post")
    assert frame.has_velocities

    atom = frame.atoms[0]
    assert atom.position == (1.0, 2.0, 3.0)
    assert atom.velocity == (0.1, 0.2, 0.3)
    assert atom.is_fixed is True
    assert atom.atom_id == 7
    assert atom.mass == 63.5


def test_mixed_velocity_rejected_at_add():
    b = FrameBuilder(CUBE, ORTHO)
    b.add_atom("H", 0.0, 0.0, 0.0)
    with pytest.raises(BuildError, match="mix"):
        b.add_atom_with_velocity("H", 1.0, 0.0, 0.0, 0.1, 0.1, 0.1)
    # builder unchanged, still usable
    assert len(b) == 1
    frame = b.build()
    assert not frame.has_velocities


def test_mixed_velocity_rejected_other_way_round():
    b = FrameBuilder(CUBE, ORTHO)
    b.add_atom_with_velocity("H", 0.0, 0.0, 0.0, 0.1, 0.1, 0.1)
    with pytest.raises(BuildError):
        b.add_atom("H", 1.0, 0.0, 0.0)
    b.close()


def test_mass_mismatch_for_same_symbol():
    b = FrameBuilder(CUBE, ORTHO)
    b.add_atom("Cu", 0.0, 0.0, 0.0, mass=63.546)
    with pytest.raises(BuildError, match="differs"):
        b.add_atom("Cu", 1.0, 0.0, 0.0, mass=65.0)
    b.close()


def test_non_numeric_mass_for_known_symbol():
    b = FrameBuilder(CUBE, ORTHO)
    b.add_atom("H", 0.0, 0.0, 0.0, mass=1.0)
    with pytest.raises(BuildError, match="mass must be a number"):
        b.add_atom("H", 1.0, 0.0, 0.0, mass="heavy")
    with pytest.raises(BuildError, match="finite"):
        b.add_atom("H", 1.0, 0.0, 0.0, mass=float("nan"))
    assert len(b) == 1
    b.close()


@pytest.mark.parametrize(
    "masses, message",
    [
        ({"H": -1.0}, "non-negative"),
        ({"H": float("nan")}, "finite"),
        ({"H": "heavy"}, "not a number"),
        ([("H", 1.0)], "mapping"),
    ],
)
def test_invalid_default_masses(masses, message, no_leaks):
    with pytest.raises(BuildError, match=message):
        FrameBuilder(CUBE, ORTHO, default_masses=masses)


def test_default_masses_are_used():
    b = FrameBuilder(CUBE, ORTHO, default_masses={"H": "2.014"})
    b.add_atom("H", 0.0, 0.0, 0.0)
    assert b.species() == [("H", 1, 2.014)]
    b.close()


@pytest.mark.parametrize(
    "kwargs, message",
    [
        (dict(symbol="Xx"), "unknown species"),
        (dict(symbol="H", x=float("nan")), "finite"),
        (dict(symbol="H", atom_id=-1), "non-negative"),
        (dict(symbol="H", atom_id=1.5), "integer"),
        (dict(symbol="H", mass=-1.0), "mass"),
    ],
)
def test_invalid_atoms(kwargs, message):
    args = dict(symbol="H", x=0.0, y=0.0, z=0.0)
    args.update(kwargs)
    b = FrameBuilder(CUBE, ORTHO)
    with pytest.raises(BuildError, match=message):
        b.add_atom(**args)
    assert len(b) == 0
    b.close()


def test_empty_build_rejected():
    b = FrameBuilder(CUBE, ORTHO)
    with pytest.raises(BuildError, match="no atoms"):
        b.build()
    b.add_atom("H", 0.0, 0.0, 0.0)
    assert len(b.build()) == 1


def test_builder_is_consumed_by_build():
    b = FrameBuilder(CUBE, ORTHO)
    b.add_atom("H", 0.0, 0.0, 0.0)
    b.build()
    with pytest.raises(BuilderConsumedError):
        b.build()
    with pytest.raises(BuilderConsumedError):
        b.add_atom("H", 1.0, 0.0, 0.0)


@pytest.mark.parametrize(
    "cell, angles, prebox",
    [
        ([10.0, 10.0], ORTHO, ("", "")),
        (CUBE, [90.0, float("inf"), 90.0], ("", "")),
        (CUBE, ORTHO, ("a", "b", "c")),
        (CUBE, ORTHO, ("line\nbreak", "")),
        (CUBE, ORTHO, "not a pair"),
    ],
)
def test_invalid_setup(cell, angles, prebox):
    with pytest.raises(BuildError):
        FrameBuilder(cell, angles, prebox)


def test_short_header_is_padded():
    b = FrameBuilder(CUBE, ORTHO, ("only one",), ())
    b.add_atom("H", 0.0, 0.0, 0.0)
    frame = b.build()
    assert frame.prebox_header == ("only one", "")
    assert frame.postbox_header == ("", "")


def test_from_config_uses_headers_and_masses():
    cfg = Config(prebox_header=("generated", ""), default_masses={"H": 2.014})
    b = FrameBuilder.from_config(CUBE, ORTHO, cfg)
    b.add_atom("H", 0.0, 0.0, 0.0)
    frame = b.build()
    assert frame.prebox_header == ("generated", "")
    assert frame.atoms[0].mass == pytest.approx(2.014)


def test_builder_handles_are_released(no_leaks):
    b = FrameBuilder(CUBE, ORTHO)
    b.add_atom("H", 0.0, 0.0, 0.0)
    frame = b.build()
    assert "builder" not in api.live_handles()
    frame.close()

    dropped = FrameBuilder(CUBE, ORTHO)
    dropped.add_atom("H", 0.0, 0.0, 0.0)
    del dropped


def test_failed_assembly_is_reported(monkeypatch):
    def broken(handle):
        api.release_builder(handle)
        raise api.EngineError("assembly failed")

    monkeypatch.setattr(api, "builder_build", broken)
    b = FrameBuilder(CUBE, ORTHO)
    b.add_atom("H", 0.0, 0.0, 0.0)
    with pytest.raises(BuildError, match="assembly failed"):
        b.build()
    with pytest.raises(BuilderConsumedError):
        b.build()
