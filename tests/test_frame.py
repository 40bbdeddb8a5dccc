from __future__ import annotations

import copy
import pickle

import numpy as np
import pytest

from conglue import MaterializationError, UsageError, read_first_frame
from conglue.engine import EngineError, api


def _count_calls(monkeypatch, name):
    calls = []
    original = getattr(api, name)

    def wrapper(*args, **kwargs):
        calls.append(args)
        return original(*args, **kwargs)

    monkeypatch.setattr(api, name, wrapper)
    return calls


def test_materialization_happens_once(monkeypatch, con_file):
    snapshots = _count_calls(monkeypatch, "frame_to_snapshot")
    headers = _count_calls(monkeypatch, "frame_header_line")

    frame = read_first_frame(con_file)
    assert snapshots == []

    atoms_a = frame.atoms
    atoms_b = frame.atoms
    _ = frame.cell, frame.angles, frame.prebox_header, frame.postbox_header, frame.has_velocities

    assert len(snapshots) == 1
    assert len(headers) == 4
    assert atoms_a is atoms_b
    assert frame.cell is frame.cell


def test_frame_fields(con_file):
    frame = read_first_frame(con_file)
    assert len(frame) == 4
    assert frame.cell == pytest.approx((15.3456, 21.702, 100.0))
    assert frame.angles == pytest.approx((90.0, 90.0, 90.0))
    assert frame.prebox_header == ("Random Number Seed", "Time")
    assert frame.postbox_header == ("0 0", "218 0 1")
    assert frame.symbols == ["Cu", "Cu", "H", "H"]

    cu = frame.atoms[0]
    assert cu.symbol == "Cu"
    assert cu.atomic_number == 29
    assert cu.is_fixed is True
    assert cu.atom_id == 0
    assert cu.mass == pytest.approx(63.546)
    assert cu.has_velocity is False
    assert cu.velocity is None
    assert cu.position == pytest.approx((0.6394, 0.9045, 6.9753))


def test_species_runs(con_file):
    frame = read_first_frame(con_file)
    species = frame.species()
    assert [(s, n) for s, n, _ in species] == [("Cu", 2), ("H", 2)]
    assert species[1][2] == pytest.approx(1.00793)


def test_numpy_views(convel_file, con_file):
    frame = read_first_frame(convel_file)
    pos = frame.positions()
    vel = frame.velocities()
    assert pos.shape == (4, 3)
    assert vel.shape == (4, 3)
    assert np.allclose(vel[2], [-0.01, 0.02, -0.03])

    assert read_first_frame(con_file).velocities() is None


def test_absent_header_line_reads_as_empty(monkeypatch, con_file):
    original = api.frame_header_line

    def no_second_lines(handle, prebox, index):
        if index == 1:
            return None
        return original(handle, prebox, index)

    monkeypatch.setattr(api, "frame_header_line", no_second_lines)
    frame = read_first_frame(con_file)
    assert frame.prebox_header == ("Random Number Seed", "")
    assert frame.postbox_header == ("0 0", "")


def test_snapshot_failure_raises(monkeypatch, con_file):
    def broken(handle):
        raise EngineError("corrupt frame")

    monkeypatch.setattr(api, "frame_to_snapshot", broken)
    frame = read_first_frame(con_file)
    with pytest.raises(MaterializationError, match="corrupt frame"):
        frame.atoms
    # no partial cache kept
    with pytest.raises(MaterializationError):
        frame.cell


def test_transient_buffers_are_released(con_file, no_leaks):
    frame = read_first_frame(con_file)
    frame.atoms
    assert "snapshot" not in api.live_handles()
    assert "text" not in api.live_handles()
    frame.close()


def test_close_releases_handle_once(con_file, no_leaks):
    frame = read_first_frame(con_file)
    cell = frame.cell
    frame.close()
    frame.close()
    assert frame.closed
    # cached data survive the release
    assert frame.cell == cell
    with pytest.raises(UsageError):
        frame._borrow_handle()


def test_unmaterialized_closed_frame(con_file):
    with read_first_frame(con_file) as frame:
        pass
    assert repr(frame) == "ConFrame(<closed>)"
    with pytest.raises(MaterializationError):
        frame.atoms


def test_dropping_a_frame_releases_it(con_file, no_leaks):
    read_first_frame(con_file)


def test_frames_cannot_be_copied(con_file):
    frame = read_first_frame(con_file)
    with pytest.raises(TypeError):
        copy.copy(frame)
    with pytest.raises(TypeError):
        copy.deepcopy(frame)
    with pytest.raises(TypeError):
        pickle.dumps(frame)


def test_repr_and_equality(con_file, multi_con_file):
    frame = read_first_frame(con_file)
    assert repr(frame) == (
        "ConFrame(cell=[15.3456, 21.702, 100.0], angles=[90.0, 90.0, 90.0], "
        "natoms=4, has_velocities=False)"
    )
    assert frame == read_first_frame(multi_con_file)
    assert frame != "not a frame"
