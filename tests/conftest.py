# tests/conftest.py
import gc

import pytest

from conglue.engine import api

from _utils import CUH2_CON, CUH2_CONVEL, SECOND_FRAME, write_con_text


@pytest.fixture
def tmp_path_cwd(tmp_path, monkeypatch):
  monkeypatch.chdir(tmp_path)
  return tmp_path


@pytest.fixture
def con_file(tmp_path):
    return write_con_text(tmp_path / "tiny_cuh2.con", CUH2_CON)


@pytest.fixture
def convel_file(tmp_path):
    return write_con_text(tmp_path / "tiny_cuh2.convel", CUH2_CONVEL)


@pytest.fixture
def multi_con_file(tmp_path):
    return write_con_text(tmp_path / "tiny_multi_cuh2.con", CUH2_CON + SECOND_FRAME)


@pytest.fixture
def multi_convel_file(tmp_path):
    return write_con_text(tmp_path / "tiny_multi_cuh2.convel", CUH2_CONVEL + CUH2_CONVEL.replace("Random Number Seed", "Frame 2"))


@pytest.fixture
def empty_file(tmp_path):
    return write_con_text(tmp_path / "empty.con", "")


@pytest.fixture
def no_leaks():
    """Fail the test if it leaves engine handles unreleased."""
    gc.collect()
    before = api.live_handles()
    yield
    gc.collect()
    assert api.live_handles() == before
