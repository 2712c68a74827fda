from __future__ import annotations

import pytest

from db import get_con, init_db
from helpers import LONDON, FakeDispatcher, sample_ref


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "state.db"
    con = get_con(path)
    init_db(con)
    con.close()
    return path


@pytest.fixture
def con(db_path):
    con = get_con(db_path)
    yield con
    con.close()


@pytest.fixture
def ref():
    return sample_ref()


@pytest.fixture
def tz():
    return LONDON


@pytest.fixture
def dispatcher():
    return FakeDispatcher()
