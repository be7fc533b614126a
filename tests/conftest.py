from __future__ import annotations

import pytest

from piggy_finance import config, db


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Point the store at a throwaway sqlite file for every test."""
    monkeypatch.setattr(config, 'DATA_DIR', tmp_path)
    monkeypatch.setattr(config, 'DB_PATH', tmp_path / 'piggy.db')
    db.init_db()
    return tmp_path / 'piggy.db'
