import pytest
from sqlalchemy import create_engine, text
from auditsource.config import load_settings


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'audit.sqlite3'}")
    with eng.begin() as conn:
        conn.execute(text("CREATE TABLE audit_data_table (id INTEGER, return_code BIGINT, name VARCHAR(20))"))
    yield eng
    eng.dispose()


@pytest.fixture
def settings(tmp_path):
    def _make(**overrides):
        values = {
            "database_url": "sqlite://",
            "table_name": "audit_data_table",
            "cursor_column": "id",
            "checkpoint_path": str(tmp_path / "committed_value.backup"),
            "minimum_cycle_interval_ms": 0,
        }
        values.update(overrides)
        return load_settings(**values)
    return _make


@pytest.fixture
def insert_rows(engine):
    def _insert(*rows):
        with engine.begin() as conn:
            for row in rows:
                conn.execute(text("INSERT INTO audit_data_table VALUES (:id, :rc, :name)"),
                             {"id": row[0], "rc": row[1], "name": row[2]})
    return _insert
