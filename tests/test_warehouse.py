"""Tests for the DuckDB warehouse behind the ``duckdb`` sink.

  - open_warehouse creates records.duckdb under warehouse_dir
  - migrations are applied once; re-running is a no-op
"""

from pathlib import Path

import duckdb
import pytest

from logtail.config import Settings
from logtail.paths import ProjectPaths
from logtail.warehouse import (
    WAREHOUSE_FILE,
    count_records,
    insert_records,
    open_warehouse,
    run_migrations,
)


def _paths(tmp_path: Path) -> ProjectPaths:
    p = ProjectPaths.from_settings(Settings(paths={"data_root": str(tmp_path)}))
    p.ensure_output_dirs()
    return p


@pytest.fixture()
def mem_conn():
    conn = duckdb.connect(":memory:")
    yield conn
    conn.close()


class TestRunMigrations:
    def test_first_run_applies_bundled_schema(self, mem_conn):
        assert run_migrations(mem_conn) == 1

    def test_second_run_returns_zero(self, mem_conn):
        run_migrations(mem_conn)
        assert run_migrations(mem_conn) == 0

    def test_versions_recorded(self, mem_conn):
        run_migrations(mem_conn)
        rows = mem_conn.execute("SELECT version FROM schema_migrations").fetchall()
        assert rows == [("001_records",)]

    def test_records_table_columns(self, mem_conn):
        run_migrations(mem_conn)
        cols = [
            row[0]
            for row in mem_conn.execute(
                "SELECT column_name FROM information_schema.columns"
                " WHERE table_name = 'records' ORDER BY ordinal_position"
            ).fetchall()
        ]
        assert cols == ["channel", "sequence", "record", "published_at_utc"]

    def test_custom_sql_dir_with_comments(self, mem_conn, tmp_path):
        (tmp_path / "001_extra.sql").write_text(
            "-- first statement\nCREATE TABLE extra (x INTEGER);\n-- trailing comment\n"
        )
        assert run_migrations(mem_conn, tmp_path) == 1
        assert mem_conn.execute("SELECT COUNT(*) FROM extra").fetchone() == (0,)


class TestRecords:
    def test_insert_and_count_per_channel(self, mem_conn):
        run_migrations(mem_conn)
        insert_records(mem_conn, "app", [(1, "a"), (2, "b")])
        insert_records(mem_conn, "db", [(1, "c")])
        assert count_records(mem_conn) == 3
        assert count_records(mem_conn, "app") == 2
        assert count_records(mem_conn, "missing") == 0

    def test_published_at_defaults_to_now(self, mem_conn):
        run_migrations(mem_conn)
        insert_records(mem_conn, "app", [(1, "a")])
        row = mem_conn.execute("SELECT published_at_utc FROM records").fetchone()
        assert row[0] is not None

    def test_empty_insert_is_noop(self, mem_conn):
        run_migrations(mem_conn)
        insert_records(mem_conn, "app", [])
        assert count_records(mem_conn) == 0

    def test_duplicate_sequence_rejected(self, mem_conn):
        run_migrations(mem_conn)
        insert_records(mem_conn, "app", [(1, "a")])
        with pytest.raises(duckdb.ConstraintException):
            insert_records(mem_conn, "app", [(1, "again")])


class TestOpenWarehouse:
    def test_creates_database_file(self, tmp_path):
        paths = _paths(tmp_path)
        conn = open_warehouse(paths)
        run_migrations(conn)
        conn.close()
        assert (paths.warehouse_dir / WAREHOUSE_FILE).is_file()

    def test_records_survive_reopen(self, tmp_path):
        paths = _paths(tmp_path)
        conn = open_warehouse(paths)
        run_migrations(conn)
        insert_records(conn, "app", [(1, "a")])
        conn.close()

        conn = open_warehouse(paths)
        assert run_migrations(conn) == 0
        assert count_records(conn, "app") == 1
        conn.close()
