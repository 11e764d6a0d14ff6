"""DuckDB warehouse for the ``duckdb`` sink.

``open_warehouse(paths)`` opens or creates ``records.duckdb``.
``run_migrations(conn)``  applies bundled ``sql/schema/*.sql`` files once each.
``insert_records(conn, channel, rows)`` appends published records.

Migrations are tracked by file stem (``001_records``) in
``schema_migrations``, so running them on every startup is harmless.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import duckdb

from logtail.paths import ProjectPaths

WAREHOUSE_FILE = "records.duckdb"

_SQL_DIR = Path(__file__).parent / "sql" / "schema"

_BOOTSTRAP = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version        TEXT PRIMARY KEY,
        applied_at_utc TIMESTAMPTZ NOT NULL DEFAULT current_timestamp
    )
"""

_INSERT_SQL = "INSERT INTO records (channel, sequence, record) VALUES (?, ?, ?)"


def open_warehouse(paths: ProjectPaths) -> duckdb.DuckDBPyConnection:
    """Open (or create) the warehouse database and return a connection.

    ``paths.warehouse_dir`` must exist (``paths.ensure_output_dirs()``).
    The caller closes the connection.
    """
    return duckdb.connect(str(paths.warehouse_dir / WAREHOUSE_FILE))


def run_migrations(conn: duckdb.DuckDBPyConnection, sql_dir: Path = _SQL_DIR) -> int:
    """Apply pending migrations from *sql_dir* and return how many ran."""
    conn.execute(_BOOTSTRAP)
    applied = {row[0] for row in conn.execute("SELECT version FROM schema_migrations").fetchall()}
    pending = sorted(p for p in sql_dir.glob("*.sql") if p.stem not in applied)

    for sql_file in pending:
        for stmt in sql_file.read_text().split(";"):
            # Drop comment-only fragments before executing.
            body = "\n".join(
                line for line in stmt.splitlines() if not line.strip().startswith("--")
            ).strip()
            if body:
                conn.execute(body)
        conn.execute("INSERT INTO schema_migrations (version) VALUES (?)", [sql_file.stem])

    return len(pending)


def insert_records(
    conn: duckdb.DuckDBPyConnection,
    channel: str,
    rows: Iterable[tuple[int, str]],
) -> None:
    """Insert ``(sequence, record)`` pairs for *channel*."""
    params = [[channel, sequence, record] for sequence, record in rows]
    if params:
        conn.executemany(_INSERT_SQL, params)


def count_records(conn: duckdb.DuckDBPyConnection, channel: str | None = None) -> int:
    if channel is None:
        row = conn.execute("SELECT COUNT(*) FROM records").fetchone()
    else:
        row = conn.execute("SELECT COUNT(*) FROM records WHERE channel = ?", [channel]).fetchone()
    assert row is not None  # COUNT(*) always returns exactly one row
    return int(row[0])
