from __future__ import annotations

import sqlite3
from typing import Iterable

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                cursor.execute(_convert_qmark_to_pg(sql), list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, tuple(params or ()))

    def commit(self):
        self._conn.commit()

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def _connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def get_db() -> Database:
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = _connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


_ERP_TENANTS_DDL = """
CREATE TABLE IF NOT EXISTS erp_tenants (
    tenant_id TEXT PRIMARY KEY,
    name TEXT,
    erp TEXT NOT NULL DEFAULT 'PROTHEUS',
    base_url TEXT NOT NULL,
    query_path TEXT NOT NULL DEFAULT '/DocAprov/documentos',
    action_path TEXT NOT NULL DEFAULT '/aprova_documento',
    username TEXT NOT NULL DEFAULT '',
    password TEXT NOT NULL DEFAULT '',
    timeout_seconds REAL NOT NULL DEFAULT 30,
    company_code TEXT NOT NULL DEFAULT '01',
    is_active INTEGER NOT NULL DEFAULT 1,
    is_default INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


def init_db() -> None:
    db = get_db()
    db.execute(_ERP_TENANTS_DDL)
    db.execute("CREATE INDEX IF NOT EXISTS idx_erp_tenants_active ON erp_tenants (is_active)")
    db.commit()
