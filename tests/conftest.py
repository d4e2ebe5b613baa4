"""Pytest fixtures shared across unit and integration tests."""

from __future__ import annotations

import os
from typing import Any
import uuid

import psycopg
from psycopg import sql
import pytest

from tests.utils.settlement_db import PsycopgSettlementDB, apply_initial_migration


@pytest.fixture(scope="session")
def pg_conn() -> Any:
    """Session-scoped psycopg connection for integration tests."""
    host = os.getenv("TEST_DB_HOST")
    port = os.getenv("TEST_DB_PORT")
    dbname = os.getenv("TEST_DB_NAME")
    user = os.getenv("TEST_DB_USER")
    password = os.getenv("TEST_DB_PASSWORD")

    if not all([host, port, dbname, user, password]):
        pytest.skip("Integration DB env vars are missing; set TEST_DB_HOST/PORT/NAME/USER/PASSWORD")

    conn = psycopg.connect(
        host=host,
        port=port,
        dbname=dbname,
        user=user,
        password=password,
        autocommit=True,
    )
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def settlement_db(pg_conn: Any) -> Any:
    """Settlement DB adapter bound to a freshly migrated throwaway schema."""
    schema = sql.Identifier(f"settlement_it_{uuid.uuid4().hex[:12]}")
    pg_conn.execute(sql.SQL("CREATE SCHEMA {}").format(schema))
    pg_conn.execute(sql.SQL("SET search_path TO {}, public").format(schema))
    try:
        apply_initial_migration(pg_conn)
        yield PsycopgSettlementDB(pg_conn)
    finally:
        pg_conn.execute("SET search_path TO public")
        pg_conn.execute(sql.SQL("DROP SCHEMA {} CASCADE").format(schema))
