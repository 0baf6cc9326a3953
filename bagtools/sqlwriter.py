"""Small SQLite helpers: a thin connection wrapper and a schema-growing row writer."""

from __future__ import annotations

import enum
import sqlite3
import threading
import time
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Optional, Union

Value = Union[float, int, str, bytes, None]
Row = dict

_STRICT_SUPPORTED = sqlite3.sqlite_version_info >= (3, 37, 1)
_DB_ERRORS = (sqlite3.Error, sqlite3.Warning, OverflowError)


class SQLWFlag(enum.Enum):
    """How a database is opened."""

    NO_FLAG = enum.auto()
    READ_ONLY = enum.auto()


def _quote(identifier: str, quote: str) -> str:
    return identifier.replace(quote, quote * 2)


class MiniSQLite:
    """A single SQLite connection with explicit transaction control."""

    def __init__(self, fname, flag=SQLWFlag.NO_FLAG):
        self.flag = flag
        self._in_transaction = False
        try:
            if flag is SQLWFlag.READ_ONLY:
                uri = Path(fname).absolute().as_uri() + "?mode=ro"
                conn = sqlite3.connect(
                    uri,
                    uri=True,
                    timeout=60,
                    isolation_level=None,
                    check_same_thread=False,
                )
            else:
                conn = sqlite3.connect(
                    str(fname),
                    timeout=60,
                    isolation_level=None,
                    check_same_thread=False,
                )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Unable to open {fname} for sqlite") from exc
        self._conn: Optional[sqlite3.Connection] = conn
        try:
            self.exec("PRAGMA journal_mode='wal'")
        except RuntimeError:
            # A read-only connection cannot switch journal modes.
            if flag is not SQLWFlag.READ_ONLY:
                raise
        self.exec("PRAGMA foreign_keys=ON")

    @property
    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database connection is closed")
        return self._conn

    def get_schema(self, table):
        """Return (name, type) pairs of the table's columns, sorted by name."""
        rows = self.execute("SELECT name, type FROM pragma_table_xinfo(?)", (table,))
        return sorted(((row["name"], row["type"]) for row in rows), key=lambda p: p[0])

    def have_table(self, table):
        return bool(self.get_schema(table))

    def add_column(self, table, name, type_, meta=""):
        """Add a column, creating the table if it does not exist yet."""
        t = _quote(table, "'")
        n = _quote(name, "'")
        if not self.have_table(table):
            query = f"create table if not exists '{t}' ( '{n}' {type_} {meta})"
            if _STRICT_SUPPORTED:
                query += " STRICT"
            self.exec(query)
        else:
            t = _quote(table, '"')
            n = _quote(name, '"')
            self.exec(f'ALTER table "{t}" add column "{n}" {type_} {meta}')

    def exec(self, query):
        """Run one statement and return its rows as lists of strings."""
        try:
            rows = self._connection.execute(query).fetchall()
        except _DB_ERRORS as exc:
            raise RuntimeError(f"Error executing sqlite3 query '{query}': {exc}") from exc
        return [[_as_exec_text(value) for value in row] for row in rows]

    def execute(self, query, params=(), msec=0):
        """Run a parameterised statement and return typed rows as dicts.

        With a non-zero msec the statement is interrupted once that many
        milliseconds have passed.
        """
        conn = self._connection
        if msec:
            deadline = time.monotonic() + msec / 1000.0
            conn.set_progress_handler(lambda: time.monotonic() > deadline, 100)
        try:
            cursor = conn.execute(query, tuple(params))
            rows = cursor.fetchall()
            names = [d[0] for d in cursor.description] if cursor.description else []
        except _DB_ERRORS as exc:
            raise RuntimeError(f"Sqlite error: {exc}") from exc
        finally:
            if msec:
                conn.set_progress_handler(None, 100)
        return [dict(zip(names, row)) for row in rows]

    def begin(self):
        self._in_transaction = True
        self.exec("begin")

    def commit(self):
        self._in_transaction = False
        self.exec("commit")

    def cycle(self):
        """Commit the open transaction and start a new one."""
        self.exec("commit")
        self.exec("begin")

    def close(self):
        if self._conn is None:
            return
        try:
            if self._in_transaction:
                self.commit()
        finally:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _as_exec_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "<blob>"
    if isinstance(value, float):
        return f"{value:f}"
    return str(value)


def _sql_type(value: Any) -> str:
    if isinstance(value, float):
        return "REAL"
    if isinstance(value, str):
        return "TEXT"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "BLOB"
    return "INT"


def _normalise_meta(meta) -> dict:
    if not meta:
        return {}
    if all(isinstance(v, str) for v in meta.values()):
        return {"data": dict(meta)}
    return {table: dict(columns) for table, columns in meta.items()}


class SQLiteWriter:
    """Writes rows into tables, adding tables and columns as values appear.

    Writes happen inside a transaction that a background thread commits
    about once a second.
    """

    def __init__(self, fname, meta=None, flag=SQLWFlag.NO_FLAG):
        if isinstance(meta, SQLWFlag):
            flag, meta = meta, None
        self._flag = flag
        self._db = MiniSQLite(fname, flag)
        self._lock = threading.Lock()
        self._meta = _normalise_meta(meta)
        self._columns: dict[str, dict[str, str]] = {}
        self._statements: dict[str, tuple[tuple[str, ...], bool, str]] = {}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        if flag is not SQLWFlag.READ_ONLY:
            self._db.begin()
            self._thread = threading.Thread(
                target=self._commit_loop, name="sqlwriter-commit", daemon=True
            )
            self._thread.start()

    def _commit_loop(self):
        interval = 0.05
        while not self._stop.wait(interval):
            with self._lock:
                self._db.cycle()
            interval = 1.0

    def _known_columns(self, table: str) -> dict[str, str]:
        columns = self._columns.get(table)
        if not columns:
            columns = dict(self._db.get_schema(table))
            self._columns[table] = columns
        return columns

    def _build_insert(self, table: str, items: list, replace: bool) -> str:
        for name, value in items:
            columns = self._known_columns(table)
            if name not in columns:
                sql_type = _sql_type(value)
                meta = self._meta.get(table, {}).get(name, "")
                self._db.add_column(table, name, sql_type, meta)
                columns[name] = sql_type
        names = ", ".join(f"'{_quote(name, chr(39))}'" for name, _ in items)
        marks = ", ".join("?" for _ in items)
        verb = "insert or replace" if replace else "insert"
        return f"{verb} into '{_quote(table, chr(39))}' ({names}) values ({marks})"

    def _add(self, values, table: str, replace: bool) -> None:
        if self._flag is SQLWFlag.READ_ONLY:
            raise RuntimeError("Attempting to write to a read-only database instance")
        if isinstance(values, Mapping):
            items = list(values.items())
        else:
            items = [tuple(pair) for pair in values]
        signature = tuple(name for name, _ in items)
        with self._lock:
            cached = self._statements.get(table)
            if cached is None or cached[0] != signature or cached[1] != replace:
                statement = self._build_insert(table, items, replace)
                self._statements[table] = (signature, replace, statement)
            statement = self._statements[table][2]
            self._db.execute(statement, [value for _, value in items])

    def add_value(self, values, table="data"):
        """Insert one row given as a mapping or as (column, value) pairs."""
        self._add(values, table, False)

    def add_or_replace_value(self, values, table="data"):
        """Insert one row, replacing any row it conflicts with."""
        self._add(values, table, True)

    def query(self, q, values=()):
        """Run a query and return every value as a string."""
        return [
            {name: _as_text(value) for name, value in row.items()}
            for row in self.query_typed(q, values)
        ]

    def query_typed(self, q, values=(), msec=0):
        """Run a query and return typed values; msec limits run time on read-only handles."""
        if msec and self._flag is not SQLWFlag.READ_ONLY:
            raise RuntimeError("Timeout only possible for read-only connections")
        with self._lock:
            return self._db.execute(q, values, msec)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
        with self._lock:
            self._db.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()