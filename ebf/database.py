"""
Database engine initialisation and the SQL-backed remote store.
"""

import asyncio
import logging
import sys
import uuid
from dataclasses import fields
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean, Column, Float, MetaData, String, Table, create_engine, delete, insert, select, text, update,
)
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from ebf.config import get_env
from ebf.errors import NetworkFailure, RemoteRejection
from ebf.feed import Broker
from ebf.models import ORDERING, RECORD_TYPES, key_columns

logger = logging.getLogger(__name__)


def init_engine(db_uri: Optional[str] = None):
    """Create a SQLAlchemy engine and verify the connection."""
    db_uri = db_uri or get_env("DB_URI")
    engine = create_engine(db_uri, echo=False, future=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    print("[init] Connected to DB.")
    return engine


# ── Schema ───────────────────────────────────────────────────────────

def build_metadata() -> MetaData:
    """One table per record type; columns follow the persisted field names."""
    metadata = MetaData()
    for table_name, cls in RECORD_TYPES.items():
        keys = set(cls.KEY)
        columns = []
        for f in fields(cls):
            if not f.metadata.get("persist", True):
                continue
            name = f.metadata.get("column") or f.name
            if f.metadata.get("number"):
                col_type = Float
            elif f.metadata.get("flag"):
                col_type = Boolean
            else:
                col_type = String
            columns.append(Column(name, col_type, primary_key=f.name in keys, nullable=f.name not in keys))
        Table(table_name, metadata, *columns)
    return metadata


METADATA = build_metadata()


# ── Remote store ─────────────────────────────────────────────────────

class SqlRemoteStore:
    """
    Remote store over SQLAlchemy Core.

    Every committed write is published on the broker in the change-feed
    shape ``{"eventType", "table", "new", "old"}`` so in-process listeners
    see the same events a realtime service would push.
    """

    def __init__(self, engine, broker: Optional[Broker] = None):
        self.engine = engine
        self.broker = broker or Broker()

    def create_all(self) -> None:
        METADATA.create_all(self.engine)

    def _table(self, name: str) -> Table:
        try:
            return METADATA.tables[name]
        except KeyError:
            raise RemoteRejection(f"Table inconnue : {name}") from None

    @staticmethod
    def _where(table: Table, key: Dict[str, Any]):
        return [table.c[name] == key.get(name) for name in key_columns(table.name)]

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except IntegrityError as e:
            raise RemoteRejection(str(e.orig)) from e
        except OperationalError as e:
            raise NetworkFailure(str(e.orig)) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise NetworkFailure(str(e.orig)) from e
            raise RemoteRejection(str(e.orig)) from e

    def _publish(self, kind: str, table: str, new: Optional[dict], old: Optional[dict]) -> None:
        self.broker.publish({"eventType": kind, "table": table, "new": new or {}, "old": old or {}})

    # ── Reads ────────────────────────────────────────────────────────

    def _fetch_all(self, table_name: str) -> List[Dict[str, Any]]:
        table = self._table(table_name)
        stmt = select(table)
        if table_name in ORDERING:
            col, descending = ORDERING[table_name]
            stmt = stmt.order_by(table.c[col].desc() if descending else table.c[col].asc())
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(stmt).mappings()]

    async def fetch_all(self, table: str) -> List[Dict[str, Any]]:
        return await self._run(self._fetch_all, table)

    def _get(self, table_name: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        table = self._table(table_name)
        with self.engine.connect() as conn:
            row = conn.execute(select(table).where(*self._where(table, key))).mappings().first()
        return dict(row) if row is not None else None

    async def get(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._run(self._get, table, key)

    def _find(self, table_name: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
        table = self._table(table_name)
        with self.engine.connect() as conn:
            row = conn.execute(select(table).where(table.c[column] == value)).mappings().first()
        return dict(row) if row is not None else None

    async def find(self, table: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
        """First row whose *column* equals *value* (profile lookup by email)."""
        return await self._run(self._find, table, column, value)

    # ── Writes ───────────────────────────────────────────────────────

    def _insert(self, table_name: str, row: Dict[str, Any]) -> Dict[str, Any]:
        table = self._table(table_name)
        values = {k: v for k, v in row.items() if k in table.c}
        if "id" in table.c and not values.get("id"):
            values["id"] = str(uuid.uuid4())
        with self.engine.begin() as conn:
            conn.execute(insert(table).values(**values))
            stored = conn.execute(select(table).where(*self._where(table, values))).mappings().first()
        return dict(stored)

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = await self._run(self._insert, table, row)
        self._publish("INSERT", table, stored, None)
        return stored

    def _update(self, table_name: str, key: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
        table = self._table(table_name)
        values = {k: v for k, v in changes.items() if k in table.c and k not in key_columns(table_name)}
        where = self._where(table, key)
        with self.engine.begin() as conn:
            if values:
                result = conn.execute(update(table).where(*where).values(**values))
                if result.rowcount == 0:
                    raise RemoteRejection(f"Aucune ligne {key} dans {table_name}.")
            stored = conn.execute(select(table).where(*where)).mappings().first()
        if stored is None:
            raise RemoteRejection(f"Aucune ligne {key} dans {table_name}.")
        return dict(stored)

    async def update(self, table: str, key: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
        stored = await self._run(self._update, table, key, changes)
        self._publish("UPDATE", table, stored, None)
        return stored

    def _delete(self, table_name: str, key: Dict[str, Any]) -> None:
        table = self._table(table_name)
        with self.engine.begin() as conn:
            result = conn.execute(delete(table).where(*self._where(table, key)))
            if result.rowcount == 0:
                raise RemoteRejection(f"Aucune ligne {key} dans {table_name}.")

    async def delete(self, table: str, key: Dict[str, Any]) -> None:
        await self._run(self._delete, table, key)
        self._publish("DELETE", table, None, dict(key))

    # ── Change feed ──────────────────────────────────────────────────

    def listen(self, tables: Iterable[str]) -> AsyncIterator[Dict[str, Any]]:
        return self.broker.listen(tables)
