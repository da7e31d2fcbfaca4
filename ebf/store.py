"""
In-memory entity store – the single source of truth read by the dashboard.

Collections are only changed through ``load`` (snapshot), ``apply_change``
(change-feed event) and ``mutate`` (local write forwarded to the remote store).
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from ebf.config import MUTATION_TIMEOUT_SECONDS, OPTIMISTIC_UPDATES
from ebf.errors import EbfError, NetworkFailure, PermissionDenied, ValidationFailure
from ebf.feed import ChangeEvent
from ebf.models import (
    ChangeKind, Key, Notification, Record, SYNCED_TABLES, TickerMessage,
    as_key, key_to_row, record_from_row,
)
from ebf.rbac import can_write_table

logger = logging.getLogger(__name__)

TICKER_TYPES = ("alert", "success", "info")


class RemoteStore(Protocol):
    """Boundary of the managed database service."""

    async def fetch_all(self, table: str) -> List[Dict[str, Any]]: ...

    async def get(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update(self, table: str, key: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]: ...

    async def delete(self, table: str, key: Dict[str, Any]) -> None: ...

    def listen(self, tables: Iterable[str]) -> AsyncIterator[Dict[str, Any]]: ...


@dataclass
class Insert:
    row: Dict[str, Any]


@dataclass
class Update:
    key: Any
    changes: Dict[str, Any]


@dataclass
class Delete:
    key: Any


Operation = Union[Insert, Update, Delete]


class ListenerHandle:
    def __init__(self, listeners: list, callback):
        self._listeners = listeners
        self._callback = callback

    def remove(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


class EntityStore:
    """Per-table ordered record collections kept in step with the remote store."""

    def __init__(self, remote: RemoteStore, state, tables: Iterable[str] = SYNCED_TABLES,
                 optimistic: bool = OPTIMISTIC_UPDATES,
                 timeout: float = MUTATION_TIMEOUT_SECONDS):
        self.remote = remote
        self.state = state
        self.optimistic = optimistic
        self.timeout = timeout
        self._tables: Dict[str, List[Record]] = {t: [] for t in tables}
        self._listeners: List[Callable[[str], Any]] = []
        # (table, key) -> stale flag, for updates/deletes awaiting the remote store
        self._in_flight: Dict[Tuple[str, Key], bool] = {}

    # ── Reads ────────────────────────────────────────────────────────

    @property
    def tables(self) -> Tuple[str, ...]:
        return tuple(self._tables)

    def records(self, table: str) -> List[Record]:
        return list(self._collection(table))

    def get(self, table: str, key: Any) -> Optional[Record]:
        records = self._collection(table)
        idx = self._index(records, as_key(table, key))
        return records[idx] if idx is not None else None

    def unread_count(self) -> int:
        return sum(1 for n in self._collection(Notification.TABLE) if not n.read)

    def manual_ticker_messages(self) -> List[TickerMessage]:
        return sorted(self._collection(TickerMessage.TABLE), key=lambda m: m.display_order)

    def add_listener(self, callback: Callable[[str], Any]) -> ListenerHandle:
        """Call *callback(table)* after every committed change."""
        self._listeners.append(callback)
        return ListenerHandle(self._listeners, callback)

    # ── Snapshot ─────────────────────────────────────────────────────

    async def load(self, table: str) -> int:
        """Replace a table wholesale with the remote snapshot."""
        self._collection(table)
        rows = await self._call(self.remote.fetch_all(table), f"chargement de {table}")
        records = []
        for row in rows:
            record = self._prepare(record_from_row(table, row))
            if self._has_key(record.key):
                records.append(record)
        self._tables[table] = records
        logger.debug("Loaded %d rows into %s", len(records), table)
        self._notify(table)
        return len(records)

    # ── Change feed ──────────────────────────────────────────────────

    def apply_change(self, event: ChangeEvent) -> bool:
        """
        Apply one change event. Unknown keys on UPDATE/DELETE are ignored
        since they can come from a stale feed ordering. Returns True when the
        collection changed.
        """
        table = event.table
        if table not in self._tables:
            logger.debug("Ignoring %s event for unsynced table %s", event.kind.value, table)
            return False
        records = self._tables[table]

        if event.kind == ChangeKind.DELETE:
            key = as_key(table, event.payload)
            if (table, key) in self._in_flight:
                self._in_flight[(table, key)] = True
            idx = self._index(records, key)
            if idx is None:
                return False
            del records[idx]
            self._notify(table)
            return True

        record = self._prepare(record_from_row(table, event.payload))
        if not self._has_key(record.key):
            logger.warning("Dropping %s event without key on %s", event.kind.value, table)
            return False
        idx = self._index(records, record.key)

        if event.kind == ChangeKind.INSERT:
            if idx is None:
                records.append(record)
            else:
                records[idx] = self._merge(records[idx], record)
        else:
            if idx is None:
                return False
            records[idx] = self._merge(records[idx], record)
        self._notify(table)
        return True

    # ── Writes ───────────────────────────────────────────────────────

    async def mutate(self, table: str, operation: Operation) -> Optional[Record]:
        """
        Forward a write to the remote store. Nothing changes locally unless
        the remote store accepted it.
        """
        self._collection(table)
        self._check_permission(table)

        if isinstance(operation, Insert):
            row = await self._call(self.remote.insert(table, dict(operation.row)), f"ajout dans {table}")
            if self.optimistic:
                self.apply_change(ChangeEvent(ChangeKind.INSERT, table, row))
            return record_from_row(table, row)

        key = as_key(table, operation.key)
        token = (table, key)
        self._in_flight[token] = False
        try:
            if isinstance(operation, Update):
                row = await self._call(
                    self.remote.update(table, key_to_row(table, key), dict(operation.changes)),
                    f"mise à jour dans {table}",
                )
            elif isinstance(operation, Delete):
                await self._call(self.remote.delete(table, key_to_row(table, key)), f"suppression dans {table}")
                row = None
            else:
                raise TypeError(f"Unsupported operation {operation!r}")
        finally:
            stale = self._in_flight.pop(token, False)

        if row is None:
            if self.optimistic:
                self.apply_change(ChangeEvent(ChangeKind.DELETE, table, key_to_row(table, key)))
            return None
        if stale:
            logger.info("Discarding update result for %s %s deleted meanwhile", table, key)
            return None
        if self.optimistic:
            self.apply_change(ChangeEvent(ChangeKind.UPDATE, table, row))
        return record_from_row(table, row)

    async def save_manual_ticker_message(self, text: str, type: str = "info") -> Optional[Record]:
        text = (text or "").strip()
        if not text:
            raise ValidationFailure("Le message ne peut pas être vide.", "text")
        if type not in TICKER_TYPES:
            raise ValidationFailure(f"Type de message inconnu : {type!r}.", "type")
        order = len(self._collection(TickerMessage.TABLE)) + 1
        return await self.mutate(TickerMessage.TABLE, Insert({"text": text, "type": type, "display_order": order}))

    async def delete_manual_ticker_message(self, message_id: str) -> None:
        await self.mutate(TickerMessage.TABLE, Delete(message_id))

    async def mark_notification_read(self, notification_id: str) -> Optional[Record]:
        current = self.get(Notification.TABLE, notification_id)
        if current is not None and current.read:
            return current
        return await self.mutate(Notification.TABLE, Update(notification_id, {"read": True}))

    # ── Internals ────────────────────────────────────────────────────

    def _collection(self, table: str) -> List[Record]:
        try:
            return self._tables[table]
        except KeyError:
            raise ValueError(f"Table '{table}' is not kept in the store.") from None

    def _check_permission(self, table: str) -> None:
        path, role = self.state.current_path, self.state.role
        if not can_write_table(path, role, table):
            raise PermissionDenied(f"Écriture refusée sur {table} pour le rôle {role} ({path}).")

    async def _call(self, coro, what: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise NetworkFailure(f"Délai dépassé ({self.timeout:.0f}s) : {what}.") from None
        except EbfError:
            raise
        except (ConnectionError, OSError) as e:
            raise NetworkFailure(f"Problème de connexion : {what} ({e}).") from e

    @staticmethod
    def _index(records: List[Record], key: Key) -> Optional[int]:
        for i, rec in enumerate(records):
            if rec.key == key:
                return i
        return None

    @staticmethod
    def _has_key(key: Key) -> bool:
        return any(v is not None for v in key)

    @staticmethod
    def _prepare(record: Record) -> Record:
        if isinstance(record, TickerMessage):
            record.is_manual = True
        return record

    @staticmethod
    def _merge(old: Record, new: Record) -> Record:
        # read flag never goes back to False
        if isinstance(old, Notification) and old.read and not new.read:
            return replace(new, read=True)
        return new

    def _notify(self, table: str) -> None:
        for callback in list(self._listeners):
            try:
                callback(table)
            except Exception:
                logger.exception("Store listener failed for %s", table)
