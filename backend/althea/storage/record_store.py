"""
Record Store - Row storage for sessions, family members and derived data.

Each table is one JSON document kept in a BlobStore, the same way user
profiles are kept as JSON files. Every read and write except ``upsert`` is
scoped by the owning user id; upserted rows must carry their ``user_id``.
Writes are last-writer-wins.
"""

import asyncio
import copy
import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from .interface import BlobStore
from ..core.exceptions import StoreError

Row = Dict[str, Any]

# Columns callers may never overwrite through update/upsert.
PROTECTED_COLUMNS = ('id', 'user_id', 'created_at')


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecordStore(ABC):
    """
    Abstract relational store.
    """

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        """
        Insert a row. ``id``, ``created_at`` and ``updated_at`` are filled in.

        Returns:
            Row: The stored row
        """
        pass

    @abstractmethod
    async def get(self, table: str, row_id: str, user_id: str) -> Optional[Row]:
        """Fetch one row owned by ``user_id``, or None."""
        pass

    @abstractmethod
    async def select(
        self,
        table: str,
        user_id: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """
        Select rows owned by ``user_id`` matching every equality filter.

        Ordering ties are broken by insertion order, so ``descending=True``
        with ``limit=1`` returns the most recently inserted match.
        """
        pass

    @abstractmethod
    async def update(self, table: str, row_id: str, user_id: str, changes: Row) -> Optional[Row]:
        """Apply ``changes`` to a row owned by ``user_id``; None if missing."""
        pass

    @abstractmethod
    async def upsert(self, table: str, rows: Sequence[Row], conflict_keys: Sequence[str]) -> List[Row]:
        """
        Insert rows, or update the existing row sharing all ``conflict_keys``.
        """
        pass

    @abstractmethod
    async def delete(self, table: str, row_id: str, user_id: str) -> bool:
        """Hard-delete a row owned by ``user_id``."""
        pass

    @abstractmethod
    async def delete_where(self, table: str, user_id: str, predicate: Callable[[Row], bool]) -> int:
        """Hard-delete every row of ``user_id`` for which ``predicate`` is true."""
        pass


class JSONRecordStore(RecordStore):
    """
    RecordStore persisted as one JSON array per table.
    """

    def __init__(self, storage: BlobStore, tables_dir: str = "tables"):
        """
        Args:
            storage: Blob store holding the table documents
            tables_dir: Directory prefix for table documents
        """
        self.storage = storage
        self.tables_dir = tables_dir
        self._lock = asyncio.Lock()

    def _table_path(self, table: str) -> str:
        return f"{self.tables_dir}/{table}.json"

    async def _load_table(self, table: str) -> List[Row]:
        content = await self.storage.load(self._table_path(table))
        if content is None:
            return []
        try:
            rows = json.loads(content.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreError(f"Table {table} is unreadable: {e}", table=table)
        if not isinstance(rows, list):
            raise StoreError(f"Table {table} is not a row list", table=table)
        return rows

    async def _save_table(self, table: str, rows: List[Row]) -> None:
        content = json.dumps(rows, indent=2, ensure_ascii=False, default=str)
        if not await self.storage.save(self._table_path(table), content):
            raise StoreError(f"Failed to write table {table}", table=table)

    @staticmethod
    def _matches(row: Row, user_id: str, filters: Optional[Dict[str, Any]]) -> bool:
        if row.get('user_id') != user_id:
            return False
        if filters:
            return all(row.get(key) == value for key, value in filters.items())
        return True

    @staticmethod
    def _apply_changes(row: Row, changes: Row) -> None:
        for key, value in changes.items():
            if key not in PROTECTED_COLUMNS:
                row[key] = copy.deepcopy(value)
        row['updated_at'] = utc_now_iso()

    async def insert(self, table: str, row: Row) -> Row:
        if not row.get('user_id'):
            raise StoreError(f"Row for {table} has no user_id", table=table)

        now = utc_now_iso()
        stored = copy.deepcopy(row)
        stored['id'] = stored.get('id') or str(uuid.uuid4())
        stored.setdefault('created_at', now)
        stored['updated_at'] = now

        async with self._lock:
            rows = await self._load_table(table)
            rows.append(stored)
            await self._save_table(table, rows)

        return copy.deepcopy(stored)

    async def get(self, table: str, row_id: str, user_id: str) -> Optional[Row]:
        async with self._lock:
            rows = await self._load_table(table)
        for row in rows:
            if row.get('id') == row_id and row.get('user_id') == user_id:
                return copy.deepcopy(row)
        return None

    async def select(
        self,
        table: str,
        user_id: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        async with self._lock:
            rows = await self._load_table(table)

        matched = [
            (position, row) for position, row in enumerate(rows)
            if self._matches(row, user_id, filters)
        ]
        if order_by:
            matched.sort(
                key=lambda item: (str(item[1].get(order_by) or ''), item[0]),
                reverse=descending,
            )

        result = [copy.deepcopy(row) for _, row in matched]
        if limit is not None:
            result = result[:limit]
        return result

    async def update(self, table: str, row_id: str, user_id: str, changes: Row) -> Optional[Row]:
        async with self._lock:
            rows = await self._load_table(table)
            for row in rows:
                if row.get('id') == row_id and row.get('user_id') == user_id:
                    self._apply_changes(row, changes)
                    await self._save_table(table, rows)
                    return copy.deepcopy(row)
        return None

    async def upsert(self, table: str, rows: Sequence[Row], conflict_keys: Sequence[str]) -> List[Row]:
        if not rows:
            return []
        if 'user_id' not in conflict_keys:
            raise StoreError("Upsert conflict target must include user_id", table=table)

        result: List[Row] = []
        async with self._lock:
            existing = await self._load_table(table)
            for incoming in rows:
                if not incoming.get('user_id'):
                    raise StoreError(f"Row for {table} has no user_id", table=table)

                target = next(
                    (row for row in existing
                     if all(row.get(key) == incoming.get(key) for key in conflict_keys)),
                    None,
                )
                if target is None:
                    now = utc_now_iso()
                    target = copy.deepcopy(dict(incoming))
                    target['id'] = target.get('id') or str(uuid.uuid4())
                    target.setdefault('created_at', now)
                    target['updated_at'] = now
                    existing.append(target)
                else:
                    self._apply_changes(target, incoming)
                result.append(copy.deepcopy(target))

            await self._save_table(table, existing)
        return result

    async def delete(self, table: str, row_id: str, user_id: str) -> bool:
        async with self._lock:
            rows = await self._load_table(table)
            remaining = [
                row for row in rows
                if not (row.get('id') == row_id and row.get('user_id') == user_id)
            ]
            if len(remaining) == len(rows):
                return False
            await self._save_table(table, remaining)
        return True

    async def delete_where(self, table: str, user_id: str, predicate: Callable[[Row], bool]) -> int:
        async with self._lock:
            rows = await self._load_table(table)
            remaining = [
                row for row in rows
                if not (row.get('user_id') == user_id and predicate(row))
            ]
            removed = len(rows) - len(remaining)
            if removed:
                await self._save_table(table, remaining)
        return removed
