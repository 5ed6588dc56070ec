"""In-process document store for development and tests.

Tables are dictionaries keyed by the tuple of an item's key attribute values.
Items are deep-copied on the way in and out so callers never share state with
the store. Queries are ordered by the table's sort key when it has one, and by
insertion order otherwise.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Iterable, Mapping

from app.adapters.store.base import AbstractDocumentStore, Item, TableSchema
from app.core.errors import ConflictAppError, NotFoundAppError, StoreAppError


def _matches(item: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(item.get(name) == value for name, value in filters.items())


class InMemoryDocumentStore(AbstractDocumentStore):
    """Lock-protected dict of tables implementing AbstractDocumentStore."""

    name = "memory"

    def __init__(self, schemas: Iterable[TableSchema]) -> None:
        self._schemas = {schema.name: schema for schema in schemas}
        self._tables: dict[str, dict[tuple[Any, ...], Item]] = {name: {} for name in self._schemas}
        self._lock = threading.Lock()

    def _schema(self, table: str) -> TableSchema:
        schema = self._schemas.get(table)
        if schema is None:
            raise StoreAppError(
                code="store_unknown_table",
                message=f"Unknown table: {table}",
                details={"table": table},
            )
        return schema

    @staticmethod
    def _key_tuple(schema: TableSchema, key: Mapping[str, Any]) -> tuple[Any, ...]:
        try:
            if schema.sort_key:
                return (key[schema.partition_key], key[schema.sort_key])
            return (key[schema.partition_key],)
        except KeyError as exc:
            raise StoreAppError(
                code="store_invalid_key",
                message=f"Missing key attribute {exc.args[0]} for table {schema.name}",
                details={"table": schema.name},
            ) from exc

    async def get(self, table: str, key: Mapping[str, Any]) -> Item | None:
        schema = self._schema(table)
        with self._lock:
            item = self._tables[table].get(self._key_tuple(schema, key))
            return copy.deepcopy(item) if item is not None else None

    async def put(self, table: str, item: Mapping[str, Any], *, if_not_exists: str | None = None) -> None:
        schema = self._schema(table)
        key = self._key_tuple(schema, item)
        with self._lock:
            if if_not_exists and key in self._tables[table]:
                raise ConflictAppError(
                    code="item_already_exists",
                    message="An item with this key already exists",
                    details={"table": table, "resource_id": str(item.get(if_not_exists))},
                )
            self._tables[table][key] = copy.deepcopy(dict(item))

    async def scan(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Item]:
        self._schema(table)
        with self._lock:
            items = [copy.deepcopy(i) for i in self._tables[table].values() if _matches(i, filters)]
        return items[:limit] if limit is not None else items

    async def query(
        self,
        table: str,
        key_name: str,
        key_value: Any,
        *,
        index_name: str | None = None,
        limit: int | None = None,
        newest_first: bool = False,
        filters: Mapping[str, Any] | None = None,
    ) -> list[Item]:
        schema = self._schema(table)
        with self._lock:
            items = [
                copy.deepcopy(i)
                for i in self._tables[table].values()
                if i.get(key_name) == key_value and _matches(i, filters)
            ]

        if schema.sort_key and index_name is None:
            items.sort(key=lambda i: i.get(schema.sort_key), reverse=newest_first)
        elif newest_first:
            items.reverse()

        return items[:limit] if limit is not None else items

    async def update(self, table: str, key: Mapping[str, Any], patch: Mapping[str, Any]) -> Item:
        schema = self._schema(table)
        key_tuple = self._key_tuple(schema, key)
        with self._lock:
            current = self._tables[table].get(key_tuple)
            if current is None:
                raise NotFoundAppError(
                    code="item_not_found",
                    message="Item not found",
                    details={"table": table},
                )
            current.update(copy.deepcopy(dict(patch)))
            return copy.deepcopy(current)

    async def delete(self, table: str, key: Mapping[str, Any]) -> bool:
        schema = self._schema(table)
        with self._lock:
            return self._tables[table].pop(self._key_tuple(schema, key), None) is not None

    async def count(self, table: str) -> int:
        self._schema(table)
        with self._lock:
            return len(self._tables[table])
