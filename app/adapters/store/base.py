from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

from app.core.config import StoreSettings

Item = dict[str, Any]


@dataclass(frozen=True)
class TableSchema:
	"""Name and key attributes of one table."""

	name: str
	partition_key: str
	sort_key: str | None = None

	def key_of(self, item: Mapping[str, Any]) -> Item:
		key = {self.partition_key: item[self.partition_key]}
		if self.sort_key:
			key[self.sort_key] = item[self.sort_key]
		return key


@dataclass(frozen=True)
class Tables:
	"""Tables used by the bus tracking services."""

	routes: TableSchema
	buses: TableSchema
	locations: TableSchema
	schedules: TableSchema

	@classmethod
	def from_settings(cls, store_settings: StoreSettings) -> Tables:
		return cls(
			routes=TableSchema(store_settings.routes_table, "RouteID"),
			buses=TableSchema(store_settings.buses_table, "BusID"),
			locations=TableSchema(store_settings.locations_table, "BusID", "timestamp"),
			schedules=TableSchema(store_settings.schedules_table, "ScheduleID"),
		)

	def all(self) -> tuple[TableSchema, ...]:
		return (self.routes, self.buses, self.locations, self.schedules)

	def by_name(self, name: str) -> TableSchema | None:
		for schema in self.all():
			if schema.name == name:
				return schema
		return None


class AbstractDocumentStore(ABC):
	"""Interface for the document store holding routes, buses, locations and schedules.

	Unlike the cache façade, store failures are raised (as StoreAppError) and
	reach the client as 500 responses.
	"""

	name: str = "abstract"

	@abstractmethod
	async def get(self, table: str, key: Mapping[str, Any]) -> Item | None:
		"""Fetch one item by its full primary key, or None when absent."""
		...

	@abstractmethod
	async def put(self, table: str, item: Mapping[str, Any], *, if_not_exists: str | None = None) -> None:
		"""Write an item, replacing any existing one.

		Args:
			table: Table name.
			item: Item including its key attributes.
			if_not_exists: Key attribute name; when given, the write fails with
				ConflictAppError if an item with the same key already exists.
		"""
		...

	@abstractmethod
	async def scan(
		self,
		table: str,
		filters: Mapping[str, Any] | None = None,
		limit: int | None = None,
	) -> list[Item]:
		"""Return items whose attributes equal every value in ``filters``."""
		...

	@abstractmethod
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
		"""Return items with ``key_name == key_value`` ordered by the table's sort key."""
		...

	@abstractmethod
	async def update(self, table: str, key: Mapping[str, Any], patch: Mapping[str, Any]) -> Item:
		"""Apply ``patch`` to an existing item and return the new item.

		Raises:
			NotFoundAppError: If no item has this key.
		"""
		...

	@abstractmethod
	async def delete(self, table: str, key: Mapping[str, Any]) -> bool:
		"""Delete an item; returns whether it was present."""
		...

	@abstractmethod
	async def count(self, table: str) -> int:
		...
