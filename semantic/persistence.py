"""
Pinned query storage.

Two stores with different native shapes: a bounded per-table transient store
(one session's worth of pins) and an unbounded durable store on disk. Which
one is active is decided by an entitlement check that is read on every call,
so the mode can change mid-session. Items are never migrated between stores.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional

from semantic.storage import read_versioned, write_json_atomic
from semantic.types import PinnedItem


logger = logging.getLogger(__name__)

STORE_VERSION = 1
TRANSIENT_LIMIT = 10


def project_item(record: Mapping[str, Any]) -> PinnedItem:
	"""Map a transient or durable record onto the common read shape."""
	return PinnedItem(
		id=record["id"],
		table_name=record.get("table_name", record.get("table", "")),
		sql=record.get("sql", ""),
		prompt=record.get("prompt", ""),
		explanation=record.get("explanation", ""),
		chart_config=record.get("chart_config", record.get("chart")) or {},
		timestamp=float(record.get("timestamp", 0)),
		spec=record.get("spec"),
	)


class TransientStore:
	"""Per-table lists keeping only the most recent `limit` pins each."""

	def __init__(self, limit: int = TRANSIENT_LIMIT):
		self.limit = limit
		self._lists: Dict[str, List[Dict[str, Any]]] = {}
		self._lock = threading.Lock()

	def save(self, item: PinnedItem) -> None:
		record = {
			"id": item.id,
			"table": item.table_name,
			"sql": item.sql,
			"prompt": item.prompt,
			"explanation": item.explanation,
			"chart": item.chart_config,
			"timestamp": item.timestamp,
			"spec": item.spec,
		}
		with self._lock:
			pins = self._lists.get(item.table_name, []) + [record]
			# oldest pins fall off silently
			self._lists[item.table_name] = pins[-self.limit:]

	def load_all(self, table_name: Optional[str] = None) -> List[Dict[str, Any]]:
		if table_name is not None:
			return list(self._lists.get(table_name, []))
		return [record for pins in self._lists.values() for record in pins]

	def delete(self, item_id: str) -> bool:
		# the id alone does not say which table list holds it
		removed = False
		with self._lock:
			for table_name, pins in list(self._lists.items()):
				kept = [r for r in pins if r["id"] != item_id]
				if len(kept) != len(pins):
					self._lists[table_name] = kept
					removed = True
		return removed

	def clear_all(self) -> None:
		with self._lock:
			self._lists = {}


class DurableStore:
	"""Unbounded pin store keyed by id, kept in a versioned JSON document."""

	def __init__(self, path: Optional[str] = None):
		self.path = path
		self._lock = threading.Lock()
		document = read_versioned(path, STORE_VERSION)
		self._items: Dict[str, Dict[str, Any]] = {}
		if document is not None:
			for record in document.get("items", []):
				if isinstance(record, dict) and record.get("id"):
					self._items[record["id"]] = record

	def _commit(self, items: Dict[str, Dict[str, Any]]) -> None:
		if self.path:
			write_json_atomic(self.path, {"version": STORE_VERSION, "items": list(items.values())})
		self._items = items

	def save(self, item: PinnedItem) -> None:
		record = {
			"id": item.id,
			"table_name": item.table_name,
			"sql": item.sql,
			"prompt": item.prompt,
			"explanation": item.explanation,
			"chart_config": item.chart_config,
			"timestamp": item.timestamp,
			"spec": item.spec,
			"schema_version": STORE_VERSION,
		}
		with self._lock:
			items = dict(self._items)
			items[item.id] = record
			self._commit(items)

	def load_all(self, table_name: Optional[str] = None) -> List[Dict[str, Any]]:
		records = list(self._items.values())
		if table_name is not None:
			records = [r for r in records if r.get("table_name") == table_name]
		return records

	def delete(self, item_id: str) -> bool:
		with self._lock:
			if item_id not in self._items:
				return False
			self._commit({k: v for k, v in self._items.items() if k != item_id})
		return True

	def clear_all(self) -> None:
		with self._lock:
			self._commit({})


class QueryPersistence:
	"""Routes every call to the store the entitlement check selects right now."""

	def __init__(self, can_persist: Callable[[], bool],
				 transient: Optional[TransientStore] = None,
				 durable: Optional[DurableStore] = None):
		self.can_persist = can_persist
		self.transient = transient or TransientStore()
		self.durable = durable or DurableStore()

	def _active(self):
		if self.can_persist():
			return self.durable, "durable"
		return self.transient, "transient"

	def save(self, item: PinnedItem) -> bool:
		"""Store `item`. Returns True when it went to the durable store."""
		store, mode = self._active()
		store.save(item)
		logger.info(f"Pinned query {item.id} for {item.table_name} ({mode})")
		return mode == "durable"

	def load_all(self, table_name: Optional[str] = None) -> List[PinnedItem]:
		store, _ = self._active()
		# reversed so that equal timestamps keep the latest save first
		items = [project_item(r) for r in reversed(store.load_all(table_name))]
		items.sort(key=lambda item: item.timestamp, reverse=True)
		return items

	def delete(self, item_id: str) -> bool:
		store, _ = self._active()
		return store.delete(item_id)

	def clear_all(self) -> None:
		store, mode = self._active()
		store.clear_all()
		logger.info(f"Cleared all pinned queries ({mode})")
