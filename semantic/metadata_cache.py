import time
import logging
import threading
from typing import Callable, Dict, List, Optional

from semantic.errors import CapacityExceeded, EmptyMetadata, MissingKey
from semantic.storage import read_versioned, write_json_atomic
from semantic.types import CacheStatus, ColumnMetadata, TableProfile


logger = logging.getLogger(__name__)

STORE_VERSION = 2
MAX_CACHED_TABLES = 5


class MetadataCache:
	"""
	Bounded store of table profiles keyed by table name.

	The cache never evicts on its own: once `limit` tables are cached a new
	table is refused until the caller deletes one. Saving a table that is
	already cached replaces its entry and does not count against the limit.
	"""

	def __init__(self, store_path: Optional[str] = None, limit: int = MAX_CACHED_TABLES,
				 clock: Callable[[], float] = time.time):
		self.store_path = store_path
		self.limit = limit
		self.clock = clock
		self._lock = threading.Lock()
		self._profiles: Dict[str, TableProfile] = self._load()

	def _load(self) -> Dict[str, TableProfile]:
		document = read_versioned(self.store_path, STORE_VERSION)
		if document is None:
			return {}
		profiles = {}
		try:
			for data in document.get("profiles", []):
				profile = TableProfile.from_dict(data)
				profiles[profile.table_name] = profile
		except (KeyError, TypeError) as e:
			logger.warning(f"Discarding malformed metadata store {self.store_path}: {e}")
			return {}
		logger.info(f"Loaded {len(profiles)} cached table profiles")
		return profiles

	def _commit(self, profiles: Dict[str, TableProfile]):
		"""Persist `profiles` and only then make them visible."""
		if self.store_path:
			write_json_atomic(self.store_path, {
				"version": STORE_VERSION,
				"profiles": [p.to_dict() for p in profiles.values()],
			})
		self._profiles = profiles

	def get_status(self) -> CacheStatus:
		# newest first; among equal timestamps the later save wins
		ordered = sorted(reversed(list(self._profiles.values())),
						 key=lambda p: p.created_at, reverse=True)
		return CacheStatus(
			count=len(self._profiles),
			limit=self.limit,
			is_at_limit=len(self._profiles) >= self.limit,
			tables=[{"name": p.table_name, "created_at": p.created_at} for p in ordered],
		)

	def is_at_limit(self) -> bool:
		return len(self._profiles) >= self.limit

	def contains(self, table_name: str) -> bool:
		return table_name in self._profiles

	def save(self, table_name: str, columns: List[ColumnMetadata]):
		if not table_name:
			raise MissingKey("Table name is required")
		if not columns:
			raise EmptyMetadata("Cannot save empty column metadata")

		with self._lock:
			if table_name not in self._profiles and self.is_at_limit():
				raise CapacityExceeded(self.get_status())

			profiles = {k: v for k, v in self._profiles.items() if k != table_name}
			profiles[table_name] = TableProfile(
				table_name=table_name,
				columns=list(columns),
				created_at=int(self.clock()),
			)
			self._commit(profiles)
		logger.info(f"Cached metadata for {table_name} ({len(columns)} columns)")

	def get(self, table_name: str) -> Optional[List[ColumnMetadata]]:
		profile = self._profiles.get(table_name)
		return list(profile.columns) if profile else None

	def delete(self, table_name: str) -> bool:
		with self._lock:
			if table_name not in self._profiles:
				return False
			self._commit({k: v for k, v in self._profiles.items() if k != table_name})
		logger.info(f"Deleted cached metadata for {table_name}")
		return True

	def delete_oldest(self) -> Optional[str]:
		"""Explicitly drop the oldest entry. Returns its name, or None when empty."""
		if not self._profiles:
			return None
		oldest = min(self._profiles.values(), key=lambda p: p.created_at)
		self.delete(oldest.table_name)
		return oldest.table_name

	def clear_all(self):
		with self._lock:
			self._commit({})
		logger.info("Cleared all cached table metadata")
