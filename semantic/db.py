import os
import re
import time
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import duckdb
import pandas as pd

from config import config, DatabaseConfig
from semantic.errors import ExecutionLimitExceeded
from semantic.memory import memory_monitor
from semantic.types import QueryResult


logger = logging.getLogger(__name__)

LIMIT_ERROR_PATTERN = re.compile(r"out of memory|memory limit|data limit|exceeded", re.IGNORECASE)


class DatabaseManager:
	"""DuckDB adapter: the only place SQL text is actually executed."""

	def __init__(self, db_config: Optional[DatabaseConfig] = None):
		self.settings = db_config or config.database
		self.local = threading.local()
		self._initialize_database()

	def _init_connection(self) -> duckdb.DuckDBPyConnection:
		"""Initialize a DuckDB connection with proper settings."""
		conn = duckdb.connect(self.settings.db_path)
		conn.execute(f"SET memory_limit='{self.settings.memory_limit}'")
		conn.execute(f"SET threads={int(self.settings.threads)}")
		conn.execute("SET enable_progress_bar=false")
		return conn

	def _initialize_database(self):
		"""Open the first connection eagerly so a bad path fails at startup."""
		try:
			self.local.conn = self._init_connection()
		except Exception as e:
			logger.error(f"Failed to initialize database: {e}", exc_info=True)
			raise

	@contextmanager
	def get_connection(self):
		"""Yield the thread-local connection (creates one if missing)."""
		if getattr(self.local, "conn", None) is None:
			self.local.conn = self._init_connection()
		yield self.local.conn

	def close_all(self):
		"""Close thread-local connection if it exists."""
		conn = getattr(self.local, "conn", None)
		if conn is not None:
			conn.close()
			self.local.conn = None

	def _quote_identifier(self, name: str) -> str:
		if re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", name):
			return name
		return '"' + name.replace('"', '""') + '"'

	def table_exists(self, table_name: str) -> bool:
		"""Check if a table exists in the current DuckDB database."""
		with self.get_connection() as conn:
			res = conn.execute(
				"SELECT 1 FROM information_schema.tables WHERE table_name = ?", [table_name]
			).fetchone()
		return res is not None

	def list_tables(self) -> List[str]:
		with self.get_connection() as conn:
			rows = conn.execute(
				"SELECT table_name FROM information_schema.tables ORDER BY table_name"
			).fetchall()
		return [r[0] for r in rows]

	def load_csv(self, file_path: str, table_name: str) -> Dict[str, Any]:
		"""Create (or replace) a table from a CSV file."""
		if not os.path.exists(file_path):
			raise FileNotFoundError(f"CSV file not found: {file_path}")

		start_time = time.time()
		table = self._quote_identifier(table_name)
		with self.get_connection() as conn:
			source = "'" + file_path.replace("'", "''") + "'"
			conn.execute(f"CREATE OR REPLACE TABLE {table} AS SELECT * FROM read_csv_auto({source})")
			total_rows = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
		duration = time.time() - start_time
		logger.info(f"Loaded {total_rows} rows into {table_name} in {duration:.2f}s")
		return {"table_name": table_name, "total_rows": int(total_rows), "duration": duration}

	def load_frame(self, df: pd.DataFrame, table_name: str) -> None:
		"""Create (or replace) a table from a DataFrame."""
		temp_view = f"temp_frame_{int(time.time() * 1000)}"
		with self.get_connection() as conn:
			conn.register(temp_view, df)
			try:
				conn.execute(f"CREATE OR REPLACE TABLE {self._quote_identifier(table_name)} AS SELECT * FROM {temp_view}")
			finally:
				conn.unregister(temp_view)

	def _raise_if_limit_error(self, sql: str, error: Exception) -> None:
		if isinstance(error, duckdb.OutOfMemoryException) or LIMIT_ERROR_PATTERN.search(str(error)):
			logger.warning(f"Query rejected as too large: {error}")
			raise ExecutionLimitExceeded(f"Query exceeded the data limit: {error}") from error

	def fetch_rows(self, sql: str) -> List[Dict[str, Any]]:
		"""Execute SQL and return rows as field -> value mappings, values untouched."""
		with self.get_connection() as conn:
			try:
				cursor = conn.execute(sql)
				rows = cursor.fetchall()
			except duckdb.Error as e:
				self._raise_if_limit_error(sql, e)
				raise
			columns = [d[0] for d in cursor.description]
		return [dict(zip(columns, row)) for row in rows]

	def execute_query(self, sql: str, max_rows: Optional[int] = None) -> QueryResult:
		start_time = time.time()
		with self.get_connection() as conn:
			try:
				result_df = conn.execute(sql).fetchdf()
			except duckdb.Error as e:
				self._raise_if_limit_error(sql, e)
				raise
		execution_time = time.time() - start_time
		if max_rows is not None and len(result_df) > max_rows:
			raise ExecutionLimitExceeded(
				f"Query returned {len(result_df)} rows, above the limit of {max_rows}",
				limit=max_rows,
			)
		return QueryResult(
			data=result_df,
			sql_query=sql,
			execution_time=execution_time,
			row_count=len(result_df),
			memory_usage_mb=memory_monitor.get_memory_usage(),
		)
