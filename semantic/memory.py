import time
import logging
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Any, Dict, Generator

import psutil


logger = logging.getLogger(__name__)


@dataclass
class OperationStats:
	name: str
	subject: str = ""
	duration: float = 0.0
	memory_delta_mb: float = 0.0
	peak_mb: float = 0.0


class MemoryMonitor:
	"""Process RSS around profiling and query execution, last run kept per operation kind."""

	def __init__(self, enable_logging: bool = True):
		self.peak_usage = 0.0
		self.current_usage = 0.0
		self.enable_logging = enable_logging
		self.last_operations: Dict[str, OperationStats] = {}

	def get_memory_usage(self) -> float:
		usage_mb = psutil.Process().memory_info().rss / 1024 / 1024
		self.current_usage = usage_mb
		self.peak_usage = max(self.peak_usage, usage_mb)
		return usage_mb

	@contextmanager
	def monitor_operation(self, name: str, subject: str = "") -> Generator[OperationStats, None, None]:
		stats = OperationStats(name=name, subject=subject)
		start_memory = self.get_memory_usage()
		start_time = time.time()
		try:
			yield stats
		finally:
			stats.duration = time.time() - start_time
			stats.memory_delta_mb = self.get_memory_usage() - start_memory
			stats.peak_mb = self.peak_usage
			self.last_operations[name] = stats
			if self.enable_logging:
				label = f"{name} {subject}".strip()
				logger.info(f"{label} - Duration: {stats.duration:.2f}s, Memory delta: {stats.memory_delta_mb:.1f}MB, Peak: {stats.peak_mb:.1f}MB")

	def report(self) -> Dict[str, Any]:
		return {
			"current_usage_mb": self.get_memory_usage(),
			"peak_usage_mb": self.peak_usage,
			"last_operations": {name: asdict(stats) for name, stats in self.last_operations.items()},
		}


memory_monitor = MemoryMonitor()
