import os
import json
import logging
import tempfile
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


def write_json_atomic(path: str, document: Dict[str, Any]) -> None:
	"""Write `document` to a temp file beside `path`, then swap it in."""
	directory = os.path.dirname(path) or "."
	os.makedirs(directory, exist_ok=True)
	fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
	try:
		with os.fdopen(fd, 'w', encoding='utf-8') as f:
			json.dump(document, f, indent=2, ensure_ascii=False, default=str)
		os.replace(tmp_path, path)
	except (OSError, TypeError, ValueError):
		if os.path.exists(tmp_path):
			os.remove(tmp_path)
		raise


def read_versioned(path: Optional[str], version: int) -> Optional[Dict[str, Any]]:
	"""
	Load a `{version, ...}` document.

	Returns None when there is no file, when it cannot be decoded, or when
	its version differs; the caller then starts from an empty store.
	"""
	if not path or not os.path.exists(path):
		return None
	try:
		with open(path, 'r', encoding='utf-8') as f:
			document = json.load(f)
	except (OSError, ValueError) as e:
		logger.warning(f"Discarding unreadable store {path}: {e}")
		return None

	found = document.get("version") if isinstance(document, dict) else None
	if found != version:
		logger.warning(f"Store {path} has version {found}, expected {version}; rebuilding empty")
		return None
	return document
