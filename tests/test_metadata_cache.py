import json

import pytest

from semantic.errors import CapacityExceeded, EmptyMetadata, MissingKey
from semantic.metadata_cache import STORE_VERSION, MetadataCache
from semantic.types import ColumnMetadata


def columns_for(table):
    return [ColumnMetadata(table_name=table, column_name="id", column_type="INTEGER",
                           type_class="numeric", is_numeric=True, min=1.0, max=9.0, mean=5.0)]


@pytest.fixture
def cache(tmp_path, clock):
    return MetadataCache(str(tmp_path / "profiles.json"), clock=clock)


def fill(cache, count=5):
    for i in range(count):
        cache.save(f"t{i}", columns_for(f"t{i}"))


def test_limit_is_enforced_until_a_table_is_deleted(cache):
    fill(cache)
    assert cache.is_at_limit()

    with pytest.raises(CapacityExceeded) as exc:
        cache.save("t5", columns_for("t5"))
    assert exc.value.status.count == 5
    assert "t0" in str(exc.value)
    assert not cache.contains("t5")

    assert cache.delete("t2") is True
    cache.save("t5", columns_for("t5"))
    assert {t["name"] for t in cache.get_status().tables} == {"t0", "t1", "t3", "t4", "t5"}


def test_resaving_a_cached_table_is_allowed_at_limit(cache):
    fill(cache)
    cache.save("t0", columns_for("t0") * 2)
    assert len(cache.get("t0")) == 2
    assert cache.get_status().count == 5


def test_status_lists_newest_first(cache):
    fill(cache, 3)
    cache.save("t0", columns_for("t0"))
    names = [t["name"] for t in cache.get_status().tables]
    assert names == ["t0", "t2", "t1"]


def test_rejects_missing_key_and_empty_metadata(cache):
    with pytest.raises(MissingKey):
        cache.save("", columns_for("x"))
    with pytest.raises(EmptyMetadata):
        cache.save("x", [])


def test_delete_unknown_table(cache):
    assert cache.delete("missing") is False


def test_delete_oldest(cache):
    assert cache.delete_oldest() is None
    fill(cache, 3)
    assert cache.delete_oldest() == "t0"
    assert not cache.contains("t0")


def test_clear_all(cache):
    fill(cache, 2)
    cache.clear_all()
    assert cache.get_status().count == 0


def test_survives_restart(tmp_path, clock):
    path = str(tmp_path / "profiles.json")
    first = MetadataCache(path, clock=clock)
    first.save("orders", columns_for("orders"))

    second = MetadataCache(path, clock=clock)
    restored = second.get("orders")
    assert restored[0].column_name == "id"
    assert restored[0].max == 9.0


def test_other_store_version_starts_empty(tmp_path):
    path = tmp_path / "profiles.json"
    path.write_text(json.dumps({"version": STORE_VERSION - 1, "profiles": [{"table_name": "old"}]}))
    assert MetadataCache(str(path)).get_status().count == 0


def test_corrupt_store_starts_empty(tmp_path):
    path = tmp_path / "profiles.json"
    path.write_text("{not json")
    assert MetadataCache(str(path)).get_status().count == 0


def test_in_memory_cache_without_path(clock):
    cache = MetadataCache(None, limit=1, clock=clock)
    cache.save("a", columns_for("a"))
    with pytest.raises(CapacityExceeded):
        cache.save("b", columns_for("b"))
