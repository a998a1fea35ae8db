import json

import pytest

from semantic.persistence import STORE_VERSION, DurableStore, QueryPersistence, TransientStore
from semantic.types import PinnedItem


def pin(table="sessions", n=0):
    return PinnedItem.create(table_name=table, sql=f"SELECT {n}", prompt=f"question {n}",
                             chart_config={"type": "bar"})


class Switch:
    def __init__(self, on=False):
        self.on = on

    def __call__(self):
        return self.on


@pytest.fixture
def switch():
    return Switch()


@pytest.fixture
def persistence(tmp_path, switch):
    return QueryPersistence(switch, TransientStore(10), DurableStore(str(tmp_path / "pins.json")))


def test_transient_store_keeps_last_ten_per_table(persistence):
    items = [pin(n=i) for i in range(11)]
    for item in items:
        assert persistence.save(item) is False

    loaded = persistence.load_all()
    assert len(loaded) == 10
    assert items[0].id not in {i.id for i in loaded}


def test_durable_store_keeps_everything(persistence, switch):
    switch.on = True
    for i in range(11):
        assert persistence.save(pin(n=i)) is True
    assert len(persistence.load_all()) == 11


def test_transient_limit_is_per_table(persistence):
    for i in range(10):
        persistence.save(pin("sessions", i))
    persistence.save(pin("users", 99))
    assert len(persistence.load_all("sessions")) == 10
    assert len(persistence.load_all("users")) == 1
    assert len(persistence.load_all()) == 11


def test_mode_is_read_on_every_call(persistence, switch):
    persistence.save(pin(n=1))
    switch.on = True
    assert persistence.load_all() == []
    persistence.save(pin(n=2))
    switch.on = False
    assert [i.sql for i in persistence.load_all()] == ["SELECT 1"]


def test_both_stores_project_to_the_same_shape(persistence, switch):
    item = pin(n=5)
    persistence.save(item)
    switch.on = True
    persistence.save(item)

    durable = persistence.load_all()[0]
    switch.on = False
    transient = persistence.load_all()[0]
    assert durable == transient == item


def test_newest_first(persistence):
    first, second = pin(n=1), pin(n=2)
    first.timestamp, second.timestamp = 100.0, 200.0
    persistence.save(second)
    persistence.save(first)
    assert [i.sql for i in persistence.load_all()] == ["SELECT 2", "SELECT 1"]


def test_delete_and_clear(persistence, switch):
    for durable in (False, True):
        switch.on = durable
        item = pin()
        persistence.save(item)
        persistence.save(pin(n=1))
        assert persistence.delete(item.id) is True
        assert persistence.delete(item.id) is False
        assert len(persistence.load_all()) == 1
        persistence.clear_all()
        assert persistence.load_all() == []


def test_transient_delete_finds_pin_in_any_table(persistence):
    first, second = pin(table="a", n=1), pin(table="b", n=2)
    persistence.save(first)
    persistence.save(second)

    assert persistence.delete(second.id) is True
    assert [i.id for i in persistence.load_all()] == [first.id]
    assert persistence.load_all("b") == []


def test_durable_store_reloads_from_disk(tmp_path):
    path = str(tmp_path / "pins.json")
    item = pin(n=3)
    DurableStore(path).save(item)

    with open(path) as f:
        document = json.load(f)
    assert document["version"] == STORE_VERSION
    assert document["items"][0]["table_name"] == "sessions"

    records = DurableStore(path).load_all()
    assert [r["id"] for r in records] == [item.id]


def test_durable_store_with_other_version_starts_empty(tmp_path):
    path = tmp_path / "pins.json"
    path.write_text(json.dumps({"version": 99, "items": [{"id": "x"}]}))
    assert DurableStore(str(path)).load_all() == []
