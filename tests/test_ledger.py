# tests/test_ledger.py
import pytest

from modules.auto_responder.lib.ledger import DedupLedger
from modules.auto_responder.lib.store import LEDGER_KEY, MemoryStore, SqliteStore


def test_mark_is_idempotent_and_persisted(memory_store):
    ledger = DedupLedger(memory_store)
    ledger.mark("42")
    ledger.mark("42")

    assert ledger.has("42")
    assert "42" in ledger
    assert ledger.count() == 1
    assert memory_store.get(LEDGER_KEY) == ["42"]


def test_fifo_eviction_drops_oldest(memory_store):
    ledger = DedupLedger(memory_store, cap=3)
    for i in range(5):
        ledger.mark(str(i))

    assert ledger.ids() == ["2", "3", "4"]
    assert not ledger.has("0")
    assert memory_store.get(LEDGER_KEY) == ["2", "3", "4"]


def test_loads_existing_ids_and_trims_to_cap():
    store = MemoryStore({LEDGER_KEY: ["a", "b", "c", "d"]})
    ledger = DedupLedger(store, cap=2)
    assert ledger.ids() == ["c", "d"]
    assert store.get(LEDGER_KEY) == ["c", "d"]


def test_survives_reopen_on_sqlite(tmp_path):
    path = str(tmp_path / "state.db")
    DedupLedger(SqliteStore(path)).mark("777")
    assert DedupLedger(SqliteStore(path)).has("777")


def test_clear_removes_everything(memory_store):
    ledger = DedupLedger(memory_store)
    ledger.mark("1")
    ledger.clear()
    assert len(ledger) == 0
    assert memory_store.get(LEDGER_KEY) is None


def test_cap_must_be_positive(memory_store):
    with pytest.raises(ValueError):
        DedupLedger(memory_store, cap=0)
