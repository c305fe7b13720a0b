"""
Tests for the in-process flow store
"""

from datetime import timedelta

from twofactor.services.flow_store import FlowStore

from utils.fakes import FakeClock


def _store(clock: FakeClock) -> FlowStore:
    return FlowStore(ttl=timedelta(minutes=30), clock=clock)


class TestFlowStore:
    def test_put_and_get(self, clock: FakeClock):
        store = _store(clock)
        store.put("a", {"step": 1})

        assert store.get("a") == {"step": 1}
        assert store.get("missing") is None

    def test_get_slides_expiry(self, clock: FakeClock):
        store = _store(clock)
        store.put("a", "flow")

        clock.advance(minutes=20)
        assert store.get("a") == "flow"
        clock.advance(minutes=20)
        assert store.get("a") == "flow"

        clock.advance(minutes=30)
        assert store.get("a") is None
        assert len(store) == 0

    def test_put_sweeps_entries_never_looked_up_again(self, clock: FakeClock):
        store = _store(clock)
        for i in range(50):
            store.put(f"abandoned-{i}", i)
        assert len(store) == 50

        clock.advance(days=1)
        for i in range(50):
            store.put(f"fresh-{i}", i)

        assert len(store) == 50
        assert store.get("abandoned-0") is None
        assert store.get("fresh-0") == 0

    def test_sweep_keeps_live_entries(self, clock: FakeClock):
        store = _store(clock)
        store.put("old", 1)
        clock.advance(minutes=20)
        store.put("young", 2)

        clock.advance(minutes=15)
        store.put("new", 3)

        assert store.get("old") is None
        assert store.get("young") == 2
        assert store.get("new") == 3

    def test_pop_and_clear(self, clock: FakeClock):
        store = _store(clock)
        store.put("a", 1)
        store.put("b", 2)

        assert store.pop("a") == 1
        assert store.pop("a") is None

        store.clear()
        assert len(store) == 0
