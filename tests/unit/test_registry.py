"""
Unit tests for the connection registry.
"""

import pytest

from chatserver.routing.registry import Registry, SessionState


@pytest.fixture
def registry() -> Registry:
    return Registry()


class TestConnections:
    """Tests for add/get/remove."""

    def test_add_creates_unregistered_record(self, registry):
        record = registry.add(1, writer=object(), address=("127.0.0.1", 5000))

        assert record.state is SessionState.UNREGISTERED
        assert record.name is None
        assert registry.get(1) is record
        assert 1 in registry
        assert len(registry) == 1

    def test_add_duplicate_handle_raises(self, registry):
        registry.add(1, writer=object())
        with pytest.raises(KeyError):
            registry.add(1, writer=object())

    def test_get_unknown(self, registry):
        assert registry.get(42) is None

    def test_remove_returns_record(self, registry):
        record = registry.add(1, writer=object())
        assert registry.remove(1) is record
        assert 1 not in registry

    def test_remove_unknown_is_noop(self, registry):
        assert registry.remove(99) is None

    def test_remove_unbinds_name(self, registry):
        """Removing a registered record frees its name."""
        registry.add(1, writer=object())
        registry.bind(1, "alice")

        registry.remove(1)

        assert not registry.is_taken("alice")
        registry.check_invariants()


class TestNames:
    """Tests for bind/unbind/lookup/roster."""

    def test_bind(self, registry):
        registry.add(1, writer=object())
        record = registry.bind(1, "alice")

        assert record.state is SessionState.REGISTERED
        assert record.name == "alice"
        assert registry.is_taken("alice")
        assert registry.lookup("alice") is record
        registry.check_invariants()

    def test_bind_taken_name_raises(self, registry):
        registry.add(1, writer=object())
        registry.add(2, writer=object())
        registry.bind(1, "alice")

        with pytest.raises(ValueError):
            registry.bind(2, "alice")
        assert registry.get(2).state is SessionState.UNREGISTERED

    def test_bind_twice_raises(self, registry):
        registry.add(1, writer=object())
        registry.bind(1, "alice")

        with pytest.raises(ValueError):
            registry.bind(1, "alice2")

    def test_bind_unknown_handle_raises(self, registry):
        with pytest.raises(KeyError):
            registry.bind(7, "ghost")

    def test_names_are_case_sensitive(self, registry):
        registry.add(1, writer=object())
        registry.add(2, writer=object())
        registry.bind(1, "alice")
        registry.bind(2, "Alice")

        assert registry.roster() == ["alice", "Alice"]

    def test_unbind_returns_name_and_closes(self, registry):
        registry.add(1, writer=object())
        registry.bind(1, "alice")

        assert registry.unbind(1) == "alice"

        record = registry.get(1)
        assert record.state is SessionState.CLOSED
        assert record.name is None
        assert registry.lookup("alice") is None
        registry.check_invariants()

    def test_unbind_unregistered(self, registry):
        registry.add(1, writer=object())

        assert registry.unbind(1) is None
        assert registry.get(1).state is SessionState.CLOSED

    def test_name_reusable_after_unbind(self, registry):
        registry.add(1, writer=object())
        registry.add(2, writer=object())
        registry.bind(1, "alice")
        registry.unbind(1)

        registry.bind(2, "alice")
        assert registry.lookup("alice").handle == 2

    def test_roster_in_registration_order(self, registry):
        for handle, name in [(1, "carol"), (2, "alice"), (3, "bob")]:
            registry.add(handle, writer=object())
            registry.bind(handle, name)

        assert registry.roster() == ["carol", "alice", "bob"]

    def test_roster_skips_unregistered(self, registry):
        registry.add(1, writer=object())
        registry.add(2, writer=object())
        registry.bind(2, "bob")

        assert registry.roster() == ["bob"]

    def test_registered_excludes_handle(self, registry):
        for handle, name in [(1, "a"), (2, "b"), (3, "c")]:
            registry.add(handle, writer=object())
            registry.bind(handle, name)

        assert [r.handle for r in registry.registered(exclude=2)] == [1, 3]
        assert [r.handle for r in registry.registered()] == [1, 2, 3]


class TestInvariants:
    """check_invariants() catches corrupted indexes."""

    def test_dangling_name(self, registry):
        registry.by_name["ghost"] = 5
        with pytest.raises(AssertionError):
            registry.check_invariants()

    def test_name_on_unregistered_record(self, registry):
        registry.add(1, writer=object())
        registry.by_name["alice"] = 1
        with pytest.raises(AssertionError):
            registry.check_invariants()

    def test_registered_record_missing_from_index(self, registry):
        record = registry.add(1, writer=object())
        record.state = SessionState.REGISTERED
        record.name = "alice"
        with pytest.raises(AssertionError):
            registry.check_invariants()
