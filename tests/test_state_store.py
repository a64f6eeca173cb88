"""Tests for the state store."""

import pytest

from linkboard.state import StateStore, default_state


def make_link(name="Example", url="https://example.com", category="Default"):
    return {"name": name, "url": url, "category": category}


@pytest.fixture
def store():
    """Create a store with a fixed clock."""
    ticks = iter(range(1000, 100000, 10))
    return StateStore(clock=lambda: next(ticks))


class TestUpdateState:
    """Tests for update_state."""

    def test_valid_delta_commits(self, store):
        """Test that every changed field is reflected."""
        result = store.update_state({"theme": "light", "view": "list"}, validate=True)

        assert result.success
        assert store.get_state_property("theme") == "light"
        assert store.get_state_property("view") == "list"
        assert len(store.get_state_history()) == 1

    def test_invalid_delta_leaves_state_unchanged(self, store):
        """Test that a refused delta does not touch state or history."""
        before = store.get_state()

        result = store.update_state({"theme": "neon"}, validate=True)

        assert not result.success
        assert result.error.startswith("State validation failed:")
        assert "theme: Value must be one of: dark, light" in result.errors
        assert store.get_state() == before
        assert store.get_state_history() == []

    def test_validates_resulting_state(self, store):
        """Test that a link is checked against the merged categories."""
        result = store.update_state(
            {"links": [make_link(category="Work")]}, validate=True
        )
        assert not result.success

        result = store.update_state(
            {"links": [make_link(category="Work")], "categories": ["Default", "Work"]},
            validate=True,
        )
        assert result.success

    def test_edited_link_gets_timestamp(self, store):
        """Test that changing an existing link stamps it with the commit time."""
        store.update_state({"links": [make_link(), make_link(url="https://b.com")]})

        result = store.update_state(
            {"links": [make_link(name="Renamed"), make_link(url="https://b.com")]}
        )

        links = store.get_state_property("links")
        assert links[0] == {**make_link(name="Renamed"), "last_modified": 1010}
        assert "last_modified" not in links[1]
        assert result.new_state["links"] == links
        assert store.get_state_history()[-1].changes["links"] == links

    def test_new_link_not_stamped(self, store):
        store.update_state({"links": [make_link()]})

        assert store.get_state_property("links") == [make_link()]

    def test_caller_timestamp_kept(self, store):
        store.update_state({"links": [{**make_link(), "last_modified": 5}]})

        store.update_state({"links": [{**make_link(name="New"), "last_modified": 7}]})

        assert store.get_state_property("links")[0]["last_modified"] == 7

    def test_touch_links_disabled(self, store):
        store.update_state({"links": [make_link()]})

        store.update_state({"links": [make_link(name="Synced")]}, touch_links=False)

        assert store.get_state_property("links") == [make_link(name="Synced")]

    def test_lists_replaced_wholesale(self, store):
        """Test shallow merge semantics for lists."""
        store.update_state({"links": [make_link(), make_link(url="https://b.com")]})
        store.update_state({"links": [make_link(url="https://c.com")]})

        links = store.get_state_property("links")
        assert [link["url"] for link in links] == ["https://c.com"]

    def test_unvalidated_update(self, store):
        """Test that validate=False commits anything mapping-shaped."""
        result = store.update_state({"theme": "neon"})

        assert result.success
        assert store.get_state_property("theme") == "neon"

    def test_non_mapping_delta_raises(self, store):
        with pytest.raises(TypeError):
            store.update_state(["theme"])

    def test_unknown_keys_are_kept(self, store):
        """Test that transient UI keys merge without validation."""
        result = store.update_state({"editing": True}, validate=True)

        assert result.success
        assert store.get_state_property("editing") is True

    def test_history_entry_contents(self, store):
        store.update_state({"theme": "light"})

        entry = store.get_state_history()[0]
        assert entry.previous_state["theme"] == "dark"
        assert entry.changes == {"theme": "light"}
        assert entry.new_state["theme"] == "light"
        assert entry.timestamp == 1000

    def test_history_is_bounded(self):
        """Test that the oldest entry is evicted first."""
        store = StateStore(max_history=3)
        for term in ["a", "b", "c", "d"]:
            store.update_state({"search_term": term})

        history = store.get_state_history()
        assert len(history) == 3
        assert history[0].changes == {"search_term": "b"}

    def test_invalid_max_history(self):
        with pytest.raises(ValueError):
            StateStore(max_history=0)


class TestReadIsolation:
    """Tests that callers never see live structures."""

    def test_get_state_returns_copy(self, store):
        state = store.get_state()
        state["links"].append(make_link())
        state["theme"] = "light"

        assert store.get_state() == default_state()

    def test_history_returns_copy(self, store):
        store.update_state({"links": [make_link()]})

        history = store.get_state_history()
        history[0].new_state["links"].clear()

        assert len(store.get_state_history()[0].new_state["links"]) == 1

    def test_delta_not_aliased(self, store):
        """Test that mutating the delta after commit has no effect."""
        links = [make_link()]
        store.update_state({"links": links})
        links.append(make_link(url="https://b.com"))

        assert len(store.get_state_property("links")) == 1


class TestBatchUpdate:
    """Tests for batch_update_state."""

    def test_batch_is_one_history_entry(self, store):
        entries = []
        store.add_state_change_listener(entries.append)

        result = store.batch_update_state(
            {"theme": "light", "view": "list", "default_tile_size": "large"}
        )

        assert result.success
        assert len(store.get_state_history()) == 1
        assert len(entries) == 1
        assert entries[0].changes == {
            "theme": "light",
            "view": "list",
            "default_tile_size": "large",
        }

    def test_batch_all_or_nothing(self, store):
        """Test that one bad field rejects the whole batch."""
        entries = []
        store.add_state_change_listener(entries.append)

        result = store.batch_update_state({"theme": "light", "view": "carousel"})

        assert not result.success
        assert store.get_state_property("theme") == "dark"
        assert entries == []


class TestRollback:
    """Tests for rollback_state."""

    def test_rollback_restores_nth_previous(self, store):
        for term in ["one", "two", "three"]:
            store.update_state({"search_term": term})

        result = store.rollback_state(2)

        assert result.success
        assert result.restored_state["search_term"] == "one"
        assert store.get_state_property("search_term") == "one"
        assert len(store.get_state_history()) == 1

    def test_rollback_each_step(self, store):
        store.update_state({"theme": "light"})
        store.update_state({"view": "list"})

        assert store.rollback_state().success
        assert store.get_state_property("view") == "grid"
        assert store.rollback_state().success
        assert store.get_state() == default_state()

    def test_rollback_empty_history(self, store):
        """Test that rollback without history fails without raising."""
        result = store.rollback_state()
        again = store.rollback_state()

        assert not result.success
        assert not again.success
        assert "Only 0 states in history" in result.error

    def test_rollback_notifies_listeners(self, store):
        entries = []
        store.update_state({"theme": "light"})
        store.add_state_change_listener(entries.append)

        store.rollback_state()

        assert entries[0].changes == {"rollback": True, "steps": 1}
        assert entries[0].new_state["theme"] == "dark"


class TestSafeUpdate:
    """Tests for safe_update_state."""

    @pytest.mark.parametrize("delta", [None, "theme", 42, ["a"], object()])
    def test_never_raises(self, store, delta):
        result = store.safe_update_state(delta, validate=True)

        assert not result.success
        assert result.error
        assert result.rollback_state == default_state()

    def test_validation_failure_carries_rollback_state(self, store):
        store.safe_update_state({"theme": "light"})

        result = store.safe_update_state({"view": "tiles"}, validate=True)

        assert not result.success
        assert result.rollback_state["theme"] == "light"

    def test_success(self, store):
        result = store.safe_update_state({"color_theme": "aurora"}, validate=True)

        assert result.success
        assert result.new_state["color_theme"] == "aurora"


class TestListeners:
    """Tests for change and validation listeners."""

    def test_unsubscribe(self, store):
        seen = []
        unsubscribe = store.add_state_change_listener(seen.append)

        store.update_state({"theme": "light"})
        unsubscribe()
        store.update_state({"theme": "dark"})

        assert len(seen) == 1

    def test_unsubscribing_one_keeps_others(self, store):
        first, second = [], []
        unsubscribe_first = store.add_state_change_listener(first.append)
        store.add_state_change_listener(second.append)

        unsubscribe_first()
        store.update_state({"theme": "light"})

        assert first == []
        assert len(second) == 1

    def test_throwing_listener_does_not_abort(self, store):
        """Test that listener errors are swallowed per listener."""
        seen = []

        def broken(entry):
            raise RuntimeError("boom")

        store.add_state_change_listener(broken)
        store.add_state_change_listener(seen.append)

        result = store.update_state({"theme": "light"})

        assert result.success
        assert len(seen) == 1
        assert store.get_state_property("theme") == "light"

    def test_validation_listener_sees_every_attempt(self, store):
        results = []
        store.add_state_validation_listener(results.append)

        store.update_state({"theme": "light"}, validate=True)
        store.update_state({"theme": "neon"}, validate=True)
        store.update_state({"theme": "dark"})

        assert [r.valid for r in results] == [True, False]

    def test_non_callable_listener(self, store):
        with pytest.raises(TypeError):
            store.add_state_change_listener("not callable")


class TestStoreHelpers:
    """Tests for wrappers, updaters and reset."""

    def test_validate_all_links(self, store):
        result = store.validate_all_links([make_link(), make_link(url="bad")])

        assert not result.valid
        assert len(result.errors) == 1

    def test_validate_state_changes(self, store):
        assert store.validate_state_changes({"view": "list"}).valid
        assert not store.validate_state_changes({"view": "cards"}).valid

    def test_create_state_updater(self, store):
        set_theme = store.create_state_updater("theme")

        assert set_theme("light").success
        assert store.get_state_property("theme") == "light"
        assert not set_theme("neon").success

    def test_create_state_updater_with_validator(self, store):
        set_term = store.create_state_updater(
            "search_term",
            validator=lambda value: True if value.islower() else "Must be lowercase",
        )

        result = set_term("ABC")

        assert not result.success
        assert result.error == "Must be lowercase"
        assert set_term("abc").success

    def test_reset(self, store):
        store.update_state({"theme": "light"})

        store.reset({"view": "list"})

        assert store.get_state_property("theme") == "dark"
        assert store.get_state_property("view") == "list"
        assert store.get_state_history() == []
