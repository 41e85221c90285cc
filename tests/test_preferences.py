"""
Tests for the local cache and UI preferences.
"""
import pytest

from taskflow.local_cache import LocalCache
from taskflow.preferences import PreferenceStore, Preferences


class TestLocalCache:
    """Test LocalCache."""

    def test_round_trip_and_remove(self, cache):
        cache.set("today_tasks_u1", [{"id": "1", "text": "Standup"}])
        assert cache.get("today_tasks_u1") == [{"id": "1", "text": "Standup"}]
        cache.remove("today_tasks_u1")
        assert cache.get("today_tasks_u1", "missing") == "missing"

    def test_unreadable_entry_is_missing(self, tmp_path):
        cache = LocalCache(tmp_path)
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
        assert cache.get("broken", []) == []

    def test_remove_missing_key(self, cache):
        cache.remove("never-set")


class TestPreferences:
    """Test PreferenceStore."""

    def test_defaults(self, cache):
        assert PreferenceStore(cache).preferences == Preferences()

    def test_update_persists(self, cache):
        PreferenceStore(cache).update(theme="dark", timeline_mode="gantt")
        reloaded = PreferenceStore(cache).preferences
        assert (reloaded.theme, reloaded.timeline_mode) == ("dark", "gantt")

    def test_invalid_values_are_rejected_without_change(self, cache):
        store = PreferenceStore(cache)
        with pytest.raises(ValueError):
            store.update(theme="neon")
        with pytest.raises(AttributeError):
            store.update(font="comic")
        assert store.preferences == Preferences()

    def test_stored_garbage_is_sanitized(self, cache):
        cache.set(PreferenceStore.KEY, {"theme": "neon", "timeline_mode": "gantt", "legacy": 1})
        prefs = PreferenceStore(cache).preferences
        assert prefs.theme == "system"
        assert prefs.timeline_mode == "gantt"

    def test_toggle_sidebar(self, cache):
        store = PreferenceStore(cache)
        assert store.toggle_sidebar() is False
        assert PreferenceStore(cache).preferences.sidebar_open is False
