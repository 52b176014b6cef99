"""
Tests for the per-device vote guard and its flag stores.
"""

import json

import pytest


class TestMemoryFlagStore:
    """Tests for in-process flags."""

    def test_flag_store_is_abstract(self):
        """The FlagStore base class cannot be used on its own."""
        from votebook.guard import FlagStore

        with pytest.raises(TypeError):
            FlagStore()

    def test_missing_flag_is_false(self):
        """Flags that were never set should read as False."""
        from votebook.guard import MemoryFlagStore

        assert MemoryFlagStore().get("voted") is False

    def test_set_and_get(self):
        """A set flag should read back as True."""
        from votebook.guard import MemoryFlagStore

        flags = MemoryFlagStore()
        flags.set("voted", True)
        assert flags.get("voted") is True


class TestJsonFlagStore:
    """Tests for flags persisted to disk."""

    def test_failed_write_leaves_flags_unchanged(self, tmp_path):
        """If the file cannot be written the flag should stay unset in memory too."""
        from votebook.guard import JsonFlagStore

        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        flags = JsonFlagStore(blocker / "flags.json")

        with pytest.raises(OSError):
            flags.set("voted", True)

        assert flags.get("voted") is False

    def test_flags_survive_reload(self, tmp_path):
        """A new store on the same file should see earlier flags."""
        from votebook.guard import JsonFlagStore

        path = tmp_path / "flags.json"
        JsonFlagStore(path).set("device-1:voted", True)

        assert JsonFlagStore(path).get("device-1:voted") is True
        assert json.loads(path.read_text()) == {"device-1:voted": True}

    def test_creates_parent_directory(self, tmp_path):
        """Setting a flag should create the file's directory if needed."""
        from votebook.guard import JsonFlagStore

        path = tmp_path / "nested" / "flags.json"
        JsonFlagStore(path).set("voted", True)

        assert path.exists()

    def test_unreadable_file_starts_empty(self, tmp_path):
        """A corrupt flag file should be ignored rather than crash."""
        from votebook.guard import JsonFlagStore

        path = tmp_path / "flags.json"
        path.write_text("{not json")

        assert JsonFlagStore(path).get("voted") is False

    def test_non_object_file_starts_empty(self, tmp_path):
        """A flag file holding something other than an object is ignored."""
        from votebook.guard import JsonFlagStore

        path = tmp_path / "flags.json"
        path.write_text("[1, 2]")

        assert JsonFlagStore(path).get("voted") is False


class TestLocalVoteGuard:
    """Tests for the vote guard."""

    def test_guard_starts_unset(self, flags):
        """A fresh device has not voted."""
        from votebook.guard import LocalVoteGuard

        assert not LocalVoteGuard(flags).is_set()

    def test_mark_sets_flag(self, flags):
        """mark() should set the guard."""
        from votebook.guard import LocalVoteGuard

        guard = LocalVoteGuard(flags)
        guard.mark()

        assert guard.is_set()
        assert flags.get("voted")

    def test_devices_are_independent(self, flags):
        """Guards for different devices should not share a flag."""
        from votebook.guard import LocalVoteGuard

        first = LocalVoteGuard(flags, "a")
        second = LocalVoteGuard(flags, "b")
        first.mark()

        assert first.is_set()
        assert not second.is_set()
        assert first.name == "a:voted"
