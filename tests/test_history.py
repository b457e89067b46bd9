"""
Tests for history.py - persisted command history.
"""

import logging

import pytest

from shellhost.history import HISTORY_LIMIT, HistoryStore


@pytest.fixture
def history_file(temp_dir):
    return temp_dir / "history"


class TestHistoryStore:
    """Tests for HistoryStore."""

    def test_default_limit(self):
        assert HISTORY_LIMIT == 1000

    def test_adjacent_duplicate_skipped(self, history_file):
        store = HistoryStore(history_file)

        assert store.append("ls") is True
        assert store.append("ls") is False

        assert store.entries == ["ls"]

    def test_non_adjacent_repeat_kept(self, history_file):
        store = HistoryStore(history_file)

        for cmd in ["ls", "pwd", "ls"]:
            store.append(cmd)

        assert store.entries == ["ls", "pwd", "ls"]

    def test_cap_drops_oldest(self, history_file):
        store = HistoryStore(history_file, limit=3)

        for i in range(5):
            store.append(f"cmd {i}")

        assert store.entries == ["cmd 2", "cmd 3", "cmd 4"]
        assert history_file.read_text(encoding="utf-8").split("\n") == ["cmd 2", "cmd 3", "cmd 4"]

    def test_list_most_recent_first(self, history_file):
        store = HistoryStore(history_file)
        for cmd in ["a", "b", "c"]:
            store.append(cmd)

        assert store.list() == ["c", "b", "a"]
        assert store.list(2) == ["c", "b"]
        assert store.list(0) == []

    def test_reload_from_disk(self, history_file):
        store = HistoryStore(history_file)
        store.append("echo one")
        store.append("echo two")

        reloaded = HistoryStore(history_file)

        assert reloaded.entries == ["echo one", "echo two"]

    def test_load_respects_limit(self, history_file):
        history_file.write_text("\n".join(f"c{i}" for i in range(10)), encoding="utf-8")

        store = HistoryStore(history_file, limit=4)

        assert store.entries == ["c6", "c7", "c8", "c9"]

    def test_load_skips_blank_lines(self, history_file):
        history_file.write_text("a\n\n  \nb\n", encoding="utf-8")

        assert HistoryStore(history_file).entries == ["a", "b"]

    def test_missing_file_is_empty(self, temp_dir):
        store = HistoryStore(temp_dir / "nested" / "history")

        assert len(store) == 0

    def test_clear_persists(self, history_file):
        store = HistoryStore(history_file)
        store.append("ls")

        store.clear()

        assert store.entries == []
        assert HistoryStore(history_file).entries == []

    def test_multiline_command_flattened(self, history_file):
        store = HistoryStore(history_file)

        store.append("for i in 1 2\ndo echo $i\ndone")

        assert HistoryStore(history_file).entries == ["for i in 1 2 do echo $i done"]

    def test_save_failure_is_logged_not_raised(self, temp_dir, caplog):
        # A directory where the file should be: every write fails
        target = temp_dir / "history"
        target.mkdir()
        store = HistoryStore(target)

        with caplog.at_level("ERROR"):
            assert store.append("ls") is True

        assert store.entries == ["ls"]
        assert "Failed to save history" in caplog.text
        assert list(target.iterdir()) == []

    def test_injected_logger(self, temp_dir, caplog):
        target = temp_dir / "history"
        target.mkdir()
        log = logging.getLogger("shellhost.tests.history")

        with caplog.at_level("ERROR"):
            HistoryStore(target, log=log).append("ls")

        assert caplog.records
        assert all(r.name == "shellhost.tests.history" for r in caplog.records)
