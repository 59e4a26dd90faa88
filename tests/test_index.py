"""Tests for the wallet number index."""

import json

import pytest

from wallet import AlreadyAssignedError, BackupIOError, NumberNotFoundError, WalletIndex

ADDRESSES = [f"addr-{i}" for i in range(1, 6)]


class TestAssign:
    """Tests for number assignment."""

    def test_numbers_start_at_one(self):
        index = WalletIndex()
        assert [index.assign_next(a) for a in ADDRESSES[:3]] == [1, 2, 3]

    def test_already_assigned(self):
        index = WalletIndex()
        index.assign_next("addr-1")
        with pytest.raises(AlreadyAssignedError, match="#1"):
            index.assign_next("addr-1")
        assert index.next_number == 2

    def test_resolve_both_ways(self):
        index = WalletIndex()
        index.assign_next("addr-1")
        assert index.resolve_number(1) == "addr-1"
        assert index.number_for("addr-1") == 1
        assert index.number_for("addr-9") is None

    def test_unassigned_number(self):
        with pytest.raises(NumberNotFoundError, match="number 7"):
            WalletIndex().resolve_number(7)


class TestRemoveRelease:
    """Tests for never reusing retired numbers."""

    def test_removed_number_is_not_reused(self):
        index = WalletIndex()
        for address in ADDRESSES[:3]:
            index.assign_next(address)
        index.remove("addr-3")
        assert index.assign_next("addr-4") == 4
        with pytest.raises(NumberNotFoundError):
            index.resolve_number(3)

    def test_remove_unknown_is_noop(self):
        assert WalletIndex().remove("addr-1") is None

    def test_release_last_number_hands_it_back(self):
        index = WalletIndex()
        index.assign_next("addr-1")
        index.assign_next("addr-2")
        index.release("addr-2")
        assert index.assign_next("addr-3") == 2

    def test_release_earlier_number_keeps_counter(self):
        index = WalletIndex()
        index.assign_next("addr-1")
        index.assign_next("addr-2")
        index.release("addr-1")
        assert index.assign_next("addr-3") == 3

    def test_release_save_failure_keeps_binding(self, tmp_path, monkeypatch):
        index = WalletIndex(tmp_path)
        index.assign_next("addr-1")

        def broken_save():
            raise BackupIOError("disk full")

        monkeypatch.setattr(index, "_save", broken_save)
        with pytest.raises(BackupIOError):
            index.release("addr-1")
        assert index.number_for("addr-1") == 1
        assert index.next_number == 2
        assert WalletIndex(tmp_path).resolve_number(1) == "addr-1"


class TestPersistence:
    """Tests for wallets.json persistence."""

    def test_reload_keeps_bindings_and_counter(self, tmp_path):
        index = WalletIndex(tmp_path)
        for address in ADDRESSES[:3]:
            index.assign_next(address)
        index.remove("addr-3")

        reloaded = WalletIndex(tmp_path)
        assert reloaded.loaded
        assert reloaded.resolve_number(2) == "addr-2"
        assert reloaded.assign_next("addr-4") == 4

    def test_file_format(self, tmp_path):
        WalletIndex(tmp_path).assign_next("addr-1")
        data = json.loads((tmp_path / "wallets.json").read_text())
        assert data["version"] == 1
        assert data["next_number"] == 2
        assert data["wallets"][0]["number"] == 1
        assert data["wallets"][0]["address"] == "addr-1"

    def test_missing_file(self, tmp_path):
        index = WalletIndex(tmp_path)
        assert not index.loaded
        assert len(index) == 0

    def test_corrupt_file(self, tmp_path):
        (tmp_path / "wallets.json").write_text("{broken")
        assert not WalletIndex(tmp_path).loaded

    def test_save_failure_rolls_back_assignment(self, tmp_path, monkeypatch):
        index = WalletIndex(tmp_path)

        def broken_save():
            raise BackupIOError("disk full")

        monkeypatch.setattr(index, "_save", broken_save)
        with pytest.raises(BackupIOError):
            index.assign_next("addr-1")
        assert "addr-1" not in index
        assert index.next_number == 1


class TestRebuild:
    """Tests for recovering the index from creation order."""

    def test_rebuild_numbers_in_order(self):
        index = WalletIndex()
        index.assign_next("addr-9")
        infos = index.rebuild(["addr-3", "addr-1", "addr-2"])
        assert [(i.number, i.address) for i in infos] == [(1, "addr-3"), (2, "addr-1"), (3, "addr-2")]
        assert "addr-9" not in index
        assert index.next_number == 4

    def test_rebuild_skips_duplicates(self):
        infos = WalletIndex().rebuild(["addr-1", "addr-1", "addr-2"])
        assert [i.number for i in infos] == [1, 2]

    def test_display_label(self):
        index = WalletIndex()
        index.assign_next("addr-1")
        assert index.get_wallets()[0].display_label() == "#1 - addr-1"


class TestCorruptIndexFile:
    """Tests for unreadable wallets.json contents."""

    def test_deeply_nested_index_is_ignored(self, tmp_path):
        (tmp_path / "wallets.json").write_bytes(b"[" * 200000)
        index = WalletIndex(tmp_path)
        assert not index.loaded
        assert len(index) == 0
