"""
Tests for JSON persistence of ledger snapshots.
"""

from __future__ import annotations

import os

import pytest

from models.ledger import GroupCreate
from utils.ledgerErrors import ValidationError
from utils.ledgerManager import LedgerManager
from utils.ledgerStore import LedgerStore


class TestLedgerStore:
    def test_missing_file_yields_demo_seed(self, tmp_path):
        store = LedgerStore(path=str(tmp_path / "ledger.json"), seedDemo=True)
        snapshot = store.load()

        assert snapshot.currentUserId == "user-1"
        assert [g.id for g in snapshot.groups] == ["group-1", "group-2", "group-3"]
        assert snapshot.activeGroupId == "group-1"

    def test_demo_seed_satisfies_invariants(self, tmp_path):
        store = LedgerStore(path=str(tmp_path / "ledger.json"), seedDemo=True)
        ledger = LedgerManager.fromSnapshot(store.load())

        assert len(ledger.listExpenses()) == 6
        assert ledger.groupTotal("group-1") == pytest.approx(8950.50)

    def test_seed_without_demo_data(self, tmp_path):
        store = LedgerStore(path=str(tmp_path / "ledger.json"), seedDemo=False)
        snapshot = store.load()

        assert len(snapshot.users) == 4
        assert snapshot.groups == []
        assert snapshot.expenses == []

    def test_seed_flag_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEDGER_SEED_DEMO", "off")
        store = LedgerStore(path=str(tmp_path / "ledger.json"))
        assert store.seedDemo is False

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = str(tmp_path / "env-ledger.json")
        monkeypatch.setenv("LEDGER_DATA_PATH", path)
        assert LedgerStore().path == path

    def test_saved_snapshot_is_loaded_back(self, tmp_path):
        path = tmp_path / "nested" / "ledger.json"
        store = LedgerStore(path=str(path), seedDemo=False)
        ledger = LedgerManager.fromSnapshot(store.load())
        ledger.addListener(store.save)

        group = ledger.addGroup(GroupCreate(name="Trip"))

        assert path.exists()
        assert store.load() == ledger.snapshot()
        assert store.load().groups[0].id == group.id
        assert os.listdir(path.parent) == ["ledger.json"]

    def test_corrupt_file_rejected(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text('{"groups": "not a list"}', encoding="utf-8")

        with pytest.raises(ValidationError):
            LedgerStore(path=str(path)).load()
