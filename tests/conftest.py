"""
Shared fixtures for ledger tests.

Users u1, u2 and u3 make up the "Flat" group used across the suite; u4 is
a known user who belongs to no group.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from models.ledger import Expense, ExpenseCategory, Group, GroupCreate, User
from utils.balanceCalculator import BalanceCalculator
from utils.ledgerManager import LedgerManager


@pytest.fixture
def users() -> list[User]:
    return [
        User(id="u1", name="Ana Lima", email="ana@example.com"),
        User(id="u2", name="Bruno Costa", email="bruno@example.com"),
        User(id="u3", name="Carla Dias", email="carla@example.com"),
        User(id="u4", name="Davi Rocha", email="davi@example.com"),
    ]


@pytest.fixture
def ledger(users) -> LedgerManager:
    return LedgerManager(users, currentUserId="u1")


@pytest.fixture
def group(ledger: LedgerManager) -> Group:
    """Group "Flat" led by u1 with members u1, u2, u3."""
    created = ledger.addGroup(GroupCreate(name="Flat", description="Shared flat"))
    ledger.addMember(created.id, "u2")
    ledger.addMember(created.id, "u3")
    return ledger.getGroup(created.id)


@pytest.fixture
def calculator() -> BalanceCalculator:
    return BalanceCalculator()


@pytest.fixture
def make_expense():
    """Factory building Expense records directly, bypassing the ledger."""
    counter = {"n": 0}

    def _make(amount, paidBy, splitBetween, groupId="g1", **fields) -> Expense:
        counter["n"] += 1
        return Expense(
            id=fields.pop("id", f"e{counter['n']}"),
            groupId=groupId,
            title=fields.pop("title", "Expense"),
            amount=amount,
            category=fields.pop("category", ExpenseCategory.OTHER),
            paidBy=paidBy,
            date=fields.pop("date", datetime(2024, 5, 1, tzinfo=timezone.utc)),
            splitBetween=splitBetween,
            **fields,
        )

    return _make
