import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from models.ledger import Expense, ExpenseCategory, Group, User
from models.snapshot import LedgerSnapshot
from utils.ledgerErrors import ValidationError

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_LEDGER_PATH = os.path.join("data", "ledger.json")


def _envFlag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class LedgerStore:
    """
    Class persisting ledger snapshots as a JSON file

    The file location comes from LEDGER_DATA_PATH (loaded from .env when
    present). When no file exists yet, load() returns a seed snapshot so a
    fresh install starts with the demo users and, unless LEDGER_SEED_DEMO
    is off, a few demo groups and expenses.
    """

    def __init__(self, path: Optional[str] = None, seedDemo: Optional[bool] = None):
        """
        Initialize the LedgerStore

        Args:
            path: JSON file to read and write, LEDGER_DATA_PATH by default
            seedDemo: Include demo groups in the seed snapshot, LEDGER_SEED_DEMO by default
        """
        load_dotenv()
        self.path = path or os.getenv("LEDGER_DATA_PATH", DEFAULT_LEDGER_PATH)
        self.seedDemo = _envFlag("LEDGER_SEED_DEMO", True) if seedDemo is None else seedDemo
        logger.debug(f"LedgerStore configured at {self.path}")

    def load(self) -> LedgerSnapshot:
        """
        Read the stored snapshot, or build the seed one if nothing is stored

        Returns:
            LedgerSnapshot

        Raises:
            ValidationError: If the stored file is not a valid snapshot
        """
        if not os.path.exists(self.path):
            logger.info(f"No ledger found at {self.path}, starting from seed data")
            return self.seedSnapshot()

        with open(self.path, "r", encoding="utf-8") as f:
            raw = f.read()

        try:
            snapshot = LedgerSnapshot.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(f"Stored ledger at {self.path} is invalid: {str(e)}")
            raise ValidationError(f"Stored ledger at {self.path} is invalid") from e

        logger.info(
            f"Loaded {len(snapshot.groups)} groups and {len(snapshot.expenses)} expenses from {self.path}"
        )
        return snapshot

    def save(self, snapshot: LedgerSnapshot) -> None:
        """
        Write a snapshot, replacing the stored file atomically

        Args:
            snapshot: Ledger state to persist
        """
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        fd, tmpPath = tempfile.mkstemp(dir=directory, prefix=".ledger-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(snapshot.model_dump_json(indent=2))
            os.replace(tmpPath, self.path)
        except Exception:
            if os.path.exists(tmpPath):
                os.remove(tmpPath)
            raise
        logger.debug(f"Saved ledger to {self.path}")

    def seedSnapshot(self) -> LedgerSnapshot:
        """Initial state for a fresh install"""
        users = [
            User(id="user-1", name="Rajesh Sharma", email="rajesh@example.com",
                 avatar="https://i.pravatar.cc/150?img=1"),
            User(id="user-2", name="Priya Patel", email="priya@example.com",
                 avatar="https://i.pravatar.cc/150?img=2"),
            User(id="user-3", name="Amit Kumar", email="amit@example.com",
                 avatar="https://i.pravatar.cc/150?img=3"),
            User(id="user-4", name="Sunita Singh", email="sunita@example.com",
                 avatar="https://i.pravatar.cc/150?img=4"),
        ]
        if not self.seedDemo:
            return LedgerSnapshot(users=users, currentUserId="user-1")

        now = datetime.now(timezone.utc)
        groups = [
            Group(id="group-1", name="Parivar", description="Family expenses",
                  leaderId="user-1", memberIds=["user-1", "user-2", "user-3"],
                  color="blue", icon="home", createdAt=now),
            Group(id="group-2", name="Dost Log", description="Weekend trips and dinners",
                  leaderId="user-2", memberIds=["user-1", "user-2", "user-4"],
                  color="green", icon="users", createdAt=now),
            Group(id="group-3", name="Karyalaya", description="Work-related expenses",
                  leaderId="user-1", memberIds=["user-1", "user-3", "user-4"],
                  color="violet", icon="briefcase", createdAt=now),
        ]
        expenses = [
            Expense(id="expense-1", groupId="group-1", title="Grocery from Big Bazaar",
                    amount=3750.50, category=ExpenseCategory.FOOD, paidBy="user-1", date=now,
                    splitBetween=["user-1", "user-2", "user-3"], notes="Weekly groceries"),
            Expense(id="expense-2", groupId="group-1", title="BSES Electricity bill",
                    amount=5200, category=ExpenseCategory.UTILITIES, paidBy="user-1",
                    date=now - timedelta(days=1), splitBetween=["user-1", "user-2"]),
            Expense(id="expense-3", groupId="group-2", title="PVR Cinemas movie",
                    amount=1800, category=ExpenseCategory.ENTERTAINMENT, paidBy="user-2",
                    date=now - timedelta(days=2), splitBetween=["user-1", "user-2", "user-4"]),
            Expense(id="expense-4", groupId="group-2", title="Dinner at Punjab Grill",
                    amount=4350.75, category=ExpenseCategory.FOOD, paidBy="user-1",
                    date=now - timedelta(days=3), splitBetween=["user-1", "user-2", "user-4"]),
            Expense(id="expense-5", groupId="group-3", title="Office supplies from Croma",
                    amount=2895.25, category=ExpenseCategory.SHOPPING, paidBy="user-3",
                    date=now - timedelta(days=4), splitBetween=["user-1", "user-3", "user-4"]),
            Expense(id="expense-6", groupId="group-3", title="Team lunch at Taj",
                    amount=3580.50, category=ExpenseCategory.FOOD, paidBy="user-1",
                    date=now - timedelta(days=5), splitBetween=["user-1", "user-3", "user-4"]),
        ]
        return LedgerSnapshot(
            users=users,
            currentUserId="user-1",
            groups=groups,
            expenses=expenses,
            activeGroupId="group-1",
        )
