import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from models.ledger import (
    GROUP_COLORS,
    GROUP_ICONS,
    Expense,
    ExpenseCategory,
    ExpenseCreate,
    ExpenseUpdate,
    Group,
    GroupCreate,
    GroupSummary,
    GroupUpdate,
    MemberBalance,
    Settlement,
    User,
    UserCreate,
)
from models.snapshot import LedgerSnapshot
from utils.balanceCalculator import BalanceCalculator
from utils.ledgerErrors import NotFoundError, ReferentialIntegrityError, ValidationError

# Configure module logger
logger = logging.getLogger(__name__)

ChangeListener = Callable[[LedgerSnapshot], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class LedgerManager:
    """
    Class owning the groups and expenses of one session

    All state changes go through the mutation methods below. Each one
    validates the resulting records before committing, so a failed call
    leaves the ledger untouched. After a commit the new snapshot is handed
    to every registered change listener (typically the persistence store).

    Users form a read-only directory keyed by ID; groups refer to members by
    ID only and resolve them through that directory.
    """

    def __init__(self,
                 users: Iterable[User],
                 currentUserId: str,
                 calculator: Optional[BalanceCalculator] = None):
        """
        Initialize an empty ledger over a user directory

        Args:
            users: Known users
            currentUserId: ID of the user running the session
            calculator: Balance calculator, a fresh one by default

        Raises:
            ValidationError: If two users share an ID
            NotFoundError: If currentUserId is not in the directory
        """
        self._users: Dict[str, User] = {}
        for user in users:
            if user.id in self._users:
                raise ValidationError(f"Duplicate user ID: {user.id}")
            self._users[user.id] = user

        if currentUserId not in self._users:
            logger.error(f"Current user {currentUserId} is not in the user directory")
            raise NotFoundError(f"User not found with ID: {currentUserId}")

        self.currentUserId = currentUserId
        self.calculator = calculator or BalanceCalculator()
        self._groups: Dict[str, Group] = {}
        self._expenses: Dict[str, Expense] = {}
        self._activeGroupId: Optional[str] = None
        self._listeners: List[ChangeListener] = []
        logger.debug(f"LedgerManager initialized with {len(self._users)} users")

    @classmethod
    def fromSnapshot(cls,
                     snapshot: LedgerSnapshot,
                     calculator: Optional[BalanceCalculator] = None) -> "LedgerManager":
        """
        Rebuild a ledger from a persisted snapshot, re-validating every record

        Args:
            snapshot: State supplied by the persistence collaborator
            calculator: Optional balance calculator

        Returns:
            LedgerManager holding the snapshot's state

        Raises:
            ValidationError: If a group or expense breaks an invariant
            NotFoundError: If a referenced user does not exist
        """
        ledger = cls(snapshot.users, snapshot.currentUserId, calculator)

        for group in snapshot.groups:
            if group.id in ledger._groups:
                raise ValidationError(f"Duplicate group ID: {group.id}")
            ledger._validateGroup(group, [])
            ledger._groups[group.id] = group

        for expense in snapshot.expenses:
            if expense.id in ledger._expenses:
                raise ValidationError(f"Duplicate expense ID: {expense.id}")
            ledger._validateExpense(expense, ledger._groups)
            ledger._expenses[expense.id] = expense

        activeGroupId = snapshot.activeGroupId
        if activeGroupId is not None and activeGroupId not in ledger._groups:
            logger.warning(f"Active group {activeGroupId} no longer exists, falling back")
            activeGroupId = next(iter(ledger._groups), None)
        ledger._activeGroupId = activeGroupId

        logger.info(
            f"Loaded ledger with {len(ledger._groups)} groups and {len(ledger._expenses)} expenses"
        )
        return ledger

    def snapshot(self) -> LedgerSnapshot:
        """Export the current state for persistence"""
        return LedgerSnapshot(
            users=list(self._users.values()),
            currentUserId=self.currentUserId,
            groups=list(self._groups.values()),
            expenses=list(self._expenses.values()),
            activeGroupId=self._activeGroupId,
        )

    def addListener(self, listener: ChangeListener) -> None:
        """Register a callable receiving the snapshot after every mutation"""
        self._listeners.append(listener)

    # ---------- Users ----------

    @property
    def currentUser(self) -> User:
        return self._users[self.currentUserId]

    def listUsers(self) -> List[User]:
        return list(self._users.values())

    def getUser(self, userId: str) -> User:
        user = self._users.get(userId)
        if user is None:
            raise NotFoundError(f"User not found with ID: {userId}")
        return user

    def addUser(self, user: UserCreate) -> User:
        """
        Register a new user in the directory

        Args:
            user: Name, email and optional avatar

        Returns:
            The created User with a fresh ID

        Raises:
            ValidationError: If name or email is empty
        """
        if not user.name or not user.name.strip():
            raise ValidationError("User name is required")
        if not user.email or not user.email.strip():
            raise ValidationError("User email is required")

        record = User(
            id=self._newId("user", self._users),
            name=user.name.strip(),
            email=user.email.strip(),
            avatar=user.avatar,
        )
        users = dict(self._users)
        users[record.id] = record
        self._commit(users=users)
        logger.info(f"Registered user {record.id} ({record.name})")
        return record

    # ---------- Groups ----------

    def listGroups(self) -> List[Group]:
        return list(self._groups.values())

    def getGroup(self, groupId: str) -> Group:
        group = self._groups.get(groupId)
        if group is None:
            raise NotFoundError(f"Group not found with ID: {groupId}")
        return group

    def groupMembers(self, groupId: str) -> List[User]:
        """Resolve a group's member IDs through the user directory"""
        return [self._users[userId] for userId in self.getGroup(groupId).memberIds]

    def addGroup(self, group: GroupCreate) -> Group:
        """
        Create a group whose only member, and leader, is its creator

        Args:
            group: Name, description, color and icon tags, optional creator

        Returns:
            The created Group

        Raises:
            ValidationError: If the name is empty or a tag is unknown
            NotFoundError: If the creator is not a known user
        """
        creatorId = group.creatorId or self.currentUserId
        if creatorId not in self._users:
            logger.error(f"Group creator {creatorId} is not a known user")
            raise NotFoundError(f"User not found with ID: {creatorId}")

        record = Group(
            id=self._newId("group", self._groups),
            name=group.name,
            description=group.description,
            leaderId=creatorId,
            memberIds=[creatorId],
            color=group.color,
            icon=group.icon,
            createdAt=_now(),
        )
        self._validateGroup(record, [])

        groups = dict(self._groups)
        groups[record.id] = record
        self._commit(groups=groups)
        logger.info(f"Created group {record.id} '{record.name}' led by {creatorId}")
        return record

    def updateGroup(self, groupId: str, updates: Union[GroupUpdate, Mapping[str, Any]]) -> Group:
        """
        Merge fields into an existing group

        The ID and creation timestamp cannot change; attempts to set them
        are ignored. The merged group is re-validated against its members
        and against every expense of the group before it is committed.

        Args:
            groupId: Group to update
            updates: Partial fields

        Returns:
            The updated Group

        Raises:
            NotFoundError: If the group or a new member does not exist
            ValidationError: If the merged group breaks an invariant
            ReferentialIntegrityError: If the leader is not a member, or a
                member still referenced by an expense was removed
        """
        current = self.getGroup(groupId)
        changes = self._partialFields(updates, GroupUpdate)
        record = self._merge(Group, current, changes)
        self._validateGroup(record, [e for e in self._expenses.values() if e.groupId == groupId])

        groups = dict(self._groups)
        groups[groupId] = record
        self._commit(groups=groups)
        logger.info(f"Updated group {groupId}: {sorted(changes)}")
        return record

    def addMember(self, groupId: str, userId: str) -> Group:
        """
        Append an existing user to a group's members

        Raises:
            NotFoundError: If the group or user does not exist
            ValidationError: If the user is already a member
        """
        group = self.getGroup(groupId)
        self.getUser(userId)
        if userId in group.memberIds:
            raise ValidationError(f"User {userId} is already a member of group {groupId}")
        return self.updateGroup(groupId, GroupUpdate(memberIds=group.memberIds + [userId]))

    def deleteGroup(self, groupId: str) -> Group:
        """
        Remove a group together with every expense scoped to it

        Dependent expenses and the group are dropped in one commit. If the
        group was the active selection, selection falls back to the first
        remaining group, or to none.

        Args:
            groupId: Group to delete

        Returns:
            The removed Group

        Raises:
            NotFoundError: If the group does not exist
        """
        group = self.getGroup(groupId)

        expenses = {k: e for k, e in self._expenses.items() if e.groupId != groupId}
        groups = {k: g for k, g in self._groups.items() if k != groupId}
        activeGroupId = self._activeGroupId
        if activeGroupId == groupId:
            activeGroupId = next(iter(groups), None)

        removed = len(self._expenses) - len(expenses)
        self._commit(groups=groups, expenses=expenses, activeGroupId=activeGroupId)
        logger.info(f"Deleted group {groupId} and {removed} of its expenses")
        return group

    # ---------- Active selection ----------

    @property
    def activeGroupId(self) -> Optional[str]:
        return self._activeGroupId

    def setActiveGroup(self, groupId: str) -> Group:
        group = self.getGroup(groupId)
        self._commit(activeGroupId=groupId)
        logger.debug(f"Active group set to {groupId}")
        return group

    # ---------- Expenses ----------

    def listExpenses(self) -> List[Expense]:
        return list(self._expenses.values())

    def getExpense(self, expenseId: str) -> Expense:
        expense = self._expenses.get(expenseId)
        if expense is None:
            raise NotFoundError(f"Expense not found with ID: {expenseId}")
        return expense

    def expensesForGroup(self, groupId: str) -> List[Expense]:
        """Expenses of one group, newest first"""
        self.getGroup(groupId)
        scoped = [e for e in self._expenses.values() if e.groupId == groupId]
        return sorted(scoped, key=lambda e: e.date, reverse=True)

    def addExpense(self, expense: ExpenseCreate) -> Expense:
        """
        Validate and record a new expense

        When splitBetween is omitted the expense is split between every
        member of the group.

        Args:
            expense: Expense fields without an ID

        Returns:
            The recorded Expense with a fresh ID

        Raises:
            ValidationError: On a non-positive amount, empty title or split,
                or unknown category
            ReferentialIntegrityError: If the group does not exist or the
                payer or a participant is not a member
        """
        group = self._groups.get(expense.groupId)
        if group is None:
            logger.error(f"Expense references unknown group {expense.groupId}")
            raise ReferentialIntegrityError(f"Group not found with ID: {expense.groupId}")

        splitBetween = expense.splitBetween
        if splitBetween is None:
            splitBetween = list(group.memberIds)

        record = self._build(Expense, {
            "id": self._newId("expense", self._expenses),
            "groupId": expense.groupId,
            "title": expense.title,
            "amount": expense.amount,
            "category": self._parseCategory(expense.category),
            "paidBy": expense.paidBy,
            "date": expense.date or _now(),
            "splitBetween": list(splitBetween),
            "notes": expense.notes,
            "receipt": expense.receipt,
        })
        self._validateExpense(record, self._groups)

        expenses = dict(self._expenses)
        expenses[record.id] = record
        self._commit(expenses=expenses)
        logger.info(
            f"Added expense {record.id} '{record.title}' of {record.amount} to group {record.groupId}"
        )
        return record

    def updateExpense(self, expenseId: str, updates: Union[ExpenseUpdate, Mapping[str, Any]]) -> Expense:
        """
        Merge fields into an existing expense

        The merged record must satisfy every expense invariant before it
        replaces the current one; the ID cannot change.

        Raises:
            NotFoundError: If the expense does not exist
            ValidationError: If the merged record breaks an invariant
        """
        current = self.getExpense(expenseId)
        changes = self._partialFields(updates, ExpenseUpdate)
        if changes.get("category") is not None:
            changes["category"] = self._parseCategory(changes["category"])

        record = self._merge(Expense, current, changes)
        self._validateExpense(record, self._groups)

        expenses = dict(self._expenses)
        expenses[expenseId] = record
        self._commit(expenses=expenses)
        logger.info(f"Updated expense {expenseId}: {sorted(changes)}")
        return record

    def deleteExpense(self, expenseId: str) -> Expense:
        """
        Remove one expense

        Raises:
            NotFoundError: If the expense does not exist
        """
        expense = self.getExpense(expenseId)
        expenses = {k: e for k, e in self._expenses.items() if k != expenseId}
        self._commit(expenses=expenses)
        logger.info(f"Deleted expense {expenseId}")
        return expense

    # ---------- Derived figures ----------

    def groupTotal(self, groupId: str) -> float:
        self.getGroup(groupId)
        return self.calculator.groupTotal(self._expenses.values(), groupId)

    def userBalance(self, groupId: str, userId: str) -> float:
        """Net balance of one user within one group"""
        self.getGroup(groupId)
        self.getUser(userId)
        scoped = [e for e in self._expenses.values() if e.groupId == groupId]
        return self.calculator.userBalance(scoped, userId)

    def groupBalances(self, groupId: str) -> List[MemberBalance]:
        group = self.getGroup(groupId)
        scoped = [e for e in self._expenses.values() if e.groupId == groupId]
        balances = self.calculator.groupBalances(scoped, group.memberIds)
        return [
            MemberBalance(userId=userId, name=self._users[userId].name, balance=balance)
            for userId, balance in balances.items()
        ]

    def groupSettlements(self, groupId: str) -> List[Settlement]:
        """Transfers settling a group, amounts rounded to cents"""
        balances = {b.userId: b.balance for b in self.groupBalances(groupId)}
        return [
            s.model_copy(update={"amount": self.calculator.roundCurrency(s.amount)})
            for s in self.calculator.settleUp(balances)
        ]

    def groupSummary(self, groupId: str) -> GroupSummary:
        """Total, per-person average, largest expense and balances of a group"""
        group = self.getGroup(groupId)
        members = self.groupMembers(groupId)
        scoped = [e for e in self._expenses.values() if e.groupId == groupId]
        total = self.calculator.groupTotal(scoped, groupId)

        return GroupSummary(
            groupId=group.id,
            name=group.name,
            description=group.description,
            leader=self._users.get(group.leaderId),
            members=members,
            memberCount=len(members),
            total=total,
            averagePerPerson=self.calculator.averagePerPerson(total, len(members)),
            highestExpense=max(scoped, key=lambda e: e.amount, default=None),
            balances=self.groupBalances(groupId),
        )

    # ---------- Internals ----------

    def _commit(self, **changes) -> None:
        """Swap in new collections, then notify listeners"""
        if "users" in changes:
            self._users = changes["users"]
        if "groups" in changes:
            self._groups = changes["groups"]
        if "expenses" in changes:
            self._expenses = changes["expenses"]
        if "activeGroupId" in changes:
            self._activeGroupId = changes["activeGroupId"]
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Ledger change listener failed: {str(e)}", exc_info=True)

    @staticmethod
    def _newId(prefix: str, existing: Mapping[str, Any]) -> str:
        while True:
            candidate = f"{prefix}-{uuid.uuid4().hex[:6]}"
            if candidate not in existing:
                return candidate

    @staticmethod
    def _parseCategory(category: Any) -> ExpenseCategory:
        try:
            return ExpenseCategory(category)
        except ValueError:
            logger.error(f"Unknown expense category: {category}")
            raise ValidationError(f"Unknown expense category: {category}")

    @staticmethod
    def _partialFields(updates, model) -> Dict[str, Any]:
        """Set fields of a partial update; keys outside the model are dropped"""
        if isinstance(updates, Mapping):
            ignored = set(updates) - set(model.model_fields)
            if ignored:
                logger.warning(f"Ignoring immutable or unknown fields: {sorted(ignored)}")
            try:
                updates = model.model_validate(dict(updates))
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid update: {e.errors()[0]['msg']}") from e
        return updates.model_dump(exclude_unset=True)

    @classmethod
    def _merge(cls, model, current, changes: Dict[str, Any]):
        return cls._build(model, {**current.model_dump(), **changes})

    @staticmethod
    def _build(model, fields: Dict[str, Any]):
        try:
            return model(**fields)
        except PydanticValidationError as e:
            error = e.errors()[0]
            location = ".".join(str(part) for part in error["loc"])
            raise ValidationError(f"Invalid {location}: {error['msg']}") from e

    def _validateGroup(self, group: Group, expenses: List[Expense]) -> None:
        if not group.name or not group.name.strip():
            logger.error("Group name is empty")
            raise ValidationError("Group name is required")
        if group.color not in GROUP_COLORS:
            raise ValidationError(f"Unknown group color: {group.color}")
        if group.icon not in GROUP_ICONS:
            raise ValidationError(f"Unknown group icon: {group.icon}")
        if not group.memberIds:
            raise ValidationError("A group needs at least one member")
        if len(set(group.memberIds)) != len(group.memberIds):
            raise ValidationError("A user can only be listed once among the members")

        for userId in group.memberIds:
            if userId not in self._users:
                logger.error(f"Group {group.id} lists unknown user {userId}")
                raise NotFoundError(f"User not found with ID: {userId}")

        if group.leaderId not in group.memberIds:
            logger.error(f"Leader {group.leaderId} is not a member of group {group.id}")
            raise ReferentialIntegrityError(f"Leader {group.leaderId} must be a member of the group")

        members = set(group.memberIds)
        for expense in expenses:
            involved = {expense.paidBy, *expense.splitBetween}
            if not involved <= members:
                missing = sorted(involved - members)
                logger.error(f"Members {missing} are still referenced by expense {expense.id}")
                raise ReferentialIntegrityError(
                    f"Cannot remove members {missing}: referenced by expense {expense.id}"
                )

    def _validateExpense(self, expense: Expense, groups: Mapping[str, Group]) -> None:
        if not math.isfinite(expense.amount) or expense.amount <= 0:
            logger.error(f"Invalid expense amount: {expense.amount}")
            raise ValidationError("Amount must be greater than zero")
        if not expense.title or not expense.title.strip():
            logger.error("Expense title is empty")
            raise ValidationError("Expense title is required")
        if not expense.splitBetween:
            logger.error("Expense split is empty")
            raise ValidationError("An expense must be split between at least one member")
        if len(set(expense.splitBetween)) != len(expense.splitBetween):
            raise ValidationError("A member can only be listed once in a split")

        group = groups.get(expense.groupId)
        if group is None:
            logger.error(f"Expense references unknown group {expense.groupId}")
            raise ReferentialIntegrityError(f"Group not found with ID: {expense.groupId}")
        if expense.paidBy not in group.memberIds:
            logger.error(f"Payer {expense.paidBy} is not a member of group {group.id}")
            raise ReferentialIntegrityError(f"Payer {expense.paidBy} is not a member of the group")
        outsiders = [userId for userId in expense.splitBetween if userId not in group.memberIds]
        if outsiders:
            logger.error(f"Split participants {outsiders} are not members of group {group.id}")
            raise ReferentialIntegrityError(f"Split participants {outsiders} are not members of the group")
