import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Sequence

from models.ledger import Expense, Settlement
from utils.ledgerErrors import ValidationError

# Configure module logger
logger = logging.getLogger(__name__)

# Tolerance for comparing balances accumulated in floating point
BALANCE_EPSILON = 1e-6


class BalanceCalculator:
    """
    Class to derive totals and net balances from a set of expenses

    Every method is a pure function of its arguments: nothing is cached and
    the inputs are never mutated, so figures are recomputed from the full
    expense collection on each call. Amounts keep full float precision;
    rounding is left to presentation (see roundCurrency).
    """

    def __init__(self):
        """Initialize the BalanceCalculator"""
        logger.debug("BalanceCalculator initialized")

    def splitAmount(self, expense: Expense) -> float:
        """
        Calculate each participant's equal share of an expense

        Args:
            expense: Expense to split

        Returns:
            float: amount / number of split participants, unrounded

        Raises:
            ValidationError: If the expense is split among nobody
        """
        if not expense.splitBetween:
            logger.error(f"Expense {expense.id} has an empty split")
            raise ValidationError("An expense must be split between at least one member")
        return expense.amount / len(expense.splitBetween)

    def groupTotal(self, expenses: Iterable[Expense], groupId: str) -> float:
        """
        Sum the amounts of every expense scoped to one group

        Args:
            expenses: Full expense collection
            groupId: Group to total

        Returns:
            float: Total spent in the group, 0.0 when it has no expenses
        """
        return sum((e.amount for e in expenses if e.groupId == groupId), 0.0)

    def userBalance(self, expenses: Iterable[Expense], userId: str) -> float:
        """
        Compute a user's signed net position across a set of expenses

        The payer is credited with the part of the expense other people owe:
        the amount minus their own share when they are in the split, the
        whole amount when they are not. The payer branch alone applies to
        the payer, so their share is never counted twice. A participant who
        did not pay is debited their share. An expense the user neither paid
        for nor shares contributes nothing.

        Args:
            expenses: Expenses already scoped by the caller, usually one group
            userId: User whose balance is computed

        Returns:
            float: Positive when the user is owed money, negative when they owe
        """
        balance = 0.0
        for expense in expenses:
            share = self.splitAmount(expense)
            if expense.paidBy == userId:
                ownShare = share if userId in expense.splitBetween else 0.0
                balance += expense.amount - ownShare
            elif userId in expense.splitBetween:
                balance -= share
        return balance

    def groupBalances(self, expenses: Sequence[Expense], memberIds: Sequence[str]) -> Dict[str, float]:
        """
        Compute the balance of every member, in member order

        Args:
            expenses: Expenses scoped to one group
            memberIds: Member user IDs of that group

        Returns:
            Dict mapping user ID to signed balance
        """
        balances = {userId: self.userBalance(expenses, userId) for userId in memberIds}
        logger.debug(f"Computed balances for {len(balances)} members over {len(expenses)} expenses")
        return balances

    def settleUp(self, balances: Dict[str, float]) -> List[Settlement]:
        """
        Suggest transfers that settle every balance within one group

        Greedy: the largest debtor pays the largest creditor until one of
        them is settled, then moves on. Residues below BALANCE_EPSILON are
        treated as settled.

        Args:
            balances: Dict mapping user ID to signed balance

        Returns:
            List of Settlement transfers, unrounded
        """
        creditors = [[userId, amount] for userId, amount in balances.items() if amount > BALANCE_EPSILON]
        debtors = [[userId, -amount] for userId, amount in balances.items() if amount < -BALANCE_EPSILON]
        creditors.sort(key=lambda entry: entry[1], reverse=True)
        debtors.sort(key=lambda entry: entry[1], reverse=True)

        transfers = []
        i = j = 0
        while i < len(debtors) and j < len(creditors):
            debtor, creditor = debtors[i], creditors[j]
            amount = min(debtor[1], creditor[1])
            if amount > BALANCE_EPSILON:
                transfers.append(Settlement(fromUserId=debtor[0], toUserId=creditor[0], amount=amount))
            debtor[1] -= amount
            creditor[1] -= amount
            if debtor[1] <= BALANCE_EPSILON:
                i += 1
            if creditor[1] <= BALANCE_EPSILON:
                j += 1

        logger.debug(f"Settling {len(balances)} balances takes {len(transfers)} transfers")
        return transfers

    @staticmethod
    def averagePerPerson(total: float, memberCount: int) -> float:
        """Average spend per member, 0.0 for a group without members"""
        if memberCount <= 0:
            return 0.0
        return total / memberCount

    @staticmethod
    def balancesEqual(a: float, b: float) -> bool:
        """Compare two balances within BALANCE_EPSILON"""
        return abs(a - b) <= BALANCE_EPSILON

    @staticmethod
    def roundCurrency(amount: float) -> float:
        """
        Round a currency amount to 2 decimal places

        Args:
            amount: The amount to round

        Returns:
            float: The rounded amount
        """
        # Use Decimal for accurate financial rounding
        decimal_amount = Decimal(str(amount))
        rounded = decimal_amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        return float(rounded)
