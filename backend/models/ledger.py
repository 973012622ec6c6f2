from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class ExpenseCategory(str, Enum):
    FOOD = "food"
    TRANSPORT = "transport"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    UTILITIES = "utilities"
    RENT = "rent"
    TRAVEL = "travel"
    MEDICAL = "medical"
    OTHER = "other"


# category -> display label and icon tag
EXPENSE_CATEGORIES: Dict[ExpenseCategory, Dict[str, str]] = {
    ExpenseCategory.FOOD: {"label": "Food & Dining", "icon": "utensils"},
    ExpenseCategory.TRANSPORT: {"label": "Transport", "icon": "car"},
    ExpenseCategory.ENTERTAINMENT: {"label": "Entertainment", "icon": "film"},
    ExpenseCategory.SHOPPING: {"label": "Shopping", "icon": "shopping-bag"},
    ExpenseCategory.UTILITIES: {"label": "Utilities", "icon": "zap"},
    ExpenseCategory.RENT: {"label": "Rent", "icon": "home"},
    ExpenseCategory.TRAVEL: {"label": "Travel", "icon": "map"},
    ExpenseCategory.MEDICAL: {"label": "Medical", "icon": "activity"},
    ExpenseCategory.OTHER: {"label": "Other", "icon": "more-horizontal"},
}

GROUP_ICONS = [
    "users",
    "home",
    "briefcase",
    "coffee",
    "heart",
    "plane",
    "car",
    "shopping-bag",
    "utensils",
]

GROUP_COLORS = [
    "blue",
    "green",
    "violet",
    "orange",
    "pink",
    "teal",
    "red",
    "yellow",
    "indigo",
]


def _asUtc(value: datetime) -> datetime:
    # naive timestamps are taken to be UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class User(BaseModel):
    """A person who can belong to groups and take part in expenses"""
    id: str = Field(description="Unique user ID")
    name: str = Field(description="Display name")
    email: str = Field(description="Contact email")
    avatar: Optional[str] = Field(None, description="Avatar image reference")


class UserCreate(BaseModel):
    name: str
    email: str
    avatar: Optional[str] = None


class Group(BaseModel):
    """A named set of users sharing expenses, with one leader"""
    id: str = Field(description="Unique group ID")
    name: str = Field(description="Group name")
    description: str = Field("", description="Free-form description")
    leaderId: str = Field(description="ID of the member leading the group")
    memberIds: List[str] = Field(description="Ordered member user IDs")
    color: str = Field("blue", description="Color tag")
    icon: str = Field("users", description="Icon tag")
    createdAt: datetime = Field(description="Creation timestamp")

    @field_validator("createdAt")
    @classmethod
    def assumeUtc(cls, value: datetime) -> datetime:
        return _asUtc(value)


class GroupCreate(BaseModel):
    name: str
    description: str = ""
    color: str = "blue"
    icon: str = "users"
    creatorId: Optional[str] = Field(None, description="Defaults to the current user")


class GroupUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    leaderId: Optional[str] = None
    memberIds: Optional[List[str]] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class MemberAdd(BaseModel):
    userId: str


class Expense(BaseModel):
    """A single spend event split equally among some group members"""
    id: str = Field(description="Unique expense ID")
    groupId: str = Field(description="Group the expense belongs to")
    title: str = Field(description="Short title")
    amount: float = Field(description="Positive amount, currency-agnostic")
    category: ExpenseCategory = Field(description="Spending category")
    paidBy: str = Field(description="ID of the paying user")
    date: datetime = Field(description="When the expense happened")
    splitBetween: List[str] = Field(description="IDs of users sharing the expense")
    notes: Optional[str] = Field(None, description="Optional notes")
    receipt: Optional[str] = Field(None, description="Stored receipt reference")

    @field_validator("date")
    @classmethod
    def assumeUtc(cls, value: datetime) -> datetime:
        return _asUtc(value)


class ExpenseCreate(BaseModel):
    groupId: str
    title: str
    amount: float
    category: str = ExpenseCategory.OTHER.value
    paidBy: str
    date: Optional[datetime] = None
    splitBetween: Optional[List[str]] = Field(
        None, description="Defaults to every member of the group"
    )
    notes: Optional[str] = None
    receipt: Optional[str] = None


class ExpenseUpdate(BaseModel):
    groupId: Optional[str] = None
    title: Optional[str] = None
    amount: Optional[float] = None
    category: Optional[str] = None
    paidBy: Optional[str] = None
    date: Optional[datetime] = None
    splitBetween: Optional[List[str]] = None
    notes: Optional[str] = None
    receipt: Optional[str] = None


class ActiveGroupSelection(BaseModel):
    groupId: str


class MemberBalance(BaseModel):
    userId: str
    name: str
    balance: float = Field(description="Positive when owed, negative when owing")


class Settlement(BaseModel):
    fromUserId: str = Field(description="Debtor making the payment")
    toUserId: str = Field(description="Creditor receiving the payment")
    amount: float


class GroupSummary(BaseModel):
    groupId: str
    name: str
    description: str
    leader: Optional[User]
    members: List[User]
    memberCount: int
    total: float
    averagePerPerson: float
    highestExpense: Optional[Expense] = None
    balances: List[MemberBalance]
