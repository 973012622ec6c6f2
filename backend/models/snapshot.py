from typing import List, Optional

from pydantic import BaseModel, Field

from models.ledger import Expense, Group, User


class LedgerSnapshot(BaseModel):
    """Complete persisted ledger state"""
    version: int = Field(1, description="Snapshot format version")
    users: List[User] = Field(default_factory=list, description="User directory")
    currentUserId: str = Field(description="ID of the user running the session")
    groups: List[Group] = Field(default_factory=list)
    expenses: List[Expense] = Field(default_factory=list)
    activeGroupId: Optional[str] = Field(None, description="Currently selected group")
