from typing import Optional
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def new_id() -> str:
    return str(uuid4())


class SplitPolicy(str, Enum):
    equal = "equal"
    percentage = "percentage"

# ============== Users ==============
class UserBase(SQLModel):
    name: str

class User(UserBase, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow)

# ============== Groups ==============
class GroupBase(SQLModel):
    name: str

class Group(GroupBase, table=True):
    __tablename__ = "expense_group"  # "group" is a reserved word in SQL
    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow)

class GroupMember(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("group_id", "user_id"),)
    # autoincrement id doubles as membership order
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: str = Field(foreign_key="expense_group.id", index=True)
    user_id: str = Field(foreign_key="user.id", index=True)

# ============== Expenses ==============
class ExpenseBase(SQLModel):
    description: str
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    paid_by: str = Field(foreign_key="user.id")
    split_type: SplitPolicy

class Expense(ExpenseBase, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    group_id: str = Field(foreign_key="expense_group.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)

# ============== Splits (who owes what for an expense) ==============
class ExpenseSplitBase(SQLModel):
    user_id: str = Field(foreign_key="user.id")
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    percentage: Optional[Decimal] = Field(default=None, max_digits=6, decimal_places=3)  # only for percentage splits

class ExpenseSplit(ExpenseSplitBase, table=True):
    __tablename__ = "expense_split"
    id: str = Field(default_factory=new_id, primary_key=True)
    expense_id: str = Field(foreign_key="expense.id", index=True)
