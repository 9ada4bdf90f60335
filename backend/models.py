from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, Float, DateTime, JSON, ForeignKey, UniqueConstraint
from database import Base


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String, primary_key=True, index=True)  # Auth provider subject
    email = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String)
    member_id = Column(String, index=True, nullable=True)  # Write-once canonical identity
    alias_member_ids = Column(JSON, default=list)  # Legacy ids that resolve to this account
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AccountFriend(Base):
    __tablename__ = "account_friends"
    __table_args__ = (
        UniqueConstraint("account_email", "member_id", name="uq_account_friend_member"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_email = Column(String, index=True, nullable=False)
    member_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    nickname = Column(String, nullable=True)
    profile_avatar_color = Column(String, nullable=True)
    has_linked_account = Column(Boolean, default=False)
    linked_account_id = Column(String, index=True, nullable=True)
    linked_account_email = Column(String, index=True, nullable=True)
    linked_member_id = Column(String, nullable=True)
    status = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class MemberAlias(Base):
    __tablename__ = "member_aliases"
    __table_args__ = (
        UniqueConstraint("account_email", "alias_member_id", name="uq_member_alias_scope"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_email = Column(String, index=True, nullable=False)
    alias_member_id = Column(String, index=True, nullable=False)
    canonical_member_id = Column(String, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class Group(Base):
    __tablename__ = "groups"

    id = Column(String, primary_key=True, index=True)  # Client UUID
    name = Column(String)
    is_direct = Column(Boolean, default=False)
    owner_account_id = Column(String, index=True)
    owner_email = Column(String, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class GroupMember(Base):
    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(String, ForeignKey("groups.id"), index=True)
    member_id = Column(String, index=True)
    name = Column(String)
    is_current_user = Column(Boolean, nullable=True)
    position = Column(Integer, default=0)


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(String, primary_key=True, index=True)  # Client UUID
    group_id = Column(String, ForeignKey("groups.id"), index=True)
    description = Column(String)
    date = Column(Float)  # Client timestamp (ms since epoch)
    total_amount = Column(Float)
    paid_by_member_id = Column(String)
    involved_member_ids = Column(JSON, default=list)
    participant_member_ids = Column(JSON, default=list)
    participants = Column(JSON, default=list)  # [{member_id, name}]
    participant_emails = Column(JSON, default=list)  # Derived server-side only
    is_settled = Column(Boolean, default=False)  # AND over all splits
    owner_account_id = Column(String, index=True)
    owner_email = Column(String, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ExpenseSplit(Base):
    __tablename__ = "expense_splits"

    expense_id = Column(String, ForeignKey("expenses.id"), primary_key=True)
    id = Column(String, primary_key=True)  # Client split id, unique within an expense
    member_id = Column(String, index=True)
    amount = Column(Float)
    is_settled = Column(Boolean, default=False)
    position = Column(Integer, default=0)


class UserExpense(Base):
    __tablename__ = "user_expenses"
    __table_args__ = (
        UniqueConstraint("user_id", "expense_id", name="uq_user_expense"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True)  # Account.id
    expense_id = Column(String, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
