from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Any, Optional


def _require_id(value: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError("id must not be empty")
    return str(value).strip()


class Account(BaseModel):
    id: str
    email: str
    display_name: Optional[str] = None
    member_id: Optional[str] = None
    alias_member_ids: list[str] = []

    class Config:
        from_attributes = True


class MemberIdUpdate(BaseModel):
    member_id: str

    @field_validator('member_id')
    @classmethod
    def validate_member_id(cls, v):
        return _require_id(v)


class TokenData(BaseModel):
    email: Optional[str] = None


# Friends

class FriendCreate(BaseModel):
    member_id: str
    name: str
    nickname: Optional[str] = None
    profile_avatar_color: Optional[str] = None

    @field_validator('member_id')
    @classmethod
    def validate_member_id(cls, v):
        return _require_id(v)


class Friend(BaseModel):
    member_id: str
    name: str
    nickname: Optional[str] = None
    profile_avatar_color: Optional[str] = None
    has_linked_account: bool = False
    linked_account_id: Optional[str] = None
    linked_account_email: Optional[str] = None
    linked_member_id: Optional[str] = None
    status: Optional[str] = None

    class Config:
        from_attributes = True


# Aliases

class MergeMemberIdsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_id: str = Field(alias="sourceId")
    target_canonical_id: Optional[str] = Field(default=None, alias="targetCanonicalId")
    target_id: Optional[str] = Field(default=None, alias="targetId")  # Older clients
    account_email: Optional[str] = Field(default=None, alias="accountEmail")  # Audit only

    @field_validator('source_id')
    @classmethod
    def validate_source_id(cls, v):
        return _require_id(v)


class MergeFriendsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    friend_id_1: str = Field(alias="friendId1")
    friend_id_2: str = Field(alias="friendId2")
    account_email: Optional[str] = Field(default=None, alias="accountEmail")  # Audit only


class MemberAlias(BaseModel):
    alias_member_id: str
    canonical_member_id: str
    account_email: str

    class Config:
        from_attributes = True


class MergeResult(BaseModel):
    success: bool
    already_existed: bool
    message: str
    alias: Optional[MemberAlias] = None


# Groups

class GroupMemberIn(BaseModel):
    id: str
    name: str
    is_current_user: Optional[bool] = None

    @field_validator('id')
    @classmethod
    def validate_id(cls, v):
        return _require_id(v)


class GroupCreate(BaseModel):
    id: Optional[str] = None
    name: str
    members: list[GroupMemberIn]
    is_direct: Optional[bool] = None


class GroupMember(BaseModel):
    id: str
    name: str
    is_current_user: Optional[bool] = None


class Group(BaseModel):
    id: str
    name: str
    is_direct: bool = False
    members: list[GroupMember]
    owner_account_id: str
    owner_email: str


# Expenses

class SplitIn(BaseModel):
    id: str
    member_id: str
    amount: float
    is_settled: bool = False

    @field_validator('id', 'member_id')
    @classmethod
    def validate_ids(cls, v):
        return _require_id(v)


class ParticipantIn(BaseModel):
    member_id: str
    name: str
    # Client claims about linked accounts are accepted for compatibility and discarded.
    linked_account_id: Optional[str] = None
    linked_account_email: Optional[str] = None


class ExpenseCreate(BaseModel):
    id: str
    group_id: str
    description: str
    date: float
    total_amount: float
    paid_by_member_id: str
    involved_member_ids: list[str] = []
    splits: list[SplitIn]
    is_settled: bool = False  # Ignored, recomputed from splits
    participant_member_ids: list[str]
    participants: list[ParticipantIn] = []
    participant_emails: Optional[list[str]] = None  # Ignored, derived server-side
    owner_email: Optional[str] = None  # Ignored, derived from the session

    @field_validator('id', 'group_id', 'paid_by_member_id')
    @classmethod
    def validate_ids(cls, v):
        return _require_id(v)

    @field_validator('splits')
    @classmethod
    def validate_split_ids(cls, v):
        split_ids = [split.id for split in v]
        if len(split_ids) != len(set(split_ids)):
            raise ValueError("split ids must be unique within an expense")
        return v


class Split(BaseModel):
    id: str
    member_id: str
    amount: float
    is_settled: bool

    class Config:
        from_attributes = True


class Expense(BaseModel):
    id: str
    group_id: str
    description: str
    date: float
    total_amount: float
    paid_by_member_id: str
    involved_member_ids: list[str]
    participant_member_ids: list[str]
    participants: list[dict[str, Any]]
    participant_emails: list[str]
    splits: list[Split]
    is_settled: bool
    owner_account_id: str
    owner_email: str


class SettleSplitRequest(BaseModel):
    member_id: str
    settled: bool


# Import

class ImportFriend(BaseModel):
    member_id: str
    name: str
    nickname: Optional[str] = None
    profile_avatar_color: Optional[str] = None
    has_linked_account: Optional[bool] = None
    linked_account_id: Optional[str] = None
    linked_account_email: Optional[EmailStr] = None
    status: Optional[str] = None

    @field_validator('member_id')
    @classmethod
    def validate_member_id(cls, v):
        return _require_id(v)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name must not be empty")
        return v


class ImportGroup(BaseModel):
    id: str
    name: str
    members: list[GroupMemberIn]
    is_direct: Optional[bool] = None

    @field_validator('id')
    @classmethod
    def validate_id(cls, v):
        return _require_id(v)


class ImportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_email: Optional[str] = Field(default=None, alias="accountEmail")  # Audit only
    # Records are validated one at a time so a bad record never rejects the batch.
    friends: list[dict[str, Any]] = []
    groups: list[dict[str, Any]] = []
    expenses: list[dict[str, Any]] = []


# Cleanup

class FriendCleanupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    friend_member_id: str = Field(alias="friendMemberId")
    account_email: Optional[str] = Field(default=None, alias="accountEmail")  # Audit only
