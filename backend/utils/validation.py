"""Ownership and authorization guard.

Two failure styles are used on purpose:

* Entity-level violations on groups/expenses the caller can already see raise
  ``HTTPException(403, "Forbidden: ...")``.
* A client-supplied ``accountEmail`` that does not match the caller is a soft
  denial: the endpoint returns ``{"success": False}`` without touching data, so
  the response says nothing about the claimed account.
"""

import logging
from typing import Optional
from sqlalchemy.orm import Session
from fastapi import HTTPException, status

import models
from utils.friends import find_friend
from utils.identity import normalize_email, normalize_member_id, get_account_identity_ids

logger = logging.getLogger(__name__)


def soft_denial() -> dict:
    return {"success": False}


def is_account_scope_allowed(current_user: models.Account, claimed_email: Optional[str]) -> bool:
    """Check an advisory ``accountEmail`` parameter against the caller's own email.

    The parameter is audit metadata only; a missing value is always allowed.
    """
    if claimed_email is None or not claimed_email.strip():
        return True
    if normalize_email(claimed_email) == normalize_email(current_user.email):
        return True
    logger.warning(f"Account scope mismatch rejected for caller {current_user.id}")
    return False


def forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Forbidden: {detail}")


def is_group_owner(group: models.Group, account: models.Account) -> bool:
    return (
        group.owner_account_id == account.id or
        normalize_email(group.owner_email or "") == normalize_email(account.email)
    )


def is_expense_owner(expense: models.Expense, account: models.Account) -> bool:
    return (
        expense.owner_account_id == account.id or
        normalize_email(expense.owner_email or "") == normalize_email(account.email)
    )


def get_group(db: Session, group_id: str) -> Optional[models.Group]:
    return db.query(models.Group).filter(models.Group.id == group_id).first()


def get_group_or_404(db: Session, group_id: str) -> models.Group:
    """Get a group by client id or raise 404 if not found."""
    group = get_group(db, group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


def get_expense(db: Session, expense_id: str) -> Optional[models.Expense]:
    return db.query(models.Expense).filter(models.Expense.id == expense_id).first()


def get_expense_or_404(db: Session, expense_id: str) -> models.Expense:
    expense = get_expense(db, expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


def get_group_member_ids(db: Session, group_id: str) -> list[str]:
    rows = db.query(models.GroupMember).filter(
        models.GroupMember.group_id == group_id
    ).order_by(models.GroupMember.position).all()
    return [normalize_member_id(row.member_id) for row in rows]


def is_group_member(db: Session, group: models.Group, identity_ids: set[str]) -> bool:
    return any(member_id in identity_ids for member_id in get_group_member_ids(db, group.id))


def can_view_group(db: Session, group: models.Group, account: models.Account) -> bool:
    if is_group_owner(group, account):
        return True
    return is_group_member(db, group, get_account_identity_ids(db, account))


def verify_group_ownership(db: Session, group_id: str, account: models.Account) -> models.Group:
    """Verify that the caller owns a group, raise 403 if not."""
    group = get_group_or_404(db, group_id)
    if not is_group_owner(group, account):
        raise forbidden("only the group owner can perform this action")
    return group


def verify_group_membership(db: Session, group_id: str, account: models.Account) -> models.Group:
    """Verify that the caller owns or is a member of a group, raise 403 if not."""
    group = get_group_or_404(db, group_id)
    if not can_view_group(db, group, account):
        raise forbidden("you are not a member of this group")
    return group


def verify_expense_ownership(db: Session, expense_id: str, account: models.Account) -> models.Expense:
    expense = get_expense_or_404(db, expense_id)
    if not is_expense_owner(expense, account):
        raise forbidden("only the expense owner can perform this action")
    return expense


def validate_expense_participants(
    paid_by_member_id: str,
    participant_member_ids: list[str],
    split_member_ids: list[str]
) -> None:
    """Every expense needs the payer plus at least one other participant.

    Participants are exactly the members holding a split.
    """
    participants = set(participant_member_ids)
    if len(participants) < 2:
        raise HTTPException(status_code=400, detail="An expense needs at least two participants")
    if normalize_member_id(paid_by_member_id) not in participants:
        raise HTTPException(status_code=400, detail="The payer must be a participant of the expense")
    if len(split_member_ids) != len(set(split_member_ids)):
        raise HTTPException(status_code=400, detail="Each participant can only hold one split")
    if set(split_member_ids) != participants:
        raise HTTPException(status_code=400, detail="Participants must match the split members")


def verify_direct_group_participants(
    db: Session,
    group: models.Group,
    account: models.Account,
    member_ids: list[str]
) -> None:
    """Direct-group expenses may only involve the caller, a friend or the group's counterparty."""
    own_ids = get_account_identity_ids(db, account)
    group_member_ids = get_group_member_ids(db, group.id)
    if not own_ids & set(group_member_ids):
        raise forbidden("you are not a member of this direct group")

    counterparts = [member_id for member_id in group_member_ids if member_id not in own_ids]
    for member_id in member_ids:
        if member_id in own_ids:
            continue
        if len(counterparts) == 1 and member_id == counterparts[0]:
            continue
        if find_friend(db, account.email, member_id) is None:
            raise forbidden("direct expenses can only include your friends")


def validate_direct_members(members: list[dict], own_ids: set[str]) -> None:
    """A direct group holds exactly the caller and one other member."""
    member_ids = [member["id"] for member in members]
    if len(member_ids) != 2:
        raise HTTPException(status_code=400, detail="A direct group must have exactly two members")
    if not any(member_id in own_ids for member_id in member_ids):
        raise HTTPException(status_code=400, detail="A direct group must include the owner")
