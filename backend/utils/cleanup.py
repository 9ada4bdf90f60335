"""Destructive account and friend operations.

Each entry point flushes only; the router wraps it in a single transaction.
After any of them, every remaining expense keeps its participant ids equal
to its split members, and visibility rows are rebuilt from those ids.
"""

import logging
from fastapi import HTTPException
from sqlalchemy.orm import Session

import models
from utils.cascade import (
    PRUNE_DELETED,
    delete_expense,
    delete_group_with_expenses,
    prune_members_from_expense,
    prune_members_from_group,
)
from utils.friends import find_friend, get_friend_identity_ids, strip_link
from utils.identity import (
    get_account_identity_ids,
    get_direct_aliases,
    normalize_member_id,
    normalize_member_ids,
)
from utils.validation import forbidden, get_group_member_ids, is_group_owner

logger = logging.getLogger(__name__)


def get_owned_groups(db: Session, account: models.Account) -> list[models.Group]:
    return db.query(models.Group).filter(
        (models.Group.owner_account_id == account.id) | (models.Group.owner_email == account.email)
    ).all()


def get_owned_expenses(db: Session, account: models.Account) -> list[models.Expense]:
    return db.query(models.Expense).filter(
        (models.Expense.owner_account_id == account.id) | (models.Expense.owner_email == account.email)
    ).all()


def get_participating_expenses(db: Session, member_ids: set[str]) -> list[models.Expense]:
    """Expenses whose participants include any of the ids, whoever owns them."""
    # Participant ids live in a JSON column, so this filters in Python.
    return [
        expense for expense in db.query(models.Expense).all()
        if set(expense.participant_member_ids or []) & member_ids
        or normalize_member_id(expense.paid_by_member_id or "") in member_ids
    ]


def get_member_groups(db: Session, member_ids: set[str]) -> list[models.Group]:
    matches = []
    for group in db.query(models.Group).all():
        if set(get_group_member_ids(db, group.id)) & member_ids:
            matches.append(group)
    return matches


def _direct_groups_between(
    db: Session,
    owner: models.Account,
    own_ids: set[str],
    other_ids: set[str]
) -> list[models.Group]:
    groups = []
    for group in get_owned_groups(db, owner):
        if not group.is_direct:
            continue
        member_ids = set(get_group_member_ids(db, group.id))
        if member_ids & own_ids and member_ids & other_ids:
            groups.append(group)
    return groups


def _get_friend_or_404(db: Session, account_email: str, friend_member_id: str) -> models.AccountFriend:
    friend = find_friend(db, account_email, friend_member_id)
    if friend is None:
        raise HTTPException(status_code=404, detail="Friend not found")
    return friend


def delete_linked_friend(db: Session, caller: models.Account, friend_member_id: str) -> dict:
    """Remove a linked friend and every direct group the caller owns with them.

    Shared groups are left alone.
    """
    friend = _get_friend_or_404(db, caller.email, friend_member_id)
    if not friend.has_linked_account:
        raise HTTPException(status_code=400, detail="Friend has no linked account")

    friend_ids = get_friend_identity_ids(db, caller.email, friend)
    own_ids = get_account_identity_ids(db, caller)
    friend_ids -= own_ids

    expenses_deleted = 0
    groups = _direct_groups_between(db, caller, own_ids, friend_ids)
    for group in groups:
        expenses_deleted += delete_group_with_expenses(db, group)

    db.delete(friend)
    db.flush()
    logger.info(
        f"Linked friend {friend.member_id} removed for {caller.id}: "
        f"{len(groups)} direct groups, {expenses_deleted} expenses deleted"
    )
    return {"success": True, "expensesDeleted": expenses_deleted}


def _remove_caller_aliases(db: Session, caller: models.Account, member_ids: set[str]) -> int:
    """Delete the caller's own alias rows touching these ids; other scopes are untouched."""
    rows = db.query(models.MemberAlias).filter(
        models.MemberAlias.account_email == caller.email
    ).all()
    removed = 0
    for row in rows:
        if row.alias_member_id in member_ids or row.canonical_member_id in member_ids:
            db.delete(row)
            removed += 1

    legacy = normalize_member_ids(caller.alias_member_ids or [])
    kept = [member_id for member_id in legacy if member_id not in member_ids]
    if kept != legacy:
        caller.alias_member_ids = kept
    db.flush()
    return removed


def delete_unlinked_friend(db: Session, caller: models.Account, friend_member_id: str) -> dict:
    """Remove an unlinked friend and prune them from the caller's ledger."""
    friend = _get_friend_or_404(db, caller.email, friend_member_id)
    if friend.has_linked_account:
        raise HTTPException(status_code=400, detail="Friend has a linked account")

    own_ids = get_account_identity_ids(db, caller)
    # The friend id may double as one of the caller's legacy ids; its aliases still go.
    raw_ids = {normalize_member_id(friend.member_id)}
    raw_ids.update(get_direct_aliases(db, caller.email, friend.member_id))
    friend_ids = get_friend_identity_ids(db, caller.email, friend) - own_ids

    # Direct groups go first so their expenses are not pruned and then deleted.
    expenses_deleted = 0
    for group in _direct_groups_between(db, caller, own_ids, friend_ids):
        expenses_deleted += delete_group_with_expenses(db, group)

    for expense in get_owned_expenses(db, caller):
        if prune_members_from_expense(db, expense, friend_ids) == PRUNE_DELETED:
            expenses_deleted += 1

    for group in get_owned_groups(db, caller):
        prune_members_from_group(db, group, friend_ids)

    aliases_removed = _remove_caller_aliases(db, caller, raw_ids | friend_ids)

    db.delete(friend)
    db.flush()
    logger.info(
        f"Unlinked friend {friend.member_id} removed for {caller.id}: "
        f"{expenses_deleted} expenses deleted, {aliases_removed} aliases removed"
    )
    return {"success": True}


def _strip_links_to(db: Session, account: models.Account) -> int:
    rows = db.query(models.AccountFriend).filter(
        (models.AccountFriend.linked_account_id == account.id) |
        (models.AccountFriend.linked_account_email == account.email)
    ).all()
    for row in rows:
        strip_link(row)
    db.flush()
    return len(rows)


def self_delete_account(db: Session, caller: models.Account) -> dict:
    """Delete everything the caller owns, then the account itself.

    Groups and expenses owned by others keep existing with the caller pruned.
    """
    own_ids = get_account_identity_ids(db, caller)

    groups_deleted = 0
    expenses_deleted = 0
    for group in get_owned_groups(db, caller):
        expenses_deleted += delete_group_with_expenses(db, group)
        groups_deleted += 1

    # Owned expenses that live in someone else's group
    for expense in get_owned_expenses(db, caller):
        delete_expense(db, expense)
        expenses_deleted += 1

    for expense in get_participating_expenses(db, own_ids):
        prune_members_from_expense(db, expense, own_ids)

    for group in get_member_groups(db, own_ids):
        prune_members_from_group(db, group, own_ids)

    db.query(models.AccountFriend).filter(
        models.AccountFriend.account_email == caller.email
    ).delete()
    db.query(models.MemberAlias).filter(
        models.MemberAlias.account_email == caller.email
    ).delete()
    db.query(models.UserExpense).filter(
        models.UserExpense.user_id == caller.id
    ).delete()
    links_stripped = _strip_links_to(db, caller)

    db.delete(caller)
    db.flush()
    logger.info(
        f"Account {caller.id} deleted: {groups_deleted} groups, {expenses_deleted} expenses, "
        f"{links_stripped} friend links stripped"
    )
    return {
        "success": True,
        "ownedGroupsDeleted": groups_deleted,
        "ownedExpensesDeleted": expenses_deleted,
    }


def clear_groups_for_user(db: Session, caller: models.Account) -> dict:
    """Delete the caller's own groups and leave every other group they belong to."""
    own_ids = get_account_identity_ids(db, caller)

    owned = get_owned_groups(db, caller)
    for group in owned:
        delete_group_with_expenses(db, group)

    left = 0
    for group in get_member_groups(db, own_ids):
        if prune_members_from_group(db, group, own_ids):
            left += 1

    logger.info(f"Cleared groups for {caller.id}: {len(owned)} deleted, {left} left")
    return {"success": True}


def clear_expenses_for_user(db: Session, caller: models.Account) -> dict:
    """Delete the caller's own expenses and drop out of everyone else's.

    Other owners' expenses are never deleted here. When the caller cannot be
    pruned without leaving an invalid expense, only their visibility row goes.
    """
    own_ids = get_account_identity_ids(db, caller)

    owned = get_owned_expenses(db, caller)
    for expense in owned:
        delete_expense(db, expense)

    pruned = 0
    for expense in get_participating_expenses(db, own_ids):
        prune_members_from_expense(
            db, expense, own_ids,
            drop_if_underpopulated=False,
            hidden_user_id=caller.id
        )
        pruned += 1

    db.query(models.UserExpense).filter(
        models.UserExpense.user_id == caller.id
    ).delete()
    db.flush()

    logger.info(f"Cleared expenses for {caller.id}: {len(owned)} deleted, {pruned} pruned")
    return {"success": True}


def leave_group(db: Session, caller: models.Account, group: models.Group) -> None:
    """Remove the caller from a group they do not own. The group itself stays."""
    if is_group_owner(group, caller):
        raise HTTPException(status_code=400, detail="The group owner cannot leave the group")

    own_ids = get_account_identity_ids(db, caller)
    if not prune_members_from_group(db, group, own_ids):
        raise forbidden("you are not a member of this group")
    logger.info(f"Account {caller.id} left group {group.id}")
