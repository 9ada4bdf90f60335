"""Cascading delete and prune helpers shared by groups, expenses and cleanup.

All helpers only flush; the caller owns the surrounding transaction.
"""

import logging
from typing import Iterable
from sqlalchemy.orm import Session

import models
from utils.identity import normalize_member_id
from utils.visibility import refresh_expense_visibility, remove_expense_visibility

logger = logging.getLogger(__name__)

# Outcomes of prune_members_from_expense
PRUNE_UNCHANGED = "unchanged"
PRUNE_UPDATED = "updated"
PRUNE_DELETED = "deleted"
PRUNE_HIDDEN = "hidden"


def get_splits(db: Session, expense_id: str) -> list[models.ExpenseSplit]:
    return db.query(models.ExpenseSplit).filter(
        models.ExpenseSplit.expense_id == expense_id
    ).order_by(models.ExpenseSplit.position).all()


def get_group_members(db: Session, group_id: str) -> list[models.GroupMember]:
    return db.query(models.GroupMember).filter(
        models.GroupMember.group_id == group_id
    ).order_by(models.GroupMember.position).all()


def recompute_is_settled(db: Session, expense: models.Expense) -> bool:
    splits = get_splits(db, expense.id)
    expense.is_settled = bool(splits) and all(split.is_settled for split in splits)
    return expense.is_settled


def delete_expense(db: Session, expense: models.Expense) -> None:
    remove_expense_visibility(db, expense.id)
    db.query(models.ExpenseSplit).filter(
        models.ExpenseSplit.expense_id == expense.id
    ).delete()
    db.delete(expense)
    db.flush()


def delete_group_with_expenses(db: Session, group: models.Group) -> int:
    """Delete a group, its membership rows, its expenses and their visibility rows.

    Returns the number of expenses deleted.
    """
    expenses = db.query(models.Expense).filter(models.Expense.group_id == group.id).all()
    for expense in expenses:
        delete_expense(db, expense)

    db.query(models.GroupMember).filter(
        models.GroupMember.group_id == group.id
    ).delete()
    db.delete(group)
    db.flush()
    logger.info(f"Deleted group {group.id} with {len(expenses)} expenses")
    return len(expenses)


def _filter_ids(values: Iterable[str] | None, removed: set[str]) -> list[str]:
    return [value for value in (values or []) if normalize_member_id(value) not in removed]


def prune_members_from_expense(
    db: Session,
    expense: models.Expense,
    member_ids: Iterable[str],
    drop_if_underpopulated: bool = True,
    hidden_user_id: str | None = None
) -> str:
    """Remove members from an expense's splits and participant views.

    When pruning would leave fewer than two participants or would remove the
    payer, the expense is deleted if ``drop_if_underpopulated`` is set.
    Otherwise the expense data is left untouched and only ``hidden_user_id``
    loses its visibility row.
    """
    removed = {normalize_member_id(member_id) for member_id in member_ids}
    participant_ids = list(expense.participant_member_ids or [])
    if not removed & set(participant_ids) and normalize_member_id(expense.paid_by_member_id or "") not in removed:
        return PRUNE_UNCHANGED

    remaining = _filter_ids(participant_ids, removed)
    payer_removed = normalize_member_id(expense.paid_by_member_id or "") in removed

    if len(remaining) < 2 or payer_removed:
        if drop_if_underpopulated:
            delete_expense(db, expense)
            return PRUNE_DELETED
        if hidden_user_id:
            db.query(models.UserExpense).filter(
                models.UserExpense.expense_id == expense.id,
                models.UserExpense.user_id == hidden_user_id
            ).delete()
            db.flush()
        return PRUNE_HIDDEN

    db.query(models.ExpenseSplit).filter(
        models.ExpenseSplit.expense_id == expense.id,
        models.ExpenseSplit.member_id.in_(removed)
    ).delete()
    db.flush()

    expense.participant_member_ids = remaining
    expense.involved_member_ids = _filter_ids(expense.involved_member_ids, removed)
    expense.participants = [
        participant for participant in (expense.participants or [])
        if normalize_member_id(participant.get("member_id", "")) not in removed
    ]
    recompute_is_settled(db, expense)
    refresh_expense_visibility(db, expense)
    db.flush()
    return PRUNE_UPDATED


def prune_members_from_group(db: Session, group: models.Group, member_ids: Iterable[str]) -> bool:
    """Remove membership rows for the given ids; the group itself is kept."""
    removed = {normalize_member_id(member_id) for member_id in member_ids}
    changed = False
    for member in get_group_members(db, group.id):
        if normalize_member_id(member.member_id) in removed:
            db.delete(member)
            changed = True
    if changed:
        db.flush()
    return changed
