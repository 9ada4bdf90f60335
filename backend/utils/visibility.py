"""Visibility index maintenance.

``user_expenses`` holds one row per (account, expense) pair for every account
that currently resolves to a participant of the expense. ``participant_emails``
on the expense is the matching cached view. Both are always derived from the
stored participant ids, never from client input.
"""

from datetime import datetime
from typing import Iterable
from sqlalchemy.orm import Session

import models
from utils.friends import get_linked_account
from utils.identity import (
    find_accounts_by_member_ids,
    get_direct_aliases,
    normalize_member_ids,
    resolve_member_id,
)


def expand_member_ids(db: Session, owner_email: str, member_ids: Iterable[str]) -> set[str]:
    """Participant ids plus their canonical ids and aliases in the owner's scope."""
    expanded = set()
    for member_id in normalize_member_ids(member_ids):
        canonical = resolve_member_id(db, owner_email, member_id)
        expanded.update({member_id, canonical})
        expanded.update(get_direct_aliases(db, owner_email, canonical))
    return expanded


def get_participant_accounts(
    db: Session,
    owner_email: str,
    participant_member_ids: Iterable[str]
) -> list[models.Account]:
    """Accounts that currently resolve to at least one participant id.

    An account participates when one of its own member ids matches, or when the
    owner's friend row for a participant id is linked to it.
    """
    member_ids = expand_member_ids(db, owner_email, participant_member_ids)
    if not member_ids:
        return []

    accounts = {account.id: account for account in find_accounts_by_member_ids(db, member_ids)}

    linked_friends = db.query(models.AccountFriend).filter(
        models.AccountFriend.account_email == owner_email,
        models.AccountFriend.member_id.in_(member_ids),
        models.AccountFriend.has_linked_account == True
    ).all()
    for friend in linked_friends:
        linked = get_linked_account(db, friend)
        if linked is not None:
            accounts.setdefault(linked.id, linked)

    return sorted(accounts.values(), key=lambda account: account.email)


def reconcile_user_expenses(db: Session, expense_id: str, user_ids: Iterable[str]) -> None:
    """Make the visibility rows for an expense match exactly ``user_ids``."""
    target = set(user_ids)
    existing_rows = db.query(models.UserExpense).filter(
        models.UserExpense.expense_id == expense_id
    ).all()
    existing = {row.user_id for row in existing_rows}

    for row in existing_rows:
        if row.user_id not in target:
            db.delete(row)

    now = datetime.utcnow()
    for user_id in sorted(target - existing):
        db.add(models.UserExpense(user_id=user_id, expense_id=expense_id, updated_at=now))

    for row in existing_rows:
        if row.user_id in target:
            row.updated_at = now
    db.flush()


def refresh_expense_visibility(db: Session, expense: models.Expense) -> list[models.Account]:
    """Recompute ``participant_emails`` and the visibility rows of one expense."""
    accounts = get_participant_accounts(db, expense.owner_email, expense.participant_member_ids or [])
    expense.participant_emails = [account.email for account in accounts]
    reconcile_user_expenses(db, expense.id, [account.id for account in accounts])
    return accounts


def remove_expense_visibility(db: Session, expense_id: str) -> None:
    reconcile_user_expenses(db, expense_id, [])
