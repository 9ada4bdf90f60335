"""Split settlement rules.

A split is either unsettled or settled. The expense owner may toggle any split
and edit structural fields. Any other participant may toggle only the split
whose member id is one of their own identities, and may not touch structure.
``expense.is_settled`` is always recomputed as the AND over all splits.
"""

import logging
from fastapi import HTTPException
from sqlalchemy.orm import Session

import models
from utils.cascade import get_splits, recompute_is_settled
from utils.identity import (
    get_account_identity_ids,
    get_equivalent_member_ids,
    normalize_member_id,
    resolve_member_id,
)
from utils.validation import forbidden, is_expense_owner

logger = logging.getLogger(__name__)


def structural_snapshot(
    description: str,
    date: float,
    total_amount: float,
    paid_by_member_id: str,
    group_id: str,
    participant_member_ids: list[str],
    involved_member_ids: list[str],
    splits: list[tuple[str, str, float]]
) -> dict:
    """Everything about an expense except settlement state, in comparable form."""
    return {
        "description": description,
        "date": float(date),
        "total_amount": float(total_amount),
        "paid_by_member_id": normalize_member_id(paid_by_member_id),
        "group_id": group_id,
        "participant_member_ids": frozenset(participant_member_ids),
        "involved_member_ids": frozenset(involved_member_ids),
        "splits": frozenset(
            (split_id, normalize_member_id(member_id), float(amount))
            for split_id, member_id, amount in splits
        ),
    }


def snapshot_stored_expense(db: Session, expense: models.Expense) -> dict:
    return structural_snapshot(
        description=expense.description,
        date=expense.date,
        total_amount=expense.total_amount,
        paid_by_member_id=expense.paid_by_member_id,
        group_id=expense.group_id,
        participant_member_ids=expense.participant_member_ids or [],
        involved_member_ids=expense.involved_member_ids or [],
        splits=[(split.id, split.member_id, split.amount) for split in get_splits(db, expense.id)]
    )


def find_split_for_member(db: Session, expense: models.Expense, member_id: str) -> models.ExpenseSplit | None:
    """Find the split held by a member id, accepting aliases from the owner's scope."""
    wanted = {normalize_member_id(member_id), resolve_member_id(db, expense.owner_email, member_id)}
    for split in get_splits(db, expense.id):
        if normalize_member_id(split.member_id) in wanted:
            return split
    return None


def ensure_participant(expense: models.Expense, identity_ids: set[str]) -> None:
    if not set(expense.participant_member_ids or []) & identity_ids:
        raise forbidden("you are not a participant of this expense")


def settle_split(
    db: Session,
    expense: models.Expense,
    member_id: str,
    settled: bool,
    caller: models.Account,
    identity_ids: set[str]
) -> models.Expense:
    """Toggle one split's settlement state for the caller."""
    owner = is_expense_owner(expense, caller)
    if not owner:
        ensure_participant(expense, identity_ids)

    split = find_split_for_member(db, expense, member_id)
    if split is None:
        raise HTTPException(status_code=404, detail="Split not found")

    if not owner and normalize_member_id(split.member_id) not in identity_ids:
        raise forbidden("you can only settle your own split")

    split.is_settled = settled
    db.flush()
    recompute_is_settled(db, expense)
    db.flush()
    logger.info(
        f"Split {split.id} on expense {expense.id} set to "
        f"{'settled' if settled else 'unsettled'} by {caller.id}"
    )
    return expense


def apply_participant_update(
    db: Session,
    expense: models.Expense,
    incoming: dict,
    incoming_settlements: dict[str, bool],
    identity_ids: set[str]
) -> models.Expense:
    """Apply a non-owner's write to an existing expense.

    ``incoming`` is a structural snapshot of the submitted expense and
    ``incoming_settlements`` maps split id to the submitted settlement state.
    Only settlement changes on the caller's own split are accepted; anything
    else is rejected before any change is applied.
    """
    ensure_participant(expense, identity_ids)

    if incoming != snapshot_stored_expense(db, expense):
        raise forbidden("only the expense owner can change the expense details")

    changes = []
    for split in get_splits(db, expense.id):
        requested = incoming_settlements.get(split.id)
        if requested is None or requested == bool(split.is_settled):
            continue
        if normalize_member_id(split.member_id) not in identity_ids:
            raise forbidden("you can only settle your own split")
        changes.append((split, requested))

    for split, requested in changes:
        split.is_settled = requested
    db.flush()
    recompute_is_settled(db, expense)
    db.flush()
    return expense


def get_caller_ids_for_expense(db: Session, expense: models.Expense, caller: models.Account) -> set[str]:
    """The caller's member ids as the expense owner's ledger may record them."""
    ids = get_account_identity_ids(db, caller)
    for member_id in list(ids):
        ids |= get_equivalent_member_ids(db, expense.owner_email, member_id)

    # Friend rows in the owner's list that are linked to the caller
    linked_rows = db.query(models.AccountFriend).filter(
        models.AccountFriend.account_email == expense.owner_email,
        models.AccountFriend.has_linked_account == True,
        (models.AccountFriend.linked_account_id == caller.id) |
        (models.AccountFriend.linked_account_email == caller.email)
    ).all()
    for row in linked_rows:
        ids.add(normalize_member_id(row.member_id))
    return ids
