"""Expenses router: create, read, settle and delete expenses."""

from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db, atomic
from dependencies import get_current_user
from utils.cascade import delete_expense as delete_expense_cascade
from utils.cleanup import clear_expenses_for_user, get_owned_expenses
from utils.display import build_expense
from utils.ledger import resolve_expense_payload, write_owned_expense
from utils.rate_limiter import expense_write_rate_limiter
from utils.settlement import (
    apply_participant_update,
    get_caller_ids_for_expense,
    settle_split,
    structural_snapshot,
)
from utils.validation import (
    forbidden,
    get_expense,
    get_expense_or_404,
    get_group_or_404,
    is_expense_owner,
    is_group_owner,
    validate_expense_participants,
    verify_direct_group_participants,
    verify_expense_ownership,
    verify_group_membership,
)


router = APIRouter(tags=["expenses"])


def _write_as_owner(
    db: Session,
    expense: schemas.ExpenseCreate,
    current_user: models.Account,
    existing: models.Expense | None
) -> models.Expense:
    group = get_group_or_404(db, expense.group_id)
    if not is_group_owner(group, current_user):
        raise forbidden("only the group owner can add expenses to this group")

    resolved = resolve_expense_payload(db, current_user.email, expense)
    validate_expense_participants(
        resolved["paid_by_member_id"],
        resolved["participant_member_ids"],
        [split["member_id"] for split in resolved["splits"]]
    )
    if group.is_direct:
        verify_direct_group_participants(
            db, group, current_user,
            resolved["participant_member_ids"] + resolved["involved_member_ids"]
        )
    return write_owned_expense(db, current_user, resolved, existing)


def _write_as_participant(
    db: Session,
    expense: schemas.ExpenseCreate,
    current_user: models.Account,
    existing: models.Expense
) -> models.Expense:
    # Ids are compared in the owner's namespace, where the stored expense lives
    resolved = resolve_expense_payload(db, existing.owner_email, expense)
    incoming = structural_snapshot(
        description=resolved["description"],
        date=resolved["date"],
        total_amount=resolved["total_amount"],
        paid_by_member_id=resolved["paid_by_member_id"],
        group_id=resolved["group_id"],
        participant_member_ids=resolved["participant_member_ids"],
        involved_member_ids=resolved["involved_member_ids"],
        splits=[(split["id"], split["member_id"], split["amount"]) for split in resolved["splits"]]
    )
    settlements = {split["id"]: split["is_settled"] for split in resolved["splits"]}
    identity_ids = get_caller_ids_for_expense(db, existing, current_user)
    return apply_participant_update(db, existing, incoming, settlements, identity_ids)


@router.post("/expenses", response_model=schemas.Expense, dependencies=[Depends(expense_write_rate_limiter)])
def create_expense(
    expense: schemas.ExpenseCreate,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """Create or update an expense by its client id.

    The owner may change anything. Another participant may only flip the
    settlement state of their own split; any other difference is Forbidden.
    Client-supplied ``is_settled``, ``participant_emails`` and ``owner_email``
    are ignored.
    """
    with atomic(db):
        existing = get_expense(db, expense.id)
        if existing is None or is_expense_owner(existing, current_user):
            db_expense = _write_as_owner(db, expense, current_user, existing)
        else:
            db_expense = _write_as_participant(db, expense, current_user, existing)

    return build_expense(db, db_expense)


@router.get("/expenses", response_model=list[schemas.Expense])
def read_expenses(
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    visible = db.query(models.Expense).join(
        models.UserExpense,
        models.UserExpense.expense_id == models.Expense.id
    ).filter(models.UserExpense.user_id == current_user.id).all()

    expenses = {expense.id: expense for expense in get_owned_expenses(db, current_user)}
    for expense in visible:
        expenses.setdefault(expense.id, expense)

    ordered = sorted(expenses.values(), key=lambda e: (e.date or 0, e.id), reverse=True)
    return [build_expense(db, expense) for expense in ordered]


@router.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: str,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    with atomic(db):
        expense = verify_expense_ownership(db, expense_id, current_user)
        delete_expense_cascade(db, expense)

    return {"success": True}


@router.post("/expenses/clear-all")
def clear_all_expenses(
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    with atomic(db):
        result = clear_expenses_for_user(db, current_user)
    return result


@router.post("/expenses/{expense_id}/settle", response_model=schemas.Expense)
def settle_expense_split(
    expense_id: str,
    request: schemas.SettleSplitRequest,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    with atomic(db):
        expense = get_expense_or_404(db, expense_id)
        identity_ids = get_caller_ids_for_expense(db, expense, current_user)
        settle_split(db, expense, request.member_id, request.settled, current_user, identity_ids)

    return build_expense(db, expense)


@router.get("/groups/{group_id}/expenses", response_model=list[schemas.Expense])
def get_group_expenses(
    group_id: str,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    verify_group_membership(db, group_id, current_user)

    expenses = db.query(models.Expense).filter(
        models.Expense.group_id == group_id
    ).order_by(models.Expense.date.desc(), models.Expense.id.desc()).all()
    return [build_expense(db, expense) for expense in expenses]
