"""Owner-side writes for groups and expenses, shared by the routers and the importer."""

from datetime import datetime
from sqlalchemy.orm import Session

import models
import schemas
from utils.cascade import recompute_is_settled
from utils.identity import normalize_member_id, normalize_member_ids, resolve_member_id
from utils.visibility import refresh_expense_visibility


def resolve_group_members(
    db: Session,
    account_email: str,
    members: list[schemas.GroupMemberIn]
) -> list[dict]:
    """Normalize and resolve member ids, dropping duplicates that collapse together."""
    resolved = []
    seen = set()
    for member in members:
        member_id = resolve_member_id(db, account_email, member.id)
        if member_id in seen:
            continue
        seen.add(member_id)
        resolved.append({
            "id": member_id,
            "name": member.name,
            "is_current_user": member.is_current_user,
        })
    return resolved


def replace_group_members(db: Session, group: models.Group, members: list[dict]) -> None:
    db.query(models.GroupMember).filter(
        models.GroupMember.group_id == group.id
    ).delete()
    for position, member in enumerate(members):
        db.add(models.GroupMember(
            group_id=group.id,
            member_id=member["id"],
            name=member["name"],
            is_current_user=member.get("is_current_user"),
            position=position
        ))
    db.flush()


def upsert_owned_group(
    db: Session,
    owner: models.Account,
    group_id: str,
    name: str,
    members: list[dict],
    is_direct: bool | None,
    existing: models.Group | None
) -> models.Group:
    """Create a group for the owner or overwrite one they already own."""
    if existing is None:
        group = models.Group(
            id=group_id,
            name=name,
            is_direct=bool(is_direct),
            owner_account_id=owner.id,
            owner_email=owner.email
        )
        db.add(group)
        db.flush()
    else:
        group = existing
        group.name = name
        if is_direct is not None:
            group.is_direct = is_direct
        group.updated_at = datetime.utcnow()

    replace_group_members(db, group, members)
    return group


def resolve_expense_payload(db: Session, account_email: str, expense: schemas.ExpenseCreate) -> dict:
    """Normalize and resolve every member id on an incoming expense.

    Client-supplied participant emails and linked-account claims are dropped here.
    """
    def resolve(member_id: str) -> str:
        return resolve_member_id(db, account_email, member_id)

    splits = [
        {
            "id": split.id,
            "member_id": resolve(split.member_id),
            "amount": split.amount,
            "is_settled": split.is_settled,
        }
        for split in expense.splits
    ]
    participants = []
    seen = set()
    for participant in expense.participants:
        member_id = resolve(participant.member_id)
        if member_id in seen:
            continue
        seen.add(member_id)
        participants.append({"member_id": member_id, "name": participant.name})

    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "description": expense.description,
        "date": expense.date,
        "total_amount": expense.total_amount,
        "paid_by_member_id": resolve(expense.paid_by_member_id),
        "involved_member_ids": normalize_member_ids(resolve(m) for m in normalize_member_ids(expense.involved_member_ids)),
        "participant_member_ids": normalize_member_ids(resolve(m) for m in normalize_member_ids(expense.participant_member_ids)),
        "participants": participants,
        "splits": splits,
    }


def write_owned_expense(
    db: Session,
    owner: models.Account,
    resolved: dict,
    existing: models.Expense | None
) -> models.Expense:
    """Create or fully overwrite an expense owned by ``owner``.

    Splits are replaced, ``is_settled`` is recomputed from them and the
    participant emails and visibility rows are rebuilt.
    """
    if existing is None:
        expense = models.Expense(
            id=resolved["id"],
            owner_account_id=owner.id,
            owner_email=owner.email
        )
        db.add(expense)
    else:
        expense = existing
        expense.updated_at = datetime.utcnow()

    expense.group_id = resolved["group_id"]
    expense.description = resolved["description"]
    expense.date = resolved["date"]
    expense.total_amount = resolved["total_amount"]
    expense.paid_by_member_id = resolved["paid_by_member_id"]
    expense.involved_member_ids = resolved["involved_member_ids"]
    expense.participant_member_ids = resolved["participant_member_ids"]
    expense.participants = resolved["participants"]
    db.flush()

    db.query(models.ExpenseSplit).filter(
        models.ExpenseSplit.expense_id == expense.id
    ).delete()
    for position, split in enumerate(resolved["splits"]):
        db.add(models.ExpenseSplit(
            expense_id=expense.id,
            id=split["id"],
            member_id=normalize_member_id(split["member_id"]),
            amount=split["amount"],
            is_settled=split["is_settled"],
            position=position
        ))
    db.flush()

    recompute_is_settled(db, expense)
    refresh_expense_visibility(db, expense)
    db.flush()
    return expense
