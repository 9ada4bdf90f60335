"""Bulk import of a client ledger.

Records are reconciled against what the caller already has, never merged by
name. Every member id is normalized and resolved through the caller's aliases
before it is matched or stored, and groups/expenses are upserted by their
client id so replaying the same payload is a no-op.
"""

import logging
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

import models
import schemas
from utils.aliases import create_alias
from utils.friends import find_friend
from utils.identity import (
    find_alias,
    get_account_by_email,
    get_account_identity_ids,
    get_equivalent_member_ids,
    normalize_member_id,
    resolve_member_id,
)
from utils.ledger import (
    resolve_expense_payload,
    resolve_group_members,
    upsert_owned_group,
    write_owned_expense,
)
from utils.validation import (
    get_expense,
    get_group,
    is_expense_owner,
    is_group_owner,
    validate_direct_members,
    validate_expense_participants,
)
from utils.visibility import refresh_expense_visibility

logger = logging.getLogger(__name__)

FRIEND_CREATED = "created"
FRIEND_SKIPPED = "skipped"


def describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else first.get("msg", "invalid record")


def refresh_owned_expenses_for_member(db: Session, owner: models.Account, member_id: str) -> int:
    """Rebuild visibility for the owner's expenses that include ``member_id``."""
    member_ids = get_equivalent_member_ids(db, owner.email, member_id)
    expenses = db.query(models.Expense).filter(
        models.Expense.owner_account_id == owner.id
    ).all()
    refreshed = 0
    for expense in expenses:
        if set(expense.participant_member_ids or []) & member_ids:
            refresh_expense_visibility(db, expense)
            refreshed += 1
    return refreshed


def _verified_link(db: Session, record: schemas.ImportFriend) -> models.Account | None:
    """The account a friend record claims to be linked to, if it really exists."""
    if not record.linked_account_email:
        return None
    account = get_account_by_email(db, record.linked_account_email)
    if account is None:
        logger.info(f"Stripping link to unknown account for imported friend {record.member_id}")
    return account


def _ensure_link_alias(db: Session, owner: models.Account, friend_id: str, linked: models.Account) -> None:
    if not linked.member_id:
        return
    linked_member_id = normalize_member_id(linked.member_id)
    if linked_member_id == friend_id or find_alias(db, owner.email, friend_id) is not None:
        return
    if resolve_member_id(db, owner.email, linked_member_id) == friend_id:
        return
    create_alias(db, owner.email, friend_id, linked_member_id)


def import_friend(db: Session, owner: models.Account, record: schemas.ImportFriend, own_ids: set[str]) -> str:
    canonical = resolve_member_id(db, owner.email, record.member_id)
    if canonical in own_ids:
        return FRIEND_SKIPPED

    linked = _verified_link(db, record)
    if linked is not None and linked.id == owner.id:
        return FRIEND_SKIPPED

    friend = find_friend(db, owner.email, canonical)
    if friend is not None:
        # Alias hit or replay: the record refers to an existing friend.
        if linked is not None and not friend.has_linked_account:
            friend.has_linked_account = True
            friend.linked_account_id = linked.id
            friend.linked_account_email = linked.email
            friend.linked_member_id = normalize_member_id(linked.member_id) if linked.member_id else None
            friend.status = record.status or "friend"
            db.flush()
            _ensure_link_alias(db, owner, friend.member_id, linked)
            refresh_owned_expenses_for_member(db, owner, friend.member_id)
        return FRIEND_SKIPPED

    friend = models.AccountFriend(
        account_email=owner.email,
        member_id=canonical,
        name=record.name,
        nickname=record.nickname,
        profile_avatar_color=record.profile_avatar_color,
        has_linked_account=linked is not None,
        linked_account_id=linked.id if linked else None,
        linked_account_email=linked.email if linked else None,
        linked_member_id=normalize_member_id(linked.member_id) if linked and linked.member_id else None,
        status=record.status if linked else "manual"
    )
    db.add(friend)
    db.flush()

    if linked is not None:
        _ensure_link_alias(db, owner, canonical, linked)
        refresh_owned_expenses_for_member(db, owner, canonical)
    return FRIEND_CREATED


def import_group(db: Session, owner: models.Account, record: schemas.ImportGroup) -> models.Group:
    existing = get_group(db, record.id)
    if existing is not None and not is_group_owner(existing, owner):
        raise HTTPException(status_code=403, detail="Forbidden: group belongs to another account")
    members = resolve_group_members(db, owner.email, record.members)
    is_direct = record.is_direct if record.is_direct is not None else bool(existing and existing.is_direct)
    if is_direct:
        validate_direct_members(members, get_account_identity_ids(db, owner))
    return upsert_owned_group(db, owner, record.id, record.name, members, record.is_direct, existing)


def import_expense(db: Session, owner: models.Account, record: schemas.ExpenseCreate) -> models.Expense:
    group = get_group(db, record.group_id)
    if group is None or not is_group_owner(group, owner):
        raise HTTPException(status_code=400, detail=f"Unknown group {record.group_id}")

    existing = get_expense(db, record.id)
    if existing is not None and not is_expense_owner(existing, owner):
        raise HTTPException(status_code=403, detail="Forbidden: expense belongs to another account")

    resolved = resolve_expense_payload(db, owner.email, record)
    validate_expense_participants(
        resolved["paid_by_member_id"],
        resolved["participant_member_ids"],
        [split["member_id"] for split in resolved["splits"]]
    )
    return write_owned_expense(db, owner, resolved, existing)


def import_batch(db: Session, owner: models.Account, request: schemas.ImportRequest) -> dict:
    """Import friends, then groups, then expenses for ``owner``.

    A record that fails validation or authorization is reported in ``errors``
    and skipped; the rest of the batch still applies. Alias integrity errors
    are not caught here and abort the whole batch.
    """
    errors = []
    counts = {"friendsCreated": 0, "friendsSkipped": 0, "groupsUpserted": 0, "expensesUpserted": 0}
    own_ids = get_account_identity_ids(db, owner)

    for index, raw in enumerate(request.friends):
        try:
            record = schemas.ImportFriend.model_validate(raw)
        except ValidationError as exc:
            errors.append(f"friends[{index}]: {describe_validation_error(exc)}")
            continue
        if import_friend(db, owner, record, own_ids) == FRIEND_CREATED:
            counts["friendsCreated"] += 1
        else:
            counts["friendsSkipped"] += 1

    for index, raw in enumerate(request.groups):
        try:
            record = schemas.ImportGroup.model_validate(raw)
            import_group(db, owner, record)
        except ValidationError as exc:
            errors.append(f"groups[{index}]: {describe_validation_error(exc)}")
            continue
        except HTTPException as exc:
            errors.append(f"groups[{index}]: {exc.detail}")
            continue
        counts["groupsUpserted"] += 1

    for index, raw in enumerate(request.expenses):
        try:
            record = schemas.ExpenseCreate.model_validate(raw)
            import_expense(db, owner, record)
        except ValidationError as exc:
            errors.append(f"expenses[{index}]: {describe_validation_error(exc)}")
            continue
        except HTTPException as exc:
            errors.append(f"expenses[{index}]: {exc.detail}")
            continue
        counts["expensesUpserted"] += 1

    logger.info(
        f"Import for {owner.id}: {counts['friendsCreated']} friends created, "
        f"{counts['friendsSkipped']} skipped, {counts['groupsUpserted']} groups, "
        f"{counts['expensesUpserted']} expenses, {len(errors)} errors"
    )
    return {"success": not errors, **counts, "errors": errors}
