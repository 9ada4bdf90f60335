"""Groups router: create, read, delete and leave groups."""

import uuid
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db, atomic
from dependencies import get_current_user
from utils.cascade import delete_group_with_expenses
from utils.cleanup import clear_groups_for_user, get_member_groups, get_owned_groups, leave_group as leave_group_for
from utils.display import build_group
from utils.identity import get_account_identity_ids
from utils.ledger import resolve_group_members, upsert_owned_group
from utils.validation import (
    can_view_group,
    forbidden,
    get_group,
    is_group_owner,
    validate_direct_members,
    verify_group_membership,
    verify_group_ownership,
)


router = APIRouter(prefix="/groups", tags=["groups"])


@router.post("", response_model=schemas.Group)
def create_group(
    group: schemas.GroupCreate,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """Create a group, or overwrite one the caller already owns."""
    group_id = group.id or str(uuid.uuid4())

    with atomic(db):
        existing = get_group(db, group_id)
        if existing is not None and not is_group_owner(existing, current_user):
            raise forbidden("only the group owner can modify this group")

        members = resolve_group_members(db, current_user.email, group.members)
        is_direct = group.is_direct if group.is_direct is not None else bool(existing and existing.is_direct)
        if is_direct:
            validate_direct_members(members, get_account_identity_ids(db, current_user))

        db_group = upsert_owned_group(db, current_user, group_id, group.name, members, group.is_direct, existing)

    return build_group(db, db_group)


@router.get("", response_model=list[schemas.Group])
def read_groups(
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    # Owned groups plus groups listing any of the caller's member ids
    groups = {group.id: group for group in get_owned_groups(db, current_user)}
    for group in get_member_groups(db, get_account_identity_ids(db, current_user)):
        groups.setdefault(group.id, group)
    ordered = sorted(groups.values(), key=lambda g: (g.created_at, g.id))
    return [build_group(db, group) for group in ordered]


@router.get("/{group_id}", response_model=schemas.Group)
def read_group(
    group_id: str,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    group = get_group(db, group_id)
    # Groups the caller cannot see are reported as missing
    if group is None or not can_view_group(db, group, current_user):
        raise HTTPException(status_code=404, detail="Group not found")
    return build_group(db, group)


@router.delete("/{group_id}")
def delete_group(
    group_id: str,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    with atomic(db):
        group = verify_group_ownership(db, group_id, current_user)
        expenses_deleted = delete_group_with_expenses(db, group)

    return {"success": True, "expensesDeleted": expenses_deleted}


@router.post("/{group_id}/leave")
def leave_group(
    group_id: str,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    with atomic(db):
        group = verify_group_membership(db, group_id, current_user)
        leave_group_for(db, current_user, group)

    return {"success": True}


@router.post("/clear-all")
def clear_all_groups(
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    with atomic(db):
        result = clear_groups_for_user(db, current_user)
    return result
