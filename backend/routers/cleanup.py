"""Cleanup router: removing friends and deleting the caller's account."""

from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db, atomic
from dependencies import get_current_user
from utils.cleanup import delete_linked_friend, delete_unlinked_friend, self_delete_account
from utils.validation import is_account_scope_allowed, soft_denial


router = APIRouter(prefix="/cleanup", tags=["cleanup"])


@router.post("/linked-friend")
def remove_linked_friend(
    request: schemas.FriendCleanupRequest,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    if not is_account_scope_allowed(current_user, request.account_email):
        return soft_denial()

    with atomic(db):
        result = delete_linked_friend(db, current_user, request.friend_member_id)
    return result


@router.post("/unlinked-friend")
def remove_unlinked_friend(
    request: schemas.FriendCleanupRequest,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    if not is_account_scope_allowed(current_user, request.account_email):
        return soft_denial()

    with atomic(db):
        result = delete_unlinked_friend(db, current_user, request.friend_member_id)
    return result


@router.post("/self-delete")
def delete_own_account(
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    with atomic(db):
        result = self_delete_account(db, current_user)
    return result
