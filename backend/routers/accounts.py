"""Accounts router: the caller's own account and canonical member id."""

import logging
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db, atomic
from dependencies import get_current_user
from utils.identity import find_account_by_member_id, normalize_member_id
from utils.validation import forbidden

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("/me", response_model=schemas.Account)
def read_account(current_user: Annotated[models.Account, Depends(get_current_user)]):
    return current_user


@router.put("/me/member-id", response_model=schemas.Account)
def set_member_id(
    update: schemas.MemberIdUpdate,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """Set the caller's canonical member id. It can be written only once."""
    member_id = normalize_member_id(update.member_id)

    with atomic(db):
        if current_user.member_id:
            if normalize_member_id(current_user.member_id) != member_id:
                logger.warning(f"Rejected member id reassignment for {current_user.id}")
                raise forbidden("member_id cannot be changed once set")
            return current_user

        taken = find_account_by_member_id(db, member_id)
        if taken is not None and taken.id != current_user.id:
            raise HTTPException(status_code=409, detail="Member id already belongs to another account")

        current_user.member_id = member_id
        logger.info(f"Member id set for account {current_user.id}")

    db.refresh(current_user)
    return current_user
