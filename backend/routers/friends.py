"""Friends router: the caller's friend list."""

from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db, atomic
from dependencies import get_current_user
from utils.friends import find_friend, get_friends, repair_stale_links
from utils.identity import get_account_identity_ids, resolve_member_id


router = APIRouter(prefix="/friends", tags=["friends"])


@router.post("", response_model=schemas.Friend)
def add_friend(
    friend_request: schemas.FriendCreate,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    with atomic(db):
        member_id = resolve_member_id(db, current_user.email, friend_request.member_id)
        if member_id in get_account_identity_ids(db, current_user):
            raise HTTPException(status_code=400, detail="Cannot add yourself as friend")

        # Check if already friends
        if find_friend(db, current_user.email, member_id):
            raise HTTPException(status_code=400, detail="Already friends")

        friend = models.AccountFriend(
            account_email=current_user.email,
            member_id=member_id,
            name=friend_request.name,
            nickname=friend_request.nickname,
            profile_avatar_color=friend_request.profile_avatar_color,
            has_linked_account=False,
            status="manual"
        )
        db.add(friend)

    db.refresh(friend)
    return friend


@router.get("", response_model=list[schemas.Friend])
def read_friends(
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """List friends, stripping links to accounts that no longer exist."""
    with atomic(db):
        friends = get_friends(db, current_user.email)
        repair_stale_links(db, friends)
    return friends
