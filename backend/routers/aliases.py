"""Aliases router: resolve and merge member ids in the caller's scope."""

from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db, atomic
from dependencies import get_current_user
from utils.aliases import create_alias
from utils.friends import find_friend
from utils.identity import get_direct_aliases, normalize_member_id, resolve_member_id


router = APIRouter(prefix="/aliases", tags=["aliases"])


@router.get("/resolve/{member_id}")
def resolve_alias(
    member_id: str,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    return {
        "member_id": normalize_member_id(member_id),
        "canonical_member_id": resolve_member_id(db, current_user.email, member_id),
    }


@router.get("/{canonical_id}", response_model=list[str])
def read_aliases(
    canonical_id: str,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    return get_direct_aliases(db, current_user.email, canonical_id)


@router.post("/merge", response_model=schemas.MergeResult)
def merge_member_ids(
    request: schemas.MergeMemberIdsRequest,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """Point ``sourceId`` at a canonical id.

    ``accountEmail`` is ignored: the alias always lands in the caller's scope.
    """
    target = request.target_canonical_id or request.target_id
    if not target or not target.strip():
        raise HTTPException(status_code=400, detail="targetCanonicalId is required")

    with atomic(db):
        result = create_alias(db, current_user.email, request.source_id, target)
    return result


@router.post("/merge-friends")
def merge_unlinked_friends(
    request: schemas.MergeFriendsRequest,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """Merge two unlinked friends; the second becomes an alias of the first."""
    first_id = normalize_member_id(request.friend_id_1)
    second_id = normalize_member_id(request.friend_id_2)
    if first_id == second_id:
        return {
            "success": True,
            "already_merged": True,
            "message": "Both IDs are the same",
            "canonical_member_id": first_id,
        }

    with atomic(db):
        first = find_friend(db, current_user.email, first_id)
        second = find_friend(db, current_user.email, second_id)
        if first is None or second is None:
            raise HTTPException(status_code=404, detail="Friend not found")
        for friend in (first, second):
            if friend.has_linked_account:
                raise HTTPException(
                    status_code=400,
                    detail=f"Cannot merge: friend \"{friend.name}\" has a linked account"
                )

        result = create_alias(db, current_user.email, second_id, first_id)

    canonical = result.alias.canonical_member_id if result.alias else first_id
    return {
        "success": True,
        "already_merged": result.already_existed,
        "message": "Friends already merged" if result.already_existed else "Friends merged successfully",
        "canonical_member_id": canonical,
    }
