"""Friend lookups scoped to one account."""

import logging
from sqlalchemy.orm import Session

import models
from utils.identity import (
    find_account_by_member_id,
    get_account_by_email,
    get_account_by_id,
    get_account_identity_ids,
    get_equivalent_member_ids,
    normalize_member_id,
    resolve_member_id,
)

logger = logging.getLogger(__name__)


def get_friends(db: Session, account_email: str) -> list[models.AccountFriend]:
    return db.query(models.AccountFriend).filter(
        models.AccountFriend.account_email == account_email
    ).order_by(models.AccountFriend.id).all()


def find_friend(db: Session, account_email: str, member_id: str) -> models.AccountFriend | None:
    """The caller's friend stored under this id, its canonical id or a sibling alias."""
    member_ids = get_equivalent_member_ids(db, account_email, member_id)
    friends = db.query(models.AccountFriend).filter(
        models.AccountFriend.account_email == account_email,
        models.AccountFriend.member_id.in_(member_ids)
    ).all()
    preferred = [normalize_member_id(member_id), resolve_member_id(db, account_email, member_id)]
    for wanted in preferred:
        for friend in friends:
            if friend.member_id == wanted:
                return friend
    return friends[0] if friends else None


def get_linked_account(db: Session, friend: models.AccountFriend) -> models.Account | None:
    linked = None
    if friend.linked_account_id:
        linked = get_account_by_id(db, friend.linked_account_id)
    if linked is None and friend.linked_account_email:
        linked = get_account_by_email(db, friend.linked_account_email)
    if linked is None and friend.linked_member_id:
        linked = find_account_by_member_id(db, friend.linked_member_id)
    return linked


def get_friend_identity_ids(db: Session, account_email: str, friend: models.AccountFriend) -> set[str]:
    """Every member id the caller may have used for this friend."""
    ids = get_equivalent_member_ids(db, account_email, friend.member_id)
    if friend.linked_member_id:
        ids.update(get_equivalent_member_ids(db, account_email, friend.linked_member_id))
    linked = get_linked_account(db, friend) if friend.has_linked_account else None
    if linked is not None:
        ids.update(get_account_identity_ids(db, linked))
    return ids


def strip_link(friend: models.AccountFriend) -> None:
    friend.has_linked_account = False
    friend.linked_account_id = None
    friend.linked_account_email = None
    friend.linked_member_id = None
    friend.status = "manual"


def repair_stale_links(db: Session, friends: list[models.AccountFriend]) -> int:
    """Strip links whose account no longer exists. Returns how many rows changed."""
    repaired = 0
    for friend in friends:
        if friend.has_linked_account and get_linked_account(db, friend) is None:
            logger.info(f"Stripping stale link on friend {friend.member_id} of {friend.account_email}")
            strip_link(friend)
            repaired += 1
    if repaired:
        db.flush()
    return repaired
