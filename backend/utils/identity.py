"""Member identity helpers: normalization, alias resolution and account lookups.

Member ids are opaque client strings. They are compared case-insensitively, so
every id is normalized (trimmed, lowercased) before it is stored or looked up.

Aliases are scoped to the account that created them: ``(account_email,
alias_member_id) -> canonical_member_id``. Resolution is a single lookup. An
alias whose canonical id is itself an alias in the same scope is a data error
and raises ``AliasCycleError`` instead of being followed.
"""

import logging
from typing import Iterable, Optional
from sqlalchemy.orm import Session

import models
from utils.errors import AliasIntegrityError, AliasCycleError

logger = logging.getLogger(__name__)


def normalize_member_id(member_id: str) -> str:
    return member_id.strip().lower()


def normalize_member_ids(member_ids: Optional[Iterable[str]]) -> list[str]:
    """Normalize and de-duplicate a list of member ids, keeping first-seen order."""
    if not member_ids:
        return []
    seen = []
    for member_id in member_ids:
        if not isinstance(member_id, str):
            continue
        normalized = normalize_member_id(member_id)
        if normalized and normalized not in seen:
            seen.append(normalized)
    return seen


def normalize_email(email: str) -> str:
    return email.strip().lower()


def find_alias(db: Session, account_email: str, member_id: str) -> Optional[models.MemberAlias]:
    return db.query(models.MemberAlias).filter(
        models.MemberAlias.account_email == normalize_email(account_email),
        models.MemberAlias.alias_member_id == normalize_member_id(member_id)
    ).first()


def resolve_member_id(db: Session, account_email: str, member_id: str) -> str:
    """Resolve a member id to its canonical form within one account's namespace.

    Returns the canonical id when an alias row exists, otherwise the normalized
    input (which is then canonical itself, possibly not yet known).
    """
    normalized = normalize_member_id(member_id)
    alias = find_alias(db, account_email, normalized)
    if alias is None:
        return normalized

    canonical = normalize_member_id(alias.canonical_member_id or "")
    if not canonical:
        logger.error(f"Alias {normalized} in scope {account_email} has no canonical id")
        raise AliasIntegrityError(
            f"Alias {normalized} points to an empty canonical id",
            account_email=account_email,
            member_id=normalized
        )
    if canonical == normalized:
        return canonical

    onward = find_alias(db, account_email, canonical)
    if onward is not None:
        # Walk the chain only to describe it; chained aliases are never followed.
        visited = [normalized, canonical]
        cursor = onward
        while cursor is not None:
            next_id = normalize_member_id(cursor.canonical_member_id or "")
            if next_id in visited:
                logger.error(f"Alias cycle detected in scope {account_email}: {' -> '.join(visited + [next_id])}")
                raise AliasCycleError(
                    f"Alias cycle detected: {' -> '.join(visited + [next_id])}",
                    account_email=account_email,
                    member_id=normalized
                )
            visited.append(next_id)
            cursor = find_alias(db, account_email, next_id)
        logger.error(f"Alias chain detected in scope {account_email}: {' -> '.join(visited)}")
        raise AliasCycleError(
            f"Alias chain detected: {' -> '.join(visited)}",
            account_email=account_email,
            member_id=normalized
        )

    return canonical


def get_direct_aliases(db: Session, account_email: str, canonical_member_id: str) -> list[str]:
    """Alias ids in this account's scope that point directly at the canonical id."""
    rows = db.query(models.MemberAlias).filter(
        models.MemberAlias.account_email == normalize_email(account_email),
        models.MemberAlias.canonical_member_id == normalize_member_id(canonical_member_id)
    ).all()
    return normalize_member_ids(row.alias_member_id for row in rows)


def get_equivalent_member_ids(db: Session, account_email: str, member_id: str) -> set[str]:
    """The input id, its canonical id and every alias of that canonical id in scope."""
    normalized = normalize_member_id(member_id)
    canonical = resolve_member_id(db, account_email, normalized)
    ids = {normalized, canonical}
    ids.update(get_direct_aliases(db, account_email, canonical))
    return ids


def get_account_identity_ids(db: Session, account: models.Account) -> set[str]:
    """Every member id that represents this account inside groups and expenses."""
    own_id = account.member_id or account.id
    ids = get_equivalent_member_ids(db, account.email, own_id)
    ids.update(normalize_member_ids(account.alias_member_ids or []))
    return ids


def get_account_by_email(db: Session, email: str) -> Optional[models.Account]:
    return db.query(models.Account).filter(
        models.Account.email == normalize_email(email)
    ).first()


def get_account_by_id(db: Session, account_id: str) -> Optional[models.Account]:
    return db.query(models.Account).filter(models.Account.id == account_id).first()


def find_accounts_by_member_ids(db: Session, member_ids: Iterable[str]) -> list[models.Account]:
    """Accounts whose canonical member id or legacy alias ids intersect ``member_ids``."""
    wanted = set(normalize_member_ids(member_ids))
    if not wanted:
        return []

    matches = []
    for account in db.query(models.Account).all():
        account_ids = set(normalize_member_ids(account.alias_member_ids or []))
        if account.member_id:
            account_ids.add(normalize_member_id(account.member_id))
        if account_ids & wanted:
            matches.append(account)
    return matches


def find_account_by_member_id(db: Session, member_id: str) -> Optional[models.Account]:
    matches = find_accounts_by_member_ids(db, [member_id])
    return matches[0] if matches else None
