"""Alias creation within one account's scope.

New aliases always point at a canonical id. When an id that other aliases
point at becomes an alias itself, those aliases are re-pointed to the new
canonical id in the same transaction, so resolution stays a single hop.
"""

import logging
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

import models
import schemas
from utils.errors import AliasCycleError
from utils.identity import find_alias, normalize_email, normalize_member_id, resolve_member_id

logger = logging.getLogger(__name__)


def alias_conflict(source_id: str, existing_canonical: str, requested: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Alias conflict: {source_id} already points to {existing_canonical}, not {requested}"
    )


def _repoint_incoming(db: Session, account_email: str, old_canonical: str, new_canonical: str) -> int:
    rows = db.query(models.MemberAlias).filter(
        models.MemberAlias.account_email == account_email,
        models.MemberAlias.canonical_member_id == old_canonical
    ).all()
    for row in rows:
        row.canonical_member_id = new_canonical
    if rows:
        db.flush()
    return len(rows)


def create_alias(db: Session, account_email: str, source_id: str, target_id: str) -> schemas.MergeResult:
    """Make ``source_id`` an alias of ``target_id`` in the account's scope.

    Self-merges are a no-op, repeating a merge is idempotent and re-pointing an
    existing alias to a different canonical id is a 409 conflict.
    """
    account_email = normalize_email(account_email)
    source = normalize_member_id(source_id)
    target = normalize_member_id(target_id)

    if source == target:
        return schemas.MergeResult(
            success=True,
            already_existed=True,
            message="Source and target are the same ID"
        )

    resolved_target = resolve_member_id(db, account_email, target)
    existing = find_alias(db, account_email, source)
    if existing is not None:
        existing_canonical = normalize_member_id(existing.canonical_member_id)
        if existing_canonical == resolved_target:
            return schemas.MergeResult(
                success=True,
                already_existed=True,
                message="Alias already exists to the same canonical target",
                alias=schemas.MemberAlias.model_validate(existing)
            )
        raise alias_conflict(source, existing_canonical, resolved_target)

    if resolved_target == source:
        logger.error(f"Refusing alias {source} -> {target} in scope {account_email}: would form a cycle")
        raise AliasCycleError(
            f"Alias cycle: {target} already resolves to {source}",
            account_email=account_email,
            member_id=source
        )

    repointed = _repoint_incoming(db, account_email, source, resolved_target)

    alias = models.MemberAlias(
        account_email=account_email,
        alias_member_id=source,
        canonical_member_id=resolved_target
    )
    db.add(alias)
    db.flush()
    logger.info(
        f"Alias {source} -> {resolved_target} created in scope {account_email}"
        + (f", {repointed} aliases re-pointed" if repointed else "")
    )
    return schemas.MergeResult(
        success=True,
        already_existed=False,
        message="Alias created successfully",
        alias=schemas.MemberAlias.model_validate(alias)
    )
