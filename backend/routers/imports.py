"""Import router: bulk import of a client ledger."""

from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db, atomic
from dependencies import get_current_user
from utils.importer import import_batch
from utils.rate_limiter import import_rate_limiter
from utils.validation import is_account_scope_allowed, soft_denial


router = APIRouter(tags=["import"])


@router.post("/import", dependencies=[Depends(import_rate_limiter)])
def import_ledger(
    request: schemas.ImportRequest,
    current_user: Annotated[models.Account, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """Import friends, groups and expenses into the caller's own account.

    The whole batch is one transaction. Individual bad records are skipped
    and listed in ``errors``.
    """
    if not is_account_scope_allowed(current_user, request.account_email):
        return soft_denial()

    with atomic(db):
        result = import_batch(db, current_user, request)
    return result
