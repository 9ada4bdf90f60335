"""Shared dependencies for authentication and authorization."""

from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

import schemas
import auth
from database import get_db
from utils.identity import get_account_by_email


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Session = Depends(get_db)
):
    """Get the caller's account from the JWT token, never from the request body."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    email = auth.decode_access_token(token)
    if email is None:
        raise credentials_exception
    token_data = schemas.TokenData(email=email)
    user = get_account_by_email(db, email=token_data.email)
    if user is None:
        raise credentials_exception
    return user
