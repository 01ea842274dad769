from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from errors import Forbidden, Unauthenticated
from locks import KeyedLock
from models import User
from settings import ALGORITHM, SECRET_KEY

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: AsyncSession = Depends(get_db)) -> User:
    if not token:
        raise Unauthenticated("Not authenticated")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            raise Unauthenticated()
    except JWTError:
        raise Unauthenticated()
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None:
        raise Unauthenticated()
    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not getattr(current_user, 'is_admin', False):
        raise Forbidden()
    return current_user


def get_locks(request: Request) -> KeyedLock:
    """Per-user exclusive scopes, owned by the running application."""
    return request.app.state.locks


def get_observers(request: Request):
    return request.app.state.observers
