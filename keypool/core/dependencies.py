from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from keypool.core.security import decode_access_token
from keypool.db.session import async_session_factory
from keypool.pool.manager import CredentialPool

security_scheme = HTTPBearer()


async def get_db() -> AsyncSession:  # type: ignore[misc]
    async with async_session_factory() as session:
        yield session


def get_pool(request: Request) -> CredentialPool:
    return request.app.state.pool


async def get_caller(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security_scheme)],
) -> str:
    """Resolve the calling service from its bearer JWT."""
    subject = decode_access_token(credentials.credentials)
    if subject is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return subject


DbSession = Annotated[AsyncSession, Depends(get_db)]
Pool = Annotated[CredentialPool, Depends(get_pool)]
Caller = Annotated[str, Depends(get_caller)]
