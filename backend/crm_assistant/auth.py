import hashlib
from typing import Annotated

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_assistant.database import get_db
from crm_assistant.models.user import User
from crm_assistant.schemas.assistant import CallerIdentity

bearer_scheme = HTTPBearer(auto_error=False)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


async def require_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CallerIdentity:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Unauthorized")

    result = await db.execute(
        select(User).where(User.api_token_hash == hash_token(credentials.credentials))
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return CallerIdentity(id=user.id, email=user.email, full_name=user.full_name)


CurrentUser = Annotated[CallerIdentity, Depends(require_user)]
