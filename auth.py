from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
import jwt

from config import Config
from database import get_db, User

# Tokens are issued by the external auth provider; this service only
# verifies them. ``sub`` is the user id.
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = jwt.decode(
            credentials.credentials,
            Config.JWT_SECRET,
            algorithms=[Config.JWT_ALGORITHM],
            audience=Config.JWT_AUDIENCE,
        )
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise credentials_exception

    user = db.get(User, user_id)
    if user is None:
        # first request from a user known to the auth provider
        user = User(
            id=user_id,
            email=payload.get("email"),
            full_name=(payload.get("user_metadata") or {}).get("full_name"),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    return user
