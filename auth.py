import logging
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException
from passlib.context import CryptContext
from pymongo.database import Database

from database import create_document, get_db, parse_object_id

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


# Opaque session tokens, one "session" document per issued token
def create_token(db: Database, user_id: str) -> str:
    token = secrets.token_urlsafe(32)
    create_document(db, "session", {"token": token, "user_id": user_id})
    return token


def revoke_token(db: Database, token: str) -> None:
    db["session"].delete_one({"token": token})


def bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authorized to access this route")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authorized to access this route")
    return token


def get_current_user(token: str = Depends(bearer_token), db: Database = Depends(get_db)) -> dict:
    session = db["session"].find_one({"token": token})
    if not session:
        raise HTTPException(status_code=401, detail="Not authorized to access this route")
    user = db["user"].find_one({"_id": parse_object_id(session["user_id"], "User")})
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Not authorized to access this route")
    return user


def authorize(*roles: str):
    """Dependency factory: the current user must hold one of ``roles``."""

    def dependency(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            logger.info("User %s with role %s denied", user["_id"], user.get("role"))
            raise HTTPException(
                status_code=403,
                detail=f"User role {user.get('role')} is not authorized to access this route",
            )
        return user

    return dependency
