from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import structlog
from bson import ObjectId
from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from database import get_db, serialize_doc
from settings import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(user)
    # Never send password hash
    user.pop("password_hash", None)
    return user


# Dependencies

def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = authorization.split(" ", 1)[1]
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if user.get("status") == "inactive":
        raise HTTPException(status_code=403, detail="Account disabled")
    return public_user(user)


def require_admin(current_user: dict = Depends(get_current_user)) -> Dict[str, Any]:
    # The role is read from the stored profile on every request, never from the client
    if current_user.get("role") != "admin":
        logger.warning("admin_access_denied", user_id=current_user.get("id"))
        raise HTTPException(status_code=403, detail="Admins only")
    return current_user
