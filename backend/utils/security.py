from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from bson import ObjectId
from bson.errors import InvalidId
from datetime import datetime

from utils.jwt import decode_token
from utils.errors import UnauthorizedError, ForbiddenError
from config.constants import ROLE_ADMIN
from database import get_db

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db=Depends(get_db),
):
    if credentials is None:
        raise UnauthorizedError("Authentication required / Autentifikasiya tələb olunur")

    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise UnauthorizedError("Invalid or expired token / Etibarsız və ya vaxtı keçmiş token")

    try:
        user_id = ObjectId(payload.get("sub"))
    except (InvalidId, TypeError):
        raise UnauthorizedError("Invalid token payload / Yanlış token məlumatı")

    user = await db.users.find_one({"_id": user_id})
    if not user:
        raise UnauthorizedError("User not found / İstifadəçi tapılmadı")

    if user.get("is_blocked"):
        raise ForbiddenError("Account is blocked / Hesab bloklanıb")

    # Update last activity
    await db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"last_active_at": datetime.utcnow()}}
    )

    return user


def require_role(*roles: str):
    async def checker(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            raise ForbiddenError("Insufficient permissions / Kifayət qədər icazə yoxdur")
        return user

    return checker


async def require_admin(user=Depends(get_current_user)):
    if user.get("role") != ROLE_ADMIN:
        raise ForbiddenError("Admin access only / Yalnız admin girişi")
    return user
