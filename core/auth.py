import os
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from core.config import cfg, API_BASE

SECRET_KEY = str(cfg.get("secret", os.getenv("SECRET_KEY", "change-me-in-config")))
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(cfg.get("token_expire_minutes", 60 * 24 * 7))

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{API_BASE}/auth/token", auto_error=False)


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    payload = dict(data)
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    payload["exp"] = expire
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict:
    """解析 token，返回 {username, role}；无效时返回空字典"""
    text = str(token or "").strip()
    if not text:
        return {}
    try:
        payload = jwt.decode(text, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        return {}
    username = str(payload.get("sub") or "").strip()
    if not username:
        return {}
    return {
        "username": username,
        "role": str(payload.get("role") or "user"),
    }


async def get_current_user(token: str = Depends(oauth2_scheme)) -> Dict:
    user = decode_token(token)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="未登录或登录已过期",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(token: str = Depends(oauth2_scheme)) -> Optional[Dict]:
    return decode_token(token) or None


def is_admin(current_user: Optional[Dict]) -> bool:
    return bool(current_user) and current_user.get("role") == "admin"
