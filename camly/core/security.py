"""
Security utilities for authentication and authorization
Tokens are issued by the identity system; this service only verifies them
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Any
from jose import JWTError, jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import secrets
import string

from .config import settings
from .exceptions import UnauthorizedException, ForbiddenException

# Security scheme
security = HTTPBearer()


class SecurityUtils:
    """Security utility functions"""

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_minutes: int = 30) -> str:
        """Create JWT access token (used by tooling and tests)"""
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
        to_encode.update({"exp": expire, "type": "access"})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """Decode and validate JWT token"""
        try:
            return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            raise UnauthorizedException("Invalid authentication credentials")

    @staticmethod
    def generate_referral_code(length: int = 8) -> str:
        """Generate alphanumeric referral code"""
        characters = string.ascii_uppercase + string.digits
        return ''.join(secrets.choice(characters) for _ in range(length))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Dict[str, Any]:
    """Extract and validate user from JWT token"""
    payload = SecurityUtils.decode_token(credentials.credentials)

    if payload.get("type") != "access" or not payload.get("sub"):
        raise UnauthorizedException("Invalid token type")

    return {
        "id": str(payload["sub"]),
        "role": payload.get("role"),
        "age": payload.get("age"),
    }


def require_role(allowed_roles: list[str]):
    """Dependency factory checking the user role"""
    async def role_checker(current_user: dict = Depends(get_current_user)):
        if current_user.get("role") not in allowed_roles:
            raise ForbiddenException("Insufficient permissions")
        return current_user
    return role_checker


require_admin = require_role(["admin"])


def get_client_ip(request: Request) -> str:
    """Client IP, honouring the first X-Forwarded-For hop"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"
