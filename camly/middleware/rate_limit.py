"""Rate limiting using slowapi"""

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from camly.core.config import settings
from camly.core.security import get_client_ip


def get_rate_limit_key(request: Request) -> str:
    """Rate limit per authenticated user, falling back to the client IP"""
    auth = request.headers.get("Authorization")
    if auth:
        return f"token:{auth[-32:]}"
    return f"ip:{get_client_ip(request)}"


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=["1000 per hour"],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": f"Too many requests. {exc.detail}"
            }
        }
    )


# Claim and donation endpoints move value; keep them tight
claim_limiter = limiter.shared_limit(settings.RATE_LIMIT_CLAIM, scope="claims")
