from typing import Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from app.core.security import decode_token


# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)

ANONYMOUS_USERNAME = "unknown"


class UserContext(BaseModel):
    """Caller identity forwarded by the API gateway"""
    user_id: Optional[str] = None
    role: Optional[str] = None
    email: Optional[str] = None
    username: str = ANONYMOUS_USERNAME

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


async def extract_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> UserContext:
    """
    Resolve the caller.

    The gateway authenticates the session and forwards
    X-User-Id / X-User-Role / X-User-Email / X-User-Username.
    Direct calls may instead carry the gateway-signed bearer token.
    Requests with neither run as the anonymous user.
    """
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return UserContext(
            user_id=user_id,
            role=request.headers.get("X-User-Role"),
            email=request.headers.get("X-User-Email"),
            username=request.headers.get("X-User-Username") or ANONYMOUS_USERNAME,
        )

    if credentials:
        payload = decode_token(credentials.credentials)
        if not payload or not payload.get("sub"):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return UserContext(
            user_id=str(payload["sub"]),
            role=payload.get("role"),
            email=payload.get("email"),
            username=payload.get("username") or ANONYMOUS_USERNAME,
        )

    return UserContext()


def require_role(*allowed_roles: str):
    """
    Dependency factory for role-based access control

    Usage:
        @router.get("/logs", dependencies=[Depends(require_role("admin"))])
    """
    async def role_checker(user: UserContext = Depends(extract_user)) -> UserContext:
        if user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {', '.join(allowed_roles)}",
            )
        return user

    return role_checker


def get_client_ip(request: Request) -> str:
    """
    Get client IP address from request
    Handles proxy headers
    """
    # Check for forwarded IP (when behind proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    # Check for real IP header
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    # Fall back to direct client
    return request.client.host if request.client else "unknown"


class RequestContext(BaseModel):
    """Who called, from where, and which endpoint; passed into services for activity logging"""
    user: UserContext
    ip_address: str
    endpoint: str

    @property
    def username(self) -> str:
        return self.user.username


async def get_request_context(
    request: Request,
    user: UserContext = Depends(extract_user),
) -> RequestContext:
    return RequestContext(
        user=user,
        ip_address=get_client_ip(request),
        endpoint=request.url.path,
    )
