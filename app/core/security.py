from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Union
from jose import JWTError, jwt
import hashlib
import hmac
import logging

from app.core.config import get_settings
settings = get_settings()

logger = logging.getLogger(__name__)


class SecurityUtils:
    """Security utility functions"""

    @staticmethod
    def create_access_token(
        data: Dict[str, Any],
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """Create a JWT access token (the gateway issues these; used by tooling and tests)"""
        to_encode = data.copy()

        if expires_delta:
            expire = datetime.now(timezone.utc) + expires_delta
        else:
            expire = datetime.now(timezone.utc) + timedelta(
                minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
            )

        to_encode.update({
            "exp": expire,
            "iat": datetime.now(timezone.utc),
            "type": "access"
        })

        return jwt.encode(
            to_encode,
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM
        )

    @staticmethod
    def decode_token(token: str) -> Optional[Dict[str, Any]]:
        """Decode and verify a JWT; None when invalid or expired"""
        try:
            return jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM]
            )
        except JWTError as e:
            logger.warning(f"Rejected bearer token: {str(e)}")
            return None

    @staticmethod
    def compute_signature(secret: str, message: Union[str, bytes]) -> str:
        """Hex HMAC-SHA256 of message"""
        if isinstance(message, str):
            message = message.encode("utf-8")
        return hmac.new(
            secret.encode("utf-8"),
            message,
            hashlib.sha256
        ).hexdigest()

    @staticmethod
    def signatures_match(expected: str, provided: Optional[str]) -> bool:
        if not provided:
            return False
        return hmac.compare_digest(expected, provided)


def create_access_token(data: Dict[str, Any]) -> str:
    """Create an access token"""
    return SecurityUtils.create_access_token(data)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a token"""
    return SecurityUtils.decode_token(token)
