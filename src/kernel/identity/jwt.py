"""
JWT access tokens and opaque refresh token values.
"""

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JOSEError, JWTError, jwt
from pydantic import BaseModel, Field

from src.config import AuthConfig
from src.kernel.errors import ConfigurationFatal
from src.kernel.models.user import User

# 64 random bytes, url-safe encoded
REFRESH_TOKEN_BYTES = 64

ACCESS_TOKEN_TYPE = "access"


class AccessTokenClaims(BaseModel):
    """Verified access token payload."""

    sub: str  # User ID
    username: str
    email: str
    roles: list[str] = Field(default_factory=list)
    jti: str  # Token ID for future denylisting
    iss: str
    aud: str
    exp: datetime
    iat: datetime

    @property
    def user_id(self) -> uuid.UUID:
        return uuid.UUID(self.sub)


class TokenIssuer:
    """
    Builds signed access tokens and generates refresh token values.

    Stateless apart from the signing configuration, so one instance is
    shared by every request.
    """

    def __init__(self, config: AuthConfig):
        self.config = config
        self.access_token_ttl = timedelta(minutes=config.access_token_expire_minutes)
        self.refresh_token_ttl = timedelta(days=config.refresh_token_expire_days)
        try:
            # Fail at startup, not on the first login
            jwt.encode({"key_check": True}, config.secret_key, algorithm=config.algorithm)
        except JOSEError as exc:
            raise ConfigurationFatal(f"Signing key unusable with {config.algorithm}: {exc}") from exc

    def issue_access_token(
        self,
        user: User,
        now: Optional[datetime] = None,
    ) -> tuple[str, datetime]:
        """
        Create a signed access token for a principal.

        Args:
            user: Principal with its roles loaded
            now: Issue time (defaults to current UTC time)

        Returns:
            Tuple of (token, expiration_datetime)
        """
        issued_at = (now or datetime.now(timezone.utc)).replace(microsecond=0)
        expire = issued_at + self.access_token_ttl

        payload = {
            "sub": str(user.id),
            "username": user.username,
            "email": user.email,
            "roles": user.role_names,
            "jti": str(uuid.uuid4()),
            "iss": self.config.issuer,
            "aud": self.config.audience,
            "iat": issued_at,
            "exp": expire,
            "type": ACCESS_TOKEN_TYPE,
        }

        token = jwt.encode(payload, self.config.secret_key, algorithm=self.config.algorithm)
        return token, expire

    def issue_refresh_token_value(self, now: Optional[datetime] = None) -> tuple[str, datetime]:
        """
        Generate an opaque refresh token value.

        Not a JWT: 512 bits from the OS CSPRNG, looked up by equality only.

        Returns:
            Tuple of (value, expiration_datetime)
        """
        issued_at = now or datetime.now(timezone.utc)
        return secrets.token_urlsafe(REFRESH_TOKEN_BYTES), issued_at + self.refresh_token_ttl

    def decode_access_token(self, token: str) -> Optional[AccessTokenClaims]:
        """
        Verify signature, issuer, audience and expiry of an access token.

        No clock skew is tolerated.

        Returns:
            AccessTokenClaims if valid, None otherwise
        """
        try:
            payload = jwt.decode(
                token,
                self.config.secret_key,
                algorithms=[self.config.algorithm],
                audience=self.config.audience,
                issuer=self.config.issuer,
                options={"leeway": 0, "require_exp": True, "require_iat": True, "require_jti": True},
            )
        except JWTError:
            return None

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            return None

        try:
            return AccessTokenClaims(
                sub=payload["sub"],
                username=payload["username"],
                email=payload["email"],
                roles=payload.get("roles") or [],
                jti=payload["jti"],
                iss=payload["iss"],
                aud=payload["aud"],
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            )
        except (KeyError, ValueError):
            return None
