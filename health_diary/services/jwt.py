"""Bearer token verification for tokens issued by the account service."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from jose import JWTError, jwt

from health_diary.config import get_settings


@dataclass(frozen=True)
class TokenClaims:
    """The claims the pipeline relies on."""

    user_id: str
    email: str | None = None
    display_name: str | None = None


class JWTService:
    """Checks signature, expiry and (when configured) issuer and audience."""

    def __init__(self) -> None:
        settings = get_settings()
        self.secret_key = settings.JWT_SECRET_KEY
        self.algorithm = settings.JWT_ALGORITHM
        self.expire_minutes = settings.JWT_EXPIRE_MINUTES
        self.issuer = settings.JWT_ISSUER
        self.audience = settings.JWT_AUDIENCE

    def create_token(self, user_id: str, email: str | None = None, display_name: str | None = None) -> str:
        """Issue a token shaped like the account service's (local development and tests)."""
        claims = {
            "sub": user_id,
            "email": email,
            "displayName": display_name,
            "exp": datetime.utcnow() + timedelta(minutes=self.expire_minutes),
        }
        if self.issuer:
            claims["iss"] = self.issuer
        if self.audience:
            claims["aud"] = self.audience
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def decode_token(self, token: str) -> TokenClaims | None:
        """Returns None for any token that does not verify or carries no subject."""
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError:
            return None
        subject = payload.get("sub")
        if not subject:
            return None
        return TokenClaims(user_id=str(subject), email=payload.get("email"), display_name=payload.get("displayName"))


_jwt_service: JWTService | None = None


def get_jwt_service() -> JWTService:
    global _jwt_service
    if _jwt_service is None:
        _jwt_service = JWTService()
    return _jwt_service
