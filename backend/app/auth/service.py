"""Bearer token verification for chat connections and HTTP requests.

Tokens are issued elsewhere; this service only verifies them and extracts
the identity the hub works with:
1. Decode and validate the JWT signature (and ``iss``/``aud`` when configured)
2. Read the subject as the user id
3. Pick up display fields from the standard profile claims
"""
import logging
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from app.chat.errors import Unauthenticated

logger = logging.getLogger(__name__)


class UserIdentity(BaseModel):
    """Verified user behind a connection or request."""
    user_id: str
    user_name: str = ""
    full_name: str = ""


class TokenIdentityService:
    """Verifies signed JWT bearer tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
    ):
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience

    def verify(self, token: Optional[str]) -> UserIdentity:
        """Decode a token into a UserIdentity.

        Raises:
            Unauthenticated: If the token is missing, malformed, expired,
                badly signed, or carries no subject.
        """
        if not token:
            raise Unauthenticated()

        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as e:
            logger.info(f"[Auth] Rejected token: {e}")
            raise Unauthenticated() from e

        user_id = claims.get("sub")
        if not user_id:
            logger.info("[Auth] Rejected token without subject")
            raise Unauthenticated()

        user_name = claims.get("preferred_username") or claims.get("unique_name") or claims.get("name") or ""
        full_name = claims.get("name") or self._full_name_from_parts(claims)
        return UserIdentity(user_id=str(user_id), user_name=user_name, full_name=full_name)

    def create_token(self, user_id: str, **claims) -> str:
        """Sign a token for a user id (development and test helper)."""
        payload = {"sub": user_id, **claims}
        if self.issuer and "iss" not in payload:
            payload["iss"] = self.issuer
        if self.audience and "aud" not in payload:
            payload["aud"] = self.audience
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    @staticmethod
    def _full_name_from_parts(claims: dict) -> str:
        parts = [claims.get("given_name"), claims.get("family_name")]
        return " ".join(p for p in parts if p)
