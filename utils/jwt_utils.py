"""JWT utilities for learner session tokens"""

import jwt
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from config import settings


class JWTManager:
    """Handles session token creation and verification"""

    def __init__(self):
        self.algorithm = "HS256"

    @property
    def secret(self) -> str:
        return settings.SESSION_SECRET

    @property
    def audience(self) -> str:
        return settings.SESSION_TOKEN_AUDIENCE

    @property
    def issuer(self) -> str:
        return settings.SESSION_TOKEN_ISSUER

    def create_session_token(self, subject: str, username: Optional[str] = None, expires_hours: int = 24) -> str:
        """
        Create a session token for an identity-provider subject

        Args:
            subject: The external identity of the learner
            username: Display name used when the learner is first seen
            expires_hours: Session token expiry in hours (default: 24)

        Returns:
            JWT session token
        """
        now = datetime.now(timezone.utc)

        payload = {
            "sub": str(subject),
            "iat": now,
            "exp": now + timedelta(hours=expires_hours),
            "aud": self.audience,
            "iss": self.issuer,
        }
        if username:
            payload["username"] = username

        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify_session_token(self, token: str) -> Optional[Dict]:
        """
        Verify a session token

        Args:
            token: The session JWT token to verify

        Returns:
            Decoded payload if valid, None if invalid
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

        if not payload.get("sub"):
            return None
        return payload


# Global instance
jwt_manager = JWTManager()
