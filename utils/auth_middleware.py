"""
Centralized Authentication Middleware and Utilities
Decodes bearer session tokens into a per-request authentication context
"""

from fastapi import Request
from typing import Optional, Dict
import time
import uuid

from utils.jwt_utils import jwt_manager
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("auth")


class AuthenticationError(Exception):
    """Custom exception for authentication failures"""

    pass


class AuthContext:
    """Container for authentication context within a request"""

    def __init__(self):
        self.subject: Optional[str] = None
        self.claims: Dict = {}
        self.auth_method: Optional[str] = None
        self.request_id: str = str(uuid.uuid4())
        self.start_time: float = time.time()

    def set_claims(self, claims: Dict, method: str = "session"):
        """Set verified token claims"""
        self.claims = claims
        self.subject = claims["sub"]
        self.auth_method = method

    @property
    def is_authenticated(self) -> bool:
        return self.subject is not None


def extract_bearer_token(authorization: str) -> str:
    """Extract bearer token from Authorization header"""
    if not authorization:
        raise AuthenticationError("Authorization header missing")

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format. Expected 'Bearer <token>'")

    return authorization.replace("Bearer ", "").strip()


async def add_auth_context_to_request(request: Request, call_next):
    """
    Middleware to add authentication context to all requests
    Does not enforce authentication - just makes it available
    """
    auth_context = AuthContext()
    request.state.auth = auth_context

    authorization = request.headers.get("Authorization")
    if authorization:
        try:
            token = extract_bearer_token(authorization)
            claims = jwt_manager.verify_session_token(token)
            if claims:
                auth_context.set_claims(claims)
                request.state.user_id = claims["sub"]
            else:
                logger.debug("Invalid or expired session token", category=LogCategory.AUTHENTICATION)
        except AuthenticationError as e:
            # Don't fail here - let individual endpoints decide if auth is required
            logger.debug(f"Auth extraction failed: {e}", category=LogCategory.AUTHENTICATION)

    response = await call_next(request)

    process_time = time.time() - auth_context.start_time
    response.headers["X-Process-Time"] = f"{process_time:.3f}"
    if auth_context.auth_method:
        response.headers["X-Auth-Method"] = auth_context.auth_method

    return response


def get_auth_context(request: Request) -> AuthContext:
    """Get authentication context from request state"""
    return getattr(request.state, "auth", None) or AuthContext()


def log_authentication_attempt(
    request: Request,
    success: bool,
    user_id: Optional[int] = None,
    error: Optional[str] = None,
):
    """Log authentication attempts for security monitoring"""
    extra = {
        "endpoint": str(request.url.path),
        "method": request.method,
        "client_ip": request.client.host if request.client else "unknown",
    }
    if error:
        extra["error"] = error

    if success:
        logger.debug("Authentication successful", category=LogCategory.AUTHENTICATION, user_id=user_id, extra=extra)
    else:
        logger.warning("Authentication failed", category=LogCategory.AUTHENTICATION, extra=extra)
