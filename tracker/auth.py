"""
Caller identity for API requests.

Two ways in:
  X-API-Key     shared secret, resolves to the configured service user
  HTTP Basic    email + password of a registered user

In demo mode with no secret configured, every request runs as the demo user.
"""
import hmac
import logging
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import NotFoundError, Unauthenticated
from .schema import User

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def ensure_user(store, user_id: str, email: str, name: str, role: str = "member") -> User:
    """Fetch a fixed-id user, creating it on first start."""
    try:
        return store.get_user(user_id)
    except NotFoundError:
        logger.info(f"Creating user {user_id} <{email}>")
        return store.create_user(email, name, role=role, user_id=user_id)


class Authenticator:
    """Resolves the caller of a Flask request to a stored User."""

    def __init__(self, store, api_secret: str = "", api_user_id: Optional[str] = None,
                 fallback_user_id: Optional[str] = None):
        self.store = store
        self.api_secret = api_secret
        self.api_user_id = api_user_id
        self.fallback_user_id = fallback_user_id

    def authenticate(self, request) -> User:
        """Return the calling user or raise Unauthenticated."""
        provided = request.headers.get("X-API-Key", "").strip()
        if provided:
            if self.api_secret and hmac.compare_digest(
                provided.encode("utf-8"), self.api_secret.encode("utf-8")
            ):
                return self.store.get_user(self.api_user_id)
            logger.warning(f"Rejected API key from {request.remote_addr}")
            raise Unauthenticated()

        credentials = request.authorization
        if credentials is not None and credentials.type == "basic":
            user = self.store.find_user_by_email(credentials.username or "")
            if user and user.password_hash and check_password_hash(
                user.password_hash, credentials.password or ""
            ):
                return user
            logger.warning(f"Failed login for {credentials.username!r} from {request.remote_addr}")
            raise Unauthenticated()

        if self.fallback_user_id:
            return self.store.get_user(self.fallback_user_id)
        raise Unauthenticated()
